"""
Scheduler API
Start/stop control and statistics for the outreach scheduler
"""
from fastapi import APIRouter, Depends

from outreach.api.v1.dependencies import get_scheduler
from outreach.workers.outreach_worker import OutreachScheduler

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


@router.post("/start")
async def start_scheduler(scheduler: OutreachScheduler = Depends(get_scheduler)):
    await scheduler.start()
    return {"running": scheduler.running}


@router.post("/stop")
async def stop_scheduler(scheduler: OutreachScheduler = Depends(get_scheduler)):
    """Stop the timer; attempts already running are allowed to finish."""
    await scheduler.stop(wait=False)
    return {"running": scheduler.running}


@router.get("/stats")
async def scheduler_stats(scheduler: OutreachScheduler = Depends(get_scheduler)):
    return scheduler.get_stats()
