"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from outreach.api.v1.endpoints import (
    campaigns,
    scheduler,
)

api_router = APIRouter()

api_router.include_router(campaigns.router)
api_router.include_router(scheduler.router)
