"""
API Dependencies
Shared access to the application container built at startup
"""
from fastapi import Depends, HTTPException, Request, status

from outreach.container import OutreachContainer
from outreach.domain.services.enrollment_service import EnrollmentService
from outreach.workers.outreach_worker import OutreachScheduler


def get_container(request: Request) -> OutreachContainer:
    """
    Get the container created by the application lifespan.

    Raises:
        HTTPException: 503 if the application has not finished starting
    """
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Outreach services are not initialized"
        )
    return container


def get_enrollment_service(
    container: OutreachContainer = Depends(get_container)
) -> EnrollmentService:
    return container.enrollment


def get_scheduler(
    container: OutreachContainer = Depends(get_container)
) -> OutreachScheduler:
    return container.scheduler
