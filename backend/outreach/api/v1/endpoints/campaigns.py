"""
Campaigns API
Enrollment of source records into the call cadence and status counts
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from outreach.api.v1.dependencies import get_enrollment_service
from outreach.domain.models.attempt_schedule import AttemptSchedule
from outreach.domain.models.campaign_record import SourceRef
from outreach.domain.services.enrollment_service import (
    EmailEnrollmentConfig,
    EnrollmentService,
    EnrollmentSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


class EnrollRequest(BaseModel):
    """Request body for enrolling source records"""
    records: List[SourceRef] = Field(..., min_length=1)
    schedule: Optional[AttemptSchedule] = Field(
        default=None,
        description="Attempt schedule; the configured schedule is used when omitted"
    )
    email: EmailEnrollmentConfig = Field(default_factory=EmailEnrollmentConfig)
    created_by: Optional[str] = Field(default=None, max_length=255)


@router.post("/enroll", response_model=EnrollmentSummary)
async def enroll_records(
    request: EnrollRequest,
    service: EnrollmentService = Depends(get_enrollment_service)
):
    """
    Enroll records into the campaign.

    Records with an active campaign are skipped; finished ones are reset.
    """
    try:
        return await service.enroll(
            request.records,
            schedule=request.schedule,
            email_config=request.email,
            created_by=request.created_by
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/status")
async def campaign_status(
    tracking_ids: Optional[str] = Query(None, description="Comma-separated tracking ids"),
    service: EnrollmentService = Depends(get_enrollment_service)
):
    """Counts by status and step, for the given ids or all records"""
    ids = None
    if tracking_ids:
        ids = [value.strip() for value in tracking_ids.split(",") if value.strip()]

    try:
        return await service.status(ids)
    except Exception as e:
        logger.error(f"Status query failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
