"""
Enrollment Service
Creates or resets campaign records for source documents and reports status
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from outreach.domain.interfaces.source_store import SourceRecordStore
from outreach.domain.interfaces.tracking_store import TrackingStore
from outreach.domain.models.attempt_schedule import AttemptSchedule
from outreach.domain.models.cadence_config import CadenceConfig
from outreach.domain.models.campaign_record import CampaignRecord, SourceRef
from outreach.domain.services.contact_info import extract_business_label, extract_contact_info
from outreach.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

SKIP_ACTIVE = "active campaign exists"
SKIP_NOT_FOUND = "source record not found"


class EmailEnrollmentConfig(BaseModel):
    """Follow-up email settings for an enrollment batch"""
    enabled: bool = True
    scheduled_at: Optional[datetime] = Field(
        default=None,
        description="Send the email at this time instead of right after the last call"
    )


class EnrollmentSummary(BaseModel):
    """Per-record outcome of an enrollment request"""
    accepted: List[Dict[str, Any]] = Field(default_factory=list)
    skipped: List[Dict[str, Any]] = Field(default_factory=list)
    failed: List[Dict[str, Any]] = Field(default_factory=list)


class EnrollmentService:
    """
    Enrolls source documents into the call cadence.

    A source document has at most one active campaign record. Records that
    finished (terminal, or calls and email both done) are reset in place
    instead of duplicated.
    """

    def __init__(
        self,
        store: TrackingStore,
        source_store: SourceRecordStore,
        config: CadenceConfig,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.source_store = source_store
        self.config = config
        self._clock = clock

    def resolve_schedule(self, schedule: Optional[AttemptSchedule]) -> AttemptSchedule:
        """
        Use the requested schedule or the configured default.

        Raises:
            ValueError: Schedule has more steps than the sweeps cover
        """
        schedule = schedule or self.config.schedule
        if schedule.total_steps > self.config.max_cadence_steps:
            raise ValueError(
                f"Schedule has {schedule.total_steps} attempts; "
                f"at most {self.config.max_cadence_steps} are supported"
            )
        return schedule

    async def enroll(
        self,
        records: List[SourceRef],
        schedule: Optional[AttemptSchedule] = None,
        email_config: Optional[EmailEnrollmentConfig] = None,
        created_by: Optional[str] = None
    ) -> EnrollmentSummary:
        """
        Enroll source records.

        Args:
            records: Source documents to enroll
            schedule: Attempt schedule (defaults to the configured mode's)
            email_config: Follow-up email settings
            created_by: Caller identifier stored on new records

        Returns:
            EnrollmentSummary with accepted, skipped and failed entries

        Raises:
            ValueError: Invalid schedule for this deployment
        """
        schedule = self.resolve_schedule(schedule)
        email_config = email_config or EmailEnrollmentConfig()
        start_time = self._clock()
        summary = EnrollmentSummary()

        for source_ref in records:
            try:
                entry = await self._enroll_one(source_ref, schedule, email_config, start_time, created_by)
            except Exception as e:
                logger.error(f"Enrollment failed for {source_ref.key}: {e}", exc_info=True)
                summary.failed.append({"source": source_ref.model_dump(), "error": str(e)})
                continue

            if "reason" in entry:
                summary.skipped.append(entry)
            else:
                summary.accepted.append(entry)

        logger.info(
            f"Enrollment: {len(summary.accepted)} accepted, {len(summary.skipped)} skipped, "
            f"{len(summary.failed)} failed ({schedule.total_steps} attempts, {schedule.mode.value} schedule)"
        )
        return summary

    async def _enroll_one(
        self,
        source_ref: SourceRef,
        schedule: AttemptSchedule,
        email_config: EmailEnrollmentConfig,
        start_time: datetime,
        created_by: Optional[str]
    ) -> Dict[str, Any]:
        source = source_ref.model_dump()

        document = await self.source_store.get(source_ref)
        if document is None:
            return {"source": source, "reason": SKIP_NOT_FOUND}

        existing = await self.store.find_by_source(source_ref)
        if existing is not None and not existing.is_resettable():
            return {"source": source, "reason": SKIP_ACTIVE, "tracking_id": existing.id}

        business_label = extract_business_label(document, self.config.source_fields)
        contact_info = extract_contact_info(
            document,
            self.config.source_fields,
            self.config.default_country_code
        )

        if existing is None:
            record = await self.store.insert(CampaignRecord.enroll(
                source_ref=source_ref,
                schedule=schedule,
                start_time=start_time,
                business_label=business_label,
                contact_info=contact_info,
                email_enabled=email_config.enabled,
                email_scheduled_at=email_config.scheduled_at,
                created_by=created_by
            ))
            action = "created"
        else:
            record = await self.store.replace(existing, existing.restarted(
                schedule=schedule,
                start_time=start_time,
                business_label=business_label,
                contact_info=contact_info,
                email_enabled=email_config.enabled,
                email_scheduled_at=email_config.scheduled_at,
                created_by=created_by
            ))
            action = "reset"
            logger.info(
                f"Reset campaign {record.id} for {source_ref.key} "
                f"(enrollment {record.enrollment_count})"
            )

        try:
            await self.source_store.patch_outreach(source_ref, record.outreach_summary())
        except Exception as e:
            logger.warning(f"Initial outreach sync to {source_ref.key} failed: {e}")

        return {"source": source, "tracking_id": record.id, "action": action}

    async def status(self, tracking_ids: Optional[List[str]] = None) -> Dict[str, Any]:
        """Counts by status and step for the given records, or for all of them."""
        return await self.store.count_by_status(tracking_ids)
