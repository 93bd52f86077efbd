"""
Campaign Record Model
Per-record cadence state for a multi-step call + email campaign

One CampaignRecord exists per enrolled source record. Steps 0..N-1 are
call attempts and step N is the follow-up email. All transitions are pure
methods returning a new record so every store applies identical rules.
"""
import uuid
from pydantic import BaseModel, Field
from typing import Any, Dict, FrozenSet, List, Optional
from datetime import datetime, timedelta
from enum import Enum

from outreach.domain.models.attempt_schedule import AttemptSchedule, ScheduleEntry
from outreach.domain.models.outreach_attempt import (
    CallAttemptStatus,
    CallOutcome,
    EmailAttemptResult,
)
from outreach.domain.services.schedule_calculator import compute_due_at
from outreach.utils.time_utils import ensure_utc, to_iso


class CampaignStatus(str, Enum):
    """Fixed combined statuses (``attempted_k`` values are built per step)"""
    LEAD = "lead"
    EMAILED = "emailed"
    PARTNERED = "partnered"
    ARCHIVED = "archived"


class CallChannelStatus(str, Enum):
    """State of the call channel"""
    SCHEDULED = "scheduled"    # Waiting for the next slot
    CLAIMED = "claimed"        # Leased by a sweep, attempt in progress
    COMPLETED = "completed"    # Every call step resolved
    PARTNERED = "partnered"    # Stopped early by a positive partnership signal


class EmailChannelStatus(str, Enum):
    """State of the email channel"""
    DISABLED = "disabled"
    PENDING = "pending"        # Waiting for calls to resolve / first send
    FAILED = "failed"          # Last attempt failed, will be retried
    SENT = "sent"
    NO_ADDRESS = "no_address"  # Permanent: no address on file
    EXHAUSTED = "exhausted"    # Permanent: retry budget used up


TERMINAL_STATUSES: FrozenSet[str] = frozenset({
    CampaignStatus.EMAILED.value,
    CampaignStatus.PARTNERED.value,
    CampaignStatus.ARCHIVED.value,
})

# Email channel states that still expect a send
OPEN_EMAIL_STATUSES: FrozenSet[str] = frozenset({
    EmailChannelStatus.PENDING.value,
    EmailChannelStatus.FAILED.value,
})


def attempted_status(step: int) -> str:
    """Combined status after ``step`` call attempts."""
    return f"attempted_{step}"


def derive_status(
    cadence_step: int,
    call_status: CallChannelStatus,
    email_status: EmailChannelStatus,
    archived: bool = False
) -> str:
    """
    Combined campaign status from the two channel states.

    Archived wins, then partnership, then a sent email; otherwise the
    status follows the cadence step.
    """
    if archived:
        return CampaignStatus.ARCHIVED.value
    if call_status == CallChannelStatus.PARTNERED:
        return CampaignStatus.PARTNERED.value
    if email_status == EmailChannelStatus.SENT:
        return CampaignStatus.EMAILED.value
    if cadence_step == 0:
        return CampaignStatus.LEAD.value
    return attempted_status(cadence_step)


class SourceRef(BaseModel):
    """Pointer to the originating document"""
    database: str = Field(..., min_length=1, description="Database (schema) name")
    collection: str = Field(..., min_length=1, description="Collection (table) name")
    document_id: str = Field(..., min_length=1)

    @property
    def key(self) -> str:
        return f"{self.database}/{self.collection}/{self.document_id}"


class ContactInfo(BaseModel):
    """Denormalized contact snapshot, refreshed from the source when empty"""
    phone_numbers: List[str] = Field(default_factory=list)
    emails: List[str] = Field(default_factory=list)

    @property
    def has_phone(self) -> bool:
        return bool(self.phone_numbers)

    @property
    def has_email(self) -> bool:
        return bool(self.emails)


class CallState(BaseModel):
    """Call channel state"""
    status: CallChannelStatus = CallChannelStatus.SCHEDULED
    next_attempt_at: Optional[datetime] = None
    is_claimed: bool = False
    claimed_at: Optional[datetime] = None
    attempts_made: int = Field(default=0, ge=0)
    last_status: Optional[CallAttemptStatus] = None
    last_duration_seconds: float = 0
    last_conversation_ref: Optional[str] = None
    last_identity: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    initiation_failures: int = Field(default=0, ge=0)
    is_partnered: Optional[bool] = None


class EmailState(BaseModel):
    """Email channel state"""
    status: EmailChannelStatus = EmailChannelStatus.PENDING
    scheduled_at: Optional[datetime] = Field(
        default=None,
        description="Deferred send time bundled with the call campaign"
    )
    sent_count: int = Field(default=0, ge=0)
    attempts: int = Field(default=0, ge=0)
    next_attempt_at: Optional[datetime] = None
    last_status: Optional[str] = None
    last_subject: Optional[str] = None
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None


class AttemptHistoryEntry(BaseModel):
    """One resolved call attempt (immutable once appended)"""
    attempt_number: int = Field(..., ge=1, description="1-based position in history")
    cadence_step: int = Field(..., ge=0)
    attempted_at: datetime
    status: CallAttemptStatus
    successful: bool = False
    duration_seconds: float = 0
    conversation_ref: Optional[str] = None
    identity: Optional[str] = None
    partnership_signal: Optional[bool] = None

    model_config = {"frozen": True}


class CampaignRecord(BaseModel):
    """
    Cadence state for one enrolled source record.

    Invariants kept by the transition methods:
    - ``len(history) == call.attempts_made``
    - ``cadence_step`` only grows (by one per resolved attempt) until reset
    - any transition after a claim clears ``call.is_claimed``
    """

    # Identity
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_ref: SourceRef
    business_label: str = Field(default="", description="Business name used in calls and emails")

    # Progression
    status: str = Field(default=CampaignStatus.LEAD.value)
    cadence_step: int = Field(default=0, ge=0)
    schedule: AttemptSchedule
    campaign_start_time: datetime

    # Channels
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    call: CallState = Field(default_factory=CallState)
    email: EmailState = Field(default_factory=EmailState)
    history: List[AttemptHistoryEntry] = Field(default_factory=list)
    previous_history: List[AttemptHistoryEntry] = Field(
        default_factory=list,
        description="History of earlier enrollments, kept on reset"
    )

    # Bookkeeping
    enrollment_count: int = Field(default=1, ge=1)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = Field(default=0, ge=0, description="Optimistic concurrency version")

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @classmethod
    def enroll(
        cls,
        source_ref: SourceRef,
        schedule: AttemptSchedule,
        start_time: datetime,
        business_label: str = "",
        contact_info: Optional[ContactInfo] = None,
        email_enabled: bool = True,
        email_scheduled_at: Optional[datetime] = None,
        created_by: Optional[str] = None
    ) -> "CampaignRecord":
        """Create a fresh record at step 0 with its first call scheduled."""
        start_time = ensure_utc(start_time)
        return cls(
            source_ref=source_ref,
            business_label=business_label,
            schedule=schedule,
            campaign_start_time=start_time,
            contact_info=contact_info or ContactInfo(),
            call=CallState(next_attempt_at=compute_due_at(0, start_time, schedule)),
            email=EmailState(
                status=EmailChannelStatus.PENDING if email_enabled else EmailChannelStatus.DISABLED,
                scheduled_at=ensure_utc(email_scheduled_at) if email_scheduled_at else None
            ),
            created_by=created_by,
            created_at=start_time,
            updated_at=start_time
        )

    def restarted(
        self,
        schedule: AttemptSchedule,
        start_time: datetime,
        business_label: Optional[str] = None,
        contact_info: Optional[ContactInfo] = None,
        email_enabled: bool = True,
        email_scheduled_at: Optional[datetime] = None,
        created_by: Optional[str] = None
    ) -> "CampaignRecord":
        """Reset a finished record back to ``lead`` / step 0 for re-enrollment."""
        fresh = CampaignRecord.enroll(
            source_ref=self.source_ref,
            schedule=schedule,
            start_time=start_time,
            business_label=business_label if business_label is not None else self.business_label,
            contact_info=contact_info or self.contact_info,
            email_enabled=email_enabled,
            email_scheduled_at=email_scheduled_at,
            created_by=created_by or self.created_by
        )
        return fresh.model_copy(update={
            "id": self.id,
            "previous_history": [*self.previous_history, *self.history],
            "enrollment_count": self.enrollment_count + 1,
            "created_at": self.created_at,
            "version": self.version + 1,
        })

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def total_steps(self) -> int:
        """N: number of call steps; step N is the email step."""
        return self.schedule.total_steps

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def calls_resolved(self) -> bool:
        return self.cadence_step >= self.total_steps

    @property
    def current_entry(self) -> Optional[ScheduleEntry]:
        if self.calls_resolved:
            return None
        return self.schedule.entries[self.cadence_step]

    def is_due_for_call(self, now: datetime, step: Optional[int] = None) -> bool:
        """
        Due when the next attempt time has passed and no live claim exists.

        A claim pushes ``next_attempt_at`` into the future, so an expired
        claim makes the record selectable again.
        """
        if self.is_terminal or self.calls_resolved:
            return False
        if step is not None and self.cadence_step != step:
            return False
        if self.call.next_attempt_at is None:
            return False
        return ensure_utc(self.call.next_attempt_at) <= ensure_utc(now)

    def is_due_for_email(
        self,
        now: datetime,
        scheduled: bool = False,
        include_partnered: bool = False
    ) -> bool:
        """
        Due when calls are resolved, nothing was sent yet and the email
        channel's next attempt time has passed.

        ``scheduled`` selects records carrying a deferred send time.
        """
        email = self.email
        if email.status not in OPEN_EMAIL_STATUSES or email.sent_count > 0:
            return False
        if (email.scheduled_at is not None) != scheduled:
            return False
        if self.status in (CampaignStatus.ARCHIVED.value, CampaignStatus.EMAILED.value):
            return False

        if self.status == CampaignStatus.PARTNERED.value:
            if not include_partnered:
                return False
        elif not self.calls_resolved:
            return False

        if email.next_attempt_at is None:
            return False
        return ensure_utc(email.next_attempt_at) <= ensure_utc(now)

    def is_resettable(self) -> bool:
        """True once there is nothing left for the engine to do."""
        if self.is_terminal:
            return True
        return self.calls_resolved and self.email.status not in OPEN_EMAIL_STATUSES

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def claimed(self, now: datetime, grace_minutes: int) -> "CampaignRecord":
        """Lease the record for one call attempt."""
        updated = self.model_copy(deep=True)
        updated.call.is_claimed = True
        updated.call.status = CallChannelStatus.CLAIMED
        updated.call.claimed_at = ensure_utc(now)
        updated.call.next_attempt_at = ensure_utc(now) + timedelta(minutes=grace_minutes)
        return updated

    def email_claimed(self, now: datetime, grace_minutes: int) -> "CampaignRecord":
        """Lease the email channel for one email attempt."""
        updated = self.model_copy(deep=True)
        updated.email.next_attempt_at = ensure_utc(now) + timedelta(minutes=grace_minutes)
        return updated

    def with_call_outcome(self, outcome: CallOutcome, now: datetime) -> "CampaignRecord":
        """
        Apply a resolved call attempt.

        Appends history, advances the cadence by exactly one (capped at N),
        schedules the next attempt or opens the email channel, and clears
        the claim. A positive partnership signal ends the call channel.
        """
        now = ensure_utc(now)
        updated = self.model_copy(deep=True)

        updated.history.append(AttemptHistoryEntry(
            attempt_number=len(self.history) + 1,
            cadence_step=self.cadence_step,
            attempted_at=now,
            status=outcome.status,
            successful=outcome.successful,
            duration_seconds=outcome.duration_seconds,
            conversation_ref=outcome.conversation_ref,
            identity=outcome.identity,
            partnership_signal=outcome.partnership_signal
        ))

        call = updated.call
        call.attempts_made = len(updated.history)
        call.is_claimed = False
        call.claimed_at = None
        call.last_status = outcome.status
        call.last_duration_seconds = outcome.duration_seconds
        call.last_conversation_ref = outcome.conversation_ref
        call.last_identity = outcome.identity
        call.last_attempt_at = now
        call.last_error = None
        if outcome.partnership_signal is not None:
            call.is_partnered = outcome.partnership_signal

        updated.cadence_step = min(self.cadence_step + 1, self.total_steps)

        if outcome.partnership_signal is True:
            call.status = CallChannelStatus.PARTNERED
            call.next_attempt_at = None
        elif updated.calls_resolved:
            call.status = CallChannelStatus.COMPLETED
            call.next_attempt_at = None
        else:
            call.status = CallChannelStatus.SCHEDULED
            call.next_attempt_at = compute_due_at(
                updated.cadence_step, self.campaign_start_time, self.schedule
            )

        if call.next_attempt_at is None and updated.email.status == EmailChannelStatus.PENDING:
            email_due = now
            if updated.email.scheduled_at and ensure_utc(updated.email.scheduled_at) > now:
                email_due = ensure_utc(updated.email.scheduled_at)
            updated.email.next_attempt_at = email_due

        return updated._touched(now)

    def with_retry_delay(
        self,
        now: datetime,
        delay_minutes: int,
        error: Optional[str] = None
    ) -> "CampaignRecord":
        """Release the claim after a failed initiation without using a step."""
        updated = self.model_copy(deep=True)
        updated.call.is_claimed = False
        updated.call.status = CallChannelStatus.SCHEDULED
        updated.call.next_attempt_at = ensure_utc(now) + timedelta(minutes=delay_minutes)
        updated.call.claimed_at = None
        updated.call.initiation_failures += 1
        updated.call.last_error = error
        return updated._touched(now)

    def with_email_result(
        self,
        result: EmailAttemptResult,
        now: datetime,
        retry_minutes: int,
        max_attempts: int
    ) -> "CampaignRecord":
        """
        Apply an email attempt.

        Success marks the record emailed. A missing address or an exhausted
        retry budget closes the channel; other failures schedule a retry and
        leave the call-derived status in place.
        """
        now = ensure_utc(now)
        updated = self.model_copy(deep=True)
        email = updated.email

        email.attempts += 1
        email.last_attempt_at = now
        if result.subject:
            email.last_subject = result.subject

        if result.success:
            email.status = EmailChannelStatus.SENT
            email.sent_count = max(result.sent_count, 1)
            email.last_status = "sent"
            email.last_error = None
            email.next_attempt_at = None
        elif result.no_address:
            email.status = EmailChannelStatus.NO_ADDRESS
            email.last_status = "no_address"
            email.last_error = result.error
            email.next_attempt_at = None
        else:
            email.last_status = "failed"
            email.last_error = result.error
            if email.attempts >= max_attempts:
                email.status = EmailChannelStatus.EXHAUSTED
                email.next_attempt_at = None
            else:
                email.status = EmailChannelStatus.FAILED
                email.next_attempt_at = now + timedelta(minutes=retry_minutes)

        return updated._touched(now)

    def with_contact_info(self, contact_info: ContactInfo) -> "CampaignRecord":
        return self.model_copy(update={"contact_info": contact_info.model_copy(deep=True)})

    def _touched(self, now: datetime) -> "CampaignRecord":
        self.status = derive_status(
            self.cadence_step,
            self.call.status,
            self.email.status,
            archived=self.status == CampaignStatus.ARCHIVED.value
        )
        self.updated_at = now
        self.version += 1
        return self

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def outreach_summary(self) -> Dict[str, Any]:
        """Subset mirrored onto the source document's ``outreach`` field."""
        if self.call.is_partnered is None:
            alignment = "unknown"
        else:
            alignment = "partnered" if self.call.is_partnered else "not_partnered"

        return {
            "tracking_id": self.id,
            "status": self.status,
            "cadence_step": self.cadence_step,
            "contact_info": self.contact_info.model_dump(),
            "call": {
                "status": self.call.status.value,
                "attempts_made": self.call.attempts_made,
                "last_status": self.call.last_status.value if self.call.last_status else None,
                "last_attempt_at": to_iso(self.call.last_attempt_at),
                "last_duration_seconds": self.call.last_duration_seconds,
                "last_conversation_ref": self.call.last_conversation_ref,
                "next_attempt_at": to_iso(self.call.next_attempt_at),
            },
            "alignment": {"status": alignment},
            "email": {
                "status": self.email.status.value,
                "sent_count": self.email.sent_count,
                "last_status": self.email.last_status,
                "last_subject": self.email.last_subject,
                "last_error": self.email.last_error,
                "last_attempt_at": to_iso(self.email.last_attempt_at),
            },
            "last_updated_at": to_iso(self.updated_at),
        }

    def to_row(self) -> Dict[str, Any]:
        """Flatten for the Supabase tracking table."""
        row: Dict[str, Any] = {
            "id": self.id,
            "source_database": self.source_ref.database,
            "source_collection": self.source_ref.collection,
            "source_document_id": self.source_ref.document_id,
            "business_label": self.business_label,
            "status": self.status,
            "cadence_step": self.cadence_step,
            "total_steps": self.total_steps,
            "schedule": self.schedule.to_dict(),
            "campaign_start_time": to_iso(self.campaign_start_time),
            "contact_info": self.contact_info.model_dump(),
            "history": [entry.model_dump(mode="json") for entry in self.history],
            "previous_history": [entry.model_dump(mode="json") for entry in self.previous_history],
            "enrollment_count": self.enrollment_count,
            "created_by": self.created_by,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "version": self.version,
        }
        for key, value in self.call.model_dump(mode="json").items():
            row[f"call_{key}"] = value
        for key, value in self.email.model_dump(mode="json").items():
            row[f"email_{key}"] = value
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CampaignRecord":
        """Rebuild from a Supabase tracking table row."""
        call = {k[len("call_"):]: v for k, v in row.items() if k.startswith("call_")}
        email = {k[len("email_"):]: v for k, v in row.items() if k.startswith("email_")}
        return cls(
            id=row["id"],
            source_ref=SourceRef(
                database=row["source_database"],
                collection=row["source_collection"],
                document_id=str(row["source_document_id"])
            ),
            business_label=row.get("business_label") or "",
            status=row["status"],
            cadence_step=row["cadence_step"],
            schedule=AttemptSchedule.from_dict(row["schedule"]),
            campaign_start_time=row["campaign_start_time"],
            contact_info=ContactInfo(**(row.get("contact_info") or {})),
            call=CallState(**call),
            email=EmailState(**email),
            history=row.get("history") or [],
            previous_history=row.get("previous_history") or [],
            enrollment_count=row.get("enrollment_count") or 1,
            created_by=row.get("created_by"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            version=row.get("version") or 0
        )


class CallClaim(BaseModel):
    """
    The lease one call sweep took on a record.

    A call transition is only written while the record still carries this
    exact lease. Once it expires and another sweep re-claims the record,
    the first holder's outcome is rejected instead of advancing the
    cadence a second time.
    """
    cadence_step: int = Field(..., ge=0)
    claimed_at: Optional[datetime] = None

    @classmethod
    def current(cls, record: CampaignRecord) -> "CallClaim":
        """The lease the record holds right now."""
        return cls(cadence_step=record.cadence_step, claimed_at=record.call.claimed_at)

    def held_by(self, record: CampaignRecord) -> bool:
        if record.is_terminal or not record.call.is_claimed:
            return False
        if record.cadence_step != self.cadence_step:
            return False
        if self.claimed_at is None:
            return record.call.claimed_at is None
        return (
            record.call.claimed_at is not None
            and ensure_utc(record.call.claimed_at) == ensure_utc(self.claimed_at)
        )

    def as_filters(self) -> Dict[str, Any]:
        """Column filters that pin a conditional update to this lease."""
        filters: Dict[str, Any] = {"call_is_claimed": True, "cadence_step": self.cadence_step}
        if self.claimed_at is None:
            filters["call_claimed_at"] = None
        else:
            filters["call_claimed_at"] = to_iso(self.claimed_at)
        return filters
