"""
Cadence Configuration Model
Runtime settings shared by the progression engine, executor and enrollment
"""
from pydantic import BaseModel, Field
from typing import Dict, List, Optional

from outreach.domain.models.attempt_schedule import AttemptSchedule, ScheduleEntry


class CallerIdentity(BaseModel):
    """A voice agent + outbound number pair used to place calls"""

    name: str = Field(..., description="Identity name, e.g. 'agent_1'")
    agent_id: str = Field(..., description="Conversational agent id at the call provider")
    phone_number_id: str = Field(..., description="Provider id of the outbound number")
    api_key: Optional[str] = Field(default=None, repr=False)


class SourceFieldMap(BaseModel):
    """Field names read from source documents"""

    phone_field: str = "phonenumber"
    email_field: str = "email"
    label_field: str = "businessname"


class CadenceConfig(BaseModel):
    """
    Engine-wide cadence settings.

    Built once at startup by ``load_cadence_config`` from the environment
    and the YAML config files.
    """

    schedule: AttemptSchedule = Field(..., description="Default attempt schedule for enrollments")
    max_cadence_steps: int = Field(
        default=4,
        ge=1,
        description="Largest N accepted; one call sweep runs per step below it"
    )

    # Caller identities
    identities: List[CallerIdentity] = Field(default_factory=list)
    identity_by_attempt: Dict[int, str] = Field(
        default_factory=dict,
        description="Attempt number (1-based) -> identity name"
    )

    # Leases and retries
    claim_grace_minutes: int = Field(default=10, ge=1)
    initiation_retry_minutes: int = Field(default=5, ge=1)
    email_retry_minutes: int = Field(default=30, ge=1)
    max_email_attempts: int = Field(default=3, ge=1)

    # Call polling
    poll_interval_seconds: float = Field(default=10.0, ge=0)
    max_poll_wait_seconds: float = Field(default=400.0, gt=0)

    # Email
    email_delay_seconds: float = Field(default=15.0, ge=0)
    email_partnered_records: bool = Field(
        default=False,
        description="Send the follow-up email to records that reported a partnership"
    )
    brand_name: str = "InfinityClub"
    campaign_type: str = "InfinityClub Partnership Outreach"
    email_prompt: Optional[str] = None

    # Throughput
    max_concurrent_attempts: Optional[int] = Field(default=None, ge=1)
    batch_size: int = Field(default=100, ge=1)

    # Contact data
    default_country_code: str = "44"
    source_fields: SourceFieldMap = Field(default_factory=SourceFieldMap)

    # Partnership signal
    partnership_signal_key: str = "isTheRestaurantPartneredWithInfinityClub"
    partnership_keywords: List[str] = Field(default_factory=lambda: ["partner", "infinity"])

    def identity_for_attempt(
        self,
        attempt_number: int,
        entry: Optional[ScheduleEntry] = None
    ) -> Optional[CallerIdentity]:
        """
        Select the caller identity for a 1-based attempt number.

        Order: identity pinned on the schedule entry, then the configured
        attempt mapping, then round-robin over the identities.
        """
        if not self.identities:
            return None

        by_name = {identity.name: identity for identity in self.identities}

        if entry is not None and entry.identity in by_name:
            return by_name[entry.identity]

        mapped = self.identity_by_attempt.get(attempt_number)
        if mapped in by_name:
            return by_name[mapped]

        return self.identities[(attempt_number - 1) % len(self.identities)]
