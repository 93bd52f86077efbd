"""Domain models"""

# Schedules
from .attempt_schedule import (
    ScheduleMode,
    ScheduleEntry,
    AttemptSchedule,
)

# Attempt results
from .outreach_attempt import (
    CallAttemptStatus,
    CallOutcome,
    CallPlacement,
    ConversationSnapshot,
    EmailContent,
    EmailDeliveryResult,
    EmailAttemptResult,
)

# Engine configuration
from .cadence_config import (
    CallerIdentity,
    SourceFieldMap,
    CadenceConfig,
)

# Campaign records
from .campaign_record import (
    CampaignStatus,
    CallChannelStatus,
    EmailChannelStatus,
    TERMINAL_STATUSES,
    derive_status,
    SourceRef,
    ContactInfo,
    CallState,
    EmailState,
    AttemptHistoryEntry,
    CampaignRecord,
    CallClaim,
)

__all__ = [
    # Schedules
    "ScheduleMode",
    "ScheduleEntry",
    "AttemptSchedule",
    # Attempt results
    "CallAttemptStatus",
    "CallOutcome",
    "CallPlacement",
    "ConversationSnapshot",
    "EmailContent",
    "EmailDeliveryResult",
    "EmailAttemptResult",
    # Engine configuration
    "CallerIdentity",
    "SourceFieldMap",
    "CadenceConfig",
    # Campaign records
    "CampaignStatus",
    "CallChannelStatus",
    "EmailChannelStatus",
    "TERMINAL_STATUSES",
    "derive_status",
    "SourceRef",
    "ContactInfo",
    "CallState",
    "EmailState",
    "AttemptHistoryEntry",
    "CallClaim",
    "CampaignRecord",
]
