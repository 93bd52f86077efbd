"""
Attempt Schedule Model
Ordered list of call attempt slots for a campaign
"""
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from enum import Enum


class ScheduleMode(str, Enum):
    """Which configured cadence a campaign uses"""
    TEST = "test"              # Minute offsets from campaign start
    PRODUCTION = "production"  # Day of campaign + time of day


class ScheduleEntry(BaseModel):
    """
    One call attempt slot.

    Either a relative offset (``minutes`` after campaign start) or an
    absolute slot in the campaign (``day`` counted from the start date,
    at ``hour``:``minute`` in the schedule timezone).
    """

    minutes: Optional[int] = Field(
        default=None,
        ge=0,
        description="Minutes after campaign start (test cadences)"
    )
    day: Optional[int] = Field(
        default=None,
        ge=1,
        description="Day of the campaign, 1 = start date"
    )
    hour: Optional[int] = Field(default=None, ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)
    identity: Optional[str] = Field(
        default=None,
        description="Caller identity name pinned to this attempt"
    )

    @property
    def is_offset(self) -> bool:
        return self.minutes is not None

    def describe(self) -> str:
        if self.is_offset:
            return f"+{self.minutes}min"
        return f"day {self.day} {self.hour:02d}:{self.minute:02d}"


class AttemptSchedule(BaseModel):
    """
    Configured cadence of call attempts.

    N (the email step) is ``len(entries)``.
    """

    mode: ScheduleMode = Field(default=ScheduleMode.TEST)
    timezone: str = Field(
        default="Europe/London",
        description="Timezone used to resolve day/time entries"
    )
    entries: List[ScheduleEntry] = Field(..., min_length=1)

    @field_validator("entries")
    @classmethod
    def validate_entry_shapes(cls, entries: List[ScheduleEntry]) -> List[ScheduleEntry]:
        """Each entry must be exactly one of the two slot shapes."""
        for i, entry in enumerate(entries):
            has_offset = entry.minutes is not None
            has_slot = entry.day is not None or entry.hour is not None
            if has_offset == has_slot:
                raise ValueError(
                    f"Schedule entry {i} must set either 'minutes' or 'day' and 'hour'"
                )
            if has_slot and (entry.day is None or entry.hour is None):
                raise ValueError(f"Schedule entry {i} needs both 'day' and 'hour'")
        return entries

    @property
    def total_steps(self) -> int:
        return len(self.entries)

    @classmethod
    def from_minutes(cls, offsets: List[int], timezone: str = "Europe/London") -> "AttemptSchedule":
        """Build a test-mode schedule from plain minute offsets."""
        return cls(
            mode=ScheduleMode.TEST,
            timezone=timezone,
            entries=[ScheduleEntry(minutes=m) for m in offsets]
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for database storage."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_dict(cls, data: dict) -> "AttemptSchedule":
        """Create from dictionary (database load)."""
        return cls(**data)
