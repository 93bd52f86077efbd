"""
Schedule Calculator
Maps a cadence step to the timestamp its call attempt becomes due

All computations are relative to the campaign start time, never to the
current clock, so replaying a campaign yields identical due times.
"""
from datetime import datetime, time, timedelta
from typing import List, Optional

import pytz

from outreach.domain.models.attempt_schedule import AttemptSchedule, ScheduleEntry
from outreach.utils.time_utils import ensure_utc


def compute_due_at(
    step: int,
    campaign_start_time: datetime,
    schedule: AttemptSchedule
) -> Optional[datetime]:
    """
    Compute when the call attempt at ``step`` is due.

    Args:
        step: Cadence step (0-based); steps >= N have no call attempt
        campaign_start_time: Fixed start of the record's campaign
        schedule: Ordered attempt slots

    Returns:
        Aware UTC datetime, or None when ``step`` is the email step or beyond
    """
    if step < 0:
        raise ValueError(f"Cadence step must be non-negative, got {step}")

    if step >= schedule.total_steps:
        return None

    start = ensure_utc(campaign_start_time)
    entry = schedule.entries[step]

    if entry.is_offset:
        return start + timedelta(minutes=entry.minutes)

    return _resolve_day_slot(entry, start, _get_timezone(schedule.timezone))


def compute_all_due_times(
    campaign_start_time: datetime,
    schedule: AttemptSchedule
) -> List[datetime]:
    """Due times for every call step, in order."""
    return [
        compute_due_at(step, campaign_start_time, schedule)
        for step in range(schedule.total_steps)
    ]


def _resolve_day_slot(entry: ScheduleEntry, start: datetime, tz) -> datetime:
    """
    Place a day/time entry relative to the campaign start.

    Day 1 is the start date in the schedule timezone. A slot that is not
    strictly after the start moves to the same slot one week later.
    """
    local_start = start.astimezone(tz)
    slot_time = time(entry.hour, entry.minute)
    target_date = local_start.date() + timedelta(days=entry.day - 1)

    target = tz.localize(datetime.combine(target_date, slot_time))
    if target <= local_start:
        target = tz.localize(datetime.combine(target_date + timedelta(days=7), slot_time))

    return target.astimezone(pytz.UTC)


def _get_timezone(name: str):
    try:
        return pytz.timezone(name)
    except pytz.exceptions.UnknownTimeZoneError:
        return pytz.UTC
