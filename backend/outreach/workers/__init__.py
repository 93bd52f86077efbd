"""
Workers Package
Background scheduler for campaign progression
"""
from outreach.workers.outreach_worker import OutreachScheduler

__all__ = [
    "OutreachScheduler"
]
