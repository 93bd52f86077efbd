"""
Tracking Store Interface
Abstract persistence for campaign records

Implementations provide the primitive reads/writes and the bulk claim.
State transitions are shared here and delegate the rules to
CampaignRecord, so every backend advances records identically.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from outreach.domain.models.campaign_record import (
    CallClaim,
    CampaignRecord,
    ContactInfo,
    SourceRef,
)
from outreach.domain.models.outreach_attempt import CallOutcome, EmailAttemptResult


class TrackingStoreError(Exception):
    """Base error for tracking store operations"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class TrackingRecordNotFound(TrackingStoreError):
    """Raised when a record id does not exist"""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Campaign record {record_id} not found")


class StaleTrackingRecordError(TrackingStoreError):
    """Raised when a versioned write loses to a concurrent update"""

    def __init__(self, record_id: str, expected_version: int, reason: Optional[str] = None):
        self.record_id = record_id
        self.expected_version = expected_version
        super().__init__(
            f"Campaign record {record_id} changed concurrently (expected version {expected_version})"
            + (f": {reason}" if reason else "")
        )


class TrackingStore(ABC):
    """Abstract base class for campaign record storage"""

    @abstractmethod
    async def ensure_indexes(self) -> None:
        """Make sure the backing table/collection is usable"""
        pass

    @abstractmethod
    async def insert(self, record: CampaignRecord) -> CampaignRecord:
        """Persist a new record"""
        pass

    @abstractmethod
    async def get(self, record_id: str) -> Optional[CampaignRecord]:
        """Fetch one record by id"""
        pass

    @abstractmethod
    async def find_by_source(self, source_ref: SourceRef) -> Optional[CampaignRecord]:
        """Most recently updated record for a source document"""
        pass

    @abstractmethod
    async def find(self, record_ids: Optional[List[str]] = None) -> List[CampaignRecord]:
        """All records, or only the given ids"""
        pass

    @abstractmethod
    async def find_due_for_call(self, now: datetime, step: Optional[int] = None) -> List[CampaignRecord]:
        """
        Records whose next call attempt is due.

        Args:
            now: Evaluation time
            step: Restrict to one cadence step
        """
        pass

    @abstractmethod
    async def find_due_for_email(
        self,
        now: datetime,
        scheduled: bool = False,
        include_partnered: bool = False
    ) -> List[CampaignRecord]:
        """Records whose calls are resolved and whose email is due"""
        pass

    @abstractmethod
    async def claim(self, record_ids: List[str], now: datetime, grace_minutes: int) -> List[str]:
        """
        Lease records for a call attempt in one bulk conditional update.

        Only records still due at ``now`` are claimed; their next attempt
        time moves ``grace_minutes`` ahead.

        Returns:
            Ids actually claimed by this call
        """
        pass

    @abstractmethod
    async def claim_email(self, record_ids: List[str], now: datetime, grace_minutes: int) -> List[str]:
        """Lease records for an email attempt; returns the ids claimed"""
        pass

    @abstractmethod
    async def update_contact_info(self, record_id: str, contact_info: ContactInfo) -> None:
        """Replace the cached contact info"""
        pass

    @abstractmethod
    async def _compare_and_set(
        self,
        record: CampaignRecord,
        expected_version: int,
        claim: Optional[CallClaim] = None
    ) -> bool:
        """
        Write ``record`` only if the stored version equals ``expected_version``
        and, when ``claim`` is given, the stored record still holds that lease.

        Returns:
            True when the write was applied
        """
        pass

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _load(self, record_id: str) -> CampaignRecord:
        record = await self.get(record_id)
        if record is None:
            raise TrackingRecordNotFound(record_id)
        return record

    async def _commit(
        self,
        original: CampaignRecord,
        updated: CampaignRecord,
        claim: Optional[CallClaim] = None
    ) -> CampaignRecord:
        if not await self._compare_and_set(updated, original.version, claim):
            raise StaleTrackingRecordError(original.id, original.version)
        return updated

    def _check_claim(self, record: CampaignRecord, claim: Optional[CallClaim]) -> CallClaim:
        claim = claim or CallClaim.current(record)
        if not claim.held_by(record):
            raise StaleTrackingRecordError(
                record.id, record.version, reason=f"call lease for step {claim.cadence_step} no longer held"
            )
        return claim

    async def advance_call(
        self,
        record_id: str,
        outcome: CallOutcome,
        now: datetime,
        claim: Optional[CallClaim] = None
    ) -> CampaignRecord:
        """
        Record a resolved call attempt and move to the next cadence step.

        Args:
            claim: Lease the attempt ran under; defaults to the lease the
                record currently holds

        Raises:
            StaleTrackingRecordError: The record is not claimed, is terminal,
                or was re-claimed by another sweep
        """
        record = await self._load(record_id)
        claim = self._check_claim(record, claim)
        return await self._commit(record, record.with_call_outcome(outcome, now), claim)

    async def reset_for_retry(
        self,
        record_id: str,
        now: datetime,
        delay_minutes: int,
        error: Optional[str] = None,
        claim: Optional[CallClaim] = None
    ) -> CampaignRecord:
        """Release a claim after a failed initiation; the step is not consumed."""
        record = await self._load(record_id)
        claim = self._check_claim(record, claim)
        return await self._commit(record, record.with_retry_delay(now, delay_minutes, error), claim)

    async def record_email_result(
        self,
        record_id: str,
        result: EmailAttemptResult,
        now: datetime,
        retry_minutes: int,
        max_attempts: int
    ) -> CampaignRecord:
        """Store the outcome of an email attempt."""
        record = await self._load(record_id)
        updated = record.with_email_result(result, now, retry_minutes, max_attempts)
        return await self._commit(record, updated)

    async def replace(self, original: CampaignRecord, updated: CampaignRecord) -> CampaignRecord:
        """Versioned full replacement (used by re-enrollment resets)."""
        return await self._commit(original, updated)

    async def count_by_status(self, record_ids: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Aggregate counts for status queries.

        Returns:
            {"total", "by_status", "by_step", "in_flight"}
        """
        records = await self.find(record_ids)
        by_status: Dict[str, int] = {}
        by_step: Dict[str, int] = {}
        in_flight = 0

        for record in records:
            by_status[record.status] = by_status.get(record.status, 0) + 1
            step_key = str(record.cadence_step)
            by_step[step_key] = by_step.get(step_key, 0) + 1
            if record.call.is_claimed:
                in_flight += 1

        return {
            "total": len(records),
            "by_status": by_status,
            "by_step": by_step,
            "in_flight": in_flight,
        }
