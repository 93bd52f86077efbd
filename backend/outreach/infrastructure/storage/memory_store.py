"""
In-Memory Stores
Dictionary-backed tracking and source stores

Used when Supabase is not configured (memory-only development mode) and
by tests. Semantics match the Supabase stores: claims are conditional on
the record still being due, and transitions are versioned.
"""
import copy
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from outreach.domain.interfaces.source_store import SourceRecordStore, deep_merge
from outreach.domain.interfaces.tracking_store import TrackingStore, TrackingStoreError
from outreach.domain.models.campaign_record import CallClaim, CampaignRecord, ContactInfo, SourceRef
from outreach.utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)


class InMemoryTrackingStore(TrackingStore):
    """
    Tracking store held in process memory.

    Every method completes without awaiting, so each operation is atomic
    with respect to other coroutines on the event loop.
    """

    def __init__(self):
        self._records: Dict[str, CampaignRecord] = {}

    async def ensure_indexes(self) -> None:
        logger.warning("Tracking store running in memory-only mode")

    async def insert(self, record: CampaignRecord) -> CampaignRecord:
        if record.id in self._records:
            raise TrackingStoreError(f"Campaign record {record.id} already exists")
        self._records[record.id] = record.model_copy(deep=True)
        return record

    async def get(self, record_id: str) -> Optional[CampaignRecord]:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def find_by_source(self, source_ref: SourceRef) -> Optional[CampaignRecord]:
        matches = [r for r in self._records.values() if r.source_ref.key == source_ref.key]
        if not matches:
            return None
        latest = max(matches, key=lambda r: (r.updated_at or r.campaign_start_time, r.version))
        return latest.model_copy(deep=True)

    async def find(self, record_ids: Optional[List[str]] = None) -> List[CampaignRecord]:
        if record_ids is None:
            records = list(self._records.values())
        else:
            records = [self._records[i] for i in record_ids if i in self._records]
        return [r.model_copy(deep=True) for r in records]

    async def find_due_for_call(self, now: datetime, step: Optional[int] = None) -> List[CampaignRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._records.values()
            if r.is_due_for_call(now, step)
        ]

    async def find_due_for_email(
        self,
        now: datetime,
        scheduled: bool = False,
        include_partnered: bool = False
    ) -> List[CampaignRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._records.values()
            if r.is_due_for_email(now, scheduled=scheduled, include_partnered=include_partnered)
        ]

    async def claim(self, record_ids: List[str], now: datetime, grace_minutes: int) -> List[str]:
        claimed: List[str] = []
        for record_id in record_ids:
            record = self._records.get(record_id)
            if record is None or not record.is_due_for_call(now):
                continue
            self._records[record_id] = record.claimed(now, grace_minutes)
            claimed.append(record_id)
        return claimed

    async def claim_email(self, record_ids: List[str], now: datetime, grace_minutes: int) -> List[str]:
        claimed: List[str] = []
        for record_id in record_ids:
            record = self._records.get(record_id)
            if record is None:
                continue
            due_at = record.email.next_attempt_at
            if record.email.sent_count > 0 or due_at is None or ensure_utc(due_at) > ensure_utc(now):
                continue
            self._records[record_id] = record.email_claimed(now, grace_minutes)
            claimed.append(record_id)
        return claimed

    async def update_contact_info(self, record_id: str, contact_info: ContactInfo) -> None:
        record = self._records.get(record_id)
        if record is None:
            return
        self._records[record_id] = record.with_contact_info(contact_info)

    async def _compare_and_set(
        self,
        record: CampaignRecord,
        expected_version: int,
        claim: Optional[CallClaim] = None
    ) -> bool:
        current = self._records.get(record.id)
        if current is None or current.version != expected_version:
            return False
        if claim is not None and not claim.held_by(current):
            return False
        self._records[record.id] = record.model_copy(deep=True)
        return True


class InMemorySourceRecordStore(SourceRecordStore):
    """Source documents keyed by database/collection/id"""

    def __init__(self, documents: Optional[Dict[str, Dict[str, Any]]] = None):
        self._documents: Dict[str, Dict[str, Any]] = documents or {}

    def add(self, source_ref: SourceRef, document: Dict[str, Any]) -> None:
        self._documents[source_ref.key] = copy.deepcopy(document)

    def document(self, source_ref: SourceRef) -> Optional[Dict[str, Any]]:
        return self._documents.get(source_ref.key)

    async def get(self, source_ref: SourceRef) -> Optional[Dict[str, Any]]:
        document = self._documents.get(source_ref.key)
        return copy.deepcopy(document) if document is not None else None

    async def patch_outreach(self, source_ref: SourceRef, patch: Dict[str, Any]) -> None:
        document = self._documents.get(source_ref.key)
        if document is None:
            logger.warning(f"Source record {source_ref.key} not found for outreach sync")
            return
        document["outreach"] = deep_merge(document.get("outreach") or {}, patch)
