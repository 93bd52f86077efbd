"""
Supabase Stores
Tracking table and source document access through the Supabase client

The tracking table keeps one flat row per campaign record (see
database/migrations/001_call_campaigns.sql). Claims are single
conditional bulk updates, so two workers can never lease the same row;
transitions are compare-and-set on the ``version`` column.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from supabase import Client

from outreach.domain.interfaces.source_store import SourceRecordStore, deep_merge
from outreach.domain.interfaces.tracking_store import TrackingStore, TrackingStoreError
from outreach.domain.models.campaign_record import (
    CallChannelStatus,
    CallClaim,
    CampaignRecord,
    CampaignStatus,
    ContactInfo,
    OPEN_EMAIL_STATUSES,
    SourceRef,
    TERMINAL_STATUSES,
)
from outreach.utils.time_utils import ensure_utc, to_iso

logger = logging.getLogger(__name__)


class SupabaseTrackingStore(TrackingStore):
    """Campaign records in a Supabase (PostgREST) table"""

    DEFAULT_TABLE = "call_campaigns"

    def __init__(self, supabase: Client, table: str = DEFAULT_TABLE, batch_size: int = 100):
        self._supabase = supabase
        self._table = table
        self._batch_size = batch_size

    def _query(self):
        return self._supabase.table(self._table)

    def _parse(self, rows: Optional[List[Dict[str, Any]]]) -> List[CampaignRecord]:
        records = []
        for row in rows or []:
            try:
                records.append(CampaignRecord.from_row(row))
            except (KeyError, ValueError) as e:
                logger.error(f"Skipping malformed campaign row {row.get('id')}: {e}")
        return records

    async def ensure_indexes(self) -> None:
        """Verify the tracking table is reachable; DDL lives in migrations."""
        try:
            self._query().select("id").limit(1).execute()
        except Exception as e:
            raise TrackingStoreError(f"Tracking table '{self._table}' is not reachable: {e}")
        logger.info(f"Tracking table '{self._table}' ready")

    async def insert(self, record: CampaignRecord) -> CampaignRecord:
        self._query().insert(record.to_row()).execute()
        logger.debug(f"Created campaign record {record.id} for {record.source_ref.key}")
        return record

    async def get(self, record_id: str) -> Optional[CampaignRecord]:
        response = self._query().select("*").eq("id", record_id).limit(1).execute()
        records = self._parse(response.data)
        return records[0] if records else None

    async def find_by_source(self, source_ref: SourceRef) -> Optional[CampaignRecord]:
        response = (
            self._query()
            .select("*")
            .eq("source_database", source_ref.database)
            .eq("source_collection", source_ref.collection)
            .eq("source_document_id", source_ref.document_id)
            .order("updated_at", desc=True)
            .limit(1)
            .execute()
        )
        records = self._parse(response.data)
        return records[0] if records else None

    async def find(self, record_ids: Optional[List[str]] = None) -> List[CampaignRecord]:
        query = self._query().select("*")
        if record_ids is not None:
            if not record_ids:
                return []
            query = query.in_("id", record_ids)
        response = query.execute()
        return self._parse(response.data)

    async def find_due_for_call(self, now: datetime, step: Optional[int] = None) -> List[CampaignRecord]:
        query = (
            self._query()
            .select("*")
            .lte("call_next_attempt_at", to_iso(now))
            .not_.in_("status", sorted(TERMINAL_STATUSES))
        )
        if step is not None:
            query = query.eq("cadence_step", step)

        response = query.order("call_next_attempt_at").limit(self._batch_size).execute()

        # Step bound depends on each record's own schedule length
        return [r for r in self._parse(response.data) if r.is_due_for_call(now, step)]

    async def find_due_for_email(
        self,
        now: datetime,
        scheduled: bool = False,
        include_partnered: bool = False
    ) -> List[CampaignRecord]:
        response = (
            self._query()
            .select("*")
            .eq("email_sent_count", 0)
            .in_("email_status", sorted(OPEN_EMAIL_STATUSES))
            .lte("email_next_attempt_at", to_iso(now))
            .not_.in_("status", [CampaignStatus.EMAILED.value, CampaignStatus.ARCHIVED.value])
            .order("email_next_attempt_at")
            .limit(self._batch_size)
            .execute()
        )
        return [
            r for r in self._parse(response.data)
            if r.is_due_for_email(now, scheduled=scheduled, include_partnered=include_partnered)
        ]

    async def claim(self, record_ids: List[str], now: datetime, grace_minutes: int) -> List[str]:
        if not record_ids:
            return []

        lease_until = ensure_utc(now) + timedelta(minutes=grace_minutes)
        response = (
            self._query()
            .update({
                "call_is_claimed": True,
                "call_claimed_at": to_iso(now),
                "call_status": CallChannelStatus.CLAIMED.value,
                "call_next_attempt_at": to_iso(lease_until),
            })
            .in_("id", record_ids)
            .lte("call_next_attempt_at", to_iso(now))
            .not_.in_("status", sorted(TERMINAL_STATUSES))
            .execute()
        )
        return [row["id"] for row in response.data or []]

    async def claim_email(self, record_ids: List[str], now: datetime, grace_minutes: int) -> List[str]:
        if not record_ids:
            return []

        lease_until = ensure_utc(now) + timedelta(minutes=grace_minutes)
        response = (
            self._query()
            .update({"email_next_attempt_at": to_iso(lease_until)})
            .in_("id", record_ids)
            .eq("email_sent_count", 0)
            .lte("email_next_attempt_at", to_iso(now))
            .execute()
        )
        return [row["id"] for row in response.data or []]

    async def update_contact_info(self, record_id: str, contact_info: ContactInfo) -> None:
        self._query().update({"contact_info": contact_info.model_dump()}).eq("id", record_id).execute()

    async def _compare_and_set(
        self,
        record: CampaignRecord,
        expected_version: int,
        claim: Optional[CallClaim] = None
    ) -> bool:
        row = record.to_row()
        row.pop("id")
        query = self._query().update(row).eq("id", record.id).eq("version", expected_version)
        if claim is not None:
            for column, value in claim.as_filters().items():
                query = query.is_(column, "null") if value is None else query.eq(column, value)
        response = query.execute()
        return bool(response.data)


class SupabaseSourceRecordStore(SourceRecordStore):
    """
    Source documents addressed as schema/table/id.

    ``SourceRef.database`` maps to a Postgres schema exposed through the
    API and ``SourceRef.collection`` to a table holding an ``outreach``
    JSON column.
    """

    def __init__(self, supabase: Client, id_column: str = "id", outreach_column: str = "outreach"):
        self._supabase = supabase
        self._id_column = id_column
        self._outreach_column = outreach_column

    def _table(self, source_ref: SourceRef):
        if source_ref.database == "public":
            return self._supabase.table(source_ref.collection)
        return self._supabase.schema(source_ref.database).table(source_ref.collection)

    async def get(self, source_ref: SourceRef) -> Optional[Dict[str, Any]]:
        response = (
            self._table(source_ref)
            .select("*")
            .eq(self._id_column, source_ref.document_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def patch_outreach(self, source_ref: SourceRef, patch: Dict[str, Any]) -> None:
        document = await self.get(source_ref)
        if document is None:
            logger.warning(f"Source record {source_ref.key} not found for outreach sync")
            return

        merged = deep_merge(document.get(self._outreach_column) or {}, patch)
        (
            self._table(source_ref)
            .update({self._outreach_column: merged})
            .eq(self._id_column, source_ref.document_id)
            .execute()
        )
