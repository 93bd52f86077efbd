"""
Unit Tests for Tracking and Source Stores
In-memory semantics and Supabase query construction
"""
import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from outreach.domain.interfaces.source_store import deep_merge
from outreach.domain.interfaces.tracking_store import (
    StaleTrackingRecordError,
    TrackingRecordNotFound,
    TrackingStoreError,
)
from outreach.domain.models.attempt_schedule import AttemptSchedule
from outreach.domain.models.campaign_record import CallClaim, CampaignRecord, ContactInfo, SourceRef
from outreach.domain.models.outreach_attempt import CallAttemptStatus, CallOutcome, EmailAttemptResult
from outreach.infrastructure.storage.memory_store import InMemorySourceRecordStore
from outreach.infrastructure.storage.supabase_store import (
    SupabaseSourceRecordStore,
    SupabaseTrackingStore,
)

FAILED = CallOutcome(status=CallAttemptStatus.FAILED, conversation_ref="conv-1")


def new_record(source_ref, start_time, offsets=(0, 5)) -> CampaignRecord:
    return CampaignRecord.enroll(source_ref, AttemptSchedule.from_minutes(list(offsets)), start_time)


def chain_query(data=None) -> MagicMock:
    """Supabase query builder mock: every builder call returns the same query"""
    query = MagicMock()
    for method in ("select", "insert", "update", "eq", "lte", "in_", "is_", "order", "limit"):
        getattr(query, method).return_value = query
    query.not_ = query
    query.execute.return_value = MagicMock(data=data if data is not None else [])
    return query


class TestInMemoryTrackingStore:
    """Dictionary-backed tracking store"""

    @pytest.mark.asyncio
    async def test_insert_and_get_are_copies(self, tracking_store, source_ref, start_time):
        record = new_record(source_ref, start_time)
        await tracking_store.insert(record)

        loaded = await tracking_store.get(record.id)
        loaded.cadence_step = 1
        assert (await tracking_store.get(record.id)).cadence_step == 0

    @pytest.mark.asyncio
    async def test_duplicate_insert_rejected(self, tracking_store, source_ref, start_time):
        record = new_record(source_ref, start_time)
        await tracking_store.insert(record)
        with pytest.raises(TrackingStoreError):
            await tracking_store.insert(record)

    @pytest.mark.asyncio
    async def test_find_due_for_call_by_step(self, tracking_store, source_ref, start_time):
        first = new_record(source_ref, start_time)
        other_ref = source_ref.model_copy(update={"document_id": "rest-2"})
        second = new_record(other_ref, start_time + timedelta(minutes=30))
        await tracking_store.insert(first)
        await tracking_store.insert(second)

        due = await tracking_store.find_due_for_call(start_time, step=0)
        assert [r.id for r in due] == [first.id]
        assert await tracking_store.find_due_for_call(start_time, step=1) == []

    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, tracking_store, source_ref, start_time):
        record = new_record(source_ref, start_time)
        await tracking_store.insert(record)

        # Two sweeps selected the same record before either claimed it
        first = await tracking_store.claim([record.id], start_time, 10)
        second = await tracking_store.claim([record.id], start_time, 10)

        assert first == [record.id]
        assert second == []
        stored = await tracking_store.get(record.id)
        assert stored.call.is_claimed is True
        assert stored.call.next_attempt_at == start_time + timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_claim_lease_expires(self, tracking_store, source_ref, start_time):
        record = new_record(source_ref, start_time)
        await tracking_store.insert(record)
        await tracking_store.claim([record.id], start_time, 10)

        later = start_time + timedelta(minutes=10)
        assert [r.id for r in await tracking_store.find_due_for_call(later)] == [record.id]
        assert await tracking_store.claim([record.id], later, 10) == [record.id]

    @pytest.mark.asyncio
    async def test_advance_after_claim(self, tracking_store, source_ref, start_time):
        record = new_record(source_ref, start_time)
        await tracking_store.insert(record)
        await tracking_store.claim([record.id], start_time, 10)

        updated = await tracking_store.advance_call(record.id, FAILED, start_time)
        assert updated.cadence_step == 1
        assert updated.call.is_claimed is False
        assert (await tracking_store.get(record.id)).status == "attempted_1"

    @pytest.mark.asyncio
    async def test_stale_write_rejected(self, tracking_store, source_ref, start_time):
        record = new_record(source_ref, start_time)
        await tracking_store.insert(record)
        await tracking_store.claim([record.id], start_time, 10)
        await tracking_store.advance_call(record.id, FAILED, start_time)

        # Replace based on the outdated copy
        with pytest.raises(StaleTrackingRecordError):
            await tracking_store.replace(record, record.restarted(record.schedule, start_time))

    @pytest.mark.asyncio
    async def test_missing_record(self, tracking_store, start_time):
        with pytest.raises(TrackingRecordNotFound):
            await tracking_store.reset_for_retry("missing", start_time, 5)

    @pytest.mark.asyncio
    async def test_email_claim(self, tracking_store, source_ref, start_time):
        record = new_record(source_ref, start_time, offsets=(0,))
        await tracking_store.insert(record)
        await tracking_store.claim([record.id], start_time, 10)
        await tracking_store.advance_call(record.id, FAILED, start_time)

        assert len(await tracking_store.find_due_for_email(start_time)) == 1
        assert await tracking_store.claim_email([record.id], start_time, 10) == [record.id]
        assert await tracking_store.claim_email([record.id], start_time, 10) == []
        assert await tracking_store.find_due_for_email(start_time) == []

        updated = await tracking_store.record_email_result(
            record.id, EmailAttemptResult(success=True, sent_count=1), start_time, 30, 3
        )
        assert updated.status == "emailed"

    @pytest.mark.asyncio
    async def test_count_by_status(self, tracking_store, source_ref, start_time):
        first = new_record(source_ref, start_time)
        second = new_record(source_ref.model_copy(update={"document_id": "rest-2"}), start_time)
        await tracking_store.insert(first)
        await tracking_store.insert(second)
        await tracking_store.claim([first.id], start_time, 10)
        await tracking_store.advance_call(first.id, FAILED, start_time)
        await tracking_store.claim([second.id], start_time, 10)

        counts = await tracking_store.count_by_status()
        assert counts == {
            "total": 2,
            "by_status": {"attempted_1": 1, "lead": 1},
            "by_step": {"1": 1, "0": 1},
            "in_flight": 1,
        }
        assert (await tracking_store.count_by_status([first.id]))["total"] == 1

    @pytest.mark.asyncio
    async def test_update_contact_info(self, tracking_store, source_ref, start_time):
        record = new_record(source_ref, start_time)
        await tracking_store.insert(record)
        await tracking_store.update_contact_info(record.id, ContactInfo(emails=["a@b.com"]))

        stored = await tracking_store.get(record.id)
        assert stored.contact_info.emails == ["a@b.com"]
        assert stored.version == record.version


class TestCallLease:
    """Call transitions are only written under the lease that ran the attempt"""

    @pytest.mark.asyncio
    async def test_expired_holder_cannot_overwrite_partnered(self, tracking_store, source_ref, start_time):
        record = new_record(source_ref, start_time)
        await tracking_store.insert(record)

        # First sweep's lease runs out while its call is still in progress
        await tracking_store.claim([record.id], start_time, 10)
        first_lease = CallClaim(cadence_step=0, claimed_at=start_time)

        later = start_time + timedelta(minutes=11)
        assert await tracking_store.claim([record.id], later, 10) == [record.id]
        second_lease = CallClaim(cadence_step=0, claimed_at=later)

        partnered = CallOutcome(
            status=CallAttemptStatus.SUCCESSFUL, successful=True, partnership_signal=True
        )
        await tracking_store.advance_call(record.id, partnered, later, claim=second_lease)

        with pytest.raises(StaleTrackingRecordError):
            await tracking_store.advance_call(record.id, FAILED, later, claim=first_lease)

        stored = await tracking_store.get(record.id)
        assert stored.status == "partnered"
        assert stored.call.is_partnered is True
        assert len(stored.history) == 1

    @pytest.mark.asyncio
    async def test_expired_holder_cannot_reset_new_lease(self, tracking_store, source_ref, start_time):
        record = new_record(source_ref, start_time)
        await tracking_store.insert(record)
        await tracking_store.claim([record.id], start_time, 10)
        later = start_time + timedelta(minutes=11)
        await tracking_store.claim([record.id], later, 10)

        with pytest.raises(StaleTrackingRecordError):
            await tracking_store.reset_for_retry(
                record.id, later, 5, claim=CallClaim(cadence_step=0, claimed_at=start_time)
            )

        stored = await tracking_store.get(record.id)
        assert stored.call.is_claimed is True
        assert stored.call.claimed_at == later
        assert stored.call.initiation_failures == 0

    @pytest.mark.asyncio
    async def test_unclaimed_record_rejected(self, tracking_store, source_ref, start_time):
        record = new_record(source_ref, start_time)
        await tracking_store.insert(record)

        with pytest.raises(StaleTrackingRecordError):
            await tracking_store.advance_call(record.id, FAILED, start_time)
        assert (await tracking_store.get(record.id)).cadence_step == 0

    @pytest.mark.asyncio
    async def test_second_advance_on_same_lease_rejected(self, tracking_store, source_ref, start_time):
        record = new_record(source_ref, start_time)
        await tracking_store.insert(record)
        await tracking_store.claim([record.id], start_time, 10)
        lease = CallClaim(cadence_step=0, claimed_at=start_time)

        await tracking_store.advance_call(record.id, FAILED, start_time, claim=lease)
        with pytest.raises(StaleTrackingRecordError):
            await tracking_store.advance_call(record.id, FAILED, start_time, claim=lease)

        stored = await tracking_store.get(record.id)
        assert stored.cadence_step == 1
        assert len(stored.history) == 1

    def test_lease_filters(self, start_time):
        assert CallClaim(cadence_step=2, claimed_at=start_time).as_filters() == {
            "call_is_claimed": True,
            "cadence_step": 2,
            "call_claimed_at": start_time.isoformat(),
        }
        assert CallClaim(cadence_step=0).as_filters()["call_claimed_at"] is None


class TestInMemorySourceStore:
    """Source documents with deep-merged outreach patches"""

    @pytest.mark.asyncio
    async def test_patch_outreach_merges(self, source_store, source_ref):
        await source_store.patch_outreach(source_ref, {"status": "lead", "call": {"attempts_made": 0}})
        await source_store.patch_outreach(source_ref, {"call": {"last_status": "failed"}})

        outreach = source_store.document(source_ref)["outreach"]
        assert outreach == {"status": "lead", "call": {"attempts_made": 0, "last_status": "failed"}}

    @pytest.mark.asyncio
    async def test_missing_document(self, source_ref):
        store = InMemorySourceRecordStore()
        assert await store.get(source_ref) is None
        await store.patch_outreach(source_ref, {"status": "lead"})

    def test_deep_merge_does_not_mutate(self):
        base = {"a": {"b": 1}}
        merged = deep_merge(base, {"a": {"c": 2}})
        assert merged == {"a": {"b": 1, "c": 2}}
        assert base == {"a": {"b": 1}}


class TestSupabaseTrackingStore:
    """Query construction against a mocked Supabase client"""

    @pytest.fixture
    def query(self) -> MagicMock:
        return chain_query()

    @pytest.fixture
    def store(self, query) -> SupabaseTrackingStore:
        client = MagicMock()
        client.table.return_value = query
        return SupabaseTrackingStore(client, table="call_campaigns", batch_size=50)

    @pytest.mark.asyncio
    async def test_claim_is_conditional_bulk_update(self, store, query, start_time):
        query.execute.return_value = MagicMock(data=[{"id": "a"}])

        claimed = await store.claim(["a", "b"], start_time, 10)

        assert claimed == ["a"]
        update = query.update.call_args[0][0]
        assert update["call_is_claimed"] is True
        assert update["call_status"] == "claimed"
        assert update["call_next_attempt_at"] == (start_time + timedelta(minutes=10)).isoformat()
        query.in_.assert_any_call("id", ["a", "b"])
        query.lte.assert_called_once_with("call_next_attempt_at", start_time.isoformat())

    @pytest.mark.asyncio
    async def test_claim_nothing(self, store, query, start_time):
        assert await store.claim([], start_time, 10) == []
        query.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_find_due_filters_rows(self, store, query, source_ref, start_time):
        due = new_record(source_ref, start_time)
        resolved = new_record(source_ref, start_time, offsets=(0,)).with_call_outcome(FAILED, start_time)
        query.execute.return_value = MagicMock(data=[due.to_row(), resolved.to_row()])

        records = await store.find_due_for_call(start_time, step=0)

        assert [r.id for r in records] == [due.id]
        query.eq.assert_any_call("cadence_step", 0)
        query.limit.assert_called_with(50)

    @pytest.mark.asyncio
    async def test_malformed_rows_skipped(self, store, query, source_ref, start_time):
        good = new_record(source_ref, start_time)
        query.execute.return_value = MagicMock(data=[{"id": "broken"}, good.to_row()])
        records = await store.find()
        assert [r.id for r in records] == [good.id]

    @pytest.mark.asyncio
    async def test_advance_uses_version_guard(self, store, query, source_ref, start_time):
        record = new_record(source_ref, start_time).claimed(start_time, 10)
        query.execute.side_effect = [
            MagicMock(data=[record.to_row()]),      # get
            MagicMock(data=[{"id": record.id}]),    # versioned update
        ]

        updated = await store.advance_call(record.id, FAILED, start_time)

        assert updated.cadence_step == 1
        query.eq.assert_any_call("version", 0)
        row = query.update.call_args[0][0]
        assert row["version"] == 1
        assert "id" not in row
        query.eq.assert_any_call("call_is_claimed", True)
        query.eq.assert_any_call("cadence_step", 0)
        query.eq.assert_any_call("call_claimed_at", start_time.isoformat())

    @pytest.mark.asyncio
    async def test_lost_race_raises_stale(self, store, query, source_ref, start_time):
        record = new_record(source_ref, start_time).claimed(start_time, 10)
        query.execute.side_effect = [
            MagicMock(data=[record.to_row()]),
            MagicMock(data=[]),
        ]
        with pytest.raises(StaleTrackingRecordError):
            await store.reset_for_retry(record.id, start_time, 5)

    @pytest.mark.asyncio
    async def test_unclaimed_row_not_written(self, store, query, source_ref, start_time):
        record = new_record(source_ref, start_time)
        query.execute.return_value = MagicMock(data=[record.to_row()])

        with pytest.raises(StaleTrackingRecordError):
            await store.advance_call(record.id, FAILED, start_time)
        query.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_ensure_indexes_reports_unreachable_table(self, store, query):
        query.execute.side_effect = RuntimeError("relation does not exist")
        with pytest.raises(TrackingStoreError):
            await store.ensure_indexes()


class TestSupabaseSourceStore:
    """Schema/table addressing and outreach patching"""

    @pytest.mark.asyncio
    async def test_public_schema_uses_table(self):
        query = chain_query([{"id": "rest-1", "outreach": {"status": "lead"}}])
        client = MagicMock()
        client.table.return_value = query
        store = SupabaseSourceRecordStore(client)

        ref = SourceRef(database="public", collection="restaurants", document_id="rest-1")
        await store.patch_outreach(ref, {"status": "attempted_1", "call": {"attempts_made": 1}})

        client.table.assert_called_with("restaurants")
        query.update.assert_called_once_with({
            "outreach": {"status": "attempted_1", "call": {"attempts_made": 1}}
        })

    @pytest.mark.asyncio
    async def test_other_schema(self):
        query = chain_query([])
        client = MagicMock()
        client.schema.return_value.table.return_value = query
        store = SupabaseSourceRecordStore(client)

        ref = SourceRef(database="leads_db", collection="restaurants", document_id="rest-9")
        assert await store.get(ref) is None
        client.schema.assert_called_with("leads_db")
        await store.patch_outreach(ref, {"status": "lead"})
        query.update.assert_not_called()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
