"""
Campaign Progression Engine
Finds due campaign records, claims them, runs their attempts and writes
the resulting state back

Mutual exclusion comes from the store-level claim. The in-memory
in-flight set only avoids re-claiming work this process already holds.
"""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Set

from pydantic import BaseModel, Field

from outreach.domain.interfaces.source_store import SourceRecordStore
from outreach.domain.interfaces.tracking_store import StaleTrackingRecordError, TrackingStore
from outreach.domain.models.cadence_config import CadenceConfig
from outreach.domain.models.campaign_record import CallClaim, CampaignRecord, ContactInfo
from outreach.domain.models.outreach_attempt import CallOutcome, EmailAttemptResult
from outreach.domain.services.contact_info import extract_contact_info
from outreach.domain.services.outreach_executor import (
    ContentGenerationError,
    InitiationFailure,
    NoContactMethod,
    OutreachExecutor,
    PollTimeout,
)
from outreach.utils.time_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

ClaimFunc = Callable[[List[str], datetime, int], Awaitable[List[str]]]
RecordHandler = Callable[[CampaignRecord, datetime], Awaitable[Optional[CampaignRecord]]]


class TickSummary(BaseModel):
    """What one scheduler tick did"""
    started_at: datetime
    calls_processed: int = 0
    emails_processed: int = 0
    sweep_errors: int = 0
    steps: List[int] = Field(default_factory=list)


class CampaignProgressionEngine:
    """
    Campaign state machine.

    Per record: lead -> attempted_1 -> ... -> attempted_N -> emailed, with
    a side exit to partnered from any call attempt. ``clock`` timestamps
    the writes made after an attempt resolves; sweeps select records
    against the ``now`` passed to ``tick``.
    """

    def __init__(
        self,
        store: TrackingStore,
        source_store: SourceRecordStore,
        executor: OutreachExecutor,
        config: CadenceConfig,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.store = store
        self.source_store = source_store
        self.executor = executor
        self.config = config
        self._clock = clock
        self._sleep = sleep

        self._semaphore: Optional[asyncio.Semaphore] = (
            asyncio.Semaphore(config.max_concurrent_attempts)
            if config.max_concurrent_attempts else None
        )
        self._in_flight: Set[str] = set()

        # Stats
        self._calls_processed = 0
        self._emails_processed = 0
        self._record_errors = 0
        self._stale_writes = 0

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, now: Optional[datetime] = None) -> TickSummary:
        """
        Run every sweep once, concurrently.

        One call sweep per cadence step, the email sweep, and the sweep for
        emails scheduled inside call campaigns.
        """
        now = now or self._clock()
        steps = list(range(self.config.max_cadence_steps))

        results = await asyncio.gather(
            *(self.run_call_sweep(step, now) for step in steps),
            self.run_email_sweep(now),
            self.run_email_sweep(now, scheduled=True),
            return_exceptions=True
        )

        summary = TickSummary(started_at=now, steps=steps)
        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                summary.sweep_errors += 1
                logger.error(f"Sweep failed: {result}", exc_info=result)
            elif index < len(steps):
                summary.calls_processed += result
            else:
                summary.emails_processed += result

        if summary.calls_processed or summary.emails_processed:
            logger.info(
                f"Tick at {now.isoformat()}: {summary.calls_processed} calls, "
                f"{summary.emails_processed} emails"
            )
        return summary

    # ------------------------------------------------------------------
    # Call sweep
    # ------------------------------------------------------------------

    async def run_call_sweep(self, step: int, now: Optional[datetime] = None) -> int:
        """
        Claim and process every record due for the call at ``step``.

        Returns:
            Number of records claimed and processed
        """
        now = now or self._clock()

        try:
            due = await self.store.find_due_for_call(now, step)
        except Exception as e:
            logger.warning(f"Call sweep step {step}: could not load due records: {e}")
            return 0

        candidates = [r for r in due if r.id not in self._in_flight]
        if not candidates:
            return 0

        return await self._claim_and_run(
            f"Call sweep step {step}", candidates, now, self.store.claim, self.process_call
        )

    async def process_call(
        self,
        record: CampaignRecord,
        claimed_at: Optional[datetime] = None
    ) -> Optional[CampaignRecord]:
        """
        Run the call attempt for one claimed record and advance its state.

        ``claimed_at`` identifies the lease; the write is rejected if the
        record was re-claimed after that lease expired. Without it the
        write is checked against whatever lease the record holds.
        """
        claim = (
            CallClaim(cadence_step=record.cadence_step, claimed_at=claimed_at)
            if claimed_at is not None else None
        )
        contact_info = record.contact_info
        if not contact_info.has_phone:
            contact_info = await self._refresh_contact_info(record)

        if not contact_info.has_phone:
            logger.warning(f"Record {record.id}: no phone number available, recording failed attempt")
            return await self._advance(record, CallOutcome.no_contact(), claim)

        attempt_number = record.cadence_step + 1
        try:
            outcome = await self.executor.perform_call_attempt(
                contact_info,
                record.business_label,
                attempt_number,
                record.current_entry
            )
        except NoContactMethod as e:
            logger.warning(f"Record {record.id}: {e.message}, recording failed attempt")
            outcome = CallOutcome.no_contact()
        except InitiationFailure as e:
            await self._reset_for_retry(record, e.message, claim)
            return None
        except PollTimeout as e:
            logger.warning(f"Record {record.id}: {e.message}, counting as failed attempt")
            outcome = CallOutcome.timeout(e.conversation_ref, e.identity)

        return await self._advance(record, outcome, claim)

    async def _advance(
        self,
        record: CampaignRecord,
        outcome: CallOutcome,
        claim: Optional[CallClaim] = None
    ) -> Optional[CampaignRecord]:
        try:
            updated = await self.store.advance_call(record.id, outcome, self._clock(), claim=claim)
        except StaleTrackingRecordError as e:
            self._stale_writes += 1
            logger.warning(
                f"Record {record.id}: lease lost, discarding {outcome.status.value} outcome: {e.message}"
            )
            return None
        except Exception as e:
            self._record_errors += 1
            logger.error(
                f"Record {record.id}: failed to store call outcome, claim will expire: {e}",
                exc_info=True
            )
            return None

        self._calls_processed += 1
        logger.info(
            f"Record {record.id}: attempt {updated.call.attempts_made} {outcome.status.value}, "
            f"step {record.cadence_step} -> {updated.cadence_step}, status {updated.status}"
        )
        if updated.calls_resolved and not updated.is_terminal:
            logger.info(f"Record {record.id}: all call attempts resolved, email step reached")

        await self._sync_to_source(updated)
        return updated

    async def _reset_for_retry(
        self,
        record: CampaignRecord,
        reason: str,
        claim: Optional[CallClaim] = None
    ) -> None:
        try:
            await self.store.reset_for_retry(
                record.id,
                self._clock(),
                self.config.initiation_retry_minutes,
                error=reason,
                claim=claim
            )
            logger.warning(
                f"Record {record.id}: {reason}; retrying in "
                f"{self.config.initiation_retry_minutes} minutes without using the attempt"
            )
        except StaleTrackingRecordError as e:
            self._stale_writes += 1
            logger.warning(f"Record {record.id}: lease lost, retry not scheduled: {e.message}")
        except Exception as e:
            self._record_errors += 1
            logger.error(f"Record {record.id}: failed to schedule retry, claim will expire: {e}")

    # ------------------------------------------------------------------
    # Email sweep
    # ------------------------------------------------------------------

    async def run_email_sweep(self, now: Optional[datetime] = None, scheduled: bool = False) -> int:
        """
        Claim and process records whose follow-up email is due.

        Args:
            now: Evaluation time
            scheduled: Sweep emails carrying a deferred send time instead

        Returns:
            Number of records claimed and processed
        """
        now = now or self._clock()
        label = "scheduled email" if scheduled else "email"

        try:
            due = await self.store.find_due_for_email(
                now,
                scheduled=scheduled,
                include_partnered=self.config.email_partnered_records
            )
        except Exception as e:
            logger.warning(f"{label.capitalize()} sweep: could not load due records: {e}")
            return 0

        candidates = [r for r in due if r.id not in self._in_flight]
        if not candidates:
            return 0

        return await self._claim_and_run(
            f"{label.capitalize()} sweep",
            candidates,
            now,
            self.store.claim_email,
            lambda record, _claimed_at: self.process_email(record)
        )

    async def process_email(self, record: CampaignRecord) -> Optional[CampaignRecord]:
        """Generate one email and send it to every cached address in turn."""
        contact_info = record.contact_info
        if not contact_info.has_email:
            contact_info = await self._refresh_contact_info(record)

        if not contact_info.has_email:
            logger.warning(f"Record {record.id}: no email address available, closing email channel")
            return await self._record_email(record, EmailAttemptResult.missing_address())

        try:
            content = await self.executor.perform_email_attempt(record.business_label)
        except ContentGenerationError as e:
            return await self._record_email(record, EmailAttemptResult(success=False, error=e.message))

        sent = 0
        errors: List[str] = []
        for index, address in enumerate(contact_info.emails):
            if index > 0:
                await self._sleep(self.config.email_delay_seconds)
            result = await self.executor.send_email_attempt(address, content, record.business_label)
            if result.success:
                sent += 1
            else:
                errors.append(f"{address}: {result.error}")

        return await self._record_email(record, EmailAttemptResult(
            success=sent > 0,
            sent_count=sent,
            attempted_count=len(contact_info.emails),
            subject=content.subject,
            error="; ".join(errors) or None
        ))

    async def _record_email(self, record: CampaignRecord, result: EmailAttemptResult) -> Optional[CampaignRecord]:
        try:
            updated = await self.store.record_email_result(
                record.id,
                result,
                self._clock(),
                self.config.email_retry_minutes,
                self.config.max_email_attempts
            )
        except Exception as e:
            self._record_errors += 1
            logger.error(f"Record {record.id}: failed to store email result: {e}", exc_info=True)
            return None

        self._emails_processed += 1
        logger.info(
            f"Record {record.id}: email {updated.email.status.value} "
            f"({result.sent_count}/{result.attempted_count} sent), status {updated.status}"
        )
        await self._sync_to_source(updated)
        return updated

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _claim_and_run(
        self,
        label: str,
        candidates: List[CampaignRecord],
        now: datetime,
        claim: ClaimFunc,
        handler: RecordHandler
    ) -> int:
        """
        Lease candidates and process the ones this sweep won.

        With a concurrency cap each record is leased only once a slot is
        free, so records queued behind slow attempts never run on a lease
        that has already expired.

        Returns:
            Number of records claimed and processed
        """
        ids = [r.id for r in candidates]
        self._in_flight.update(ids)
        try:
            if self._semaphore is None:
                return await self._claim_batch(label, candidates, now, claim, handler)
            counts = await asyncio.gather(
                *(self._claim_when_free(label, r, now, claim, handler) for r in candidates)
            )
            return sum(counts)
        finally:
            self._in_flight.difference_update(ids)

    async def _claim_when_free(
        self,
        label: str,
        record: CampaignRecord,
        now: datetime,
        claim: ClaimFunc,
        handler: RecordHandler
    ) -> int:
        async with self._semaphore:
            claimed_at = max(ensure_utc(now), ensure_utc(self._clock()))
            return await self._claim_batch(label, [record], claimed_at, claim, handler)

    async def _claim_batch(
        self,
        label: str,
        records: List[CampaignRecord],
        claimed_at: datetime,
        claim: ClaimFunc,
        handler: RecordHandler
    ) -> int:
        try:
            claimed_ids = set(await claim(
                [r.id for r in records], claimed_at, self.config.claim_grace_minutes
            ))
        except Exception as e:
            logger.warning(f"{label}: claim failed: {e}")
            return 0

        claimed = [r for r in records if r.id in claimed_ids]
        if len(claimed) < len(records):
            logger.info(f"{label}: {len(records) - len(claimed)} records claimed elsewhere")
        if not claimed:
            return 0

        logger.info(f"{label}: processing {len(claimed)} records")
        await asyncio.gather(*(self._run_isolated(handler, r, claimed_at) for r in claimed))
        return len(claimed)

    async def _run_isolated(self, handler: RecordHandler, record: CampaignRecord, claimed_at: datetime) -> None:
        """Run one record's attempt; its failure never affects the others."""
        try:
            await handler(record, claimed_at)
        except Exception as e:
            self._record_errors += 1
            logger.error(f"Record {record.id}: unexpected processing error: {e}", exc_info=True)

    async def _refresh_contact_info(self, record: CampaignRecord) -> ContactInfo:
        """Fill empty contact lists from the source document."""
        try:
            document = await self.source_store.get(record.source_ref)
        except Exception as e:
            logger.warning(f"Record {record.id}: could not read source {record.source_ref.key}: {e}")
            return record.contact_info

        fresh = extract_contact_info(
            document,
            self.config.source_fields,
            self.config.default_country_code
        )
        merged = ContactInfo(
            phone_numbers=record.contact_info.phone_numbers or fresh.phone_numbers,
            emails=record.contact_info.emails or fresh.emails
        )

        if merged != record.contact_info:
            try:
                await self.store.update_contact_info(record.id, merged)
            except Exception as e:
                logger.warning(f"Record {record.id}: could not cache refreshed contact info: {e}")

        return merged

    async def _sync_to_source(self, record: CampaignRecord) -> None:
        """Mirror state onto the source document; failures are only logged."""
        try:
            await self.source_store.patch_outreach(record.source_ref, record.outreach_summary())
        except Exception as e:
            logger.warning(f"Record {record.id}: outreach sync to {record.source_ref.key} failed: {e}")

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    def get_stats(self) -> dict:
        """Get engine statistics."""
        return {
            "calls_processed": self._calls_processed,
            "emails_processed": self._emails_processed,
            "record_errors": self._record_errors,
            "stale_writes": self._stale_writes,
            "in_flight": len(self._in_flight),
        }
