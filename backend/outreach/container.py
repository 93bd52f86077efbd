"""
Application Container
Builds the stores, providers and services shared by the API and the worker
"""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional, Tuple

from supabase import create_client

from outreach.core.config import Settings, get_settings, load_cadence_config
from outreach.domain.interfaces.llm_provider import LLMProvider
from outreach.domain.interfaces.source_store import SourceRecordStore
from outreach.domain.interfaces.telephony_provider import TelephonyProvider
from outreach.domain.interfaces.tracking_store import TrackingStore
from outreach.domain.models.cadence_config import CadenceConfig
from outreach.domain.services.enrollment_service import EnrollmentService
from outreach.domain.services.outreach_executor import OutreachExecutor
from outreach.domain.services.progression_engine import CampaignProgressionEngine
from outreach.infrastructure.connectors.email import (
    EmailProvider,
    SMTPEmailProvider,
    WebhookEmailProvider,
)
from outreach.infrastructure.llm.factory import LLMFactory
from outreach.infrastructure.storage.memory_store import (
    InMemorySourceRecordStore,
    InMemoryTrackingStore,
)
from outreach.infrastructure.storage.supabase_store import (
    SupabaseSourceRecordStore,
    SupabaseTrackingStore,
)
from outreach.infrastructure.telephony.factory import TelephonyFactory
from outreach.utils.time_utils import utc_now
from outreach.workers.outreach_worker import OutreachScheduler

logger = logging.getLogger(__name__)


class ProviderNotConfiguredError(Exception):
    """Raised when a provider's credentials are missing"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


def build_stores(settings: Settings) -> Tuple[TrackingStore, SourceRecordStore]:
    """Supabase stores when configured, otherwise in-memory (development only)."""
    if settings.supabase_configured:
        client = create_client(settings.supabase_url, settings.supabase_service_key)
        return (
            SupabaseTrackingStore(client, table=settings.tracking_table, batch_size=settings.batch_size),
            SupabaseSourceRecordStore(client),
        )

    logger.warning("SUPABASE_URL / SUPABASE_SERVICE_KEY not set - using in-memory stores")
    return InMemoryTrackingStore(), InMemorySourceRecordStore()


def build_email_provider(settings: Settings) -> EmailProvider:
    if settings.email_provider == "smtp":
        return SMTPEmailProvider()
    return WebhookEmailProvider(webhook_url=settings.email_webhook_url)


class OutreachContainer:
    """Owns the object graph for one process."""

    def __init__(
        self,
        settings: Settings,
        cadence_config: CadenceConfig,
        store: TrackingStore,
        source_store: SourceRecordStore,
        telephony: TelephonyProvider,
        llm: LLMProvider,
        email_provider: EmailProvider,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.settings = settings
        self.cadence_config = cadence_config
        self.store = store
        self.source_store = source_store
        self.telephony = telephony
        self.llm = llm
        self.email_provider = email_provider

        self.executor = OutreachExecutor(telephony, llm, email_provider, cadence_config, sleep=sleep)
        self.engine = CampaignProgressionEngine(
            store, source_store, self.executor, cadence_config, clock=clock, sleep=sleep
        )
        self.enrollment = EnrollmentService(store, source_store, cadence_config, clock=clock)
        self.scheduler = OutreachScheduler(
            self.engine,
            store,
            interval_seconds=settings.check_interval_seconds,
            startup_delay_seconds=settings.startup_delay_seconds,
            sleep=sleep
        )

    async def initialize(self, strict: bool = False) -> None:
        """
        Initialize providers.

        Args:
            strict: Raise on missing credentials instead of logging a warning

        Raises:
            ProviderNotConfiguredError: Missing credentials in strict mode
        """
        if not self.cadence_config.identities:
            self._not_configured("No caller identities configured (ELEVENLABS_AGENT_ID_n)", strict)

        await self.telephony.initialize(
            TelephonyFactory.provider_config(self.settings.telephony_provider, self.settings)
        )

        try:
            await self.llm.initialize(LLMFactory.provider_config(self.settings.llm_provider, self.settings))
        except ValueError as e:
            self._not_configured(f"LLM provider '{self.llm.name}': {e}", strict)

        logger.info(
            f"Outreach container initialized (store: {type(self.store).__name__}, "
            f"schedule: {self.cadence_config.schedule.mode.value}, "
            f"{len(self.cadence_config.identities)} caller identities)"
        )

    def _not_configured(self, message: str, strict: bool) -> None:
        if strict:
            raise ProviderNotConfiguredError(message)
        logger.warning(f"{message} - attempts needing it will fail")

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        await self.telephony.cleanup()
        await self.llm.cleanup()
        logger.info("Outreach container shut down")


def build_container(
    settings: Optional[Settings] = None,
    cadence_config: Optional[CadenceConfig] = None
) -> OutreachContainer:
    """Build the production object graph from settings and YAML config."""
    settings = settings or get_settings()
    cadence_config = cadence_config or load_cadence_config(settings)
    store, source_store = build_stores(settings)

    return OutreachContainer(
        settings=settings,
        cadence_config=cadence_config,
        store=store,
        source_store=source_store,
        telephony=TelephonyFactory.create(settings.telephony_provider),
        llm=LLMFactory.create(settings.llm_provider),
        email_provider=build_email_provider(settings),
    )
