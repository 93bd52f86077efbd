"""
Shared fixtures for outreach engine tests
Scripted providers, in-memory stores and a controllable clock
"""
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

import pytest

from outreach.domain.interfaces.llm_provider import LLMProvider
from outreach.domain.interfaces.telephony_provider import TelephonyProvider
from outreach.domain.models.attempt_schedule import AttemptSchedule
from outreach.domain.models.cadence_config import CadenceConfig, CallerIdentity
from outreach.domain.models.campaign_record import SourceRef
from outreach.domain.models.outreach_attempt import CallPlacement, ConversationSnapshot
from outreach.domain.services.enrollment_service import EnrollmentService
from outreach.domain.services.outreach_executor import OutreachExecutor
from outreach.domain.services.progression_engine import CampaignProgressionEngine
from outreach.infrastructure.connectors.email.base import EmailMessage, EmailProvider
from outreach.infrastructure.storage.memory_store import (
    InMemorySourceRecordStore,
    InMemoryTrackingStore,
)

SIGNAL_KEY = "isTheRestaurantPartneredWithInfinityClub"


class FakeClock:
    """Wall clock for the engine, moved forward explicitly by tests"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMonotonic:
    """Monotonic clock whose sleep advances time instead of waiting"""

    def __init__(self):
        self.value = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.value

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.value += max(seconds, 1.0)


def conversation(
    successful: bool = False,
    partnered: Any = None,
    duration: int = 42,
    status: str = "done"
) -> ConversationSnapshot:
    """Build a provider conversation snapshot"""
    data_collection = {}
    if partnered is not None:
        data_collection[SIGNAL_KEY] = {"value": partnered}
    return ConversationSnapshot(
        status=status,
        analysis={
            "call_successful": "success" if successful else "failure",
            "data_collection_results": data_collection,
        },
        metadata={"call_duration_secs": duration},
    )


class ScriptedTelephony(TelephonyProvider):
    """
    Call provider replaying queued results.

    Each queued item is a snapshot (or a list of snapshots returned by
    successive polls) or an exception raised by place_call.
    """

    def __init__(self):
        self.script: List[Union[ConversationSnapshot, List[ConversationSnapshot], Exception]] = []
        self.calls: List[Dict[str, Any]] = []
        self.polls: Dict[str, int] = {}
        self._conversations: Dict[str, List[ConversationSnapshot]] = {}

    def queue(self, *items) -> None:
        self.script.extend(items)

    async def initialize(self, config: dict) -> None:
        pass

    async def place_call(self, to_number, identity, metadata=None) -> CallPlacement:
        self.calls.append({"to": to_number, "identity": identity.name, "metadata": metadata})
        item = self.script.pop(0) if self.script else conversation()
        if isinstance(item, Exception):
            raise item

        ref = f"conv-{len(self.calls)}"
        self._conversations[ref] = list(item) if isinstance(item, list) else [item]
        self.polls[ref] = 0
        return CallPlacement(call_ref=f"CA{len(self.calls)}", conversation_ref=ref)

    async def get_conversation(self, conversation_ref, identity) -> ConversationSnapshot:
        snapshots = self._conversations[conversation_ref]
        index = min(self.polls[conversation_ref], len(snapshots) - 1)
        self.polls[conversation_ref] += 1
        return snapshots[index]

    async def cleanup(self) -> None:
        pass

    @property
    def name(self) -> str:
        return "scripted"


class ScriptedLLM(LLMProvider):
    """Generator returning a fixed response, or raising ``error``"""

    def __init__(self, response: Optional[str] = None):
        self.response = response if response is not None else json.dumps({
            "subject": "Grow with InfinityClub",
            "body": "Dear team, we would love to partner with you.",
            "tone": "professional",
            "priority": "normal",
        })
        self.error: Optional[Exception] = None
        self.prompts: List[str] = []

    async def initialize(self, config: dict) -> None:
        pass

    async def generate(self, prompt, system_prompt=None, temperature=None, max_tokens=None) -> str:
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.response

    async def cleanup(self) -> None:
        pass

    @property
    def name(self) -> str:
        return "scripted-llm"


class RecordingEmailProvider(EmailProvider):
    """Collects delivered messages; addresses in ``failing`` raise"""

    def __init__(self):
        self.sent: List[EmailMessage] = []
        self.failing: set = set()

    @property
    def provider_name(self) -> str:
        return "recording"

    async def deliver(self, message: EmailMessage) -> Dict[str, Any]:
        if message.to in self.failing:
            raise ValueError(f"Mailbox unavailable: {message.to}")
        self.sent.append(message)
        return {"id": f"msg-{len(self.sent)}"}


@pytest.fixture
def start_time() -> datetime:
    # Monday
    return datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(start_time) -> FakeClock:
    return FakeClock(start_time)


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def identities() -> List[CallerIdentity]:
    return [
        CallerIdentity(name="agent_1", agent_id="agent-one", phone_number_id="phone-one", api_key="key-1"),
        CallerIdentity(name="agent_2", agent_id="agent-two", phone_number_id="phone-two", api_key="key-2"),
    ]


@pytest.fixture
def cadence_config(identities) -> CadenceConfig:
    return CadenceConfig(
        schedule=AttemptSchedule.from_minutes([0, 5]),
        max_cadence_steps=4,
        identities=identities,
        identity_by_attempt={1: "agent_1", 2: "agent_2", 3: "agent_1", 4: "agent_2"},
        poll_interval_seconds=0,
        max_poll_wait_seconds=30,
        email_delay_seconds=0,
    )


@pytest.fixture
def source_ref() -> SourceRef:
    return SourceRef(database="public", collection="restaurants", document_id="rest-1")


@pytest.fixture
def restaurant_document() -> Dict[str, Any]:
    return {
        "id": "rest-1",
        "businessname": "The Golden Fork",
        "phonenumber": "07700 900123",
        "email": ["owner@goldenfork.co.uk", "bookings@goldenfork.co.uk"],
    }


@pytest.fixture
def tracking_store() -> InMemoryTrackingStore:
    return InMemoryTrackingStore()


@pytest.fixture
def source_store(source_ref, restaurant_document) -> InMemorySourceRecordStore:
    store = InMemorySourceRecordStore()
    store.add(source_ref, restaurant_document)
    return store


@pytest.fixture
def telephony() -> ScriptedTelephony:
    return ScriptedTelephony()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def email_provider() -> RecordingEmailProvider:
    return RecordingEmailProvider()


@pytest.fixture
def executor(telephony, llm, email_provider, cadence_config, monotonic) -> OutreachExecutor:
    return OutreachExecutor(
        telephony, llm, email_provider, cadence_config,
        sleep=monotonic.sleep,
        clock=monotonic
    )


@pytest.fixture
def engine(tracking_store, source_store, executor, cadence_config, clock, monotonic) -> CampaignProgressionEngine:
    return CampaignProgressionEngine(
        tracking_store, source_store, executor, cadence_config,
        clock=clock,
        sleep=monotonic.sleep
    )


@pytest.fixture
def enrollment(tracking_store, source_store, cadence_config, clock) -> EnrollmentService:
    return EnrollmentService(tracking_store, source_store, cadence_config, clock=clock)


@pytest.fixture
def make_conversation():
    return conversation
