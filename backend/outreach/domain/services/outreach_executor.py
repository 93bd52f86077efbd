"""
Outreach Executor
Performs a single call attempt or a single email attempt against the
external providers

The executor never touches the tracking store. It reports what happened
and leaves every state decision to the progression engine.
"""
import asyncio
import json
import logging
import re
import time
from typing import Awaitable, Callable, Optional

from outreach.domain.interfaces.llm_provider import LLMProvider
from outreach.domain.interfaces.telephony_provider import TelephonyProvider
from outreach.domain.models.attempt_schedule import ScheduleEntry
from outreach.domain.models.cadence_config import CadenceConfig, CallerIdentity
from outreach.domain.models.campaign_record import ContactInfo
from outreach.domain.models.outreach_attempt import (
    CallAttemptStatus,
    CallOutcome,
    CallPlacement,
    ConversationSnapshot,
    EmailContent,
    EmailDeliveryResult,
)
from outreach.domain.services.contact_info import format_phone_number
from outreach.domain.services.partnership_signal import PartnershipSignalExtractor
from outreach.infrastructure.connectors.email.base import EmailMessage, EmailProvider

logger = logging.getLogger(__name__)

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")

DEFAULT_EMAIL_PROMPT = """You are an expert business development email writer. Generate a professional introductory email about {brand} partnership opportunities.
Context:
- Business Name: {business}
- This is an INTRODUCTORY email
- Keep the email VERY concise (2-3 short paragraphs, no more than 150 words)

Email Guidelines:
- Address the email to {business}
- Introduce {brand} as a rewards sharing app for businesses
- Mention 1-2 key benefits: increased customer loyalty, new customer acquisition
- DO NOT include any placeholders like [your name] or [team name]
- DO NOT mention any attachments or phone numbers
- Sign off simply as "Sincerely, {brand}"

Respond ONLY with a JSON object of the form:
{{"subject": "...", "body": "...", "tone": "professional", "priority": "normal"}}"""


class OutreachError(Exception):
    """Base error for outreach attempts"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InitiationFailure(OutreachError):
    """The call was never placed; the attempt must not use a cadence slot"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class PollTimeout(OutreachError):
    """The call was placed but never reached a terminal state in time"""

    def __init__(self, conversation_ref: str, waited_seconds: float, identity: Optional[str] = None):
        self.conversation_ref = conversation_ref
        self.waited_seconds = waited_seconds
        self.identity = identity
        super().__init__(
            f"Conversation {conversation_ref} did not complete within {waited_seconds:.0f}s"
        )


class NoContactMethod(OutreachError):
    """The record has no usable phone number"""
    pass


class ContentGenerationError(OutreachError):
    """The generation provider could not be reached or errored"""
    pass


class OutreachExecutor:
    """
    Executes call and email attempts.

    ``sleep`` and ``clock`` are injectable so polling can be driven
    without wall-clock waits.
    """

    def __init__(
        self,
        telephony: TelephonyProvider,
        llm: LLMProvider,
        email_provider: EmailProvider,
        config: CadenceConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.telephony = telephony
        self.llm = llm
        self.email_provider = email_provider
        self.config = config
        self._sleep = sleep
        self._clock = clock
        self._signal_extractor = PartnershipSignalExtractor(
            config.partnership_signal_key,
            config.partnership_keywords
        )

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def perform_call_attempt(
        self,
        contact_info: ContactInfo,
        business_label: str,
        attempt_number: int,
        entry: Optional[ScheduleEntry] = None
    ) -> CallOutcome:
        """
        Place one call and wait for its analysis.

        Args:
            contact_info: Numbers to call (first one is used)
            business_label: Business name passed to the agent
            attempt_number: 1-based attempt number, selects the identity
            entry: Schedule entry for this attempt (may pin an identity)

        Raises:
            NoContactMethod: No dialable phone number
            InitiationFailure: No caller identity, or placement failed
            PollTimeout: Call placed but never completed within the budget
        """
        identity = self.config.identity_for_attempt(attempt_number, entry)
        if identity is None:
            raise InitiationFailure("No caller identity configured")

        to_number = None
        if contact_info.phone_numbers:
            to_number = format_phone_number(
                contact_info.phone_numbers[0], self.config.default_country_code
            )
        if not to_number:
            raise NoContactMethod("No dialable phone number")

        logger.info(
            f"Call attempt {attempt_number} to {to_number} for {business_label or 'unknown business'} "
            f"using {identity.name}"
        )

        try:
            placement = await self.telephony.place_call(
                to_number,
                identity,
                metadata={"businessName": business_label or "valued business partner"}
            )
        except Exception as e:
            logger.error(f"Call initiation failed for {to_number}: {e}")
            raise InitiationFailure(f"Call initiation failed: {e}", cause=e) from e

        snapshot = await self._wait_for_completion(placement, identity)
        outcome = self._build_outcome(snapshot, placement, identity)

        logger.info(
            f"Call {placement.conversation_ref} finished: "
            f"{'success' if outcome.successful else 'failed'}, "
            f"duration={outcome.duration_seconds}s, partnership={outcome.partnership_signal}"
        )
        return outcome

    async def _wait_for_completion(
        self,
        placement: CallPlacement,
        identity: CallerIdentity
    ) -> ConversationSnapshot:
        """Poll the conversation until terminal; provider errors are retried within the budget."""
        started = self._clock()
        deadline = started + self.config.max_poll_wait_seconds
        conversation_ref = placement.conversation_ref

        while True:
            try:
                snapshot = await self.telephony.get_conversation(conversation_ref, identity)
                if snapshot.is_terminal:
                    return snapshot
                logger.debug(f"Conversation {conversation_ref} status: {snapshot.status}")
            except Exception as e:
                logger.warning(f"Polling error for conversation {conversation_ref}, retrying: {e}")

            if self._clock() >= deadline:
                raise PollTimeout(conversation_ref, self._clock() - started, identity.name)

            await self._sleep(self.config.poll_interval_seconds)

    def _build_outcome(
        self,
        snapshot: ConversationSnapshot,
        placement: CallPlacement,
        identity: CallerIdentity
    ) -> CallOutcome:
        analysis = snapshot.analysis or {}

        successful = (
            snapshot.call_successful is True
            or analysis.get("call_successful") == "success"
        )

        duration = snapshot.metadata.get("call_duration_secs") or 0
        try:
            duration = max(float(duration), 0.0)
        except (TypeError, ValueError):
            duration = 0.0

        return CallOutcome(
            status=CallAttemptStatus.SUCCESSFUL if successful else CallAttemptStatus.FAILED,
            successful=successful,
            duration_seconds=duration,
            conversation_ref=placement.conversation_ref,
            call_ref=placement.call_ref,
            identity=identity.name,
            partnership_signal=self.extract_partnership_signal(analysis),
            transcript_summary=snapshot.transcript_summary or analysis.get("transcript_summary")
        )

    def extract_partnership_signal(self, analysis: dict) -> Optional[bool]:
        return self._signal_extractor.extract(analysis.get("data_collection_results") or {})

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    def build_email_prompt(self, business_label: str) -> str:
        template = self.config.email_prompt or DEFAULT_EMAIL_PROMPT
        return template.format(
            business=business_label or "your business",
            brand=self.config.brand_name
        )

    async def perform_email_attempt(self, business_label: str) -> EmailContent:
        """
        Generate the email for one business.

        Malformed model output falls back to the fixed template.

        Raises:
            ContentGenerationError: The provider call itself failed
        """
        try:
            text = await self.llm.generate(self.build_email_prompt(business_label))
        except Exception as e:
            logger.error(f"Email generation failed for {business_label}: {e}")
            raise ContentGenerationError(f"Email generation failed: {e}") from e

        return self.parse_email_content(text, business_label)

    def parse_email_content(self, text: Optional[str], business_label: str) -> EmailContent:
        """Extract the first-to-last brace span as JSON, else use the fallback."""
        match = JSON_OBJECT_PATTERN.search(text or "")
        if match:
            try:
                data = json.loads(match.group(0))
                if isinstance(data, dict):
                    return EmailContent(**{
                        key: data[key]
                        for key in ("subject", "body", "tone", "priority")
                        if data.get(key) is not None
                    })
            except ValueError as e:
                logger.warning(f"Generated email was not valid JSON for {business_label}: {e}")

        logger.warning(f"Using fallback email template for {business_label}")
        return self.fallback_email(business_label)

    def fallback_email(self, business_label: str) -> EmailContent:
        business = business_label or "your business"
        brand = self.config.brand_name
        return EmailContent(
            subject=f"Partnership Opportunity: {brand} for {business}",
            body=(
                f"Dear {business} Team,\n\n"
                f"We're reaching out to introduce {brand}, a rewards sharing app designed to help "
                f"businesses like yours increase customer loyalty and drive revenue growth. Our platform "
                f"helps you retain existing customers and attract new ones through our rewards network.\n\n"
                f"If you're interested in learning more about how {brand} can benefit your business, "
                f"please let us know.\n\n"
                f"Sincerely,\n{brand}"
            ),
            is_fallback=True
        )

    async def send_email_attempt(
        self,
        address: str,
        content: EmailContent,
        business_label: str
    ) -> EmailDeliveryResult:
        """Deliver one email; delivery errors are reported, not raised."""
        message = EmailMessage(
            to=address,
            subject=content.subject,
            body=content.body,
            tone=content.tone,
            priority=content.priority,
            generated_by=f"{self.llm.name} - Outreach Campaign",
            business_name=business_label,
            campaign_type=self.config.campaign_type
        )

        try:
            await self.email_provider.deliver(message)
        except Exception as e:
            logger.error(f"Email delivery to {address} failed: {e}")
            return EmailDeliveryResult(success=False, address=address, error=str(e))

        logger.info(f"Email sent to {address} for {business_label}")
        return EmailDeliveryResult(success=True, address=address)
