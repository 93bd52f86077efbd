"""
ElevenLabs Conversational Agent Caller
Places outbound calls handled by an ElevenLabs voice agent and reads back
the conversation analysis

Endpoints:
    POST /v1/convai/twilio/outbound-call
    GET  /v1/convai/conversations/{conversation_id}
"""
import os
import logging
from typing import Any, Dict, Optional

import httpx

from outreach.domain.interfaces.telephony_provider import TelephonyProvider
from outreach.domain.models.cadence_config import CallerIdentity
from outreach.domain.models.outreach_attempt import CallPlacement, ConversationSnapshot

logger = logging.getLogger(__name__)


class ElevenLabsCaller(TelephonyProvider):
    """
    ElevenLabs ConvAI client for outbound agent calls.

    Each caller identity may carry its own API key; otherwise
    ELEVENLABS_API_KEY is used.
    """

    API_BASE_URL = "https://api.elevenlabs.io/v1/convai"
    DEFAULT_TIMEOUT_SECONDS = 30.0

    def __init__(self):
        self._api_key: Optional[str] = None
        self._base_url: str = self.API_BASE_URL
        self._timeout: float = self.DEFAULT_TIMEOUT_SECONDS
        self._client: Optional[httpx.AsyncClient] = None

    async def initialize(self, config: dict) -> None:
        """Initialize HTTP client and credentials."""
        self._api_key = config.get("api_key") or os.getenv("ELEVENLABS_API_KEY")
        self._base_url = config.get("base_url", self.API_BASE_URL).rstrip("/")
        self._timeout = float(config.get("timeout", self.DEFAULT_TIMEOUT_SECONDS))

        if not self._api_key:
            logger.warning("ELEVENLABS_API_KEY not set - identities must carry their own api_key")

        self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        logger.info("ElevenLabsCaller initialized")

    def _headers(self, identity: CallerIdentity) -> Dict[str, str]:
        api_key = identity.api_key or self._api_key
        if not api_key:
            raise ValueError(f"No API key available for caller identity '{identity.name}'")
        return {"xi-api-key": api_key, "Content-Type": "application/json"}

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("ElevenLabsCaller not initialized. Call initialize() first.")
        return self._client

    async def place_call(
        self,
        to_number: str,
        identity: CallerIdentity,
        metadata: Optional[Dict[str, Any]] = None
    ) -> CallPlacement:
        """
        Start an outbound call.

        Raises:
            httpx.HTTPStatusError: Provider rejected the call (4xx/5xx)
            httpx.RequestError: Network failure
            ValueError: Response carried no conversation id
        """
        client = self._require_client()

        payload = {
            "agent_id": identity.agent_id,
            "agent_phone_number_id": identity.phone_number_id,
            "to_number": to_number,
            "conversation_initiation_client_data": {
                "dynamic_variables": metadata or {}
            },
        }

        logger.info(f"Placing call to {to_number} via {identity.name}")

        response = await client.post(
            "/twilio/outbound-call",
            json=payload,
            headers=self._headers(identity)
        )
        if response.status_code >= 400:
            logger.error(f"Call placement rejected ({response.status_code}): {response.text}")
        response.raise_for_status()

        data = response.json()
        conversation_id = data.get("conversation_id")
        if not conversation_id:
            raise ValueError(f"No conversation_id returned for call to {to_number}")

        return CallPlacement(
            call_ref=data.get("callSid") or data.get("call_sid"),
            conversation_ref=conversation_id
        )

    async def get_conversation(
        self,
        conversation_ref: str,
        identity: CallerIdentity
    ) -> ConversationSnapshot:
        """Fetch conversation status, analysis and metadata."""
        client = self._require_client()

        response = await client.get(
            f"/conversations/{conversation_ref.strip()}",
            headers=self._headers(identity)
        )
        response.raise_for_status()

        data = response.json()
        return ConversationSnapshot(
            status=data.get("status", "unknown"),
            call_successful=data.get("call_successful"),
            analysis=data.get("analysis") or {},
            metadata=data.get("metadata") or {},
            transcript_summary=data.get("transcript_summary")
        )

    async def cleanup(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def name(self) -> str:
        return "elevenlabs"
