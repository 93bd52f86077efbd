"""
Telephony Provider Interface
Abstract base class for conversational voice-agent call providers
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from outreach.domain.models.cadence_config import CallerIdentity
from outreach.domain.models.outreach_attempt import CallPlacement, ConversationSnapshot


class TelephonyProvider(ABC):
    """Abstract base class for telephony providers"""

    @abstractmethod
    async def initialize(self, config: dict) -> None:
        """Initialize the provider with configuration"""
        pass

    @abstractmethod
    async def place_call(
        self,
        to_number: str,
        identity: CallerIdentity,
        metadata: Optional[Dict[str, Any]] = None
    ) -> CallPlacement:
        """
        Initiate an outbound call handled by a voice agent

        Args:
            to_number: Destination phone number (E.164)
            identity: Agent and outbound number to use
            metadata: Dynamic variables passed to the agent

        Returns:
            CallPlacement with provider call and conversation references

        Raises:
            Any exception when the provider rejects or cannot be reached
        """
        pass

    @abstractmethod
    async def get_conversation(
        self,
        conversation_ref: str,
        identity: CallerIdentity
    ) -> ConversationSnapshot:
        """Fetch the current state and analysis of a conversation"""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Release resources"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass
