"""
Email Delivery Base
Message model and provider contract for follow-up emails
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from datetime import datetime
from pydantic import BaseModel


class EmailMessage(BaseModel):
    """One follow-up email addressed to a single recipient"""
    to: str
    subject: str = ""
    body: str = ""
    tone: str = "professional"
    priority: str = "normal"
    generated_by: Optional[str] = None
    business_name: Optional[str] = None
    campaign_type: Optional[str] = None
    sent_at: Optional[datetime] = None

    model_config = {"extra": "allow"}

    def to_payload(self) -> Dict[str, Any]:
        """JSON-safe fields, unset optionals omitted"""
        return self.model_dump(mode="json", exclude_none=True)


class EmailProvider(ABC):
    """
    Delivers follow-up emails.

    deliver() raises on any failure. The executor turns exceptions into a
    failed per-address result, so providers do not catch their own errors.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        ...

    @abstractmethod
    async def deliver(self, message: EmailMessage) -> Dict[str, Any]:
        """Send one message and return the provider's acknowledgement."""
