"""
Outreach Attempt Models
Results produced by one call attempt or one email attempt
"""
from pydantic import BaseModel, Field
from typing import Any, ClassVar, Dict, Optional, Tuple
from enum import Enum


class CallAttemptStatus(str, Enum):
    """How a resolved call attempt ended"""
    SUCCESSFUL = "successful"
    FAILED = "failed"          # Call ran but analysis marked it unsuccessful
    TIMEOUT = "timeout"        # Call placed, never reached a terminal state
    NO_CONTACT = "no_contact"  # No phone number available for the record


class CallOutcome(BaseModel):
    """
    Outcome of one executed call attempt.

    ``partnership_signal`` is tri-state: True/False when the analysis
    reported it, None when unknown.
    """

    status: CallAttemptStatus = Field(..., description="Resolution of the attempt")
    successful: bool = Field(default=False)
    duration_seconds: float = Field(default=0, ge=0)
    conversation_ref: Optional[str] = None
    call_ref: Optional[str] = None
    identity: Optional[str] = Field(default=None, description="Caller identity used")
    partnership_signal: Optional[bool] = None
    transcript_summary: Optional[str] = None

    @classmethod
    def timeout(cls, conversation_ref: Optional[str] = None, identity: Optional[str] = None) -> "CallOutcome":
        """Outcome synthesized when polling ran out of time."""
        return cls(
            status=CallAttemptStatus.TIMEOUT,
            successful=False,
            duration_seconds=0,
            conversation_ref=conversation_ref,
            identity=identity
        )

    @classmethod
    def no_contact(cls) -> "CallOutcome":
        """Outcome written when the record has no phone number."""
        return cls(status=CallAttemptStatus.NO_CONTACT, successful=False)


class CallPlacement(BaseModel):
    """Provider references returned when a call is placed"""
    call_ref: Optional[str] = None
    conversation_ref: str


class ConversationSnapshot(BaseModel):
    """One poll of the provider's conversation endpoint"""

    status: str = Field(default="unknown")
    call_successful: Optional[Any] = None
    analysis: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    transcript_summary: Optional[str] = None

    model_config = {"extra": "allow"}

    TERMINAL_STATUSES: ClassVar[Tuple[str, ...]] = ("done", "failed")

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES


class EmailContent(BaseModel):
    """Generated email body for one business"""
    subject: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    tone: str = "professional"
    priority: str = "normal"
    is_fallback: bool = Field(default=False, description="Built from the fixed template")


class EmailDeliveryResult(BaseModel):
    """Result of delivering one email to one address"""
    success: bool
    address: str
    error: Optional[str] = None


class EmailAttemptResult(BaseModel):
    """Aggregate result of an email attempt across all addresses"""

    success: bool
    sent_count: int = Field(default=0, ge=0)
    attempted_count: int = Field(default=0, ge=0)
    subject: Optional[str] = None
    error: Optional[str] = None
    no_address: bool = Field(
        default=False,
        description="No email address exists; the channel is finished for this record"
    )

    @classmethod
    def missing_address(cls) -> "EmailAttemptResult":
        return cls(success=False, no_address=True, error="No email address available")
