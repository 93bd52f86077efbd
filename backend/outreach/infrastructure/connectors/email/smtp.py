"""
SMTP Connector
Sends follow-up emails straight through an SMTP relay instead of the webhook.

Environment Variables:
    SMTP_HOST, SMTP_PORT (587), SMTP_USER, SMTP_PASSWORD
    SMTP_FROM_EMAIL, SMTP_FROM_NAME ("Outreach"), SMTP_USE_TLS ("true")
"""
import os
import ssl
import asyncio
import logging
import smtplib
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from email.mime.text import MIMEText
from email.utils import formataddr

from pydantic import BaseModel

from outreach.infrastructure.connectors.email.base import EmailProvider, EmailMessage

logger = logging.getLogger(__name__)


class SMTPConfigError(Exception):
    """SMTP relay settings are incomplete"""
    pass


class SMTPRelayConfig(BaseModel):
    """Connection settings for the SMTP relay"""
    host: Optional[str] = None
    port: int = 587
    user: Optional[str] = None
    password: Optional[str] = None
    from_email: Optional[str] = None
    from_name: str = "Outreach"
    use_tls: bool = True

    @classmethod
    def from_env(cls) -> "SMTPRelayConfig":
        return cls(
            host=os.getenv("SMTP_HOST"),
            port=int(os.getenv("SMTP_PORT", "587")),
            user=os.getenv("SMTP_USER"),
            password=os.getenv("SMTP_PASSWORD"),
            from_email=os.getenv("SMTP_FROM_EMAIL"),
            from_name=os.getenv("SMTP_FROM_NAME", "Outreach"),
            use_tls=os.getenv("SMTP_USE_TLS", "true").lower() == "true"
        )

    @property
    def complete(self) -> bool:
        return all([self.host, self.user, self.password, self.from_email])


class SMTPEmailProvider(EmailProvider):
    """
    Plain-text delivery over SMTP.

    smtplib blocks, so each send runs in a worker thread and concurrent
    campaign records are not held up by one slow relay.
    """

    def __init__(self, config: Optional[SMTPRelayConfig] = None):
        self.config = config or SMTPRelayConfig.from_env()
        if not self.config.complete:
            logger.warning("SMTP not fully configured - deliveries will fail")

    @property
    def provider_name(self) -> str:
        return "smtp"

    @classmethod
    def is_configured(cls) -> bool:
        return SMTPRelayConfig.from_env().complete

    def build_mime(self, message: EmailMessage) -> MIMEText:
        mime = MIMEText(message.body, "plain", "utf-8")
        mime["Subject"] = message.subject
        mime["From"] = formataddr((self.config.from_name, self.config.from_email))
        mime["To"] = message.to
        if message.priority == "high":
            mime["X-Priority"] = "1"
        return mime

    async def deliver(self, message: EmailMessage) -> Dict[str, Any]:
        """
        Raises:
            SMTPConfigError: Relay settings incomplete
            ValueError: Authentication or SMTP protocol failure
        """
        if not self.config.complete:
            raise SMTPConfigError(
                "SMTP not configured. Required environment variables: "
                "SMTP_HOST, SMTP_USER, SMTP_PASSWORD, SMTP_FROM_EMAIL"
            )

        raw = self.build_mime(message).as_string()
        try:
            await asyncio.to_thread(self._send, message.to, raw)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for {self.config.user}: {e}")
            raise ValueError("SMTP authentication failed, check SMTP_USER / SMTP_PASSWORD") from e
        except smtplib.SMTPException as e:
            logger.error(f"SMTP delivery to {message.to} failed: {e}")
            raise ValueError(f"Failed to send email: {e}") from e

        sent_at = datetime.now(timezone.utc)
        logger.info(f"Email sent via SMTP to {message.to}")
        return {"id": f"smtp-{sent_at.strftime('%Y%m%d%H%M%S%f')}", "sent_at": sent_at.isoformat()}

    def _send(self, recipient: str, raw_message: str) -> None:
        with smtplib.SMTP(self.config.host, self.config.port) as server:
            if self.config.use_tls:
                server.ehlo()
                server.starttls(context=ssl.create_default_context())
                server.ehlo()
            server.login(self.config.user, self.config.password)
            server.sendmail(self.config.from_email, [recipient], raw_message)
