"""
Webhook Email Connector
Delivers outreach emails by posting them to an automation webhook
(e.g. a Zapier catch hook that forwards to a mailbox).

Environment Variables:
    EMAIL_WEBHOOK_URL: Webhook that accepts the JSON email payload
"""
import os
import logging
from typing import Any, Dict, Optional

import httpx

from outreach.infrastructure.connectors.email.base import EmailProvider, EmailMessage

logger = logging.getLogger(__name__)


class WebhookConfigError(Exception):
    """Raised when the webhook URL is not configured."""
    pass


class WebhookEmailProvider(EmailProvider):
    """Posts each email as JSON to a webhook."""

    DEFAULT_TIMEOUT_SECONDS = 30.0

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        self.webhook_url = webhook_url or os.getenv("EMAIL_WEBHOOK_URL")
        self.timeout = timeout or self.DEFAULT_TIMEOUT_SECONDS

        if not self.webhook_url:
            logger.warning("Email webhook not configured - deliveries will fail")

    @property
    def provider_name(self) -> str:
        return "webhook"

    async def deliver(self, message: EmailMessage) -> Dict[str, Any]:
        """
        Post the email payload to the webhook.

        Raises:
            WebhookConfigError: No webhook URL configured
            httpx.HTTPError: Network failure or non-2xx response
        """
        if not self.webhook_url:
            raise WebhookConfigError("EMAIL_WEBHOOK_URL is not set")

        payload = message.to_payload()

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.webhook_url,
                json=payload,
                headers={"Content-Type": "application/json"}
            )

            if response.status_code >= 400:
                logger.error(f"Email webhook rejected delivery to {message.to}: {response.text}")
            response.raise_for_status()

        logger.info(f"Email handed to webhook for {message.to}")

        try:
            return response.json()
        except ValueError:
            return {"status": response.status_code, "body": response.text}
