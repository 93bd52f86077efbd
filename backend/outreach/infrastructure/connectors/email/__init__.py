"""
Email Provider Package
"""
from outreach.infrastructure.connectors.email.base import EmailProvider, EmailMessage
from outreach.infrastructure.connectors.email.webhook import WebhookEmailProvider
from outreach.infrastructure.connectors.email.smtp import SMTPEmailProvider

__all__ = ["EmailProvider", "EmailMessage", "WebhookEmailProvider", "SMTPEmailProvider"]
