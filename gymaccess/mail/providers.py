"""Delivery backends for member emails."""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Dict, Optional

from .config import EmailConfig, SmtpSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundEmail:
    """A rendered message ready for delivery."""

    recipient: str
    subject: str
    text_body: str
    html_body: str


class EmailProvider:
    """Base class; subclasses deliver an :class:`OutboundEmail`."""

    name = "base"

    def __init__(self, *, sender: str, reply_to: Optional[str] = None) -> None:
        self.sender = sender
        self.reply_to = reply_to

    def send(self, message: OutboundEmail) -> None:
        raise NotImplementedError

    def describe(self) -> Dict[str, str]:
        return {"email_provider": self.name, "email_sender": self.sender}


class DevPrintProvider(EmailProvider):
    """Logs the message instead of delivering it."""

    name = "dev"

    def send(self, message: OutboundEmail) -> None:
        logger.info(
            "Dev email dispatch to %s: %s",
            message.recipient,
            message.subject,
            extra={"email_recipient": message.recipient, "email_sender": self.sender},
        )
        logger.debug("Dev email body\n%s", message.text_body)


class SMTPProvider(EmailProvider):
    name = "smtp"

    def __init__(self, *, sender: str, settings: SmtpSettings, reply_to: Optional[str] = None) -> None:
        super().__init__(sender=sender, reply_to=reply_to)
        self.settings = settings

    def compose(self, message: OutboundEmail) -> EmailMessage:
        mime = EmailMessage()
        mime["From"] = self.sender
        mime["To"] = message.recipient
        mime["Subject"] = message.subject
        if self.reply_to:
            mime["Reply-To"] = self.reply_to
        mime.set_content(message.text_body)
        mime.add_alternative(message.html_body, subtype="html")
        return mime

    def _connect(self) -> smtplib.SMTP:
        settings = self.settings
        if settings.security == "ssl":
            return smtplib.SMTP_SSL(settings.host, settings.port, timeout=settings.timeout_seconds)
        return smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout_seconds)

    def send(self, message: OutboundEmail) -> None:
        mime = self.compose(message)
        with self._connect() as client:
            if self.settings.security == "starttls":
                client.starttls()
            if self.settings.username and self.settings.password:
                client.login(self.settings.username, self.settings.password)
            client.send_message(mime)
        logger.info("Email delivered via SMTP", extra={"email_recipient": message.recipient})


def create_email_provider(config: EmailConfig) -> EmailProvider:
    if config.provider_name == "smtp":
        return SMTPProvider(sender=config.sender, settings=config.smtp, reply_to=config.reply_to)
    if config.provider_name != "dev":
        logger.warning("Unknown email provider %r; falling back to dev output", config.provider_name)
    return DevPrintProvider(sender=config.sender, reply_to=config.reply_to)


__all__ = ["DevPrintProvider", "EmailProvider", "OutboundEmail", "SMTPProvider", "create_email_provider"]
