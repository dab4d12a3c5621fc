"""Outbound email configuration, delivery and rendering."""

from .config import EmailConfig, SmtpSettings, load_email_config
from .providers import DevPrintProvider, EmailProvider, OutboundEmail, SMTPProvider, create_email_provider
from .renderer import render_email, render_welcome_email

__all__ = [
    "DevPrintProvider",
    "EmailConfig",
    "EmailProvider",
    "OutboundEmail",
    "SMTPProvider",
    "SmtpSettings",
    "create_email_provider",
    "load_email_config",
    "render_email",
    "render_welcome_email",
]
