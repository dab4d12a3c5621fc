"""Outbound mail settings read from the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

SMTP_SECURITY_MODES = ("starttls", "ssl", "none")


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int
    username: Optional[str]
    password: Optional[str]
    security: str
    timeout_seconds: float


@dataclass(frozen=True)
class EmailConfig:
    """Which provider delivers member emails and who they come from."""

    provider_name: str
    sender: str
    reply_to: Optional[str]
    smtp: SmtpSettings


def _number(raw: Optional[str], *, default: float, name: str) -> float:
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _smtp_security(env: Mapping[str, str]) -> str:
    explicit = (env.get("SMTP_SECURITY") or "").strip().lower()
    if explicit in SMTP_SECURITY_MODES:
        return explicit
    legacy_tls = (env.get("SMTP_USE_TLS") or "").strip().lower()
    if legacy_tls in {"0", "false", "no", "off"}:
        return "none"
    return "starttls"


def load_email_config(env: Optional[Mapping[str, str]] = None) -> EmailConfig:
    """Load :class:`EmailConfig` from environment variables."""

    source = os.environ if env is None else env

    security = _smtp_security(source)
    default_port = 465 if security == "ssl" else 587
    smtp = SmtpSettings(
        host=source.get("SMTP_HOST", "localhost"),
        port=int(_number(source.get("SMTP_PORT"), default=default_port, name="SMTP_PORT")),
        username=source.get("SMTP_USER") or None,
        password=source.get("SMTP_PASS") or None,
        security=security,
        timeout_seconds=_number(source.get("SMTP_TIMEOUT"), default=30.0, name="SMTP_TIMEOUT"),
    )
    return EmailConfig(
        provider_name=(source.get("EMAIL_PROVIDER") or "dev").strip().lower() or "dev",
        sender=source.get("FROM_EMAIL", "noreply@example.com"),
        reply_to=(source.get("REPLY_TO_EMAIL") or "").strip() or None,
        smtp=smtp,
    )


__all__ = ["EmailConfig", "SMTP_SECURITY_MODES", "SmtpSettings", "load_email_config"]
