"""Authentication of inbound billing webhook payloads."""
from __future__ import annotations

import json
import logging
from typing import Optional

import stripe
from fastapi import status

from .models import VerifiedEvent

logger = logging.getLogger("billing.webhook")


class VerificationError(Exception):
    """Raised when a webhook payload cannot be trusted."""

    code = "verification_failed"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MissingSignature(VerificationError):
    code = "missing_signature"


class MissingSecret(VerificationError):
    """No webhook secret is configured; a deployment error, not a client error."""

    code = "missing_secret"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class InvalidSignature(VerificationError):
    code = "invalid_signature"


class MalformedEvent(VerificationError):
    code = "malformed_event"


def verify_event(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    *,
    tolerance_seconds: Optional[int] = 300,
) -> VerifiedEvent:
    """Verify ``raw_body`` against ``signature_header`` before parsing it."""

    if not secret:
        logger.error("Webhook secret is not configured; rejecting event")
        raise MissingSecret("Webhook secret is not configured")

    if signature_header is None or not signature_header.strip():
        logger.warning("Webhook rejected: signature header missing")
        raise MissingSignature("Signature header is missing")

    try:
        payload_text = raw_body.decode("utf-8")
    except UnicodeDecodeError as exc:
        logger.warning("Webhook rejected: body is not valid UTF-8")
        raise InvalidSignature("Webhook body is not valid UTF-8") from exc

    try:
        stripe.WebhookSignature.verify_header(
            payload_text,
            signature_header,
            secret,
            tolerance=tolerance_seconds or None,
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning("Webhook rejected: signature mismatch", extra={"error": str(exc)})
        raise InvalidSignature("Webhook signature verification failed") from exc

    try:
        document = json.loads(payload_text)
    except json.JSONDecodeError as exc:
        logger.warning("Webhook rejected: payload is not JSON")
        raise MalformedEvent("Webhook payload is not valid JSON") from exc

    if not isinstance(document, dict) or not document.get("id") or not document.get("type"):
        logger.warning("Webhook rejected: event id or type missing")
        raise MalformedEvent("Webhook payload is missing an event id or type")

    data = document.get("data")
    event_object = data.get("object") if isinstance(data, dict) else None
    event = VerifiedEvent(
        event_id=str(document["id"]),
        event_type=str(document["type"]),
        payload=event_object if isinstance(event_object, dict) else {},
    )
    logger.info(
        "Webhook verified",
        extra={"event_id": event.event_id, "event_type": event.event_type},
    )
    return event


class WebhookVerifier:
    """Verifier bound to the configured shared secret."""

    def __init__(self, secret: Optional[str], *, tolerance_seconds: int = 300) -> None:
        self._secret = secret
        self._tolerance_seconds = tolerance_seconds

    def verify(self, raw_body: bytes, signature_header: Optional[str]) -> VerifiedEvent:
        return verify_event(
            raw_body,
            signature_header,
            self._secret,
            tolerance_seconds=self._tolerance_seconds,
        )


__all__ = [
    "InvalidSignature",
    "MalformedEvent",
    "MissingSecret",
    "MissingSignature",
    "VerificationError",
    "WebhookVerifier",
    "verify_event",
]
