"""Reasons a pass request is refused.

Each refusal carries a stable machine-readable ``code``, a member-facing
message and the HTTP status the passes route answers with. Extra context
(remaining visits, required tier, the gym id) travels in ``detail`` and is
merged into the JSON body.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


class IssuanceError(Exception):
    """Base class for refusals raised by :class:`~gymaccess.app.passes.service.PassService`."""

    code = "issuance_failed"
    message = "We could not generate your pass."
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, detail: Optional[Mapping[str, Any]] = None) -> None:
        self.detail: Dict[str, Any] = dict(detail or {})
        super().__init__(self.message)

    @property
    def payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        body.update(self.detail)
        return body

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.payload)


class NoActiveSubscription(IssuanceError):
    code = "no_active_subscription"
    message = "You need an active subscription to generate a pass."


class TierTooLow(IssuanceError):
    code = "tier_too_low"
    message = "Your plan does not include access to this gym."


class QuotaExhausted(IssuanceError):
    code = "quota_exhausted"
    message = "You have reached your monthly pass limit."


class FacilityNotFound(IssuanceError):
    code = "facility_not_found"
    message = "This gym is not available."
    status_code = status.HTTP_404_NOT_FOUND


class PassUnavailable(IssuanceError):
    """The pass row could not be written; no visit was consumed."""

    code = "pass_unavailable"
    message = "We could not generate your pass. Please try again."
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


__all__ = [
    "FacilityNotFound",
    "IssuanceError",
    "NoActiveSubscription",
    "PassUnavailable",
    "QuotaExhausted",
    "TierTooLow",
]
