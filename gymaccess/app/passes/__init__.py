"""Pass issuance package gating facility access on subscription quota."""
from .exceptions import (
    FacilityNotFound,
    IssuanceError,
    NoActiveSubscription,
    PassUnavailable,
    QuotaExhausted,
    TierTooLow,
)
from .models import AccessPass, Facility, IssuanceResult, PassStatus, PricingRule
from .service import USAGE_NOT_RECORDED, PassRepository, PassService

__all__ = [
    "AccessPass",
    "Facility",
    "FacilityNotFound",
    "IssuanceError",
    "IssuanceResult",
    "NoActiveSubscription",
    "PassRepository",
    "PassService",
    "PassStatus",
    "PassUnavailable",
    "PricingRule",
    "QuotaExhausted",
    "TierTooLow",
    "USAGE_NOT_RECORDED",
]
