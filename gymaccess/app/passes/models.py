"""Domain models for facilities and issued access passes."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing.models import Subscription, Tier


class PassStatus(str, Enum):
    """Lifecycle state for access passes."""

    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class Facility(BaseModel):
    """Partner gym a pass can be issued for."""

    facility_id: int
    name: str = ""
    address: Optional[str] = None
    postcode: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    required_tier: Tier = Tier.STANDARD
    status: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_operational(self) -> bool:
        return self.status is None or self.status.strip().lower() != "inactive"

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class PricingRule(BaseModel):
    """Default per-pass cost charged for a tier."""

    tier: Tier
    cost: Decimal = Decimal("0.00")

    model_config = ConfigDict(frozen=True)


class AccessPass(BaseModel):
    """Time-boxed, single-use pass issued against a subscription."""

    pass_code: str
    subscriber_id: str
    facility_id: int
    subscription_id: Optional[str] = None
    status: PassStatus = PassStatus.ACTIVE
    issued_at: datetime
    valid_until: datetime
    tier_at_issuance: Tier
    cost_at_issuance: Decimal = Decimal("0.00")
    redeemed_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def status_at(self, moment: datetime) -> PassStatus:
        """Effective status at ``moment``; active passes lapse once the window closes."""

        if self.status == PassStatus.ACTIVE and moment >= self.valid_until:
            return PassStatus.EXPIRED
        return self.status

    def is_valid_at(self, moment: datetime) -> bool:
        return self.status_at(moment) == PassStatus.ACTIVE


class IssuanceResult(BaseModel):
    """Outcome of a successful issuance, with any non-fatal warnings."""

    access_pass: AccessPass
    subscription: Subscription
    warnings: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def remaining_visits(self) -> int:
        return self.subscription.remaining_visits


__all__ = ["AccessPass", "Facility", "IssuanceResult", "PassStatus", "PricingRule"]
