"""Domain models for the billing system."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Tier(str, Enum):
    """Ordered membership levels gating facility access and quota size."""

    STANDARD = "standard"
    PREMIUM = "premium"
    ELITE = "elite"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]

    @classmethod
    def parse(cls, value: object) -> Optional["Tier"]:
        """Return the matching tier for a loosely formatted value, if any."""

        if value is None:
            return None
        normalized = str(value).strip().lower()
        for tier in cls:
            if tier.value == normalized:
                return tier
        return None


_TIER_RANKS = {Tier.STANDARD: 1, Tier.PREMIUM: 2, Tier.ELITE: 3}


class SubscriptionStatus(str, Enum):
    """Lifecycle state for subscriptions."""

    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


_PROVIDER_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
}


def status_from_provider(value: object) -> SubscriptionStatus:
    """Map a payment provider subscription status onto the local lifecycle."""

    normalized = str(value or "").strip().lower()
    return _PROVIDER_STATUS_MAP.get(normalized, SubscriptionStatus.PAST_DUE)


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the billing subsystem."""

    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    SIBLING_CANCELED = "sibling_canceled"


class TierProfile(BaseModel):
    """Tier and quota derived from a provider product."""

    tier: Tier
    monthly_limit: int = Field(ge=0)
    guest_limit: int = Field(ge=0)
    price: Decimal = Decimal("0.00")

    model_config = ConfigDict(frozen=True)


class BillingCustomer(BaseModel):
    """Mapping from a subscriber to the payment provider customer."""

    subscriber_id: str
    customer_id: str
    email: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Subscription(BaseModel):
    """Normalized subscription state synchronized from the billing provider."""

    external_subscription_id: str
    external_customer_id: Optional[str] = None
    subscriber_id: str
    tier: Tier = Tier.STANDARD
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    monthly_limit: int = Field(default=0, ge=0)
    visits_used: int = Field(default=0, ge=0)
    guest_passes_limit: int = Field(default=0, ge=0)
    guest_passes_used: int = Field(default=0, ge=0)
    price: Decimal = Decimal("0.00")
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    @property
    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED

    @property
    def remaining_visits(self) -> int:
        return max(self.monthly_limit - self.visits_used, 0)


class BillingAuditEvent(BaseModel):
    """Structured audit event for analytics and notifications."""

    event_type: BillingAuditEventType
    subscription_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ProviderProduct(BaseModel):
    """Product and recurring price details read from the payment provider."""

    product_id: str
    name: str = ""
    metadata: Dict[str, str] = Field(default_factory=dict)
    price_id: Optional[str] = None
    unit_amount: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("metadata", mode="before")
    @classmethod
    def _stringify_metadata(cls, value: object) -> Dict[str, str]:
        return safe_metadata(value)


class ProviderSubscription(BaseModel):
    """Subscription snapshot as reported by the payment provider."""

    subscription_id: str
    customer_id: Optional[str] = None
    status: str = "active"
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    price_id: Optional[str] = None
    unit_amount: Optional[int] = None
    product_id: Optional[str] = None
    product: Optional[ProviderProduct] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @field_validator("metadata", mode="before")
    @classmethod
    def _stringify_metadata(cls, value: object) -> Dict[str, str]:
        return safe_metadata(value)


class CheckoutSession(BaseModel):
    """Return value of a checkout session creation request."""

    session_id: str
    url: Optional[str] = None
    customer_id: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PlanOffer(BaseModel):
    """Purchasable membership plan presented to subscribers."""

    tier: Tier
    name: str
    price: Decimal
    monthly_limit: int
    guest_passes_limit: int
    product_id: str
    price_id: Optional[str] = None
    features: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


def safe_metadata(value: object) -> Dict[str, str]:
    if isinstance(value, Mapping):
        return {str(k): str(v) for k, v in value.items() if v is not None}
    return {}


class VerifiedEvent(BaseModel):
    """Authenticated webhook event, stored by id for idempotency tracking."""

    event_id: str
    event_type: str
    payload: Dict[str, object] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SubscriberIdentity(BaseModel):
    """Authenticated subscriber as supplied by the identity provider."""

    subscriber_id: str = Field(min_length=1)
    email: Optional[str] = None
    display_name: Optional[str] = None

    model_config = ConfigDict(frozen=True)
