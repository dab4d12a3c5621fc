"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import CheckoutSession, PlanOffer, Subscription


class CheckoutSessionRequest(BaseModel):
    price_id: Optional[str] = Field(alias="priceId", default=None)

    model_config = ConfigDict(populate_by_name=True)


class CheckoutSessionResponse(BaseModel):
    session_id: str = Field(alias="sessionId")
    url: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_checkout(cls, session: CheckoutSession) -> "CheckoutSessionResponse":
        return cls(session_id=session.session_id, url=session.url)


class PortalSessionRequest(BaseModel):
    return_url: Optional[str] = Field(alias="returnUrl", default=None)

    model_config = ConfigDict(populate_by_name=True)


class PortalSessionResponse(BaseModel):
    url: str


class WebhookAck(BaseModel):
    received: bool = True


class PlanResponse(BaseModel):
    tier: str
    name: str
    price: Decimal
    monthly_limit: int = Field(alias="monthlyLimit")
    guest_passes_limit: int = Field(alias="guestPassesLimit")
    product_id: str = Field(alias="stripeProductId")
    price_id: Optional[str] = Field(alias="stripePriceId", default=None)
    features: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_offer(cls, offer: PlanOffer) -> "PlanResponse":
        return cls(
            tier=offer.tier.value,
            name=offer.name,
            price=offer.price,
            monthly_limit=offer.monthly_limit,
            guest_passes_limit=offer.guest_passes_limit,
            product_id=offer.product_id,
            price_id=offer.price_id,
            features=list(offer.features),
        )


class PlanListResponse(BaseModel):
    plans: List[PlanResponse]


class SubscriptionResponse(BaseModel):
    subscription_id: str = Field(alias="stripeSubscriptionId")
    tier: str
    status: str
    monthly_limit: int = Field(alias="monthlyLimit")
    visits_used: int = Field(alias="visitsUsed")
    remaining_visits: int = Field(alias="remainingVisits")
    guest_passes_limit: int = Field(alias="guestPassesLimit")
    guest_passes_used: int = Field(alias="guestPassesUsed")
    price: Decimal
    current_period_start: Optional[datetime] = Field(alias="currentPeriodStart", default=None)
    current_period_end: Optional[datetime] = Field(alias="currentPeriodEnd", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionResponse":
        return cls(
            subscription_id=subscription.external_subscription_id,
            tier=subscription.tier.value,
            status=subscription.status.value,
            monthly_limit=subscription.monthly_limit,
            visits_used=subscription.visits_used,
            remaining_visits=subscription.remaining_visits,
            guest_passes_limit=subscription.guest_passes_limit,
            guest_passes_used=subscription.guest_passes_used,
            price=subscription.price,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
        )


class ActiveSubscriptionResponse(BaseModel):
    subscription: Optional[SubscriptionResponse] = None
