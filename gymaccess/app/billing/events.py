"""Typed variants over the closed set of billing webhook events we react to."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .models import (
    ProviderProduct,
    ProviderSubscription,
    SubscriptionStatus,
    VerifiedEvent,
    safe_metadata,
    status_from_provider,
)

SUBSCRIBER_METADATA_KEY = "userId"


class BillingEventKind(str, Enum):
    """Webhook event types that the reconciler handles."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class CheckoutCompleted(BaseModel):
    event_id: str
    session_id: str
    mode: str = "subscription"
    subscriber_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    external_subscription_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    postcode: Optional[str] = None
    amount_total: Optional[int] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class SubscriptionUpdated(BaseModel):
    event_id: str
    subscription: ProviderSubscription

    model_config = ConfigDict(frozen=True)

    @property
    def status(self) -> SubscriptionStatus:
        return status_from_provider(self.subscription.status)


class SubscriptionDeleted(BaseModel):
    event_id: str
    subscription: ProviderSubscription

    model_config = ConfigDict(frozen=True)


class UnhandledEvent(BaseModel):
    event_id: str
    event_type: str

    model_config = ConfigDict(frozen=True)


BillingEvent = Union[CheckoutCompleted, SubscriptionUpdated, SubscriptionDeleted, UnhandledEvent]


def parse_billing_event(event: VerifiedEvent) -> BillingEvent:
    """Turn a verified webhook event into its typed variant."""

    try:
        kind = BillingEventKind(event.event_type)
    except ValueError:
        return UnhandledEvent(event_id=event.event_id, event_type=event.event_type)

    payload = event.payload
    if kind == BillingEventKind.CHECKOUT_COMPLETED:
        return _checkout_from_payload(event.event_id, payload)
    subscription = provider_subscription_from_payload(payload)
    if kind == BillingEventKind.SUBSCRIPTION_UPDATED:
        return SubscriptionUpdated(event_id=event.event_id, subscription=subscription)
    return SubscriptionDeleted(event_id=event.event_id, subscription=subscription)


def _checkout_from_payload(event_id: str, payload: Mapping[str, object]) -> CheckoutCompleted:
    metadata = safe_metadata(payload.get("metadata"))
    details = payload.get("customer_details")
    details = details if isinstance(details, Mapping) else {}
    address = details.get("address")
    address = address if isinstance(address, Mapping) else {}

    subscriber_id = metadata.get(SUBSCRIBER_METADATA_KEY) or _optional_str(payload.get("client_reference_id"))
    return CheckoutCompleted(
        event_id=event_id,
        session_id=str(payload.get("id") or ""),
        mode=str(payload.get("mode") or ""),
        subscriber_id=subscriber_id,
        external_customer_id=_reference_id(payload.get("customer")),
        external_subscription_id=_reference_id(payload.get("subscription")),
        customer_email=_optional_str(details.get("email")) or _optional_str(payload.get("customer_email")),
        customer_name=_optional_str(details.get("name")),
        postcode=metadata.get("postcode") or _optional_str(address.get("postal_code")),
        amount_total=_optional_int(payload.get("amount_total")),
        metadata=metadata,
    )


def provider_subscription_from_payload(payload: Mapping[str, object]) -> ProviderSubscription:
    """Normalize a provider subscription object (webhook or API) into a snapshot."""

    item = _first_item(payload)
    price = item.get("price") if isinstance(item.get("price"), Mapping) else {}
    product_ref = price.get("product")
    product: Optional[ProviderProduct] = None
    if isinstance(product_ref, Mapping):
        product = ProviderProduct(
            product_id=str(product_ref.get("id") or ""),
            name=str(product_ref.get("name") or ""),
            metadata=product_ref.get("metadata"),
            price_id=_optional_str(price.get("id")),
            unit_amount=_optional_int(price.get("unit_amount")),
        )

    # Newer API versions report billing periods per item.
    period_start = payload.get("current_period_start") or item.get("current_period_start")
    period_end = payload.get("current_period_end") or item.get("current_period_end")

    return ProviderSubscription(
        subscription_id=str(payload.get("id") or ""),
        customer_id=_reference_id(payload.get("customer")),
        status=str(payload.get("status") or "active"),
        current_period_start=parse_timestamp(period_start),
        current_period_end=parse_timestamp(period_end),
        price_id=_optional_str(price.get("id")),
        unit_amount=_optional_int(price.get("unit_amount")),
        product_id=product.product_id if product else _reference_id(product_ref),
        product=product,
        metadata=payload.get("metadata"),
    )


def _from_epoch(seconds: float) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value: object) -> Optional[datetime]:
    """Read an epoch or ISO-8601 value; anything unreadable becomes None."""

    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    if isinstance(value, str):
        if value.isdigit():
            return _from_epoch(int(value))
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _first_item(payload: Mapping[str, object]) -> Mapping[str, object]:
    items = payload.get("items")
    data = items.get("data") if isinstance(items, Mapping) else None
    if isinstance(data, list) and data and isinstance(data[0], Mapping):
        return data[0]
    return {}


def _reference_id(value: object) -> Optional[str]:
    if isinstance(value, Mapping):
        value = value.get("id")
    return _optional_str(value)


def _optional_str(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_int(value: object) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


__all__ = [
    "BillingEvent",
    "BillingEventKind",
    "CheckoutCompleted",
    "SUBSCRIBER_METADATA_KEY",
    "SubscriptionDeleted",
    "SubscriptionUpdated",
    "UnhandledEvent",
    "parse_billing_event",
    "parse_timestamp",
    "provider_subscription_from_payload",
]
