"""In-memory collaborators shared by the test suite."""
from __future__ import annotations

import hashlib
import hmac
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Sequence, Set

from gymaccess.app.billing import (
    BillingAuditEvent,
    BillingCustomer,
    ProviderProduct,
    ProviderSubscription,
    Subscription,
    SubscriptionStatus,
    Tier,
    VerifiedEvent,
)
from gymaccess.app.billing.service import (
    BillingEventLogger,
    BillingNotifier,
    BillingRepository,
    PaymentProvider,
)
from gymaccess.app.passes import AccessPass, Facility, PricingRule
from gymaccess.app.passes.service import PassRepository

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _latest(current: Optional[datetime], incoming: Optional[datetime]) -> Optional[datetime]:
    if current is None:
        return incoming
    if incoming is None:
        return current
    return max(current, incoming)


class InMemoryStore:
    """Tables shared by the billing and pass repositories."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.customers: Dict[str, BillingCustomer] = {}
        self.subscriptions: Dict[str, Subscription] = {}
        self.webhook_events: Set[str] = set()
        self.facilities: Dict[int, Facility] = {}
        self.pricing: Dict[Tier, PricingRule] = {}
        self.passes: Dict[str, AccessPass] = {}

    def active_for(self, subscriber_id: str) -> List[Subscription]:
        with self.lock:
            return [
                item
                for item in self.subscriptions.values()
                if item.subscriber_id == subscriber_id and item.status == SubscriptionStatus.ACTIVE
            ]


class InMemoryBillingRepository(BillingRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self.fail_sibling_cancel = False

    @contextmanager
    def subscriber_transaction(self, subscriber_id: str) -> Iterator["InMemoryBillingRepository"]:
        with self.store.lock:
            yield self

    def record_webhook_event(self, event: VerifiedEvent) -> bool:
        with self.store.lock:
            if event.event_id in self.store.webhook_events:
                return False
            self.store.webhook_events.add(event.event_id)
            return True

    def get_billing_customer(self, subscriber_id: str) -> Optional[BillingCustomer]:
        return self.store.customers.get(subscriber_id)

    def find_billing_customer(self, customer_id: str) -> Optional[BillingCustomer]:
        with self.store.lock:
            for customer in self.store.customers.values():
                if customer.customer_id == customer_id:
                    return customer
        return None

    def ensure_billing_customer(self, customer: BillingCustomer) -> BillingCustomer:
        with self.store.lock:
            existing = self.store.customers.get(customer.subscriber_id)
            if existing is not None:
                return existing
            if self.find_billing_customer(customer.customer_id) is None:
                self.store.customers[customer.subscriber_id] = customer
            return self.store.customers.get(customer.subscriber_id, customer)

    def get_subscription(self, external_subscription_id: str) -> Optional[Subscription]:
        return self.store.subscriptions.get(external_subscription_id)

    def get_active_subscription(self, subscriber_id: str) -> Optional[Subscription]:
        active = self.store.active_for(subscriber_id)
        return max(active, key=lambda item: item.updated_at) if active else None

    def upsert_subscription(self, subscription: Subscription) -> Subscription:
        with self.store.lock:
            now = datetime.now(timezone.utc)
            existing = self.store.subscriptions.get(subscription.external_subscription_id)
            if existing is None:
                stored = subscription.model_copy(
                    update={"visits_used": 0, "guest_passes_used": 0, "created_at": now, "updated_at": now}
                )
            elif existing.is_canceled:
                return existing
            else:
                renewed = (
                    subscription.current_period_start is not None
                    and existing.current_period_start is not None
                    and subscription.current_period_start > existing.current_period_start
                )
                stored = existing.model_copy(
                    update={
                        "external_customer_id": subscription.external_customer_id or existing.external_customer_id,
                        "tier": subscription.tier,
                        "status": subscription.status,
                        "monthly_limit": subscription.monthly_limit,
                        "guest_passes_limit": subscription.guest_passes_limit,
                        "price": subscription.price,
                        "visits_used": 0 if renewed else existing.visits_used,
                        "guest_passes_used": 0 if renewed else existing.guest_passes_used,
                        "current_period_start": _latest(existing.current_period_start, subscription.current_period_start),
                        "current_period_end": _latest(existing.current_period_end, subscription.current_period_end),
                        "updated_at": now,
                    }
                )
            self.store.subscriptions[stored.external_subscription_id] = stored
            return stored

    def cancel_other_active_subscriptions(
        self,
        subscriber_id: str,
        *,
        keep_external_id: str,
    ) -> List[Subscription]:
        if self.fail_sibling_cancel:
            raise RuntimeError("sibling cancel failed")
        canceled: List[Subscription] = []
        with self.store.lock:
            for item in self.store.active_for(subscriber_id):
                if item.external_subscription_id == keep_external_id:
                    continue
                updated = item.model_copy(
                    update={"status": SubscriptionStatus.CANCELED, "updated_at": datetime.now(timezone.utc)}
                )
                self.store.subscriptions[item.external_subscription_id] = updated
                canceled.append(updated)
        return canceled

    def mark_subscription_canceled(self, external_subscription_id: str) -> Optional[Subscription]:
        with self.store.lock:
            existing = self.store.subscriptions.get(external_subscription_id)
            if existing is None or existing.is_canceled:
                return existing
            updated = existing.model_copy(
                update={"status": SubscriptionStatus.CANCELED, "updated_at": datetime.now(timezone.utc)}
            )
            self.store.subscriptions[external_subscription_id] = updated
            return updated


class InMemoryPassRepository(PassRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self.fail_claim = False
        self.fail_create = False
        self.fail_pricing = False

    def get_active_subscription(self, subscriber_id: str) -> Optional[Subscription]:
        active = self.store.active_for(subscriber_id)
        return active[0] if active else None

    def get_facility(self, facility_id: int) -> Optional[Facility]:
        return self.store.facilities.get(facility_id)

    def list_facilities(self) -> List[Facility]:
        return list(self.store.facilities.values())

    def get_pricing_rule(self, tier: Tier) -> Optional[PricingRule]:
        if self.fail_pricing:
            raise RuntimeError("pricing table unavailable")
        return self.store.pricing.get(tier)

    def claim_visit(self, external_subscription_id: str) -> Optional[Subscription]:
        if self.fail_claim:
            raise RuntimeError("usage counter unavailable")
        with self.store.lock:
            current = self.store.subscriptions.get(external_subscription_id)
            if current is None or not current.is_active or current.visits_used >= current.monthly_limit:
                return None
            updated = current.model_copy(update={"visits_used": current.visits_used + 1})
            self.store.subscriptions[external_subscription_id] = updated
            return updated

    def release_visit(self, external_subscription_id: str) -> Optional[Subscription]:
        with self.store.lock:
            current = self.store.subscriptions.get(external_subscription_id)
            if current is None or current.visits_used <= 0:
                return None
            updated = current.model_copy(update={"visits_used": current.visits_used - 1})
            self.store.subscriptions[external_subscription_id] = updated
            return updated

    def create_pass(self, access_pass: AccessPass) -> AccessPass:
        if self.fail_create:
            raise RuntimeError("pass table unavailable")
        with self.store.lock:
            self.store.passes[access_pass.pass_code] = access_pass
        return access_pass

    def list_passes(self, subscriber_id: str) -> List[AccessPass]:
        with self.store.lock:
            items = [item for item in self.store.passes.values() if item.subscriber_id == subscriber_id]
        return sorted(items, key=lambda item: item.issued_at, reverse=True)

    def get_pass(self, pass_code: str) -> Optional[AccessPass]:
        return self.store.passes.get(pass_code)


class FakePaymentProvider(PaymentProvider):
    def __init__(self) -> None:
        self.subscriptions: Dict[str, ProviderSubscription] = {}
        self.products: Dict[str, ProviderProduct] = {}
        self.created_customers: List[Dict[str, Optional[str]]] = []
        self.checkout_sessions: List[Dict[str, object]] = []
        self.portal_sessions: List[Dict[str, object]] = []
        self.fail_lookups = False

    def create_customer(self, *, subscriber_id: str, email: Optional[str], name: Optional[str]) -> str:
        customer_id = f"cus_{len(self.created_customers) + 1}"
        self.created_customers.append({"subscriber_id": subscriber_id, "email": email, "customer_id": customer_id})
        return customer_id

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        subscriber_id: str,
        success_url: str,
        cancel_url: str,
    ) -> Dict[str, object]:
        session = {
            "id": f"cs_{len(self.checkout_sessions) + 1}",
            "url": "https://checkout.example/session",
            "customer_id": customer_id,
            "price_id": price_id,
            "metadata": {"userId": subscriber_id, "priceId": price_id},
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        self.checkout_sessions.append(session)
        return session

    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, object]:
        session = {"id": "bps_1", "url": f"https://portal.example/{customer_id}", "return_url": return_url}
        self.portal_sessions.append(session)
        return session

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        if self.fail_lookups:
            raise ConnectionError("provider unavailable")
        try:
            return self.subscriptions[subscription_id]
        except KeyError as exc:
            raise LookupError(subscription_id) from exc

    def retrieve_product(self, product_id: str) -> ProviderProduct:
        if self.fail_lookups:
            raise ConnectionError("provider unavailable")
        return self.products[product_id]

    def list_products(self) -> Sequence[ProviderProduct]:
        if self.fail_lookups:
            raise ConnectionError("provider unavailable")
        return list(self.products.values())


class RecordingNotifier(BillingNotifier):
    def __init__(self) -> None:
        self.started: List[Dict[str, object]] = []
        self.fail = False

    def notify_subscription_started(
        self,
        subscription: Subscription,
        *,
        email: Optional[str],
        name: Optional[str],
        postcode: Optional[str],
    ) -> None:
        if self.fail:
            raise RuntimeError("mail server down")
        self.started.append({"subscription": subscription, "email": email, "name": name, "postcode": postcode})


class RecordingEventLogger(BillingEventLogger):
    def __init__(self) -> None:
        self.events: List[BillingAuditEvent] = []

    def log(self, event: BillingAuditEvent) -> None:
        self.events.append(event)


PREMIUM_PRODUCT = ProviderProduct(
    product_id="prod_premium",
    name="Premium Membership",
    metadata={"tierGyms": "premium", "Gym Passes": "20", "Guest Passes": "2"},
    price_id="price_premium",
    unit_amount=4999,
)

STANDARD_PRODUCT = ProviderProduct(
    product_id="prod_standard",
    name="Standard Membership",
    metadata={"Gym Passes": "8"},
    price_id="price_standard",
    unit_amount=2999,
)


def make_event(event_id: str, event_type: str, payload: Dict[str, object]) -> VerifiedEvent:
    return VerifiedEvent(event_id=event_id, event_type=event_type, payload=payload)


def checkout_payload(
    *,
    subscription_id: str,
    subscriber_id: Optional[str] = "user_1",
    customer_id: str = "cus_1",
    email: Optional[str] = "member@example.com",
    postcode: Optional[str] = None,
) -> Dict[str, object]:
    metadata: Dict[str, object] = {}
    if subscriber_id:
        metadata["userId"] = subscriber_id
    if postcode:
        metadata["postcode"] = postcode
    return {
        "id": f"cs_for_{subscription_id}",
        "object": "checkout.session",
        "mode": "subscription",
        "customer": customer_id,
        "subscription": subscription_id,
        "customer_details": {"email": email, "name": "Alex Member"},
        "amount_total": 4999,
        "metadata": metadata,
    }


def subscription_payload(
    *,
    subscription_id: str,
    status: str = "active",
    customer_id: str = "cus_1",
    subscriber_id: Optional[str] = "user_1",
    product_id: str = "prod_premium",
    unit_amount: int = 4999,
    period_start: int = 1_700_000_000,
    period_end: int = 1_702_592_000,
) -> Dict[str, object]:
    return {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "customer": customer_id,
        "current_period_start": period_start,
        "current_period_end": period_end,
        "metadata": {"userId": subscriber_id} if subscriber_id else {},
        "items": {
            "object": "list",
            "data": [
                {
                    "id": f"si_{subscription_id}",
                    "price": {"id": f"price_{product_id}", "unit_amount": unit_amount, "product": product_id},
                }
            ],
        },
    }


def sign_payload(body: bytes, secret: str, *, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-format signature header for ``body``."""

    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode("utf-8") + body
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def make_subscription(
    *,
    external_id: str = "sub_1",
    subscriber_id: str = "user_1",
    tier: Tier = Tier.STANDARD,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    monthly_limit: int = 8,
    visits_used: int = 0,
) -> Subscription:
    return Subscription(
        external_subscription_id=external_id,
        external_customer_id="cus_1",
        subscriber_id=subscriber_id,
        tier=tier,
        status=status,
        monthly_limit=monthly_limit,
        visits_used=visits_used,
        price=Decimal("29.99"),
    )
