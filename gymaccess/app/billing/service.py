"""Core service reconciling billing provider events into local subscriptions."""
from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from .events import (
    SUBSCRIBER_METADATA_KEY,
    CheckoutCompleted,
    SubscriptionDeleted,
    SubscriptionUpdated,
    parse_billing_event,
)
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingCustomer,
    CheckoutSession,
    PlanOffer,
    ProviderProduct,
    ProviderSubscription,
    SubscriberIdentity,
    Subscription,
    SubscriptionStatus,
    TierProfile,
    VerifiedEvent,
    status_from_provider,
)
from .tiers import describe_plan, resolve_tier_profile

logger = logging.getLogger("billing")


class PaymentProvider(Protocol):
    """External payment processor integration."""

    def create_customer(self, *, subscriber_id: str, email: Optional[str], name: Optional[str]) -> str:
        """Create a provider customer and return its identifier."""

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        subscriber_id: str,
        success_url: str,
        cancel_url: str,
    ) -> Dict[str, object]:
        """Create a provider checkout session."""

    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, object]:
        """Create a provider managed billing portal session."""

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        ...

    def retrieve_product(self, product_id: str) -> ProviderProduct:
        ...

    def list_products(self) -> Sequence[ProviderProduct]:
        ...


class BillingNotifier(Protocol):
    """Dispatches billing related notifications to subscribers."""

    def notify_subscription_started(
        self,
        subscription: Subscription,
        *,
        email: Optional[str],
        name: Optional[str],
        postcode: Optional[str],
    ) -> None:
        ...


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


class BillingRepository(Protocol):
    """Persistence operations required by the billing service."""

    def subscriber_transaction(self, subscriber_id: str) -> AbstractContextManager["BillingRepository"]:
        """Serialize reconciliation for one subscriber and commit on exit."""

    def record_webhook_event(self, event: VerifiedEvent) -> bool:
        ...

    def get_billing_customer(self, subscriber_id: str) -> Optional[BillingCustomer]:
        ...

    def find_billing_customer(self, customer_id: str) -> Optional[BillingCustomer]:
        ...

    def ensure_billing_customer(self, customer: BillingCustomer) -> BillingCustomer:
        ...

    def get_subscription(self, external_subscription_id: str) -> Optional[Subscription]:
        ...

    def get_active_subscription(self, subscriber_id: str) -> Optional[Subscription]:
        ...

    def upsert_subscription(self, subscription: Subscription) -> Subscription:
        ...

    def cancel_other_active_subscriptions(
        self,
        subscriber_id: str,
        *,
        keep_external_id: str,
    ) -> List[Subscription]:
        ...

    def mark_subscription_canceled(self, external_subscription_id: str) -> Optional[Subscription]:
        ...


@dataclass(slots=True)
class BillingService:
    """Coordinates checkout bootstrap and subscription reconciliation."""

    repository: BillingRepository
    provider: PaymentProvider
    notifier: BillingNotifier
    event_logger: BillingEventLogger
    default_price_id: Optional[str] = None

    # -- checkout bootstrap -------------------------------------------------

    def ensure_customer(self, subscriber: SubscriberIdentity) -> BillingCustomer:
        existing = self.repository.get_billing_customer(subscriber.subscriber_id)
        if existing is not None:
            return existing

        customer_id = self.provider.create_customer(
            subscriber_id=subscriber.subscriber_id,
            email=subscriber.email,
            name=subscriber.display_name,
        )
        # A concurrent bootstrap may have won; the stored mapping is authoritative.
        stored = self.repository.ensure_billing_customer(
            BillingCustomer(
                subscriber_id=subscriber.subscriber_id,
                customer_id=customer_id,
                email=subscriber.email,
            )
        )
        logger.info(
            "Billing customer resolved",
            extra={"subscriber_id": subscriber.subscriber_id, "customer_id": stored.customer_id},
        )
        return stored

    def create_checkout_session(
        self,
        *,
        subscriber: SubscriberIdentity,
        price_id: Optional[str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        chosen_price = price_id or self.default_price_id
        if not chosen_price:
            raise ValueError("No price configured for checkout")

        customer = self.ensure_customer(subscriber)
        session = self.provider.create_checkout_session(
            customer_id=customer.customer_id,
            price_id=chosen_price,
            subscriber_id=subscriber.subscriber_id,
            success_url=success_url,
            cancel_url=cancel_url,
        )
        session_id = str(session.get("id") or "")
        logger.info(
            "Checkout session created",
            extra={"subscriber_id": subscriber.subscriber_id, "session_id": session_id},
        )
        url = session.get("url")
        return CheckoutSession(
            session_id=session_id,
            url=str(url) if url else None,
            customer_id=customer.customer_id,
        )

    def create_portal_session(self, *, subscriber_id: str, return_url: str) -> Dict[str, object]:
        customer_id: Optional[str] = None
        subscription = self.repository.get_active_subscription(subscriber_id)
        if subscription is not None:
            customer_id = subscription.external_customer_id
        if not customer_id:
            customer = self.repository.get_billing_customer(subscriber_id)
            customer_id = customer.customer_id if customer else None
        if not customer_id:
            raise LookupError("No billing account found for subscriber")

        return self.provider.create_billing_portal_session(customer_id=customer_id, return_url=return_url)

    def list_plans(self) -> List[PlanOffer]:
        offers = [describe_plan(product) for product in self.provider.list_products()]
        return sorted(offers, key=lambda offer: offer.price)

    def get_active_subscription(self, subscriber_id: str) -> Optional[Subscription]:
        return self.repository.get_active_subscription(subscriber_id)

    # -- webhook reconciliation ---------------------------------------------

    def handle_webhook(self, event: VerifiedEvent) -> None:
        stored = self.repository.record_webhook_event(event)
        if not stored:
            logger.info(
                "Skipping duplicate webhook delivery",
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )
            return

        billing_event = parse_billing_event(event)
        if isinstance(billing_event, CheckoutCompleted):
            self.handle_checkout_completed(billing_event)
        elif isinstance(billing_event, SubscriptionUpdated):
            self.handle_subscription_updated(billing_event)
        elif isinstance(billing_event, SubscriptionDeleted):
            self.handle_subscription_deleted(billing_event)
        else:
            logger.info(
                "Ignoring unhandled webhook event",
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )

    def handle_checkout_completed(self, event: CheckoutCompleted) -> Optional[Subscription]:
        external_id = event.external_subscription_id
        if event.mode != "subscription" or not external_id:
            logger.info("Ignoring checkout session without a subscription", extra={"event_id": event.event_id})
            return None

        subscriber_id = event.subscriber_id or self._subscriber_for_customer(event.external_customer_id)
        if not subscriber_id:
            logger.warning(
                "Checkout completed for unknown subscriber",
                extra={"event_id": event.event_id, "subscription_id": external_id},
            )
            return None

        snapshot = self._fetch_subscription(external_id)
        profile = self._profile_for(snapshot) if snapshot is not None else None
        status = status_from_provider(snapshot.status) if snapshot is not None else SubscriptionStatus.ACTIVE
        customer_id = event.external_customer_id or (snapshot.customer_id if snapshot else None)

        with self.repository.subscriber_transaction(subscriber_id) as repo:
            if customer_id:
                repo.ensure_billing_customer(
                    BillingCustomer(subscriber_id=subscriber_id, customer_id=customer_id, email=event.customer_email)
                )
            existing = repo.get_subscription(external_id)
            if existing is not None and existing.is_canceled:
                logger.info(
                    "Checkout completed for an already canceled subscription",
                    extra={"event_id": event.event_id, "subscription_id": external_id},
                )
                return existing

            if profile is None:
                profile = _retained_profile(existing) or resolve_tier_profile(event.metadata, None, event.amount_total)
            if status == SubscriptionStatus.ACTIVE:
                self._cancel_siblings(repo, subscriber_id, keep_external_id=external_id)
            persisted = repo.upsert_subscription(
                _build_subscription(
                    external_id=external_id,
                    subscriber_id=subscriber_id,
                    customer_id=customer_id,
                    status=status,
                    profile=profile,
                    snapshot=snapshot,
                    existing=existing,
                )
            )

        created = existing is None
        self._audit(
            BillingAuditEventType.SUBSCRIPTION_ACTIVATED if created else BillingAuditEventType.SUBSCRIPTION_UPDATED,
            persisted,
        )
        if created and persisted.is_active:
            self._send_welcome(
                persisted,
                email=event.customer_email,
                name=event.customer_name,
                postcode=event.postcode,
            )
        return persisted

    def handle_subscription_updated(self, event: SubscriptionUpdated) -> Optional[Subscription]:
        snapshot = event.subscription
        status = event.status
        if status == SubscriptionStatus.CANCELED:
            return self._apply_cancellation(snapshot)

        external_id = snapshot.subscription_id
        existing = self.repository.get_subscription(external_id)
        if existing is None and status != SubscriptionStatus.ACTIVE:
            logger.info(
                "Ignoring update for unknown inactive subscription",
                extra={"event_id": event.event_id, "subscription_id": external_id},
            )
            return None

        subscriber_id = existing.subscriber_id if existing else self._resolve_subscriber(snapshot)
        if not subscriber_id:
            logger.warning(
                "Subscription update for unknown subscriber",
                extra={"event_id": event.event_id, "subscription_id": external_id},
            )
            return None

        profile = self._profile_for(snapshot)
        with self.repository.subscriber_transaction(subscriber_id) as repo:
            current = repo.get_subscription(external_id)
            if current is not None and current.is_canceled:
                logger.debug("Update ignored for canceled subscription", extra={"subscription_id": external_id})
                return current
            if current is None and status != SubscriptionStatus.ACTIVE:
                return None

            if profile is None:
                profile = _retained_profile(current) or resolve_tier_profile({}, None, snapshot.unit_amount)
            if status == SubscriptionStatus.ACTIVE:
                self._cancel_siblings(repo, subscriber_id, keep_external_id=external_id)
            persisted = repo.upsert_subscription(
                _build_subscription(
                    external_id=external_id,
                    subscriber_id=subscriber_id,
                    customer_id=snapshot.customer_id,
                    status=status,
                    profile=profile,
                    snapshot=snapshot,
                    existing=current,
                )
            )

        if current is None:
            logger.info("Subscription repaired from update event", extra={"subscription_id": external_id})
            self._audit(BillingAuditEventType.SUBSCRIPTION_ACTIVATED, persisted)
        else:
            self._audit(BillingAuditEventType.SUBSCRIPTION_UPDATED, persisted)
        return persisted

    def handle_subscription_deleted(self, event: SubscriptionDeleted) -> Optional[Subscription]:
        return self._apply_cancellation(event.subscription)

    def _apply_cancellation(self, snapshot: ProviderSubscription) -> Optional[Subscription]:
        external_id = snapshot.subscription_id
        canceled = self.repository.mark_subscription_canceled(external_id)
        if canceled is None:
            # Deletion raced ahead of creation; keep a canceled row so creation cannot revive it.
            subscriber_id = self._resolve_subscriber(snapshot)
            if not subscriber_id:
                logger.warning(
                    "Cannot record cancellation for unknown subscriber",
                    extra={"subscription_id": external_id},
                )
                return None
            profile = self._profile_for(snapshot) or resolve_tier_profile({}, None, snapshot.unit_amount)
            canceled = self.repository.upsert_subscription(
                _build_subscription(
                    external_id=external_id,
                    subscriber_id=subscriber_id,
                    customer_id=snapshot.customer_id,
                    status=SubscriptionStatus.CANCELED,
                    profile=profile,
                    snapshot=snapshot,
                    existing=None,
                )
            )

        self._audit(BillingAuditEventType.SUBSCRIPTION_CANCELED, canceled)
        return canceled

    def _cancel_siblings(self, repo: BillingRepository, subscriber_id: str, *, keep_external_id: str) -> None:
        try:
            siblings = repo.cancel_other_active_subscriptions(subscriber_id, keep_external_id=keep_external_id)
        except Exception:
            logger.exception(
                "Failed to cancel sibling subscriptions",
                extra={"subscriber_id": subscriber_id, "subscription_id": keep_external_id},
            )
            return
        for sibling in siblings:
            self._audit(
                BillingAuditEventType.SIBLING_CANCELED,
                sibling,
                metadata={"replaced_by": keep_external_id},
            )

    def _fetch_subscription(self, external_id: str) -> Optional[ProviderSubscription]:
        try:
            return self.provider.retrieve_subscription(external_id)
        except Exception as exc:
            logger.warning(
                "Subscription lookup failed; keeping stored plan details",
                extra={"subscription_id": external_id, "error": str(exc)},
            )
            return None

    def _profile_for(self, snapshot: ProviderSubscription) -> Optional[TierProfile]:
        product = snapshot.product
        if product is None and snapshot.product_id:
            try:
                product = self.provider.retrieve_product(snapshot.product_id)
            except Exception as exc:
                logger.warning(
                    "Product lookup failed; keeping stored plan details",
                    extra={"product_id": snapshot.product_id, "error": str(exc)},
                )
                return None
        if product is None:
            return None
        amount = snapshot.unit_amount if snapshot.unit_amount is not None else product.unit_amount
        return resolve_tier_profile(product.metadata, product.name, amount)

    def _resolve_subscriber(self, snapshot: ProviderSubscription) -> Optional[str]:
        return snapshot.metadata.get(SUBSCRIBER_METADATA_KEY) or self._subscriber_for_customer(snapshot.customer_id)

    def _subscriber_for_customer(self, customer_id: Optional[str]) -> Optional[str]:
        if not customer_id:
            return None
        customer = self.repository.find_billing_customer(customer_id)
        return customer.subscriber_id if customer else None

    def _send_welcome(
        self,
        subscription: Subscription,
        *,
        email: Optional[str],
        name: Optional[str],
        postcode: Optional[str],
    ) -> None:
        try:
            self.notifier.notify_subscription_started(subscription, email=email, name=name, postcode=postcode)
        except Exception:
            logger.exception(
                "Welcome notification failed",
                extra={"subscriber_id": subscription.subscriber_id},
            )

    def _audit(
        self,
        event_type: BillingAuditEventType,
        subscription: Subscription,
        *,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.event_logger.log(
            BillingAuditEvent(
                event_type=event_type,
                subscription_id=subscription.external_subscription_id,
                actor_id=subscription.subscriber_id,
                metadata=dict(metadata or {}),
            )
        )


def _retained_profile(existing: Optional[Subscription]) -> Optional[TierProfile]:
    if existing is None:
        return None
    return TierProfile(
        tier=existing.tier,
        monthly_limit=existing.monthly_limit,
        guest_limit=existing.guest_passes_limit,
        price=existing.price,
    )


def _build_subscription(
    *,
    external_id: str,
    subscriber_id: str,
    customer_id: Optional[str],
    status: SubscriptionStatus,
    profile: TierProfile,
    snapshot: Optional[ProviderSubscription],
    existing: Optional[Subscription],
) -> Subscription:
    period_start = snapshot.current_period_start if snapshot else None
    period_end = snapshot.current_period_end if snapshot else None
    return Subscription(
        external_subscription_id=external_id,
        external_customer_id=customer_id or (existing.external_customer_id if existing else None),
        subscriber_id=subscriber_id,
        tier=profile.tier,
        status=status,
        monthly_limit=profile.monthly_limit,
        guest_passes_limit=profile.guest_limit,
        price=profile.price,
        current_period_start=period_start or (existing.current_period_start if existing else None),
        current_period_end=period_end or (existing.current_period_end if existing else None),
    )


__all__ = [
    "BillingEventLogger",
    "BillingNotifier",
    "BillingRepository",
    "BillingService",
    "PaymentProvider",
]
