"""Application wiring for the billing service."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from ...mail import create_email_provider, load_email_config
from ..billing import (
    BillingAuditEvent,
    BillingEventLogger,
    BillingService,
    PaymentProvider,
    ProviderProduct,
    ProviderSubscription,
)
from ..billing.repository import PostgresBillingRepository
from ..billing.stripe_provider import StripePaymentProvider
from ..billing.tiers import TIER_DEFAULTS
from ..billing.verifier import WebhookVerifier
from ..config import get_membership_config
from ..geo import GeoapifyGeocoder
from ..passes.repository import PostgresPassRepository
from .welcome import WelcomeEmailNotifier

logger = logging.getLogger("billing")

_SANDBOX_PRICES = {"standard": 2999, "premium": 4999, "elite": 7999}


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s subscription=%s actor=%s metadata=%s",
            event.event_type.value,
            event.subscription_id,
            event.actor_id,
            event.metadata,
        )


class LocalSandboxPaymentProvider(PaymentProvider):
    """Minimal provider implementation for local development without Stripe keys."""

    def create_customer(self, *, subscriber_id: str, email: Optional[str], name: Optional[str]) -> str:
        return f"cus_{uuid4().hex[:14]}"

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        subscriber_id: str,
        success_url: str,
        cancel_url: str,
    ) -> Dict[str, object]:
        session_id = f"cs_{uuid4().hex}"
        return {"id": session_id, "url": f"https://billing.local/checkout/{session_id}"}

    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, object]:
        session_id = f"ps_{uuid4().hex}"
        return {"id": session_id, "url": f"https://billing.local/portal/{customer_id}"}

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        raise LookupError("Sandbox provider does not track subscriptions")

    def retrieve_product(self, product_id: str) -> ProviderProduct:
        for product in self.list_products():
            if product.product_id == product_id:
                return product
        raise LookupError(f"Unknown sandbox product {product_id}")

    def list_products(self) -> Sequence[ProviderProduct]:
        products: List[ProviderProduct] = []
        for tier, defaults in TIER_DEFAULTS.items():
            products.append(
                ProviderProduct(
                    product_id=f"prod_{tier.value}",
                    name=f"{tier.value.title()} Membership",
                    metadata={
                        "tierGyms": tier.value,
                        "Gym Passes": defaults.monthly_limit,
                        "Guest Passes": defaults.guest_limit,
                    },
                    price_id=f"price_{tier.value}",
                    unit_amount=_SANDBOX_PRICES[tier.value],
                )
            )
        return products


@lru_cache(maxsize=1)
def get_webhook_verifier() -> WebhookVerifier:
    config = get_membership_config()
    return WebhookVerifier(config.webhook_secret, tolerance_seconds=config.webhook_tolerance_seconds)


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    config = get_membership_config()
    if config.stripe_api_key:
        provider: PaymentProvider = StripePaymentProvider(config.stripe_api_key)
    else:
        logger.warning("Stripe API key missing; using local sandbox payment provider")
        provider = LocalSandboxPaymentProvider()

    email_config = load_email_config()
    notifier = WelcomeEmailNotifier(
        email_provider=create_email_provider(email_config),
        facilities=PostgresPassRepository().list_facilities,
        geocoder=GeoapifyGeocoder(config.geocoder_api_key),
        app_base_url=config.app_base_url,
        facility_count=config.welcome_facility_count,
    )
    service = BillingService(
        repository=PostgresBillingRepository(),
        provider=provider,
        notifier=notifier,
        event_logger=LoggingBillingEventLogger(),
        default_price_id=config.default_price_id,
    )
    return service


__all__ = [
    "LocalSandboxPaymentProvider",
    "LoggingBillingEventLogger",
    "get_billing_service",
    "get_webhook_verifier",
]
