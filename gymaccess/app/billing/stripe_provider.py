"""Stripe implementation of the payment provider seam."""
from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence

import stripe

from .events import SUBSCRIBER_METADATA_KEY, provider_subscription_from_payload
from .models import ProviderProduct, ProviderSubscription

logger = logging.getLogger("billing.stripe")


class StripePaymentProvider:
    """Thin adapter over the Stripe API using a per-call API key."""

    def __init__(self, api_key: Optional[str]) -> None:
        self._api_key = api_key

    def _key(self) -> str:
        if not self._api_key:
            raise RuntimeError("Stripe API key is not configured")
        return self._api_key

    def create_customer(self, *, subscriber_id: str, email: Optional[str], name: Optional[str]) -> str:
        params: Dict[str, object] = {"metadata": {SUBSCRIBER_METADATA_KEY: subscriber_id}}
        if email:
            params["email"] = email
        if name:
            params["name"] = name
        customer = stripe.Customer.create(api_key=self._key(), **params)
        logger.info("Created Stripe customer", extra={"subscriber_id": subscriber_id, "customer_id": customer["id"]})
        return str(customer["id"])

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        subscriber_id: str,
        success_url: str,
        cancel_url: str,
    ) -> Dict[str, object]:
        metadata = {SUBSCRIBER_METADATA_KEY: subscriber_id, "priceId": price_id}
        session = stripe.checkout.Session.create(
            api_key=self._key(),
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            client_reference_id=subscriber_id,
            metadata=metadata,
            subscription_data={"metadata": metadata},
            allow_promotion_codes=True,
        )
        return {"id": session["id"], "url": session.get("url")}

    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, object]:
        session = stripe.billing_portal.Session.create(
            api_key=self._key(),
            customer=customer_id,
            return_url=return_url,
        )
        return {"id": session["id"], "url": session.get("url")}

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        subscription = stripe.Subscription.retrieve(
            subscription_id,
            api_key=self._key(),
            expand=["items.data.price.product"],
        )
        return provider_subscription_from_payload(subscription)

    def retrieve_product(self, product_id: str) -> ProviderProduct:
        product = stripe.Product.retrieve(product_id, api_key=self._key())
        return _product_from_stripe(product, _monthly_price(product_id, self._key()))

    def list_products(self) -> Sequence[ProviderProduct]:
        key = self._key()
        products: List[ProviderProduct] = []
        for product in stripe.Product.list(api_key=key, active=True, limit=100).auto_paging_iter():
            products.append(_product_from_stripe(product, _monthly_price(product["id"], key)))
        return products


def _monthly_price(product_id: str, api_key: str) -> Optional[Mapping[str, object]]:
    prices = stripe.Price.list(api_key=api_key, product=product_id, active=True)
    for price in prices["data"]:
        recurring = price.get("recurring")
        if recurring and recurring.get("interval") == "month":
            return price
    return None


def _product_from_stripe(product: Mapping[str, object], price: Optional[Mapping[str, object]]) -> ProviderProduct:
    return ProviderProduct(
        product_id=str(product["id"]),
        name=str(product.get("name") or ""),
        metadata=product.get("metadata"),
        price_id=str(price["id"]) if price else None,
        unit_amount=price.get("unit_amount") if price else None,
    )


__all__ = ["StripePaymentProvider"]
