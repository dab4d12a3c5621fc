"""Tier and quota resolution from payment provider product data.

Resolution is a pure function of its inputs so that webhook replays and
plan listings always agree on what a product grants.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Mapping, Optional

from .models import PlanOffer, ProviderProduct, Tier, TierProfile

TIER_METADATA_KEYS = ("tierGyms", "tier")
MONTHLY_LIMIT_METADATA_KEY = "Gym Passes"
GUEST_LIMIT_METADATA_KEY = "Guest Passes"

# Name heuristics are checked in this order.
_NAME_HINTS = ((Tier.PREMIUM, "premium"), (Tier.ELITE, "elite"))


@dataclass(frozen=True)
class TierDefaults:
    """Baseline quota granted by a tier when product metadata is silent."""

    monthly_limit: int
    guest_limit: int


TIER_DEFAULTS: Dict[Tier, TierDefaults] = {
    Tier.STANDARD: TierDefaults(monthly_limit=8, guest_limit=0),
    Tier.PREMIUM: TierDefaults(monthly_limit=20, guest_limit=2),
    Tier.ELITE: TierDefaults(monthly_limit=30, guest_limit=6),
}


def resolve_tier(product_metadata: Optional[Mapping[str, object]], product_name: Optional[str]) -> Tier:
    """Pick the tier from explicit metadata, then the product name, then the default."""

    metadata = product_metadata or {}
    for key in TIER_METADATA_KEYS:
        explicit = Tier.parse(metadata.get(key))
        if explicit is not None:
            return explicit

    name = (product_name or "").lower()
    for tier, hint in _NAME_HINTS:
        if hint in name:
            return tier
    return Tier.STANDARD


def resolve_tier_profile(
    product_metadata: Optional[Mapping[str, object]],
    product_name: Optional[str],
    price_amount: Optional[object],
) -> TierProfile:
    """Map provider product details onto a tier, pass quotas and a price."""

    metadata = product_metadata or {}
    tier = resolve_tier(metadata, product_name)
    defaults = TIER_DEFAULTS[tier]
    return TierProfile(
        tier=tier,
        monthly_limit=_quota_value(metadata.get(MONTHLY_LIMIT_METADATA_KEY), default=defaults.monthly_limit),
        guest_limit=_quota_value(metadata.get(GUEST_LIMIT_METADATA_KEY), default=defaults.guest_limit),
        price=price_from_minor_units(price_amount),
    )


def price_from_minor_units(amount: Optional[object]) -> Decimal:
    """Convert an amount in cents into a two-place decimal, ``0.00`` when unusable."""

    if amount is None or isinstance(amount, bool):
        return Decimal("0.00")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return Decimal("0.00")
    if not value.is_finite() or value < 0:
        return Decimal("0.00")
    return (value / Decimal(100)).quantize(Decimal("0.01"))


def describe_plan(product: ProviderProduct) -> PlanOffer:
    """Build the plan listing entry for a provider product."""

    profile = resolve_tier_profile(product.metadata, product.name, product.unit_amount)
    metadata = product.metadata
    features: List[str] = []

    description = metadata.get("Description") or metadata.get("description")
    if description:
        features.append(description)

    if metadata.get(MONTHLY_LIMIT_METADATA_KEY):
        features.append(f"{metadata[MONTHLY_LIMIT_METADATA_KEY]} Gym Passes")

    if profile.tier == Tier.STANDARD:
        features.append(metadata.get("app") or "App Access")
    elif profile.guest_limit > 0:
        features.append(f"{profile.guest_limit} Guest Passes")

    return PlanOffer(
        tier=profile.tier,
        name=product.name,
        price=profile.price,
        monthly_limit=profile.monthly_limit,
        guest_passes_limit=profile.guest_limit,
        product_id=product.product_id,
        price_id=product.price_id,
        features=features,
    )


def _quota_value(raw: object, *, default: int) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return value if value >= 0 else default


__all__ = [
    "GUEST_LIMIT_METADATA_KEY",
    "MONTHLY_LIMIT_METADATA_KEY",
    "TIER_DEFAULTS",
    "TIER_METADATA_KEYS",
    "TierDefaults",
    "describe_plan",
    "price_from_minor_units",
    "resolve_tier",
    "resolve_tier_profile",
]
