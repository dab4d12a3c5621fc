from decimal import Decimal

import pytest

from gymaccess.app.billing import ProviderProduct, SubscriptionStatus, Tier, status_from_provider
from gymaccess.app.billing.tiers import describe_plan, price_from_minor_units, resolve_tier, resolve_tier_profile


def test_explicit_tier_metadata_wins_over_name():
    assert resolve_tier({"tierGyms": "Elite"}, "Premium Membership") == Tier.ELITE


def test_name_heuristic_prefers_premium_before_elite():
    assert resolve_tier({}, "Premium Elite Bundle") == Tier.PREMIUM
    assert resolve_tier({}, "Elite Club") == Tier.ELITE


def test_unknown_product_defaults_to_standard():
    assert resolve_tier({"tierGyms": "platinum"}, "Basic") == Tier.STANDARD
    assert resolve_tier(None, None) == Tier.STANDARD


def test_profile_reads_quota_metadata():
    profile = resolve_tier_profile({"tierGyms": "premium", "Gym Passes": "12", "Guest Passes": "3"}, None, 4999)

    assert profile.tier == Tier.PREMIUM
    assert profile.monthly_limit == 12
    assert profile.guest_limit == 3
    assert profile.price == Decimal("49.99")


@pytest.mark.parametrize("raw", ["lots", "-4", "", None])
def test_profile_falls_back_to_tier_defaults_for_bad_quota(raw):
    profile = resolve_tier_profile({"tier": "elite", "Gym Passes": raw}, None, None)

    assert profile.monthly_limit == 30
    assert profile.guest_limit == 6
    assert profile.price == Decimal("0.00")


def test_profile_is_deterministic():
    metadata = {"Gym Passes": "8"}
    assert resolve_tier_profile(metadata, "Standard", 2999) == resolve_tier_profile(metadata, "Standard", 2999)


@pytest.mark.parametrize(
    "amount, expected",
    [(2999, "29.99"), ("7999", "79.99"), (None, "0.00"), (-100, "0.00"), ("abc", "0.00"), (True, "0.00")],
)
def test_price_from_minor_units(amount, expected):
    assert price_from_minor_units(amount) == Decimal(expected)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("active", SubscriptionStatus.ACTIVE),
        ("trialing", SubscriptionStatus.ACTIVE),
        ("canceled", SubscriptionStatus.CANCELED),
        ("incomplete_expired", SubscriptionStatus.CANCELED),
        ("unpaid", SubscriptionStatus.PAST_DUE),
        ("something_new", SubscriptionStatus.PAST_DUE),
        (None, SubscriptionStatus.PAST_DUE),
    ],
)
def test_status_from_provider(raw, expected):
    assert status_from_provider(raw) == expected


def test_describe_plan_lists_features():
    product = ProviderProduct(
        product_id="prod_1",
        name="Premium Membership",
        metadata={"Description": "All premium gyms", "Gym Passes": "20"},
        price_id="price_1",
        unit_amount=4999,
    )

    offer = describe_plan(product)

    assert offer.tier == Tier.PREMIUM
    assert offer.price == Decimal("49.99")
    assert offer.features == ["All premium gyms", "20 Gym Passes", "2 Guest Passes"]


def test_describe_standard_plan_mentions_app_access():
    offer = describe_plan(ProviderProduct(product_id="prod_2", name="Standard", unit_amount=2999))

    assert offer.tier == Tier.STANDARD
    assert offer.monthly_limit == 8
    assert offer.features == ["App Access"]
