from __future__ import annotations

import pytest

from gymaccess.app.billing import BillingService, Tier
from gymaccess.app.passes import Facility, PassService
from gymaccess.tests.fakes import (
    FIXED_NOW,
    PREMIUM_PRODUCT,
    STANDARD_PRODUCT,
    FakePaymentProvider,
    InMemoryBillingRepository,
    InMemoryPassRepository,
    InMemoryStore,
    RecordingEventLogger,
    RecordingNotifier,
)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def billing_components(store):
    repository = InMemoryBillingRepository(store)
    provider = FakePaymentProvider()
    provider.products[PREMIUM_PRODUCT.product_id] = PREMIUM_PRODUCT
    provider.products[STANDARD_PRODUCT.product_id] = STANDARD_PRODUCT
    notifier = RecordingNotifier()
    event_logger = RecordingEventLogger()
    service = BillingService(
        repository=repository,
        provider=provider,
        notifier=notifier,
        event_logger=event_logger,
        default_price_id="price_standard",
    )
    return service, repository, provider, notifier, event_logger


@pytest.fixture
def pass_components(store):
    repository = InMemoryPassRepository(store)
    store.facilities[1] = Facility(facility_id=1, name="Standard Gym", required_tier=Tier.STANDARD, status="active")
    store.facilities[2] = Facility(facility_id=2, name="Premium Gym", required_tier=Tier.PREMIUM)
    store.facilities[3] = Facility(facility_id=3, name="Elite Gym", required_tier=Tier.ELITE)
    store.facilities[4] = Facility(facility_id=4, name="Closed Gym", required_tier=Tier.STANDARD, status="inactive")
    service = PassService(repository=repository, clock=lambda: FIXED_NOW, validity_hours=24)
    return service, repository, store
