"""Billing domain package reconciling provider subscriptions into local state."""

from .events import (
    BillingEvent,
    BillingEventKind,
    CheckoutCompleted,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnhandledEvent,
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
    Tier,
    TierProfile,
    VerifiedEvent,
    status_from_provider,
)
from .service import (
    BillingEventLogger,
    BillingNotifier,
    BillingRepository,
    BillingService,
    PaymentProvider,
)
from .tiers import describe_plan, resolve_tier, resolve_tier_profile
from .verifier import (
    InvalidSignature,
    MalformedEvent,
    MissingSecret,
    MissingSignature,
    VerificationError,
    WebhookVerifier,
    verify_event,
)

__all__ = [
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingCustomer",
    "BillingEvent",
    "BillingEventKind",
    "BillingEventLogger",
    "BillingNotifier",
    "BillingRepository",
    "BillingService",
    "CheckoutCompleted",
    "CheckoutSession",
    "InvalidSignature",
    "MalformedEvent",
    "MissingSecret",
    "MissingSignature",
    "PaymentProvider",
    "PlanOffer",
    "ProviderProduct",
    "ProviderSubscription",
    "SubscriberIdentity",
    "Subscription",
    "SubscriptionDeleted",
    "SubscriptionStatus",
    "SubscriptionUpdated",
    "Tier",
    "TierProfile",
    "UnhandledEvent",
    "VerificationError",
    "VerifiedEvent",
    "WebhookVerifier",
    "describe_plan",
    "parse_billing_event",
    "resolve_tier",
    "resolve_tier_profile",
    "status_from_provider",
    "verify_event",
]
