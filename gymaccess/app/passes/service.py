"""Quota-gated issuance of time-boxed facility passes."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Protocol

from ..billing.models import Subscription, Tier
from .exceptions import (
    FacilityNotFound,
    NoActiveSubscription,
    PassUnavailable,
    QuotaExhausted,
    TierTooLow,
)
from .models import AccessPass, Facility, IssuanceResult, PassStatus, PricingRule

logger = logging.getLogger("passes")

USAGE_NOT_RECORDED = "usage_not_recorded"
DEFAULT_VALIDITY_HOURS = 24


class PassRepository(Protocol):
    """Persistence operations required by the pass service."""

    def get_active_subscription(self, subscriber_id: str) -> Optional[Subscription]:
        ...

    def get_facility(self, facility_id: int) -> Optional[Facility]:
        ...

    def list_facilities(self) -> List[Facility]:
        ...

    def get_pricing_rule(self, tier: Tier) -> Optional[PricingRule]:
        ...

    def claim_visit(self, external_subscription_id: str) -> Optional[Subscription]:
        """Consume one visit if the subscription is active and under its limit."""

    def release_visit(self, external_subscription_id: str) -> Optional[Subscription]:
        """Give back a visit consumed by an issuance that did not complete."""

    def create_pass(self, access_pass: AccessPass) -> AccessPass:
        ...

    def list_passes(self, subscriber_id: str) -> List[AccessPass]:
        ...

    def get_pass(self, pass_code: str) -> Optional[AccessPass]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_pass_code() -> str:
    return f"pass_{uuid.uuid4().hex}"


@dataclass(slots=True)
class PassService:
    """Validates eligibility and issues passes against a subscription's quota."""

    repository: PassRepository
    clock: Optional[Callable[[], datetime]] = None
    validity_hours: int = DEFAULT_VALIDITY_HOURS
    code_factory: Callable[[], str] = field(default=generate_pass_code)

    def _now(self) -> datetime:
        return (self.clock or _utcnow)()

    def issue(self, subscriber_id: str, facility_id: int) -> IssuanceResult:
        """Issue a pass for ``facility_id`` or raise the first failing precondition.

        Preconditions are checked in order: active subscription, tier, quota,
        then facility availability. The visit is claimed with a single
        conditional update so concurrent requests cannot overdraw the quota.
        """

        subscription = self.repository.get_active_subscription(subscriber_id)
        if subscription is None:
            logger.info("Pass denied: no active subscription", extra={"subscriber_id": subscriber_id})
            raise NoActiveSubscription()

        facility = self.repository.get_facility(facility_id)
        if facility is not None and subscription.tier.rank < facility.required_tier.rank:
            logger.info(
                "Pass denied: tier too low",
                extra={"subscriber_id": subscriber_id, "facility_id": facility_id},
            )
            raise TierTooLow(
                detail={
                    "requiredTier": facility.required_tier.value,
                    "currentTier": subscription.tier.value,
                }
            )

        if subscription.visits_used >= subscription.monthly_limit:
            logger.info("Pass denied: quota exhausted", extra={"subscriber_id": subscriber_id})
            raise QuotaExhausted(detail=_quota_detail(subscription))

        if facility is None or not facility.is_operational:
            logger.info("Pass denied: facility unavailable", extra={"facility_id": facility_id})
            raise FacilityNotFound(detail={"gymId": facility_id})

        warnings: List[str] = []
        usage_recorded = False
        try:
            claimed = self.repository.claim_visit(subscription.external_subscription_id)
        except Exception:
            logger.exception(
                "Failed to record pass usage; issuing pass anyway",
                extra={"subscriber_id": subscriber_id, "subscription_id": subscription.external_subscription_id},
            )
            warnings.append(USAGE_NOT_RECORDED)
        else:
            if claimed is None:
                raise self._claim_rejected(subscriber_id, subscription)
            subscription = claimed
            usage_recorded = True

        issued_at = self._now()
        candidate = AccessPass(
            pass_code=self.code_factory(),
            subscriber_id=subscriber_id,
            facility_id=facility.facility_id,
            subscription_id=subscription.external_subscription_id,
            status=PassStatus.ACTIVE,
            issued_at=issued_at,
            valid_until=issued_at + timedelta(hours=self.validity_hours),
            tier_at_issuance=subscription.tier,
            cost_at_issuance=self._cost_for(subscription.tier),
        )
        try:
            stored = self.repository.create_pass(candidate)
        except Exception as exc:
            logger.exception("Failed to store pass", extra={"subscriber_id": subscriber_id, "facility_id": facility_id})
            if usage_recorded:
                self._release(subscription)
            raise PassUnavailable() from exc

        logger.info(
            "Pass issued",
            extra={
                "subscriber_id": subscriber_id,
                "facility_id": facility_id,
                "pass_code": stored.pass_code,
                "visits_used": subscription.visits_used,
            },
        )
        return IssuanceResult(access_pass=stored, subscription=subscription, warnings=warnings)

    def list_passes(self, subscriber_id: str, *, include_inactive: bool = False) -> List[AccessPass]:
        now = self._now()
        passes = [_with_effective_status(item, now) for item in self.repository.list_passes(subscriber_id)]
        if include_inactive:
            return passes
        return [item for item in passes if item.status == PassStatus.ACTIVE]

    def get_pass(self, subscriber_id: str, pass_code: str) -> Optional[AccessPass]:
        access_pass = self.repository.get_pass(pass_code)
        if access_pass is None or access_pass.subscriber_id != subscriber_id:
            return None
        return _with_effective_status(access_pass, self._now())

    def _claim_rejected(self, subscriber_id: str, subscription: Subscription) -> Exception:
        # The row changed between the read and the conditional update.
        current = self.repository.get_active_subscription(subscriber_id)
        if current is None:
            logger.info("Pass denied: subscription no longer active", extra={"subscriber_id": subscriber_id})
            return NoActiveSubscription()
        logger.info("Pass denied: quota exhausted by a concurrent issuance", extra={"subscriber_id": subscriber_id})
        return QuotaExhausted(detail=_quota_detail(current))

    def _release(self, subscription: Subscription) -> None:
        try:
            self.repository.release_visit(subscription.external_subscription_id)
        except Exception:
            logger.exception(
                "Failed to release claimed visit",
                extra={"subscription_id": subscription.external_subscription_id},
            )

    def _cost_for(self, tier: Tier) -> Decimal:
        try:
            rule = self.repository.get_pricing_rule(tier)
        except Exception as exc:
            logger.warning("Pricing lookup failed; using zero cost", extra={"tier": tier.value, "error": str(exc)})
            return Decimal("0.00")
        return rule.cost if rule is not None else Decimal("0.00")


def _with_effective_status(access_pass: AccessPass, moment: datetime) -> AccessPass:
    effective = access_pass.status_at(moment)
    if effective == access_pass.status:
        return access_pass
    return access_pass.model_copy(update={"status": effective})


def _quota_detail(subscription: Subscription) -> dict:
    return {"monthlyLimit": subscription.monthly_limit, "visitsUsed": subscription.visits_used}


__all__ = ["DEFAULT_VALIDITY_HOURS", "PassRepository", "PassService", "USAGE_NOT_RECORDED", "generate_pass_code"]
