"""Runtime configuration for the membership engine."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Mapping, Optional


@dataclass(frozen=True)
class MembershipConfig:
    """Settings shared by the billing and pass issuance components."""

    stripe_api_key: Optional[str]
    webhook_secret: Optional[str]
    webhook_tolerance_seconds: int
    default_price_id: Optional[str]
    app_base_url: str
    pass_validity_hours: int
    geocoder_api_key: Optional[str]
    welcome_facility_count: int
    deferred_failure_history: int

    def validate(self) -> List[str]:
        """Return human-readable configuration problems, empty when valid."""

        problems: List[str] = []
        if not self.webhook_secret:
            problems.append("STRIPE_WEBHOOK_SECRET is not set; webhook events will be rejected")
        if not self.stripe_api_key:
            problems.append("STRIPE_API_KEY is not set; checkout and product lookups will fail")
        if self.pass_validity_hours < 1:
            problems.append("PASS_VALIDITY_HOURS must be at least 1")
        if self.webhook_tolerance_seconds < 0:
            problems.append("STRIPE_WEBHOOK_TOLERANCE must be non-negative")
        return problems


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def load_membership_config(env: Optional[Mapping[str, str]] = None) -> MembershipConfig:
    """Load :class:`MembershipConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    api_key = _optional(env_mapping.get("STRIPE_API_KEY")) or _optional(env_mapping.get("STRIPE_SECRET_KEY"))
    app_base_url = env_mapping.get("APP_BASE_URL", "http://localhost:3000")

    return MembershipConfig(
        stripe_api_key=api_key,
        webhook_secret=_optional(env_mapping.get("STRIPE_WEBHOOK_SECRET")),
        webhook_tolerance_seconds=_to_int(env_mapping.get("STRIPE_WEBHOOK_TOLERANCE"), default=300),
        default_price_id=_optional(env_mapping.get("STRIPE_PRICE_ID")),
        app_base_url=app_base_url.rstrip("/"),
        pass_validity_hours=_to_int(env_mapping.get("PASS_VALIDITY_HOURS"), default=24),
        geocoder_api_key=_optional(env_mapping.get("GEOAPIFY_API_KEY")),
        welcome_facility_count=max(1, _to_int(env_mapping.get("WELCOME_FACILITY_COUNT"), default=3)),
        deferred_failure_history=max(1, _to_int(env_mapping.get("DEFERRED_FAILURE_HISTORY"), default=50)),
    )


@lru_cache(maxsize=1)
def get_membership_config() -> MembershipConfig:
    return load_membership_config()


__all__ = ["MembershipConfig", "get_membership_config", "load_membership_config"]
