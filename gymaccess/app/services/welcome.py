"""Welcome email sent when a subscriber's first plan becomes active."""
from __future__ import annotations

import logging
from html import escape
from typing import Callable, Dict, List, Optional, Sequence

from ...mail import EmailProvider, render_welcome_email
from ..billing import BillingNotifier, Subscription
from ..geo import Geocoder, RankedFacility, rank_facilities
from ..passes.models import Facility

logger = logging.getLogger("notifications")


def _first_name(name: Optional[str], email: str) -> str:
    if name and name.strip():
        return name.strip().split()[0]
    return email.split("@", 1)[0]


def _nearby_text(nearby: Sequence[RankedFacility]) -> str:
    if not nearby:
        return ""
    lines = ["Gyms near you:"]
    for item in nearby:
        lines.append(f"- {item.facility.name} ({item.distance_km:.1f} km)")
    return "\n".join(lines)


def _nearby_html(nearby: Sequence[RankedFacility]) -> str:
    if not nearby:
        return ""
    items = "".join(
        f"<li>{escape(item.facility.name)} ({item.distance_km:.1f} km)</li>" for item in nearby
    )
    return f"<p>Gyms near you:</p><ul>{items}</ul>"


def build_welcome_context(
    subscription: Subscription,
    *,
    email: str,
    name: Optional[str],
    nearby: Sequence[RankedFacility],
    app_base_url: str,
) -> Dict[str, object]:
    return {
        "first_name": _first_name(name, email),
        "tier_name": subscription.tier.value.title(),
        "monthly_limit": subscription.monthly_limit,
        "nearby_text": _nearby_text(nearby),
        "nearby_html": _nearby_html(nearby),
        "passes_url": f"{app_base_url.rstrip('/')}/gyms",
    }


class WelcomeEmailNotifier(BillingNotifier):
    """Renders the welcome template with the subscriber's nearest gyms."""

    def __init__(
        self,
        *,
        email_provider: EmailProvider,
        facilities: Callable[[], Sequence[Facility]],
        geocoder: Geocoder,
        app_base_url: str,
        facility_count: int = 3,
    ) -> None:
        self._email_provider = email_provider
        self._facilities = facilities
        self._geocoder = geocoder
        self._app_base_url = app_base_url
        self._facility_count = facility_count

    def notify_subscription_started(
        self,
        subscription: Subscription,
        *,
        email: Optional[str],
        name: Optional[str],
        postcode: Optional[str],
    ) -> None:
        if not email:
            logger.info(
                "Welcome email skipped: no recipient",
                extra={"subscriber_id": subscription.subscriber_id},
            )
            return

        nearby = self._nearby(postcode)
        context = build_welcome_context(
            subscription,
            email=email,
            name=name,
            nearby=nearby,
            app_base_url=self._app_base_url,
        )
        self._email_provider.send(render_welcome_email(email, context))
        logger.info(
            "Welcome email sent",
            extra={"subscriber_id": subscription.subscriber_id, "nearby_count": len(nearby)},
        )

    def _nearby(self, postcode: Optional[str]) -> List[RankedFacility]:
        if not postcode:
            return []
        try:
            origin = self._geocoder.geocode(postcode)
        except Exception as exc:
            logger.warning("Geocoding failed for welcome email", extra={"error": str(exc)})
            return []
        if origin is None:
            return []
        try:
            facilities = self._facilities()
        except Exception as exc:
            logger.warning("Facility lookup failed for welcome email", extra={"error": str(exc)})
            return []
        operational = [facility for facility in facilities if facility.is_operational]
        return rank_facilities(origin, operational, limit=self._facility_count)


__all__ = ["WelcomeEmailNotifier", "build_welcome_context"]
