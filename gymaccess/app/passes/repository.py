"""Persistence layer for facilities, pricing rules and issued passes."""
from __future__ import annotations

from decimal import Decimal
from typing import ContextManager, List, Optional

from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..billing.models import Subscription, SubscriptionStatus, Tier
from ..billing.repository import PostgresBillingRepository, dict_cursor, row_to_subscription
from .models import AccessPass, Facility, PassStatus, PricingRule


def _row_to_facility(row: dict) -> Facility:
    return Facility(
        facility_id=int(row["id"]),
        name=row.get("name") or "",
        address=row.get("address"),
        postcode=row.get("postcode"),
        latitude=float(row["latitude"]) if row.get("latitude") is not None else None,
        longitude=float(row["longitude"]) if row.get("longitude") is not None else None,
        required_tier=Tier.parse(row.get("required_tier")) or Tier.STANDARD,
        status=row.get("status"),
    )


def _row_to_pass(row: dict) -> AccessPass:
    return AccessPass(
        pass_code=row["pass_code"],
        subscriber_id=row["subscriber_id"],
        facility_id=int(row["gym_id"]),
        subscription_id=row.get("subscription_id"),
        status=PassStatus(row["status"]),
        issued_at=row["issued_at"],
        valid_until=row["valid_until"],
        tier_at_issuance=Tier(row["tier_at_issuance"]),
        cost_at_issuance=Decimal(row["cost_at_issuance"]) if row.get("cost_at_issuance") is not None else Decimal("0.00"),
        redeemed_at=row.get("used_at"),
    )


class PostgresPassRepository:
    """Concrete repository persisting passes in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def _cursor(self) -> ContextManager[PgCursor]:
        return dict_cursor(self._conn)

    def get_active_subscription(self, subscriber_id: str) -> Optional[Subscription]:
        return PostgresBillingRepository(conn=self._conn).get_active_subscription(subscriber_id)

    def get_facility(self, facility_id: int) -> Optional[Facility]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM gyms WHERE id = %s LIMIT 1", (facility_id,))
            row = cursor.fetchone()
            return _row_to_facility(row) if row else None

    def list_facilities(self) -> List[Facility]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM gyms ORDER BY id")
            return [_row_to_facility(row) for row in cursor.fetchall()]

    def get_pricing_rule(self, tier: Tier) -> Optional[PricingRule]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT tier, default_cost FROM pass_pricing WHERE tier = %s LIMIT 1",
                (tier.value,),
            )
            row = cursor.fetchone()
            if not row:
                return None
            return PricingRule(tier=tier, cost=Decimal(row["default_cost"] or 0))

    def claim_visit(self, external_subscription_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE subscriptions
                SET visits_used = visits_used + 1, updated_at = NOW()
                WHERE external_subscription_id = %s
                  AND status = %s
                  AND visits_used < monthly_limit
                RETURNING *
                """,
                (external_subscription_id, SubscriptionStatus.ACTIVE.value),
            )
            row = cursor.fetchone()
            return row_to_subscription(row) if row else None

    def release_visit(self, external_subscription_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE subscriptions
                SET visits_used = visits_used - 1, updated_at = NOW()
                WHERE external_subscription_id = %s AND visits_used > 0
                RETURNING *
                """,
                (external_subscription_id,),
            )
            row = cursor.fetchone()
            return row_to_subscription(row) if row else None

    def create_pass(self, access_pass: AccessPass) -> AccessPass:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO gym_passes (
                    pass_code,
                    subscriber_id,
                    gym_id,
                    subscription_id,
                    status,
                    issued_at,
                    valid_until,
                    tier_at_issuance,
                    cost_at_issuance
                )
                VALUES (%(pass_code)s, %(subscriber_id)s, %(gym_id)s, %(subscription_id)s, %(status)s,
                        %(issued_at)s, %(valid_until)s, %(tier_at_issuance)s, %(cost_at_issuance)s)
                RETURNING *
                """,
                {
                    "pass_code": access_pass.pass_code,
                    "subscriber_id": access_pass.subscriber_id,
                    "gym_id": access_pass.facility_id,
                    "subscription_id": access_pass.subscription_id,
                    "status": access_pass.status.value,
                    "issued_at": access_pass.issued_at,
                    "valid_until": access_pass.valid_until,
                    "tier_at_issuance": access_pass.tier_at_issuance.value,
                    "cost_at_issuance": access_pass.cost_at_issuance,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist pass")
            return _row_to_pass(row)

    def list_passes(self, subscriber_id: str) -> List[AccessPass]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM gym_passes
                WHERE subscriber_id = %s
                ORDER BY issued_at DESC
                """,
                (subscriber_id,),
            )
            return [_row_to_pass(row) for row in cursor.fetchall()]

    def get_pass(self, pass_code: str) -> Optional[AccessPass]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM gym_passes WHERE pass_code = %s LIMIT 1", (pass_code,))
            row = cursor.fetchone()
            return _row_to_pass(row) if row else None


__all__ = ["PostgresPassRepository"]
