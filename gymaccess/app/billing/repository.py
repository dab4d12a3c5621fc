"""Persistence layer for billing domain objects."""
from __future__ import annotations

from contextlib import contextmanager
from decimal import Decimal
from typing import ContextManager, Iterator, List, Optional, Tuple

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from .models import (
    BillingCustomer,
    Subscription,
    SubscriptionStatus,
    Tier,
    VerifiedEvent,
)


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None) -> Iterator[Tuple[PgConnection, bool]]:
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


@contextmanager
def dict_cursor(conn: Optional[PgConnection] = None) -> Iterator[PgCursor]:
    """Yield a RealDictCursor inside :func:`managed_connection`."""

    with managed_connection(conn) as (connection, _managed):
        cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
        try:
            yield cursor
        finally:
            cursor.close()


def _row_to_customer(row: dict) -> BillingCustomer:
    return BillingCustomer(
        subscriber_id=row["subscriber_id"],
        customer_id=row["customer_id"],
        email=row.get("email"),
        created_at=row["created_at"],
    )


def row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        external_subscription_id=row["external_subscription_id"],
        external_customer_id=row.get("external_customer_id"),
        subscriber_id=row["subscriber_id"],
        tier=Tier(row["tier"]),
        status=SubscriptionStatus(row["status"]),
        monthly_limit=int(row["monthly_limit"]),
        visits_used=int(row["visits_used"]),
        guest_passes_limit=int(row["guest_passes_limit"]),
        guest_passes_used=int(row["guest_passes_used"]),
        price=Decimal(row["price"]) if row.get("price") is not None else Decimal("0.00"),
        current_period_start=row.get("current_period_start"),
        current_period_end=row.get("current_period_end"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresBillingRepository:
    """Concrete repository persisting billing models in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def _cursor(self) -> ContextManager[PgCursor]:
        return dict_cursor(self._conn)

    @contextmanager
    def subscriber_transaction(self, subscriber_id: str) -> Iterator["PostgresBillingRepository"]:
        """Hold a per-subscriber advisory lock for the duration of one transaction."""

        with managed_connection(self._conn) as (connection, _managed):
            with connection.cursor() as cursor:
                cursor.execute(
                    "SELECT pg_advisory_xact_lock(hashtext(%s))",
                    (f"subscriber:{subscriber_id}",),
                )
            yield PostgresBillingRepository(conn=connection)

    def record_webhook_event(self, event: VerifiedEvent) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_webhook_events (
                    event_id,
                    event_type,
                    payload,
                    received_at,
                    processed_at
                )
                VALUES (%s, %s, %s, %s, NOW())
                ON CONFLICT (event_id) DO NOTHING
                """,
                (
                    event.event_id,
                    event.event_type,
                    psycopg2.extras.Json(event.payload),
                    event.received_at,
                ),
            )
            return cursor.rowcount > 0

    def get_billing_customer(self, subscriber_id: str) -> Optional[BillingCustomer]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM billing_customers WHERE subscriber_id = %s LIMIT 1",
                (subscriber_id,),
            )
            row = cursor.fetchone()
            return _row_to_customer(row) if row else None

    def find_billing_customer(self, customer_id: str) -> Optional[BillingCustomer]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM billing_customers WHERE customer_id = %s LIMIT 1",
                (customer_id,),
            )
            row = cursor.fetchone()
            return _row_to_customer(row) if row else None

    def ensure_billing_customer(self, customer: BillingCustomer) -> BillingCustomer:
        """Insert the mapping unless the subscriber already has one; return the stored row."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_customers (subscriber_id, customer_id, email)
                VALUES (%s, %s, %s)
                ON CONFLICT DO NOTHING
                """,
                (customer.subscriber_id, customer.customer_id, customer.email),
            )
            cursor.execute(
                "SELECT * FROM billing_customers WHERE subscriber_id = %s LIMIT 1",
                (customer.subscriber_id,),
            )
            row = cursor.fetchone()
            return _row_to_customer(row) if row else customer

    def get_subscription(self, external_subscription_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM subscriptions WHERE external_subscription_id = %s LIMIT 1",
                (external_subscription_id,),
            )
            row = cursor.fetchone()
            return row_to_subscription(row) if row else None

    def get_active_subscription(self, subscriber_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM subscriptions
                WHERE subscriber_id = %s AND status = %s
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                (subscriber_id, SubscriptionStatus.ACTIVE.value),
            )
            row = cursor.fetchone()
            return row_to_subscription(row) if row else None

    def upsert_subscription(self, subscription: Subscription) -> Subscription:
        """Insert or refresh a subscription row.

        Canceled rows are never updated. Usage counters are only touched when
        the billing period moves forward, and period bounds never move back.
        """

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO subscriptions (
                    external_subscription_id,
                    external_customer_id,
                    subscriber_id,
                    tier,
                    status,
                    monthly_limit,
                    visits_used,
                    guest_passes_limit,
                    guest_passes_used,
                    price,
                    current_period_start,
                    current_period_end
                )
                VALUES (%(external_subscription_id)s, %(external_customer_id)s, %(subscriber_id)s,
                        %(tier)s, %(status)s, %(monthly_limit)s, 0, %(guest_passes_limit)s, 0,
                        %(price)s, %(current_period_start)s, %(current_period_end)s)
                ON CONFLICT (external_subscription_id) DO UPDATE SET
                    external_customer_id = COALESCE(EXCLUDED.external_customer_id, subscriptions.external_customer_id),
                    tier = EXCLUDED.tier,
                    status = EXCLUDED.status,
                    monthly_limit = EXCLUDED.monthly_limit,
                    guest_passes_limit = EXCLUDED.guest_passes_limit,
                    price = EXCLUDED.price,
                    visits_used = CASE
                        WHEN EXCLUDED.current_period_start > subscriptions.current_period_start THEN 0
                        ELSE subscriptions.visits_used
                    END,
                    guest_passes_used = CASE
                        WHEN EXCLUDED.current_period_start > subscriptions.current_period_start THEN 0
                        ELSE subscriptions.guest_passes_used
                    END,
                    current_period_start = GREATEST(subscriptions.current_period_start, EXCLUDED.current_period_start),
                    current_period_end = GREATEST(subscriptions.current_period_end, EXCLUDED.current_period_end),
                    updated_at = NOW()
                WHERE subscriptions.status <> 'canceled'
                RETURNING *
                """,
                {
                    "external_subscription_id": subscription.external_subscription_id,
                    "external_customer_id": subscription.external_customer_id,
                    "subscriber_id": subscription.subscriber_id,
                    "tier": subscription.tier.value,
                    "status": subscription.status.value,
                    "monthly_limit": subscription.monthly_limit,
                    "guest_passes_limit": subscription.guest_passes_limit,
                    "price": subscription.price,
                    "current_period_start": subscription.current_period_start,
                    "current_period_end": subscription.current_period_end,
                },
            )
            row = cursor.fetchone()
            if row is None:
                cursor.execute(
                    "SELECT * FROM subscriptions WHERE external_subscription_id = %s",
                    (subscription.external_subscription_id,),
                )
                row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return row_to_subscription(row)

    def cancel_other_active_subscriptions(
        self,
        subscriber_id: str,
        *,
        keep_external_id: str,
    ) -> List[Subscription]:
        with self._cursor() as cursor:
            cursor.execute("SAVEPOINT cancel_siblings")
            try:
                cursor.execute(
                    """
                    UPDATE subscriptions
                    SET status = %s, updated_at = NOW()
                    WHERE subscriber_id = %s
                      AND status = %s
                      AND external_subscription_id <> %s
                    RETURNING *
                    """,
                    (
                        SubscriptionStatus.CANCELED.value,
                        subscriber_id,
                        SubscriptionStatus.ACTIVE.value,
                        keep_external_id,
                    ),
                )
                rows = cursor.fetchall()
            except psycopg2.Error:
                cursor.execute("ROLLBACK TO SAVEPOINT cancel_siblings")
                raise
            cursor.execute("RELEASE SAVEPOINT cancel_siblings")
            return [row_to_subscription(row) for row in rows]

    def mark_subscription_canceled(self, external_subscription_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE subscriptions
                SET status = %s, updated_at = NOW()
                WHERE external_subscription_id = %s AND status <> %s
                RETURNING *
                """,
                (
                    SubscriptionStatus.CANCELED.value,
                    external_subscription_id,
                    SubscriptionStatus.CANCELED.value,
                ),
            )
            row = cursor.fetchone()
            if row is None:
                cursor.execute(
                    "SELECT * FROM subscriptions WHERE external_subscription_id = %s",
                    (external_subscription_id,),
                )
                row = cursor.fetchone()
            return row_to_subscription(row) if row else None


__all__ = ["PostgresBillingRepository", "dict_cursor", "managed_connection", "row_to_subscription"]
