"""Persistence for entitlement records with compare-and-swap writes."""
from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterable, Optional, Protocol

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .errors import ConcurrentUpdateError, PersistenceError
from .models import (
    BillingCycle,
    EntitlementRecord,
    PaymentStatus,
    PendingOrder,
    PlanType,
    TimeWindow,
)

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


class EntitlementRepository(Protocol):
    """Data access layer for entitlement records."""

    def get(self, user_id: str) -> Optional[EntitlementRecord]:
        ...

    def create(self, record: EntitlementRecord) -> EntitlementRecord:
        """Insert the record unless one exists; return the stored record."""

    def save(self, record: EntitlementRecord, *, expected_version: int) -> EntitlementRecord:
        """Write ``record`` only if the stored version still equals ``expected_version``.

        Raises :class:`ConcurrentUpdateError` when another writer got there first.
        """


ENTITLEMENT_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entitlements (
    user_id TEXT PRIMARY KEY,
    plan_type TEXT NOT NULL DEFAULT 'free',
    trial_start_at TIMESTAMPTZ,
    trial_end_at TIMESTAMPTZ,
    trial_active BOOLEAN NOT NULL DEFAULT FALSE,
    has_paid_plan BOOLEAN NOT NULL DEFAULT FALSE,
    subscription_start_at TIMESTAMPTZ,
    subscription_end_at TIMESTAMPTZ,
    billing_cycle TEXT,
    payment_status TEXT,
    pending_order_id TEXT,
    pending_plan_type TEXT,
    pending_billing_cycle TEXT,
    pending_amount BIGINT,
    pending_currency TEXT,
    pending_created_at TIMESTAMPTZ,
    last_order_id TEXT,
    last_payment_id TEXT,
    last_payment_signature TEXT,
    last_payment_amount BIGINT,
    last_payment_currency TEXT,
    last_payment_at TIMESTAMPTZ,
    version INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
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


def _window(start_at, end_at) -> Optional[TimeWindow]:
    if start_at is None or end_at is None:
        return None
    return TimeWindow(start_at=start_at, end_at=end_at)


def _row_to_record(row: dict) -> EntitlementRecord:
    pending: Optional[PendingOrder] = None
    if row.get("pending_order_id"):
        pending = PendingOrder(
            order_id=row["pending_order_id"],
            plan_type=PlanType(row["pending_plan_type"]),
            billing_cycle=BillingCycle(row["pending_billing_cycle"]),
            amount=int(row["pending_amount"]),
            currency=row["pending_currency"],
            created_at=row["pending_created_at"],
        )

    return EntitlementRecord(
        user_id=row["user_id"],
        plan_type=PlanType(row["plan_type"]),
        trial_window=_window(row.get("trial_start_at"), row.get("trial_end_at")),
        trial_active=bool(row["trial_active"]),
        has_paid_plan=bool(row["has_paid_plan"]),
        subscription_window=_window(row.get("subscription_start_at"), row.get("subscription_end_at")),
        billing_cycle=BillingCycle(row["billing_cycle"]) if row.get("billing_cycle") else None,
        payment_status=PaymentStatus(row["payment_status"]) if row.get("payment_status") else None,
        pending_order=pending,
        last_order_id=row.get("last_order_id"),
        last_payment_id=row.get("last_payment_id"),
        last_payment_signature=row.get("last_payment_signature"),
        last_payment_amount=row.get("last_payment_amount"),
        last_payment_currency=row.get("last_payment_currency"),
        last_payment_at=row.get("last_payment_at"),
        version=int(row["version"]),
    )


def _record_params(record: EntitlementRecord) -> Dict[str, object]:
    trial = record.trial_window
    subscription = record.subscription_window
    pending = record.pending_order
    return {
        "user_id": record.user_id,
        "plan_type": record.plan_type.value,
        "trial_start_at": trial.start_at if trial else None,
        "trial_end_at": trial.end_at if trial else None,
        "trial_active": record.trial_active,
        "has_paid_plan": record.has_paid_plan,
        "subscription_start_at": subscription.start_at if subscription else None,
        "subscription_end_at": subscription.end_at if subscription else None,
        "billing_cycle": record.billing_cycle.value if record.billing_cycle else None,
        "payment_status": record.payment_status.value if record.payment_status else None,
        "pending_order_id": pending.order_id if pending else None,
        "pending_plan_type": pending.plan_type.value if pending else None,
        "pending_billing_cycle": pending.billing_cycle.value if pending else None,
        "pending_amount": pending.amount if pending else None,
        "pending_currency": pending.currency if pending else None,
        "pending_created_at": pending.created_at if pending else None,
        "last_order_id": record.last_order_id,
        "last_payment_id": record.last_payment_id,
        "last_payment_signature": record.last_payment_signature,
        "last_payment_amount": record.last_payment_amount,
        "last_payment_currency": record.last_payment_currency,
        "last_payment_at": record.last_payment_at,
        "version": record.version,
    }


class PostgresEntitlementRepository:
    """Concrete repository persisting entitlement records in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        try:
            with managed_connection(self._conn) as (connection, _managed):
                cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
                try:
                    yield cursor
                finally:
                    cursor.close()
        except psycopg2.Error as exc:
            raise PersistenceError() from exc

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute(ENTITLEMENT_SCHEMA_SQL)

    def get(self, user_id: str) -> Optional[EntitlementRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM entitlements
                WHERE user_id = %s
                LIMIT 1
                """,
                (user_id,),
            )
            row = cursor.fetchone()
            return _row_to_record(row) if row else None

    def create(self, record: EntitlementRecord) -> EntitlementRecord:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO entitlements (user_id, plan_type, version)
                VALUES (%s, %s, 0)
                ON CONFLICT (user_id) DO NOTHING
                """,
                (record.user_id, record.plan_type.value),
            )
            cursor.execute("SELECT * FROM entitlements WHERE user_id = %s", (record.user_id,))
            row = cursor.fetchone()
            if not row:
                raise PersistenceError("Failed to persist entitlement record")
            return _row_to_record(row)

    def save(self, record: EntitlementRecord, *, expected_version: int) -> EntitlementRecord:
        params = _record_params(record)
        params["expected_version"] = expected_version
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE entitlements SET
                    plan_type = %(plan_type)s,
                    trial_start_at = %(trial_start_at)s,
                    trial_end_at = %(trial_end_at)s,
                    trial_active = %(trial_active)s,
                    has_paid_plan = %(has_paid_plan)s,
                    subscription_start_at = %(subscription_start_at)s,
                    subscription_end_at = %(subscription_end_at)s,
                    billing_cycle = %(billing_cycle)s,
                    payment_status = %(payment_status)s,
                    pending_order_id = %(pending_order_id)s,
                    pending_plan_type = %(pending_plan_type)s,
                    pending_billing_cycle = %(pending_billing_cycle)s,
                    pending_amount = %(pending_amount)s,
                    pending_currency = %(pending_currency)s,
                    pending_created_at = %(pending_created_at)s,
                    last_order_id = %(last_order_id)s,
                    last_payment_id = %(last_payment_id)s,
                    last_payment_signature = %(last_payment_signature)s,
                    last_payment_amount = %(last_payment_amount)s,
                    last_payment_currency = %(last_payment_currency)s,
                    last_payment_at = %(last_payment_at)s,
                    version = version + 1,
                    updated_at = NOW()
                WHERE user_id = %(user_id)s AND version = %(expected_version)s
                RETURNING *
                """,
                params,
            )
            row = cursor.fetchone()
        if not row:
            raise ConcurrentUpdateError(record.user_id)
        return _row_to_record(row)


class InMemoryEntitlementRepository:
    """Thread-safe in-memory store suitable for tests and local development."""

    def __init__(self) -> None:
        self._records: Dict[str, EntitlementRecord] = {}
        self._lock = Lock()

    def get(self, user_id: str) -> Optional[EntitlementRecord]:
        with self._lock:
            return self._records.get(user_id)

    def create(self, record: EntitlementRecord) -> EntitlementRecord:
        with self._lock:
            existing = self._records.get(record.user_id)
            if existing is not None:
                return existing
            stored = record.model_copy(update={"version": 0})
            self._records[record.user_id] = stored
            return stored

    def save(self, record: EntitlementRecord, *, expected_version: int) -> EntitlementRecord:
        with self._lock:
            current = self._records.get(record.user_id)
            if current is None or current.version != expected_version:
                raise ConcurrentUpdateError(record.user_id)
            stored = record.model_copy(update={"version": expected_version + 1})
            self._records[record.user_id] = stored
            return stored


__all__ = [
    "ENTITLEMENT_SCHEMA_SQL",
    "EntitlementRepository",
    "InMemoryEntitlementRepository",
    "PostgresEntitlementRepository",
]
