"""PostgreSQL persistence for billing entitlements."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .models import (
    FREE_PLAN_CODE,
    AddonRecord,
    AddonStatus,
    BillingModel,
    PendingRegistration,
    SubscriptionStatus,
    UserAccount,
)

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


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


class _PostgresRepository:
    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()


_USER_COLUMNS = """
    id,
    email,
    display_name,
    profile_url,
    plan_code,
    renewable_credits,
    payasyougo_credits,
    extra_context_slots,
    subscription_status,
    chargebee_subscription_id,
    chargebee_customer_id,
    subscription_starts_at,
    next_billing_date,
    cancellation_scheduled_at,
    cancellation_effective_date,
    previous_plan_code,
    welcome_email_sent
"""


def _parse_subscription_status(value: Optional[str]) -> Optional[SubscriptionStatus]:
    # The column is free text; statuses this service does not manage read as unset.
    if not value:
        return None
    try:
        return SubscriptionStatus(value)
    except ValueError:
        return None


def _row_to_user(row: dict) -> UserAccount:
    return UserAccount(
        id=int(row["id"]),
        email=row["email"],
        display_name=row.get("display_name"),
        profile_url=row.get("profile_url"),
        plan_code=row.get("plan_code") or FREE_PLAN_CODE,
        renewable_credits=int(row.get("renewable_credits") or 0),
        payasyougo_credits=int(row.get("payasyougo_credits") or 0),
        extra_context_slots=int(row.get("extra_context_slots") or 0),
        subscription_status=_parse_subscription_status(row.get("subscription_status")),
        provider_subscription_id=row.get("chargebee_subscription_id"),
        provider_customer_id=row.get("chargebee_customer_id"),
        subscription_started_at=row.get("subscription_starts_at"),
        next_billing_date=row.get("next_billing_date"),
        cancellation_scheduled_at=row.get("cancellation_scheduled_at"),
        cancellation_effective_date=row.get("cancellation_effective_date"),
        previous_plan_code=row.get("previous_plan_code"),
        welcome_email_sent=bool(row.get("welcome_email_sent")),
    )


class PostgresUserAccountRepository(_PostgresRepository):
    """Billing fields of the ``users`` table.

    Credit and slot changes are single ``UPDATE`` statements so concurrent
    deliveries for one user never lose an increment.
    """

    def _fetch_one(self, where: str, params: tuple) -> Optional[UserAccount]:
        with self._cursor() as cursor:
            cursor.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE {where} LIMIT 1", params)
            row = cursor.fetchone()
            return _row_to_user(row) if row else None

    def _update(self, user_id: int, assignments: str, params: tuple) -> UserAccount:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE users
                SET {assignments},
                    updated_at = NOW()
                WHERE id = %s
                RETURNING {_USER_COLUMNS}
                """,
                (*params, user_id),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError(f"Failed to update user {user_id}")
            return _row_to_user(row)

    def get_by_id(self, user_id: int) -> Optional[UserAccount]:
        return self._fetch_one("id = %s", (user_id,))

    def get_by_email(self, email: str) -> Optional[UserAccount]:
        return self._fetch_one("LOWER(email) = LOWER(%s)", (email,))

    def get_by_subscription_id(self, subscription_id: str) -> Optional[UserAccount]:
        return self._fetch_one("chargebee_subscription_id = %s", (subscription_id,))

    def get_by_customer_id(self, customer_id: str) -> Optional[UserAccount]:
        return self._fetch_one("chargebee_customer_id = %s", (customer_id,))

    def get_by_subscription_or_email(
        self, subscription_id: Optional[str], email: Optional[str]
    ) -> Optional[UserAccount]:
        return self._fetch_one(
            "chargebee_subscription_id = %s OR LOWER(email) = LOWER(%s)",
            (subscription_id, email),
        )

    def set_customer_id(self, user_id: int, customer_id: str) -> None:
        self._update(user_id, "chargebee_customer_id = %s", (customer_id,))

    def apply_subscription_grant(
        self,
        user_id: int,
        *,
        plan_code: str,
        renewable_credits: int,
        payasyougo_increment: int,
        subscription_id: str,
        started_at: Optional[datetime],
        next_billing_date: Optional[datetime],
    ) -> UserAccount:
        return self._update(
            user_id,
            """
            plan_code = %s,
            renewable_credits = %s,
            payasyougo_credits = COALESCE(payasyougo_credits, 0) + %s,
            chargebee_subscription_id = %s,
            subscription_starts_at = %s,
            next_billing_date = %s,
            subscription_status = %s
            """,
            (
                plan_code,
                renewable_credits,
                payasyougo_increment,
                subscription_id,
                started_at,
                next_billing_date,
                SubscriptionStatus.ACTIVE.value,
            ),
        )

    def activate_subscription(self, user_id: int, subscription_id: str) -> UserAccount:
        return self._update(
            user_id,
            "subscription_status = %s, chargebee_subscription_id = %s",
            (SubscriptionStatus.ACTIVE.value, subscription_id),
        )

    def schedule_cancellation(self, user_id: int, *, effective_date: Optional[datetime]) -> UserAccount:
        return self._update(
            user_id,
            """
            cancellation_scheduled_at = NOW(),
            cancellation_effective_date = %s,
            previous_plan_code = plan_code
            """,
            (effective_date,),
        )

    def downgrade_to_free(self, user_id: int) -> UserAccount:
        return self._update(
            user_id,
            """
            plan_code = %s,
            renewable_credits = 0,
            subscription_status = %s,
            cancellation_scheduled_at = NULL,
            cancellation_effective_date = NULL
            """,
            (FREE_PLAN_CODE, SubscriptionStatus.CANCELLED.value),
        )

    def reset_renewable_credits(
        self, user_id: int, *, credits: int, next_billing_date: Optional[datetime]
    ) -> UserAccount:
        return self._update(
            user_id,
            "renewable_credits = %s, next_billing_date = COALESCE(%s, next_billing_date)",
            (credits, next_billing_date),
        )

    def add_payasyougo_credits(
        self, user_id: int, amount: int, *, customer_id: Optional[str] = None
    ) -> UserAccount:
        return self._update(
            user_id,
            """
            payasyougo_credits = COALESCE(payasyougo_credits, 0) + %s,
            chargebee_customer_id = COALESCE(%s, chargebee_customer_id)
            """,
            (amount, customer_id),
        )

    def add_extra_slots(self, user_id: int, slots: int) -> UserAccount:
        return self._update(
            user_id,
            "extra_context_slots = COALESCE(extra_context_slots, 0) + %s",
            (slots,),
        )

    def is_welcome_email_sent(self, user_id: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute("SELECT welcome_email_sent FROM users WHERE id = %s", (user_id,))
            row = cursor.fetchone()
            return bool(row and row.get("welcome_email_sent"))

    def mark_welcome_email_sent(self, user_id: int) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE users SET welcome_email_sent = TRUE, updated_at = NOW() WHERE id = %s",
                (user_id,),
            )


def _row_to_addon(row: dict) -> AddonRecord:
    return AddonRecord(
        id=row.get("id"),
        user_id=int(row["user_id"]),
        slots=int(row.get("addon_quantity") or 1),
        provider_subscription_id=row.get("chargebee_subscription_id"),
        provider_invoice_id=row.get("chargebee_invoice_id"),
        provider_customer_id=row.get("chargebee_customer_id"),
        price=float(row["monthly_price"]) if row.get("monthly_price") is not None else None,
        billing_model=BillingModel(row.get("billing_model") or BillingModel.MONTHLY.value),
        status=AddonStatus(row["status"]),
        provider_status=row.get("chargebee_status"),
        billing_period_start=row.get("billing_period_start"),
        billing_period_end=row.get("billing_period_end"),
        next_billing_date=row.get("next_billing_date"),
        expires_at=row.get("expires_at"),
        created_at=row["created_at"],
    )


class PostgresAddonRepository(_PostgresRepository):
    """Rows of ``user_context_addons``. Rows are never deleted."""

    def create_addon(self, addon: AddonRecord) -> AddonRecord:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO user_context_addons (
                    user_id,
                    chargebee_subscription_id,
                    chargebee_invoice_id,
                    chargebee_customer_id,
                    addon_quantity,
                    monthly_price,
                    billing_model,
                    billing_period_start,
                    billing_period_end,
                    next_billing_date,
                    status,
                    chargebee_status
                )
                VALUES (%(user_id)s, %(subscription_id)s, %(invoice_id)s, %(customer_id)s,
                        %(slots)s, %(price)s, %(billing_model)s, %(billing_period_start)s,
                        %(billing_period_end)s, %(next_billing_date)s, %(status)s,
                        %(provider_status)s)
                RETURNING *
                """,
                {
                    "user_id": addon.user_id,
                    "subscription_id": addon.provider_subscription_id,
                    "invoice_id": addon.provider_invoice_id,
                    "customer_id": addon.provider_customer_id,
                    "slots": addon.slots,
                    "price": addon.price,
                    "billing_model": addon.billing_model.value,
                    "billing_period_start": addon.billing_period_start,
                    "billing_period_end": addon.billing_period_end,
                    "next_billing_date": addon.next_billing_date,
                    "status": addon.status.value,
                    "provider_status": addon.provider_status,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist context add-on")
            return _row_to_addon(row)

    def get_by_subscription_id(self, subscription_id: str) -> Optional[AddonRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM user_context_addons
                WHERE chargebee_subscription_id = %s
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (subscription_id,),
            )
            row = cursor.fetchone()
            return _row_to_addon(row) if row else None

    def update_status(
        self,
        subscription_id: str,
        status: AddonStatus,
        *,
        next_billing_date: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        clear_expiry: bool = False,
        provider_status: Optional[str] = None,
    ) -> Optional[AddonRecord]:
        assignments = ["status = %s"]
        params: list = [status.value]
        if next_billing_date is not None:
            assignments.append("next_billing_date = %s")
            params.append(next_billing_date)
        if clear_expiry:
            assignments.append("expires_at = NULL")
        elif expires_at is not None:
            assignments.append("expires_at = %s")
            params.append(expires_at)
        if provider_status is not None:
            assignments.append("chargebee_status = %s")
            params.append(provider_status)

        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE user_context_addons
                SET {", ".join(assignments)},
                    updated_at = NOW()
                WHERE chargebee_subscription_id = %s
                RETURNING *
                """,
                (*params, subscription_id),
            )
            row = cursor.fetchone()
            return _row_to_addon(row) if row else None


class PostgresPendingRegistrationStore(_PostgresRepository):
    """Sign-ups captured before payment, stored in ``pending_registrations``."""

    def get_pending_registration(self, user_id: int) -> Optional[PendingRegistration]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT user_id, profile_url, created_at
                FROM pending_registrations
                WHERE user_id = %s AND completed_at IS NULL
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (user_id,),
            )
            row = cursor.fetchone()
            if not row:
                return None
            return PendingRegistration(
                user_id=int(row["user_id"]),
                profile_url=row.get("profile_url"),
                created_at=row["created_at"],
            )

    def complete_pending_registration(self, user_id: int, profile_url: Optional[str]) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE pending_registrations
                SET completed_at = NOW()
                WHERE user_id = %s AND completed_at IS NULL
                """,
                (user_id,),
            )
            if cursor.rowcount <= 0:
                return False
            cursor.execute(
                """
                UPDATE users
                SET profile_url = COALESCE(%s, profile_url),
                    registration_completed = TRUE,
                    updated_at = NOW()
                WHERE id = %s
                """,
                (profile_url, user_id),
            )
            return True


__all__ = [
    "PostgresAddonRepository",
    "PostgresPendingRegistrationStore",
    "PostgresUserAccountRepository",
    "managed_connection",
]
