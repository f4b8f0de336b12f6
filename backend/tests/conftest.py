"""Shared in-memory collaborators for the billing webhook tests."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from backend.app.billing import (
    AddonRecord,
    AddonStatus,
    BillingModel,
    BillingProviderError,
    BillingWebhookService,
    InlineTaskRunner,
    NotificationResult,
    PendingRegistration,
    PlanMapping,
    PlanMappingEntry,
    UserAccount,
)
from backend.app.billing.models import FREE_PLAN_CODE, ProviderCustomer, SubscriptionStatus


class InMemoryUserAccountRepository:
    def __init__(self) -> None:
        self.users: Dict[int, UserAccount] = {}
        self.lookups: List[Tuple[str, Any]] = []

    def add(self, user: UserAccount) -> UserAccount:
        self.users[user.id] = user
        return user

    def _update(self, user_id: int, **changes: Any) -> UserAccount:
        updated = self.users[user_id].model_copy(update=changes)
        self.users[user_id] = updated
        return updated

    def get_by_id(self, user_id: int) -> Optional[UserAccount]:
        self.lookups.append(("id", user_id))
        return self.users.get(user_id)

    def get_by_email(self, email: str) -> Optional[UserAccount]:
        self.lookups.append(("email", email))
        return next((u for u in self.users.values() if u.email.lower() == email.lower()), None)

    def get_by_subscription_id(self, subscription_id: str) -> Optional[UserAccount]:
        self.lookups.append(("subscription", subscription_id))
        return next(
            (u for u in self.users.values() if u.provider_subscription_id == subscription_id),
            None,
        )

    def get_by_customer_id(self, customer_id: str) -> Optional[UserAccount]:
        self.lookups.append(("customer", customer_id))
        return next((u for u in self.users.values() if u.provider_customer_id == customer_id), None)

    def get_by_subscription_or_email(
        self, subscription_id: Optional[str], email: Optional[str]
    ) -> Optional[UserAccount]:
        for user in self.users.values():
            if subscription_id and user.provider_subscription_id == subscription_id:
                return user
            if email and user.email.lower() == email.lower():
                return user
        return None

    def set_customer_id(self, user_id: int, customer_id: str) -> None:
        self._update(user_id, provider_customer_id=customer_id)

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
        current = self.users[user_id]
        return self._update(
            user_id,
            plan_code=plan_code,
            renewable_credits=renewable_credits,
            payasyougo_credits=current.payasyougo_credits + payasyougo_increment,
            provider_subscription_id=subscription_id,
            subscription_started_at=started_at,
            next_billing_date=next_billing_date,
            subscription_status=SubscriptionStatus.ACTIVE,
        )

    def activate_subscription(self, user_id: int, subscription_id: str) -> UserAccount:
        return self._update(
            user_id,
            subscription_status=SubscriptionStatus.ACTIVE,
            provider_subscription_id=subscription_id,
        )

    def schedule_cancellation(self, user_id: int, *, effective_date: Optional[datetime]) -> UserAccount:
        current = self.users[user_id]
        return self._update(
            user_id,
            cancellation_scheduled_at=datetime.now(timezone.utc),
            cancellation_effective_date=effective_date,
            previous_plan_code=current.plan_code,
        )

    def downgrade_to_free(self, user_id: int) -> UserAccount:
        return self._update(
            user_id,
            plan_code=FREE_PLAN_CODE,
            renewable_credits=0,
            subscription_status=SubscriptionStatus.CANCELLED,
            cancellation_scheduled_at=None,
            cancellation_effective_date=None,
        )

    def reset_renewable_credits(
        self, user_id: int, *, credits: int, next_billing_date: Optional[datetime]
    ) -> UserAccount:
        current = self.users[user_id]
        return self._update(
            user_id,
            renewable_credits=credits,
            next_billing_date=next_billing_date or current.next_billing_date,
        )

    def add_payasyougo_credits(
        self, user_id: int, amount: int, *, customer_id: Optional[str] = None
    ) -> UserAccount:
        current = self.users[user_id]
        return self._update(
            user_id,
            payasyougo_credits=current.payasyougo_credits + amount,
            provider_customer_id=customer_id or current.provider_customer_id,
        )

    def add_extra_slots(self, user_id: int, slots: int) -> UserAccount:
        current = self.users[user_id]
        return self._update(user_id, extra_context_slots=current.extra_context_slots + slots)

    def is_welcome_email_sent(self, user_id: int) -> bool:
        return self.users[user_id].welcome_email_sent

    def mark_welcome_email_sent(self, user_id: int) -> None:
        self._update(user_id, welcome_email_sent=True)


class InMemoryAddonRepository:
    def __init__(self) -> None:
        self.addons: List[AddonRecord] = []

    def create_addon(self, addon: AddonRecord) -> AddonRecord:
        stored = addon.model_copy(update={"id": len(self.addons) + 1})
        self.addons.append(stored)
        return stored

    def get_by_subscription_id(self, subscription_id: str) -> Optional[AddonRecord]:
        for addon in reversed(self.addons):
            if addon.provider_subscription_id == subscription_id:
                return addon
        return None

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
        updated: Optional[AddonRecord] = None
        for index, addon in enumerate(self.addons):
            if addon.provider_subscription_id != subscription_id:
                continue
            changes: Dict[str, Any] = {"status": status}
            if next_billing_date is not None:
                changes["next_billing_date"] = next_billing_date
            if clear_expiry:
                changes["expires_at"] = None
            elif expires_at is not None:
                changes["expires_at"] = expires_at
            if provider_status is not None:
                changes["provider_status"] = provider_status
            updated = addon.model_copy(update=changes)
            self.addons[index] = updated
        return updated


class InMemoryPendingRegistrationStore:
    def __init__(self) -> None:
        self.pending: Dict[int, PendingRegistration] = {}
        self.completed: List[Tuple[int, Optional[str]]] = []

    def get_pending_registration(self, user_id: int) -> Optional[PendingRegistration]:
        return self.pending.get(user_id)

    def complete_pending_registration(self, user_id: int, profile_url: Optional[str]) -> bool:
        if self.pending.pop(user_id, None) is None:
            return False
        self.completed.append((user_id, profile_url))
        return True


class FakeProviderClient:
    def __init__(self) -> None:
        self.customers: Dict[str, ProviderCustomer] = {}
        self.calls: List[str] = []
        self.error: Optional[Exception] = None

    def retrieve_customer(self, customer_id: str) -> ProviderCustomer:
        self.calls.append(customer_id)
        if self.error is not None:
            raise self.error
        customer = self.customers.get(customer_id)
        if customer is None:
            raise BillingProviderError(f"customer {customer_id} not found")
        return customer


class FakeNotifier:
    def __init__(self) -> None:
        self.welcome: List[Dict[str, Any]] = []
        self.admin: List[Dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None

    def send_welcome_email(self, *, to_email: str, to_name: Optional[str], user_id: int) -> NotificationResult:
        if self.fail_with is not None:
            raise self.fail_with
        self.welcome.append({"to_email": to_email, "to_name": to_name, "user_id": user_id})
        return NotificationResult(ok=True, message_id=f"welcome-{len(self.welcome)}")

    def send_admin_notification(self, **kwargs: Any) -> NotificationResult:
        if self.fail_with is not None:
            raise self.fail_with
        self.admin.append(kwargs)
        return NotificationResult(ok=True, message_id=f"admin-{len(self.admin)}")


class DeferredTaskRunner:
    """Collects side effects so tests can run them after the grant."""

    def __init__(self) -> None:
        self.tasks: List[Tuple[str, Callable[..., Any], tuple, dict]] = []

    def submit(self, label: str, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self.tasks.append((label, task, args, kwargs))

    @property
    def labels(self) -> List[str]:
        return [label for label, *_ in self.tasks]


GOLD_MONTHLY = PlanMappingEntry(
    price_id="Gold-Monthly",
    plan_code="gold",
    billing_model=BillingModel.MONTHLY,
    renewable_credits=100,
    display_name="Gold Monthly",
)
SILVER_PAYG = PlanMappingEntry(
    price_id="Silver-PAYG-Addon",
    plan_code="silver-payasyougo",
    billing_model=BillingModel.ONE_TIME,
    payasyougo_credits=30,
    display_name="Silver",
)
CONTEXT_ADDON = PlanMappingEntry(
    price_id="Context-Addon-Monthly-USD-Monthly",
    plan_code="context-addon",
    billing_model=BillingModel.MONTHLY,
    is_addon=True,
    extra_slots=1,
    price=3.99,
    display_name="Extra Context Slot",
)


def _make_user(user_id: int = 1, email: str = "a@x.com", **overrides: Any) -> UserAccount:
    data: Dict[str, Any] = {"id": user_id, "email": email, "display_name": "Ada"}
    data.update(overrides)
    return UserAccount(**data)


@pytest.fixture
def plan_mapping() -> PlanMapping:
    return PlanMapping([GOLD_MONTHLY, SILVER_PAYG, CONTEXT_ADDON])


@pytest.fixture
def users() -> InMemoryUserAccountRepository:
    return InMemoryUserAccountRepository()


@pytest.fixture
def addons() -> InMemoryAddonRepository:
    return InMemoryAddonRepository()


@pytest.fixture
def registrations() -> InMemoryPendingRegistrationStore:
    return InMemoryPendingRegistrationStore()


@pytest.fixture
def provider() -> FakeProviderClient:
    return FakeProviderClient()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def webhook_service(users, addons, registrations, provider, notifier, plan_mapping) -> BillingWebhookService:
    return BillingWebhookService(
        users=users,
        addons=addons,
        registrations=registrations,
        provider=provider,
        notifier=notifier,
        plan_mapping=plan_mapping,
        runner=InlineTaskRunner(),
    )


@pytest.fixture
def add_user(users) -> Callable[..., UserAccount]:
    """Store an account in the in-memory repository and return it."""

    def _add(user_id: int = 1, email: str = "a@x.com", **overrides: Any) -> UserAccount:
        return users.add(_make_user(user_id, email, **overrides))

    return _add


@pytest.fixture
def deferred_runner() -> DeferredTaskRunner:
    return DeferredTaskRunner()
