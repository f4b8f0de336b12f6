"""Collaborator protocols and the service facade for billing webhooks."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from .addons import AddonLifecycleHandler
from .catalog import PlanMapping
from .dispatcher import AddonWebhookDispatcher, BillingWebhookDispatcher
from .grants import EntitlementGranter
from .invoices import InvoiceReconciliationHandler
from .models import (
    AddonRecord,
    AddonStatus,
    NotificationResult,
    PendingRegistration,
    ProviderCustomer,
    UserAccount,
    WebhookEvent,
    WebhookOutcome,
)
from .onboarding import OnboardingCompletion
from .recovery import PaymentRecoveryHandler
from .resolver import UserResolver
from .subscriptions import SubscriptionLifecycleHandler


class UserAccountRepository(Protocol):
    """Persistence operations on the user account row.

    Counter changes are expected to be single atomic increments so concurrent
    deliveries for the same user never lose an update.
    """

    def get_by_id(self, user_id: int) -> Optional[UserAccount]:
        ...

    def get_by_email(self, email: str) -> Optional[UserAccount]:
        ...

    def get_by_subscription_id(self, subscription_id: str) -> Optional[UserAccount]:
        ...

    def get_by_customer_id(self, customer_id: str) -> Optional[UserAccount]:
        ...

    def get_by_subscription_or_email(
        self, subscription_id: Optional[str], email: Optional[str]
    ) -> Optional[UserAccount]:
        ...

    def set_customer_id(self, user_id: int, customer_id: str) -> None:
        ...

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
        ...

    def activate_subscription(self, user_id: int, subscription_id: str) -> UserAccount:
        ...

    def schedule_cancellation(self, user_id: int, *, effective_date: Optional[datetime]) -> UserAccount:
        ...

    def downgrade_to_free(self, user_id: int) -> UserAccount:
        ...

    def reset_renewable_credits(
        self, user_id: int, *, credits: int, next_billing_date: Optional[datetime]
    ) -> UserAccount:
        ...

    def add_payasyougo_credits(
        self, user_id: int, amount: int, *, customer_id: Optional[str] = None
    ) -> UserAccount:
        ...

    def add_extra_slots(self, user_id: int, slots: int) -> UserAccount:
        ...

    def is_welcome_email_sent(self, user_id: int) -> bool:
        ...

    def mark_welcome_email_sent(self, user_id: int) -> None:
        ...


class AddonRepository(Protocol):
    """Append-only storage for add-on purchases."""

    def create_addon(self, addon: AddonRecord) -> AddonRecord:
        ...

    def get_by_subscription_id(self, subscription_id: str) -> Optional[AddonRecord]:
        ...

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
        ...


class PendingRegistrationStore(Protocol):
    """Sign-ups awaiting their first paid grant."""

    def get_pending_registration(self, user_id: int) -> Optional[PendingRegistration]:
        ...

    def complete_pending_registration(self, user_id: int, profile_url: Optional[str]) -> bool:
        ...


class BillingProviderClient(Protocol):
    """Read access to the billing provider's customer API."""

    def retrieve_customer(self, customer_id: str) -> ProviderCustomer:
        ...


class BillingNotifier(Protocol):
    """Outbound notifications triggered by entitlement grants."""

    def send_welcome_email(
        self, *, to_email: str, to_name: Optional[str], user_id: int
    ) -> NotificationResult:
        ...

    def send_admin_notification(
        self,
        *,
        user_email: str,
        user_name: Optional[str],
        package_type: str,
        billing_model: str,
        profile_url: Optional[str],
        user_id: int,
    ) -> NotificationResult:
        ...


class SideEffectRunner(Protocol):
    """Schedules work that must never affect the outcome of a grant."""

    def submit(self, label: str, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        ...


@dataclass
class BillingWebhookService:
    """Entry point tying the classifiers to their collaborators."""

    users: UserAccountRepository
    addons: AddonRepository
    registrations: PendingRegistrationStore
    provider: BillingProviderClient
    notifier: BillingNotifier
    plan_mapping: PlanMapping
    runner: SideEffectRunner
    addon_grace_period_days: int = 3
    _dispatcher: BillingWebhookDispatcher = field(init=False, repr=False)
    _addon_dispatcher: AddonWebhookDispatcher = field(init=False, repr=False)

    def __post_init__(self) -> None:
        resolver = UserResolver(users=self.users, provider=self.provider)
        onboarding = OnboardingCompletion(
            users=self.users,
            registrations=self.registrations,
            notifier=self.notifier,
            runner=self.runner,
        )
        granter = EntitlementGranter(
            users=self.users,
            addons=self.addons,
            notifier=self.notifier,
            runner=self.runner,
        )
        self._dispatcher = BillingWebhookDispatcher(
            subscriptions=SubscriptionLifecycleHandler(
                users=self.users,
                resolver=resolver,
                plan_mapping=self.plan_mapping,
                granter=granter,
                onboarding=onboarding,
            ),
            invoices=InvoiceReconciliationHandler(
                users=self.users,
                resolver=resolver,
                plan_mapping=self.plan_mapping,
                granter=granter,
                onboarding=onboarding,
            ),
            recovery=PaymentRecoveryHandler(
                resolver=resolver,
                plan_mapping=self.plan_mapping,
                granter=granter,
                onboarding=onboarding,
            ),
        )
        self._addon_dispatcher = AddonWebhookDispatcher(
            addons=AddonLifecycleHandler(
                users=self.users,
                addons=self.addons,
                resolver=resolver,
                grace_period_days=self.addon_grace_period_days,
            )
        )

    def handle_webhook(self, event: WebhookEvent) -> WebhookOutcome:
        return self._dispatcher.dispatch(event)

    def handle_addon_webhook(self, event: WebhookEvent) -> WebhookOutcome:
        return self._addon_dispatcher.dispatch(event)


__all__ = [
    "AddonRepository",
    "BillingNotifier",
    "BillingProviderClient",
    "BillingWebhookService",
    "PendingRegistrationStore",
    "SideEffectRunner",
    "UserAccountRepository",
]
