"""Lifecycle handling for the dedicated add-on subscription endpoint."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Optional

from .exceptions import UserNotFoundError
from .models import (
    AddonEventType,
    AddonRecord,
    AddonStatus,
    BillingModel,
    ProviderCustomer,
    ProviderSubscription,
    UserAccount,
    WebhookOutcome,
    WebhookOutcomeStatus,
)
from .resolver import UserResolver

if TYPE_CHECKING:  # pragma: no cover
    from .service import AddonRepository, UserAccountRepository


logger = logging.getLogger("billing.addons")

CUSTOMER_ID_PREFIX = "user_"
DEFAULT_ADDON_UNIT_PRICE_CENTS = 399


def parse_customer_user_id(customer_id: Optional[str]) -> Optional[int]:
    """Extract the internal user id from a ``user_<id>`` customer id."""

    if not customer_id or not customer_id.startswith(CUSTOMER_ID_PREFIX):
        return None
    raw = customer_id[len(CUSTOMER_ID_PREFIX):]
    if not raw.isdigit():
        return None
    value = int(raw)
    return value or None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AddonLifecycleHandler:
    users: "UserAccountRepository"
    addons: "AddonRepository"
    resolver: UserResolver
    grace_period_days: int = 3
    clock: Callable[[], datetime] = _utcnow

    def _resolve(self, customer: Optional[ProviderCustomer]) -> UserAccount:
        customer_id = customer.id if customer else None
        user_id = parse_customer_user_id(customer_id)
        if user_id is not None:
            user = self.users.get_by_id(user_id)
            if user is not None:
                return user
        email = customer.email if customer else None
        if email:
            return self.resolver.by_email(email)
        raise UserNotFoundError("Invalid customer id for add-on", customer_id=customer_id)

    def handle_created(
        self,
        subscription: ProviderSubscription,
        customer: Optional[ProviderCustomer],
    ) -> WebhookOutcome:
        user = self._resolve(customer)

        if self.addons.get_by_subscription_id(subscription.id) is not None:
            logger.info("Add-on subscription %s already recorded, skipping", subscription.id)
            return self._outcome(
                AddonEventType.SUBSCRIPTION_CREATED,
                WebhookOutcomeStatus.IGNORED,
                user_id=user.id,
                detail="already recorded",
            )

        quantity = subscription.plan_quantity or 1
        unit_price = subscription.plan_unit_price or DEFAULT_ADDON_UNIT_PRICE_CENTS
        self.addons.create_addon(
            AddonRecord(
                user_id=user.id,
                slots=quantity,
                provider_subscription_id=subscription.id,
                provider_customer_id=customer.id if customer else None,
                price=unit_price / 100,
                billing_model=BillingModel.MONTHLY,
                status=AddonStatus.ACTIVE,
                provider_status=subscription.status,
                billing_period_start=subscription.current_term_start,
                billing_period_end=subscription.current_term_end,
                next_billing_date=subscription.next_billing_at,
            )
        )
        self.users.add_extra_slots(user.id, quantity)
        logger.info(
            "Add-on subscription %s created for user %s (%s slots)",
            subscription.id,
            user.id,
            quantity,
            extra={"user_id": user.id, "subscription_id": subscription.id},
        )
        return self._outcome(
            AddonEventType.SUBSCRIPTION_CREATED,
            WebhookOutcomeStatus.PROCESSED,
            user_id=user.id,
            detail=subscription.id,
        )

    def handle_renewed(self, subscription: ProviderSubscription) -> WebhookOutcome:
        return self._update(
            AddonEventType.SUBSCRIPTION_RENEWED,
            subscription,
            AddonStatus.ACTIVE,
            next_billing_date=subscription.next_billing_at,
        )

    def handle_cancelled(self, subscription: ProviderSubscription) -> WebhookOutcome:
        return self._update(
            AddonEventType.SUBSCRIPTION_CANCELLED,
            subscription,
            AddonStatus.CANCELLED,
            expires_at=self._grace_deadline(),
        )

    def handle_reactivated(self, subscription: ProviderSubscription) -> WebhookOutcome:
        return self._update(
            AddonEventType.SUBSCRIPTION_REACTIVATED,
            subscription,
            AddonStatus.ACTIVE,
            next_billing_date=subscription.next_billing_at,
            clear_expiry=True,
        )

    def handle_payment_failed(self, subscription: ProviderSubscription) -> WebhookOutcome:
        logger.warning("Add-on payment failed, grace period started for %s", subscription.id)
        return self._update(
            AddonEventType.PAYMENT_FAILED,
            subscription,
            AddonStatus.GRACE_PERIOD,
            expires_at=self._grace_deadline(),
        )

    def _grace_deadline(self) -> datetime:
        return self.clock() + timedelta(days=self.grace_period_days)

    def _update(
        self,
        event_type: AddonEventType,
        subscription: ProviderSubscription,
        status: AddonStatus,
        *,
        next_billing_date: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        clear_expiry: bool = False,
    ) -> WebhookOutcome:
        updated = self.addons.update_status(
            subscription.id,
            status,
            next_billing_date=next_billing_date,
            expires_at=expires_at,
            clear_expiry=clear_expiry,
            provider_status=subscription.status,
        )
        if updated is None:
            logger.warning("No add-on recorded for subscription %s (%s)", subscription.id, event_type.value)
            return self._outcome(event_type, WebhookOutcomeStatus.IGNORED, detail="unknown add-on subscription")
        logger.info("Add-on subscription %s is now %s", subscription.id, status.value)
        return self._outcome(
            event_type,
            WebhookOutcomeStatus.PROCESSED,
            user_id=updated.user_id,
            detail=status.value,
        )

    @staticmethod
    def _outcome(
        event_type: AddonEventType,
        status: WebhookOutcomeStatus,
        *,
        user_id: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> WebhookOutcome:
        return WebhookOutcome(event_type=event_type.value, status=status, user_id=user_id, detail=detail)


__all__ = ["AddonLifecycleHandler", "parse_customer_user_id"]
