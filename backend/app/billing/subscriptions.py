"""Subscription lifecycle webhook handling."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .catalog import PlanMapping
from .exceptions import UnknownPlanError
from .grants import EntitlementGranter
from .models import (
    BillingEventType,
    ProviderCustomer,
    ProviderSubscription,
    WebhookOutcome,
    WebhookOutcomeStatus,
)
from .onboarding import OnboardingCompletion
from .resolver import UserResolver

if TYPE_CHECKING:  # pragma: no cover
    from .service import UserAccountRepository


logger = logging.getLogger("billing.subscriptions")


def _email(customer: Optional[ProviderCustomer]) -> Optional[str]:
    return customer.email if customer else None


@dataclass
class SubscriptionLifecycleHandler:
    """Moves accounts through ``created -> active -> cancellation_scheduled -> cancelled``."""

    users: "UserAccountRepository"
    resolver: UserResolver
    plan_mapping: PlanMapping
    granter: EntitlementGranter
    onboarding: OnboardingCompletion

    def handle_created(
        self,
        subscription: ProviderSubscription,
        customer: Optional[ProviderCustomer],
    ) -> WebhookOutcome:
        user = self.resolver.by_email(_email(customer))

        price_id = subscription.plan_item_price_id()
        entry = self.plan_mapping.lookup(price_id)
        if entry is None:
            raise UnknownPlanError(price_id)

        if entry.is_addon:
            if self.granter.addon_already_recorded(subscription.id):
                logger.info("Add-on subscription %s already recorded, skipping", subscription.id)
                return WebhookOutcome(
                    event_type=BillingEventType.SUBSCRIPTION_CREATED.value,
                    status=WebhookOutcomeStatus.IGNORED,
                    user_id=user.id,
                    detail="already recorded",
                )
            logger.info("Processing add-on subscription %s for user %s", subscription.id, user.id)
            granted = self.granter.grant_addon_slots(user, entry, subscription_id=subscription.id)
        else:
            granted = self.granter.grant_subscription_plan(user, entry, subscription)

        self.onboarding.after_grant(granted)
        return WebhookOutcome(
            event_type=BillingEventType.SUBSCRIPTION_CREATED.value,
            status=WebhookOutcomeStatus.PROCESSED,
            user_id=user.id,
            detail=entry.price_id,
        )

    def handle_activated(
        self,
        subscription: ProviderSubscription,
        customer: Optional[ProviderCustomer],
    ) -> WebhookOutcome:
        user = self.resolver.by_subscription_or_email(subscription.id, _email(customer))
        self.users.activate_subscription(user.id, subscription.id)
        logger.info("Subscription %s activated for user %s", subscription.id, user.id)
        return WebhookOutcome(
            event_type=BillingEventType.SUBSCRIPTION_ACTIVATED.value,
            status=WebhookOutcomeStatus.PROCESSED,
            user_id=user.id,
        )

    def handle_cancellation_scheduled(
        self,
        subscription: ProviderSubscription,
        customer: Optional[ProviderCustomer],
    ) -> WebhookOutcome:
        user = self.resolver.by_email(_email(customer))
        # The downgrade itself is applied by an external scheduled job.
        self.users.schedule_cancellation(user.id, effective_date=subscription.current_term_end)
        logger.info(
            "Cancellation scheduled for user %s, effective %s",
            user.id,
            subscription.current_term_end.isoformat() if subscription.current_term_end else None,
        )
        return WebhookOutcome(
            event_type=BillingEventType.SUBSCRIPTION_CANCELLATION_SCHEDULED.value,
            status=WebhookOutcomeStatus.PROCESSED,
            user_id=user.id,
        )

    def handle_cancelled(
        self,
        subscription: ProviderSubscription,
        customer: Optional[ProviderCustomer],
    ) -> WebhookOutcome:
        user = self.resolver.by_email(_email(customer))
        self.users.downgrade_to_free(user.id)
        logger.info("User %s downgraded to free plan", user.id)
        return WebhookOutcome(
            event_type=BillingEventType.SUBSCRIPTION_CANCELLED.value,
            status=WebhookOutcomeStatus.PROCESSED,
            user_id=user.id,
        )


__all__ = ["SubscriptionLifecycleHandler"]
