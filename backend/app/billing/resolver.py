"""Resolve internal accounts from billing provider identifiers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .exceptions import BillingProviderError, UserNotFoundError
from .models import UserAccount

if TYPE_CHECKING:  # pragma: no cover
    from .service import BillingProviderClient, UserAccountRepository


logger = logging.getLogger("billing.resolver")


@dataclass
class UserResolver:
    """Multi-strategy user lookup with customer id backfill."""

    users: "UserAccountRepository"
    provider: "BillingProviderClient"

    def by_email(self, email: Optional[str]) -> UserAccount:
        user = self.users.get_by_email(email) if email else None
        if user is None:
            raise UserNotFoundError("User not found for email", email=email)
        return user

    def by_subscription_id(self, subscription_id: str) -> UserAccount:
        user = self.users.get_by_subscription_id(subscription_id)
        if user is None:
            raise UserNotFoundError(
                "User not found for subscription", subscription_id=subscription_id
            )
        return user

    def by_subscription_or_email(
        self, subscription_id: Optional[str], email: Optional[str]
    ) -> UserAccount:
        user = None
        if subscription_id or email:
            user = self.users.get_by_subscription_or_email(subscription_id, email)
        if user is None:
            raise UserNotFoundError(
                "User not found for subscription activation",
                subscription_id=subscription_id,
                email=email,
            )
        return user

    def by_customer_id(self, customer_id: Optional[str]) -> UserAccount:
        user = self.users.get_by_customer_id(customer_id) if customer_id else None
        if user is None:
            raise UserNotFoundError("User not found for customer", customer_id=customer_id)
        return user

    def for_one_time_purchase(self, customer_id: Optional[str]) -> UserAccount:
        """Resolve the buyer of a one-time invoice.

        Tries the stored customer id first, then asks the provider for the
        customer's billing email and backfills the customer id onto the matched
        account so the next purchase takes the fast path.
        """

        if not customer_id:
            raise UserNotFoundError("One-time purchase carries no customer id")

        user = self.users.get_by_customer_id(customer_id)
        if user is not None:
            logger.debug("Resolved user %s by customer id %s", user.id, customer_id)
            return user

        try:
            customer = self.provider.retrieve_customer(customer_id)
        except BillingProviderError as exc:
            logger.warning(
                "Failed to fetch customer %s from billing provider: %s",
                customer_id,
                exc,
                extra={"customer_id": customer_id},
            )
            raise UserNotFoundError(
                "Cannot find user for one-time purchase", customer_id=customer_id
            ) from exc

        user = self.users.get_by_email(customer.email) if customer.email else None
        if user is None:
            raise UserNotFoundError(
                "Cannot find user for one-time purchase",
                customer_id=customer_id,
                email=customer.email,
            )

        self.users.set_customer_id(user.id, customer_id)
        logger.info(
            "Backfilled customer id %s onto user %s",
            customer_id,
            user.id,
            extra={"customer_id": customer_id, "user_id": user.id},
        )
        return user.model_copy(update={"provider_customer_id": customer_id})


__all__ = ["UserResolver"]
