"""Post-grant onboarding: pending registrations and the welcome email."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .models import UserAccount

if TYPE_CHECKING:  # pragma: no cover
    from .service import (
        BillingNotifier,
        PendingRegistrationStore,
        SideEffectRunner,
        UserAccountRepository,
    )


logger = logging.getLogger("billing.onboarding")


@dataclass
class OnboardingCompletion:
    users: "UserAccountRepository"
    registrations: "PendingRegistrationStore"
    notifier: "BillingNotifier"
    runner: "SideEffectRunner"

    def after_grant(self, user: UserAccount) -> None:
        """Run the onboarding side effects that follow a successful grant."""

        self.complete_pending_registration(user)
        self.runner.submit("welcome_email", self.send_welcome_email_once, user)

    def complete_pending_registration(self, user: UserAccount) -> bool:
        try:
            pending = self.registrations.get_pending_registration(user.id)
            if pending is None:
                return False
            logger.info("Found pending registration for user %s, completing", user.id)
            completed = self.registrations.complete_pending_registration(user.id, pending.profile_url)
        except Exception:
            logger.exception(
                "Failed to complete pending registration for user %s",
                user.id,
                extra={"user_id": user.id},
            )
            return False
        if not completed:
            logger.error("Pending registration for user %s was not completed", user.id)
        return completed

    def send_welcome_email_once(self, user: UserAccount) -> bool:
        # Read-then-write; concurrent deliveries may both send.
        if self.users.is_welcome_email_sent(user.id):
            return False
        result = self.notifier.send_welcome_email(
            to_email=user.email,
            to_name=user.display_name,
            user_id=user.id,
        )
        if not result.ok:
            logger.warning("Welcome email not sent for user %s: %s", user.id, result.error)
            return False
        self.users.mark_welcome_email_sent(user.id)
        logger.info("Welcome email sent for user %s", user.id, extra={"user_id": user.id})
        return True


__all__ = ["OnboardingCompletion"]
