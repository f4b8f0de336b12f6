"""Entitlement grant primitives shared by the webhook handlers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .catalog import PlanMappingEntry
from .models import AddonRecord, BillingModel, ProviderSubscription, UserAccount

if TYPE_CHECKING:  # pragma: no cover
    from .service import AddonRepository, BillingNotifier, SideEffectRunner, UserAccountRepository


logger = logging.getLogger("billing.grants")


@dataclass
class EntitlementGranter:
    """Applies plan, credit and slot grants to user accounts.

    Every counter change is an additive update except the plan grant, which
    overwrites the plan code and resets the renewable allotment.
    """

    users: "UserAccountRepository"
    addons: "AddonRepository"
    notifier: "BillingNotifier"
    runner: "SideEffectRunner"

    def grant_subscription_plan(
        self,
        user: UserAccount,
        entry: PlanMappingEntry,
        subscription: ProviderSubscription,
    ) -> UserAccount:
        updated = self.users.apply_subscription_grant(
            user.id,
            plan_code=entry.plan_code,
            renewable_credits=entry.renewable_credits,
            payasyougo_increment=entry.payasyougo_credits,
            subscription_id=subscription.id,
            started_at=subscription.started_at,
            next_billing_date=subscription.next_billing_at,
        )
        logger.info(
            "User %s upgraded to %s",
            user.id,
            entry.plan_code,
            extra={"user_id": user.id, "plan_code": entry.plan_code, "subscription_id": subscription.id},
        )
        self.notify_admin(updated, package_type=entry.label, billing_model=BillingModel.MONTHLY.value)
        return updated

    def addon_already_recorded(self, subscription_id: Optional[str]) -> bool:
        """Return ``True`` when an add-on row already references ``subscription_id``.

        Both webhook endpoints receive the add-on ``subscription_created``
        delivery, so whichever runs second must not grant the slots again.
        """

        if not subscription_id:
            return False
        return self.addons.get_by_subscription_id(subscription_id) is not None

    def grant_addon_slots(
        self,
        user: UserAccount,
        entry: PlanMappingEntry,
        *,
        subscription_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> UserAccount:
        # Slot increment and add-on insert are separate statements.
        updated = self.users.add_extra_slots(user.id, entry.extra_slots)
        self.addons.create_addon(
            AddonRecord(
                user_id=user.id,
                slots=entry.extra_slots,
                provider_subscription_id=subscription_id,
                provider_invoice_id=invoice_id,
                provider_customer_id=customer_id,
                price=entry.price,
                billing_model=entry.billing_model,
            )
        )
        logger.info(
            "Add-on processed: %s extra slots added to user %s",
            entry.extra_slots,
            user.id,
            extra={"user_id": user.id, "subscription_id": subscription_id, "invoice_id": invoice_id},
        )
        if invoice_id is not None:
            package_type = f"Context Addon PAYG ({entry.label})"
            billing_model = "one-time"
        else:
            package_type = f"Context Addon ({entry.label})"
            billing_model = entry.billing_model.value
        self.notify_admin(updated, package_type=package_type, billing_model=billing_model)
        return updated

    def grant_payasyougo_credits(
        self,
        user: UserAccount,
        entry: PlanMappingEntry,
        *,
        customer_id: Optional[str],
    ) -> UserAccount:
        # Never writes plan_code: a one-time purchase is not a plan change.
        updated = self.users.add_payasyougo_credits(
            user.id, entry.payasyougo_credits, customer_id=customer_id
        )
        logger.info(
            "Added %s PAYG credits to user %s (balance=%s)",
            entry.payasyougo_credits,
            user.id,
            updated.payasyougo_credits,
            extra={"user_id": user.id, "customer_id": customer_id},
        )
        self.notify_admin(updated, package_type=f"{entry.label} PAYG", billing_model="one-time")
        return updated

    def apply_one_time_grant(
        self,
        user: UserAccount,
        entry: PlanMappingEntry,
        *,
        invoice_id: str,
        customer_id: Optional[str],
    ) -> Optional[UserAccount]:
        """Apply the add-on or PAYG branch for an entry found on a one-time invoice."""

        if entry.is_addon:
            return self.grant_addon_slots(user, entry, invoice_id=invoice_id, customer_id=customer_id)
        if entry.billing_model == BillingModel.ONE_TIME:
            return self.grant_payasyougo_credits(user, entry, customer_id=customer_id)
        logger.warning(
            "Mapped price %s on one-time invoice %s is neither an add-on nor PAYG",
            entry.price_id,
            invoice_id,
        )
        return None

    def notify_admin(self, user: UserAccount, *, package_type: str, billing_model: str) -> None:
        self.runner.submit(
            "admin_notification",
            self._send_admin_notification,
            user,
            package_type,
            billing_model,
        )

    def _send_admin_notification(self, user: UserAccount, package_type: str, billing_model: str) -> None:
        result = self.notifier.send_admin_notification(
            user_email=user.email,
            user_name=user.display_name,
            package_type=package_type,
            billing_model=billing_model,
            profile_url=user.profile_url,
            user_id=user.id,
        )
        if result.ok:
            logger.info("Admin notification sent: %s", result.message_id)
        else:
            logger.error("Admin notification failed: %s", result.error)


__all__ = ["EntitlementGranter"]
