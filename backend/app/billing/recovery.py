"""Payment confirmation recovery for failed one-time grants."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .catalog import PlanMapping
from .grants import EntitlementGranter
from .invoices import find_mapped_line_item
from .models import (
    BillingEventType,
    ProviderInvoice,
    ProviderPayment,
    WebhookOutcome,
    WebhookOutcomeStatus,
)
from .onboarding import OnboardingCompletion
from .resolver import UserResolver

logger = logging.getLogger("billing.recovery")


@dataclass
class PaymentRecoveryHandler:
    """Re-applies a one-time grant when the primary invoice path appears to have failed.

    A zero PAYG balance after a confirmed non-recurring payment is taken as the
    failure signal. No check is made for an earlier grant, so an account that is
    legitimately at zero will be granted again. A recovery grant runs the same
    onboarding completion as the invoice path.
    """

    resolver: UserResolver
    plan_mapping: PlanMapping
    granter: EntitlementGranter
    onboarding: OnboardingCompletion

    def handle_payment_succeeded(
        self,
        payment: Optional[ProviderPayment],
        invoice: Optional[ProviderInvoice],
    ) -> WebhookOutcome:
        customer_id = payment.customer_id if payment else None
        logger.info(
            "Processing payment confirmation customer=%s invoice=%s",
            customer_id,
            invoice.id if invoice else None,
        )
        if not customer_id or invoice is None or not invoice.is_one_time:
            return self._outcome(WebhookOutcomeStatus.IGNORED, detail="not a one-time payment")

        user = self.resolver.by_customer_id(customer_id)
        if user.payasyougo_credits != 0:
            return self._outcome(WebhookOutcomeStatus.IGNORED, user_id=user.id, detail="credits present")

        logger.warning(
            "PAYG credits are 0 for user %s after payment, attempting recovery",
            user.id,
            extra={"user_id": user.id, "customer_id": customer_id, "invoice_id": invoice.id},
        )
        match = find_mapped_line_item(invoice, self.plan_mapping)
        if match is None:
            return self._outcome(WebhookOutcomeStatus.IGNORED, user_id=user.id, detail="no matching line item")

        _, entry = match
        granted = self.granter.apply_one_time_grant(
            user, entry, invoice_id=invoice.id, customer_id=customer_id
        )
        if granted is None:
            return self._outcome(WebhookOutcomeStatus.IGNORED, user_id=user.id, detail=entry.price_id)

        self.onboarding.after_grant(granted)
        logger.info("Recovery successful for user %s via payment confirmation", user.id)
        return self._outcome(WebhookOutcomeStatus.PROCESSED, user_id=user.id, detail=entry.price_id)

    @staticmethod
    def _outcome(
        status: WebhookOutcomeStatus,
        *,
        user_id: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> WebhookOutcome:
        return WebhookOutcome(
            event_type=BillingEventType.PAYMENT_SUCCEEDED.value,
            status=status,
            user_id=user_id,
            detail=detail,
        )


__all__ = ["PaymentRecoveryHandler"]
