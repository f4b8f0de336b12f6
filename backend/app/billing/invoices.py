"""Invoice reconciliation: subscription renewals and one-time purchases."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Tuple

from .catalog import PlanMapping, PlanMappingEntry
from .grants import EntitlementGranter
from .models import (
    BillingEventType,
    BillingModel,
    InvoiceLineItem,
    LineItemEntityType,
    ProviderInvoice,
    ProviderSubscription,
    WebhookOutcome,
    WebhookOutcomeStatus,
)
from .onboarding import OnboardingCompletion
from .resolver import UserResolver

if TYPE_CHECKING:  # pragma: no cover
    from .service import UserAccountRepository


logger = logging.getLogger("billing.invoices")

_MAPPABLE_ENTITY_TYPES = frozenset(member.value for member in LineItemEntityType)


def find_mapped_line_item(
    invoice: ProviderInvoice, plan_mapping: PlanMapping
) -> Optional[Tuple[InvoiceLineItem, PlanMappingEntry]]:
    """Return the first line item priced by a known mapping.

    Plan-priced items and ad-hoc charges carry different entity type tags, so
    both are accepted.
    """

    for item in invoice.line_items:
        if item.entity_type not in _MAPPABLE_ENTITY_TYPES:
            continue
        entry = plan_mapping.lookup(item.entity_id)
        if entry is not None:
            return item, entry
    return None


def describe_line_items(invoice: ProviderInvoice) -> str:
    return json.dumps(
        [
            {
                "entity_type": item.entity_type,
                "entity_id": item.entity_id,
                "description": item.description,
            }
            for item in invoice.line_items
        ],
        indent=2,
    )


@dataclass
class InvoiceReconciliationHandler:
    users: "UserAccountRepository"
    resolver: UserResolver
    plan_mapping: PlanMapping
    granter: EntitlementGranter
    onboarding: OnboardingCompletion

    def handle_invoice_generated(
        self,
        invoice: ProviderInvoice,
        subscription: Optional[ProviderSubscription],
    ) -> WebhookOutcome:
        logger.info(
            "Processing invoice %s status=%s customer=%s recurring=%s",
            invoice.id,
            invoice.status,
            invoice.customer_id,
            invoice.recurring,
            extra={"invoice_id": invoice.id, "customer_id": invoice.customer_id},
        )
        if not invoice.is_paid:
            return self._outcome(WebhookOutcomeStatus.IGNORED, detail="invoice not paid")

        subscription_id = subscription.id if subscription is not None else invoice.subscription_id
        if not subscription_id or invoice.is_one_time:
            return self._handle_one_time_purchase(invoice)
        if subscription is None:
            # Linked by id only: the plan is read from the invoice line items.
            match = find_mapped_line_item(invoice, self.plan_mapping)
            price_id = match[1].price_id if match else None
            return self._handle_renewal(invoice, subscription_id, price_id, next_billing_date=None)
        return self._handle_renewal(
            invoice,
            subscription.id,
            subscription.plan_item_price_id(),
            next_billing_date=subscription.next_billing_at,
        )

    def _handle_renewal(
        self,
        invoice: ProviderInvoice,
        subscription_id: str,
        price_id: Optional[str],
        *,
        next_billing_date: Optional[datetime],
    ) -> WebhookOutcome:
        # Renewals resolve strictly by the stored subscription id.
        user = self.resolver.by_subscription_id(subscription_id)

        entry = self.plan_mapping.lookup(price_id)
        if entry is None:
            logger.warning(
                "No plan mapping for renewal of subscription %s (price=%s)",
                subscription_id,
                price_id,
            )
            return self._outcome(WebhookOutcomeStatus.IGNORED, user_id=user.id, detail="no plan mapping")

        if entry.is_addon:
            logger.info("Add-on renewal for user %s: slots are persistent, nothing to grant", user.id)
            return self._outcome(WebhookOutcomeStatus.IGNORED, user_id=user.id, detail="addon renewal")

        if entry.billing_model != BillingModel.MONTHLY:
            return self._outcome(WebhookOutcomeStatus.IGNORED, user_id=user.id, detail="not a monthly plan")

        self.users.reset_renewable_credits(
            user.id,
            credits=entry.renewable_credits,
            next_billing_date=next_billing_date,
        )
        logger.info(
            "Renewable credits reset to %s for user %s",
            entry.renewable_credits,
            user.id,
            extra={"user_id": user.id, "subscription_id": subscription_id, "invoice_id": invoice.id},
        )
        return self._outcome(WebhookOutcomeStatus.PROCESSED, user_id=user.id, detail=entry.price_id)

    def _handle_one_time_purchase(self, invoice: ProviderInvoice) -> WebhookOutcome:
        user = self.resolver.for_one_time_purchase(invoice.customer_id)
        logger.info("Processing one-time purchase for user %s (%s)", user.id, user.email)

        match = find_mapped_line_item(invoice, self.plan_mapping)
        if match is None:
            logger.warning(
                "No matching plan found in line items of invoice %s: %s",
                invoice.id,
                describe_line_items(invoice),
            )
            return self._outcome(WebhookOutcomeStatus.IGNORED, user_id=user.id, detail="no matching line item")

        _, entry = match
        granted = self.granter.apply_one_time_grant(
            user, entry, invoice_id=invoice.id, customer_id=invoice.customer_id
        )
        if granted is None:
            return self._outcome(WebhookOutcomeStatus.IGNORED, user_id=user.id, detail=entry.price_id)

        self.onboarding.after_grant(granted)
        return self._outcome(WebhookOutcomeStatus.PROCESSED, user_id=user.id, detail=entry.price_id)

    @staticmethod
    def _outcome(
        status: WebhookOutcomeStatus,
        *,
        user_id: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> WebhookOutcome:
        return WebhookOutcome(
            event_type=BillingEventType.INVOICE_GENERATED.value,
            status=status,
            user_id=user_id,
            detail=detail,
        )


__all__ = ["InvoiceReconciliationHandler", "describe_line_items", "find_mapped_line_item"]
