"""Route webhook deliveries to their handlers and classify failures."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .addons import AddonLifecycleHandler
from .exceptions import BillingWebhookError
from .invoices import InvoiceReconciliationHandler
from .models import (
    AddonEventType,
    BillingEventType,
    WebhookEvent,
    WebhookOutcome,
    WebhookOutcomeStatus,
)
from .recovery import PaymentRecoveryHandler
from .subscriptions import SubscriptionLifecycleHandler

logger = logging.getLogger("billing.webhooks")

Handler = Callable[[WebhookEvent], WebhookOutcome]


def _ignored(event: WebhookEvent, detail: str) -> WebhookOutcome:
    logger.warning(
        "Dropping %s event %s: %s",
        event.event_type,
        event.id,
        detail,
        extra={"event_type": event.event_type, "event_id": event.id},
    )
    return WebhookOutcome(event_type=event.event_type, status=WebhookOutcomeStatus.IGNORED, detail=detail)


def _run(event: WebhookEvent, handler: Optional[Handler]) -> WebhookOutcome:
    if handler is None:
        logger.info("Unhandled webhook event type: %s", event.event_type, extra={"event_type": event.event_type})
        return WebhookOutcome(event_type=event.event_type, status=WebhookOutcomeStatus.UNHANDLED_EVENT)

    try:
        outcome = handler(event)
    except BillingWebhookError as exc:
        logger.error(
            "Webhook %s not applied (%s): %s",
            event.event_type,
            exc.code,
            exc.message,
            extra={"event_type": event.event_type, "event_id": event.id, **(exc.detail or {})},
        )
        return WebhookOutcome(
            event_type=event.event_type,
            status=WebhookOutcomeStatus(exc.code),
            detail=exc.message,
        )
    except Exception:
        logger.exception(
            "Error processing webhook %s",
            event.event_type,
            extra={"event_type": event.event_type, "event_id": event.id},
        )
        return WebhookOutcome(event_type=event.event_type, status=WebhookOutcomeStatus.PROCESSING_ERROR)

    logger.info(
        "Webhook %s handled: %s",
        event.event_type,
        outcome.status.value,
        extra={"event_type": event.event_type, "event_id": event.id, "user_id": outcome.user_id},
    )
    return outcome


@dataclass
class BillingWebhookDispatcher:
    """Classify a primary webhook delivery and route it to one handler."""

    subscriptions: SubscriptionLifecycleHandler
    invoices: InvoiceReconciliationHandler
    recovery: PaymentRecoveryHandler

    def __post_init__(self) -> None:
        self._handlers: Dict[BillingEventType, Handler] = {
            BillingEventType.SUBSCRIPTION_CREATED: self._subscription_created,
            BillingEventType.SUBSCRIPTION_ACTIVATED: self._subscription_activated,
            BillingEventType.SUBSCRIPTION_CANCELLATION_SCHEDULED: self._cancellation_scheduled,
            BillingEventType.SUBSCRIPTION_CANCELLED: self._subscription_cancelled,
            BillingEventType.INVOICE_GENERATED: self._invoice_generated,
            BillingEventType.PAYMENT_SUCCEEDED: self._payment_succeeded,
        }

    def dispatch(self, event: WebhookEvent) -> WebhookOutcome:
        logger.info(
            "Received webhook %s (%s)",
            event.event_type,
            event.id,
            extra={"event_type": event.event_type, "event_id": event.id},
        )
        try:
            event_type = BillingEventType(event.event_type)
        except ValueError:
            return _run(event, None)
        return _run(event, self._handlers[event_type])

    def _subscription_created(self, event: WebhookEvent) -> WebhookOutcome:
        subscription = event.content.subscription
        if subscription is None:
            return _ignored(event, "missing subscription")
        return self.subscriptions.handle_created(subscription, event.content.customer)

    def _subscription_activated(self, event: WebhookEvent) -> WebhookOutcome:
        subscription = event.content.subscription
        if subscription is None:
            return _ignored(event, "missing subscription")
        return self.subscriptions.handle_activated(subscription, event.content.customer)

    def _cancellation_scheduled(self, event: WebhookEvent) -> WebhookOutcome:
        subscription = event.content.subscription
        if subscription is None:
            return _ignored(event, "missing subscription")
        return self.subscriptions.handle_cancellation_scheduled(subscription, event.content.customer)

    def _subscription_cancelled(self, event: WebhookEvent) -> WebhookOutcome:
        subscription = event.content.subscription
        if subscription is None:
            return _ignored(event, "missing subscription")
        return self.subscriptions.handle_cancelled(subscription, event.content.customer)

    def _invoice_generated(self, event: WebhookEvent) -> WebhookOutcome:
        invoice = event.content.invoice
        if invoice is None:
            return _ignored(event, "missing invoice")
        return self.invoices.handle_invoice_generated(invoice, event.content.subscription)

    def _payment_succeeded(self, event: WebhookEvent) -> WebhookOutcome:
        return self.recovery.handle_payment_succeeded(event.content.payment_record, event.content.invoice)


@dataclass
class AddonWebhookDispatcher:
    """Classify add-on integration deliveries."""

    addons: AddonLifecycleHandler

    def __post_init__(self) -> None:
        self._handlers: Dict[AddonEventType, Callable] = {
            AddonEventType.SUBSCRIPTION_RENEWED: self.addons.handle_renewed,
            AddonEventType.SUBSCRIPTION_CANCELLED: self.addons.handle_cancelled,
            AddonEventType.SUBSCRIPTION_REACTIVATED: self.addons.handle_reactivated,
            AddonEventType.PAYMENT_FAILED: self.addons.handle_payment_failed,
        }

    def dispatch(self, event: WebhookEvent) -> WebhookOutcome:
        logger.info(
            "Received add-on webhook %s (subscription=%s)",
            event.event_type,
            event.content.subscription.id if event.content.subscription else None,
            extra={"event_type": event.event_type, "event_id": event.id},
        )
        try:
            event_type = AddonEventType(event.event_type)
        except ValueError:
            return _run(event, None)
        return _run(event, lambda evt: self._route(event_type, evt))

    def _route(self, event_type: AddonEventType, event: WebhookEvent) -> WebhookOutcome:
        subscription = event.content.subscription
        if subscription is None:
            return _ignored(event, "missing subscription")
        if event_type == AddonEventType.SUBSCRIPTION_CREATED:
            return self.addons.handle_created(subscription, event.content.customer)
        return self._handlers[event_type](subscription)


__all__ = ["AddonWebhookDispatcher", "BillingWebhookDispatcher"]
