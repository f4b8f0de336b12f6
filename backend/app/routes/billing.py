"""API routes receiving billing provider webhooks."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks
from pydantic import ValidationError

from ..billing import BackgroundTaskRunner, WebhookEvent
from ..schemas.billing import WebhookAck, WebhookEnvelope
from ..services.billing import get_webhook_service

logger = logging.getLogger("billing.webhooks")

WEBHOOK_PROCESSED_MESSAGE = "Webhook processed successfully"

router = APIRouter(prefix="/api/billing", tags=["billing"])
addon_router = APIRouter(prefix="/webhooks", tags=["billing"])


def _parse(payload: WebhookEnvelope) -> Optional[WebhookEvent]:
    try:
        return payload.to_event()
    except ValidationError as exc:
        logger.warning(
            "Discarding malformed %s webhook: %s",
            payload.event_type,
            exc.errors(include_url=False),
            extra={"event_type": payload.event_type, "event_id": payload.id},
        )
        return None


@router.post("/chargebee-webhook", response_model=WebhookAck, response_model_exclude_none=True)
def receive_chargebee_webhook(payload: WebhookEnvelope, background_tasks: BackgroundTasks) -> WebhookAck:
    # Always acknowledged so the provider does not retry terminal failures.
    event = _parse(payload)
    if event is not None:
        service = get_webhook_service(BackgroundTaskRunner(background_tasks))
        service.handle_webhook(event)
    return WebhookAck(success=True, message=WEBHOOK_PROCESSED_MESSAGE)


@addon_router.post("/chargebee-addons", response_model=WebhookAck, response_model_exclude_none=True)
def receive_chargebee_addon_webhook(payload: WebhookEnvelope, background_tasks: BackgroundTasks) -> WebhookAck:
    event = _parse(payload)
    if event is not None:
        service = get_webhook_service(BackgroundTaskRunner(background_tasks))
        service.handle_addon_webhook(event)
    return WebhookAck(success=True)


__all__ = ["addon_router", "router"]
