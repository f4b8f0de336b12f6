"""Billing domain package reconciling provider webhooks into entitlements."""

from .catalog import PlanMapping, PlanMappingEntry, default_plan_mapping, load_plan_mapping
from .exceptions import BillingProviderError, BillingWebhookError, UnknownPlanError, UserNotFoundError
from .models import (
    AddonEventType,
    AddonRecord,
    AddonStatus,
    BillingEventType,
    BillingModel,
    NotificationResult,
    PendingRegistration,
    UserAccount,
    WebhookEvent,
    WebhookOutcome,
    WebhookOutcomeStatus,
)
from .notifications import BackgroundTaskRunner, EmailBillingNotifier, InlineTaskRunner
from .service import (
    AddonRepository,
    BillingNotifier,
    BillingProviderClient,
    BillingWebhookService,
    PendingRegistrationStore,
    SideEffectRunner,
    UserAccountRepository,
)

__all__ = [
    "AddonEventType",
    "AddonRecord",
    "AddonRepository",
    "AddonStatus",
    "BackgroundTaskRunner",
    "BillingEventType",
    "BillingModel",
    "BillingNotifier",
    "BillingProviderClient",
    "BillingProviderError",
    "BillingWebhookError",
    "BillingWebhookService",
    "EmailBillingNotifier",
    "InlineTaskRunner",
    "NotificationResult",
    "PendingRegistration",
    "PendingRegistrationStore",
    "PlanMapping",
    "PlanMappingEntry",
    "SideEffectRunner",
    "UnknownPlanError",
    "UserAccount",
    "UserAccountRepository",
    "UserNotFoundError",
    "WebhookEvent",
    "WebhookOutcome",
    "WebhookOutcomeStatus",
    "default_plan_mapping",
    "load_plan_mapping",
]
