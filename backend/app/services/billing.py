"""Application wiring for the billing webhook service."""
from __future__ import annotations

import logging
from functools import lru_cache

from ...mail import EmailConfig, create_email_provider, load_email_config
from ..billing import (
    BillingWebhookService,
    EmailBillingNotifier,
    PlanMapping,
    SideEffectRunner,
    load_plan_mapping,
)
from ..billing.config import BillingConfig, load_billing_config
from ..billing.provider import create_provider_client
from ..billing.repository import (
    PostgresAddonRepository,
    PostgresPendingRegistrationStore,
    PostgresUserAccountRepository,
)


logger = logging.getLogger("billing")


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_email_config() -> EmailConfig:
    return load_email_config()


@lru_cache(maxsize=1)
def get_plan_mapping() -> PlanMapping:
    config = get_billing_config()
    mapping = load_plan_mapping(config.plan_mapping_path)
    logger.info(
        "Loaded %s plan mappings from %s",
        len(mapping),
        config.plan_mapping_path or "built-in defaults",
    )
    return mapping


@lru_cache(maxsize=1)
def get_billing_notifier() -> EmailBillingNotifier:
    config = get_email_config()
    return EmailBillingNotifier(create_email_provider(config), config)


@lru_cache(maxsize=1)
def get_provider_client():
    return create_provider_client(get_billing_config())


def get_webhook_service(runner: SideEffectRunner) -> BillingWebhookService:
    """Build a service whose side effects go to ``runner``.

    Configuration, the plan mapping and the outbound clients are cached for the
    process; the runner is per request.
    """

    return BillingWebhookService(
        users=PostgresUserAccountRepository(),
        addons=PostgresAddonRepository(),
        registrations=PostgresPendingRegistrationStore(),
        provider=get_provider_client(),
        notifier=get_billing_notifier(),
        plan_mapping=get_plan_mapping(),
        runner=runner,
        addon_grace_period_days=get_billing_config().addon_grace_period_days,
    )


__all__ = [
    "get_billing_config",
    "get_billing_notifier",
    "get_email_config",
    "get_plan_mapping",
    "get_provider_client",
    "get_webhook_service",
]
