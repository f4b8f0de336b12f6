"""Billing provider configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the billing provider integration."""

    provider_site: Optional[str]
    provider_api_key: Optional[str]
    provider_timeout_seconds: float
    plan_mapping_path: Optional[str]
    addon_grace_period_days: int

    @property
    def provider_configured(self) -> bool:
        return bool(self.provider_site and self.provider_api_key)


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    return BillingConfig(
        provider_site=(env_mapping.get("CHARGEBEE_SITE") or "").strip() or None,
        provider_api_key=env_mapping.get("CHARGEBEE_API_KEY") or None,
        provider_timeout_seconds=max(
            0.1, _to_float(env_mapping.get("CHARGEBEE_TIMEOUT_SECONDS"), default=10.0)
        ),
        plan_mapping_path=env_mapping.get("PLAN_MAPPING_PATH") or None,
        addon_grace_period_days=max(0, _to_int(env_mapping.get("ADDON_GRACE_PERIOD_DAYS"), default=3)),
    )


__all__ = ["BillingConfig", "load_billing_config"]
