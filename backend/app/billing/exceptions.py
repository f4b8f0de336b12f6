"""Error taxonomy for billing webhook processing."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .models import WebhookOutcomeStatus


@dataclass
class BillingWebhookError(Exception):
    """Terminal failure for a single webhook delivery."""

    code: str
    message: str
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for structured logging."""

        return self._payload


class UserNotFoundError(BillingWebhookError):
    """No account could be resolved from the provider identifiers."""

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(
            code=WebhookOutcomeStatus.USER_NOT_FOUND.value,
            message=message,
            detail={key: value for key, value in detail.items() if value is not None},
        )


class UnknownPlanError(BillingWebhookError):
    """The provider price id has no entry in the plan mapping."""

    def __init__(self, price_id: Optional[str]) -> None:
        super().__init__(
            code=WebhookOutcomeStatus.UNKNOWN_PLAN_ID.value,
            message=f"Unknown plan id: {price_id}",
            detail={"price_id": price_id},
        )


class BillingProviderError(Exception):
    """Raised when a call to the billing provider API fails."""


__all__ = [
    "BillingProviderError",
    "BillingWebhookError",
    "UnknownPlanError",
    "UserNotFoundError",
]
