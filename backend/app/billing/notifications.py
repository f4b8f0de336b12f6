"""Best-effort notification dispatch for entitlement grants."""
from __future__ import annotations

import logging
import re
from typing import Any, Callable, Optional

from fastapi import BackgroundTasks

from ...mail import EmailConfig, EmailProvider, render_admin_notification, render_welcome_email
from .models import NotificationResult

logger = logging.getLogger("billing.notifications")

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_SKIPPED_RECIPIENT_PATTERNS = ("test@", "example@", "noreply@", "no-reply@")


def run_guarded(label: str, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    """Run a side effect, routing any failure to the log instead of the caller."""

    try:
        task(*args, **kwargs)
    except Exception:
        logger.exception("Side effect %s failed", label, extra={"side_effect": label})


class InlineTaskRunner:
    """Runs side effects immediately in the calling thread."""

    def submit(self, label: str, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        run_guarded(label, task, *args, **kwargs)


class BackgroundTaskRunner:
    """Defers side effects until after the webhook response has been sent."""

    def __init__(self, background_tasks: BackgroundTasks) -> None:
        self._background_tasks = background_tasks

    def submit(self, label: str, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self._background_tasks.add_task(run_guarded, label, task, *args, **kwargs)


def _is_deliverable(address: Optional[str]) -> bool:
    return bool(address and _EMAIL_PATTERN.match(address))


class EmailBillingNotifier:
    """Sends welcome and admin emails through the configured mail provider."""

    def __init__(self, provider: EmailProvider, config: EmailConfig) -> None:
        self._provider = provider
        self._config = config

    def send_welcome_email(
        self, *, to_email: str, to_name: Optional[str], user_id: int
    ) -> NotificationResult:
        if not _is_deliverable(to_email):
            logger.error("Invalid welcome email address %r for user %s", to_email, user_id)
            return NotificationResult(ok=False, error="Invalid email address")
        if any(pattern in to_email.lower() for pattern in _SKIPPED_RECIPIENT_PATTERNS):
            logger.info("Skipping welcome email for placeholder address %s", to_email)
            return NotificationResult(ok=False, error="Invalid email pattern - skipped")

        name = to_name or to_email.split("@")[0]
        subject, text_body, html_body = render_welcome_email(
            {
                "name": name,
                "product": self._config.product_name,
                "app_base_url": self._config.app_base_url,
            }
        )
        return self._deliver(to_email, subject, html_body, text_body, email_type="welcome", user_id=user_id)

    def send_admin_notification(
        self,
        *,
        user_email: str,
        user_name: Optional[str],
        package_type: str,
        billing_model: str,
        profile_url: Optional[str],
        user_id: int,
    ) -> NotificationResult:
        if not _is_deliverable(self._config.admin_email):
            return NotificationResult(ok=False, error="Admin notification address not configured")

        subject, text_body, html_body = render_admin_notification(
            {
                "admin_name": self._config.admin_name,
                "product": self._config.product_name,
                "user_name": user_name or "Not provided",
                "user_email": user_email,
                "user_id": user_id,
                "package_type": package_type,
                "billing_model": billing_model,
                "profile_url": profile_url or "Not provided",
            }
        )
        return self._deliver(
            self._config.admin_email,
            subject,
            html_body,
            text_body,
            email_type="admin_notification",
            user_id=user_id,
        )

    def _deliver(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        email_type: str,
        user_id: int,
    ) -> NotificationResult:
        log_context = {
            **self._provider.describe(),
            "email_recipient": to,
            "email_type": email_type,
            "user_id": user_id,
        }
        try:
            message_id = self._provider.send_email(to, subject, html_body, text_body)
        except Exception as exc:
            logger.exception("Failed to send %s email", email_type, extra=log_context)
            return NotificationResult(ok=False, error=str(exc))
        logger.info("Dispatched %s email", email_type, extra=log_context)
        return NotificationResult(ok=True, message_id=message_id)


__all__ = [
    "BackgroundTaskRunner",
    "EmailBillingNotifier",
    "InlineTaskRunner",
    "run_guarded",
]
