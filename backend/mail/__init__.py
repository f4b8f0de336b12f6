"""Outbound email: configuration, providers and templates."""

from .config import EmailConfig, load_email_config
from .providers import (
    DevPrintProvider,
    EmailDeliveryError,
    EmailProvider,
    MailerSendProvider,
    SMTPProvider,
    create_email_provider,
)
from .renderer import render_admin_notification, render_welcome_email

__all__ = [
    "DevPrintProvider",
    "EmailConfig",
    "EmailDeliveryError",
    "EmailProvider",
    "MailerSendProvider",
    "SMTPProvider",
    "create_email_provider",
    "load_email_config",
    "render_admin_notification",
    "render_welcome_email",
]
