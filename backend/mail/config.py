"""Email configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os


@dataclass(frozen=True)
class EmailConfig:
    """Configuration for outbound billing email."""

    provider_name: str
    from_email: str
    from_name: str
    mailersend_api_key: Optional[str]
    smtp_host: str
    smtp_port: int
    smtp_username: Optional[str]
    smtp_password: Optional[str]
    smtp_use_tls: bool
    smtp_timeout_seconds: float
    app_base_url: str
    product_name: str
    admin_email: Optional[str]
    admin_name: str


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


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


def load_email_config(env: Optional[Mapping[str, str]] = None) -> EmailConfig:
    """Load :class:`EmailConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    provider_name = (env_mapping.get("EMAIL_PROVIDER") or "dev").strip().lower() or "dev"
    from_email = env_mapping.get("FROM_EMAIL", "billing@localhost")
    from_name = env_mapping.get("FROM_NAME", "")
    mailersend_api_key = env_mapping.get("MAILERSEND_API_KEY") or None

    smtp_host = env_mapping.get("SMTP_HOST", "localhost")
    smtp_port = _to_int(env_mapping.get("SMTP_PORT"), default=587)
    smtp_username = env_mapping.get("SMTP_USER") or None
    smtp_password = env_mapping.get("SMTP_PASS") or None
    smtp_use_tls = _to_bool(env_mapping.get("SMTP_USE_TLS"), default=True)
    smtp_timeout_seconds = max(1.0, _to_float(env_mapping.get("SMTP_TIMEOUT_SECONDS"), default=30.0))

    app_base_url = env_mapping.get("APP_BASE_URL", "http://localhost:3000")
    product_name = env_mapping.get("PRODUCT_NAME", "Msgly.AI")
    admin_email = (env_mapping.get("ADMIN_NOTIFICATION_EMAIL") or "").strip() or None
    admin_name = env_mapping.get("ADMIN_NOTIFICATION_NAME", "Admin")

    return EmailConfig(
        provider_name=provider_name,
        from_email=from_email,
        from_name=from_name,
        mailersend_api_key=mailersend_api_key,
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_username=smtp_username,
        smtp_password=smtp_password,
        smtp_use_tls=smtp_use_tls,
        smtp_timeout_seconds=smtp_timeout_seconds,
        app_base_url=app_base_url.rstrip("/"),
        product_name=product_name,
        admin_email=admin_email,
        admin_name=admin_name,
    )
