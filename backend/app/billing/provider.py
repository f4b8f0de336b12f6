"""Chargebee customer API client."""
from __future__ import annotations

import base64
import json
import logging
from urllib import error as urllib_error, parse as urllib_parse, request as urllib_request

from .config import BillingConfig
from .exceptions import BillingProviderError
from .models import ProviderCustomer

logger = logging.getLogger("billing.provider")


class ChargebeeClient:
    """Read-only access to Chargebee customers over the v2 REST API."""

    def __init__(self, *, site: str, api_key: str, timeout: float = 10.0) -> None:
        self.site = site
        self.timeout = timeout
        token = base64.b64encode(f"{api_key}:".encode("utf-8")).decode("ascii")
        self._authorization = f"Basic {token}"

    @property
    def base_url(self) -> str:
        return f"https://{self.site}.chargebee.com/api/v2"

    def retrieve_customer(self, customer_id: str) -> ProviderCustomer:
        url = f"{self.base_url}/customers/{urllib_parse.quote(customer_id, safe='')}"
        request = urllib_request.Request(
            url,
            headers={"Authorization": self._authorization, "Accept": "application/json"},
        )
        try:
            with urllib_request.urlopen(request, timeout=self.timeout) as response:
                body = response.read()
            payload = json.loads(body.decode("utf-8"))
        except urllib_error.HTTPError as exc:
            raise BillingProviderError(
                f"Chargebee customer lookup failed with HTTP {exc.code}"
            ) from exc
        except (urllib_error.URLError, json.JSONDecodeError, UnicodeDecodeError, TimeoutError) as exc:
            raise BillingProviderError(f"Chargebee customer lookup failed: {exc}") from exc

        customer = payload.get("customer") if isinstance(payload, dict) else None
        if not isinstance(customer, dict):
            raise BillingProviderError("Chargebee response did not include a customer")
        logger.debug("Fetched customer %s from Chargebee", customer_id)
        return ProviderCustomer.model_validate(customer)


class UnconfiguredProviderClient:
    """Stand-in used when no Chargebee credentials are configured."""

    def retrieve_customer(self, customer_id: str) -> ProviderCustomer:
        raise BillingProviderError("Chargebee is not configured")


def create_provider_client(config: BillingConfig):
    if not config.provider_configured:
        logger.warning("Chargebee not configured, customer lookups will fail")
        return UnconfiguredProviderClient()
    return ChargebeeClient(
        site=config.provider_site or "",
        api_key=config.provider_api_key or "",
        timeout=config.provider_timeout_seconds,
    )


__all__ = ["ChargebeeClient", "UnconfiguredProviderClient", "create_provider_client"]
