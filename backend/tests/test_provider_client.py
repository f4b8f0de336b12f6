from __future__ import annotations

import base64
import io
import json
from urllib import error as urllib_error

import pytest

from backend.app.billing import BillingProviderError
from backend.app.billing import provider as provider_module
from backend.app.billing.provider import ChargebeeClient, UnconfiguredProviderClient


class _FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def test_retrieve_customer_parses_response(monkeypatch):
    captured = {}

    def fake_urlopen(request, timeout):
        captured["url"] = request.full_url
        captured["auth"] = request.get_header("Authorization")
        captured["timeout"] = timeout
        body = {"customer": {"id": "cus_1", "email": "a@x.com", "first_name": "Ada", "auto_collection": "on"}}
        return _FakeResponse(json.dumps(body).encode("utf-8"))

    monkeypatch.setattr(provider_module.urllib_request, "urlopen", fake_urlopen)
    client = ChargebeeClient(site="acme", api_key="secret", timeout=4.0)

    customer = client.retrieve_customer("cus_1")

    assert customer.email == "a@x.com"
    assert customer.first_name == "Ada"
    assert captured["url"] == "https://acme.chargebee.com/api/v2/customers/cus_1"
    assert captured["timeout"] == 4.0
    expected = base64.b64encode(b"secret:").decode("ascii")
    assert captured["auth"] == f"Basic {expected}"


def test_http_errors_become_provider_errors(monkeypatch):
    def fake_urlopen(request, timeout):
        raise urllib_error.HTTPError(request.full_url, 404, "Not Found", {}, None)

    monkeypatch.setattr(provider_module.urllib_request, "urlopen", fake_urlopen)

    with pytest.raises(BillingProviderError, match="404"):
        ChargebeeClient(site="acme", api_key="k").retrieve_customer("cus_missing")


def test_network_errors_become_provider_errors(monkeypatch):
    def fake_urlopen(request, timeout):
        raise urllib_error.URLError("timed out")

    monkeypatch.setattr(provider_module.urllib_request, "urlopen", fake_urlopen)

    with pytest.raises(BillingProviderError):
        ChargebeeClient(site="acme", api_key="k").retrieve_customer("cus_1")


def test_response_without_customer_is_rejected(monkeypatch):
    monkeypatch.setattr(
        provider_module.urllib_request,
        "urlopen",
        lambda request, timeout: _FakeResponse(b"{}"),
    )

    with pytest.raises(BillingProviderError):
        ChargebeeClient(site="acme", api_key="k").retrieve_customer("cus_1")


def test_unconfigured_client_always_fails():
    with pytest.raises(BillingProviderError):
        UnconfiguredProviderClient().retrieve_customer("cus_1")
