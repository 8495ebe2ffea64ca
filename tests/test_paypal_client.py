from __future__ import annotations

import json
from dataclasses import replace
from typing import Any, Dict, List

import pytest

from creatorpay.core.errors import ConfigurationError, GatewayError
from creatorpay.core.settings import S
from creatorpay.services import paypal
from creatorpay.services.paypal import PayPalClient, TokenCache, get_approval_link

SIGNATURE_HEADERS = {
    "paypal-auth-algo": "SHA256withRSA",
    "paypal-cert-url": "https://api.sandbox.paypal.com/cert.pem",
    "paypal-transmission-id": "tx-1",
    "paypal-transmission-sig": "sig",
    "paypal-transmission-time": "2026-10-19T12:00:00Z",
}


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str | None = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else (json.dumps(payload) if payload is not None else "")

    def json(self) -> Any:
        return self._payload


class FakeHttp:
    def __init__(self, token_response: FakeResponse | None = None) -> None:
        self.token_response = token_response or FakeResponse(200, {"access_token": "token-123", "expires_in": 300})
        self.responses: List[FakeResponse] = []
        self.posts: List[Dict[str, Any]] = []
        self.requests: List[Dict[str, Any]] = []

    def post(self, url, **kwargs):
        self.posts.append({"url": url, **kwargs})
        return self.token_response

    def request(self, method, url, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        return self.responses.pop(0) if self.responses else FakeResponse(200, {})


def make_settings(**overrides):
    base = replace(
        S,
        app_env="development",
        paypal_mode="sandbox",
        paypal_client_id="client",
        paypal_client_secret="secret",
        paypal_webhook_id="",
    )
    return replace(base, **overrides)


def make_client(http=None, **overrides) -> PayPalClient:
    return PayPalClient(make_settings(**overrides), http=http or FakeHttp(), token_cache=TokenCache())


def test_access_token_requires_credentials_before_network():
    http = FakeHttp()
    client = make_client(http, paypal_client_secret="")

    with pytest.raises(ConfigurationError) as excinfo:
        client.get_access_token()

    assert excinfo.value.kind == "configuration"
    assert http.posts == []


def test_access_token_uses_basic_auth_client_credentials():
    http = FakeHttp()
    client = make_client(http)

    assert client.get_access_token() == "token-123"

    call = http.posts[0]
    assert call["url"] == "https://api-m.sandbox.paypal.com/v1/oauth2/token"
    assert call["auth"] == ("client", "secret")
    assert call["data"] == {"grant_type": "client_credentials"}


def test_access_token_is_cached_until_expiry(monkeypatch):
    http = FakeHttp()
    client = make_client(http)
    clock = {"now": 1_000}
    monkeypatch.setattr(paypal, "now_ts", lambda: clock["now"])

    client.get_access_token()
    client.get_access_token()
    assert len(http.posts) == 1

    clock["now"] += 300 - paypal.TOKEN_EXPIRY_MARGIN_SECONDS
    client.get_access_token()
    assert len(http.posts) == 2


def test_token_cache_is_per_client():
    http = FakeHttp()
    first = make_client(http)
    second = make_client(http)

    first.get_access_token()
    second.get_access_token()

    assert len(http.posts) == 2


def test_access_token_failure_embeds_status_and_body():
    http = FakeHttp(FakeResponse(401, text='{"error":"invalid_client"}'))
    client = make_client(http)

    with pytest.raises(GatewayError) as excinfo:
        client.get_access_token()

    assert excinfo.value.status_code == 401
    assert "invalid_client" in str(excinfo.value)
    assert excinfo.value.kind == "protocol"


def test_live_mode_uses_live_base_url():
    http = FakeHttp()
    client = make_client(http, paypal_mode="live")

    client.get_access_token()

    assert http.posts[0]["url"].startswith("https://api-m.paypal.com/")


def test_request_sends_bearer_json_and_parses_body():
    http = FakeHttp()
    http.responses.append(FakeResponse(201, {"id": "ORDER-1"}))
    client = make_client(http)

    data = client.request("/v2/checkout/orders", "post", {"intent": "CAPTURE"}, idempotency_key="idem-1")

    assert data == {"id": "ORDER-1"}
    call = http.requests[0]
    assert call["method"] == "POST"
    assert call["headers"]["Authorization"] == "Bearer token-123"
    assert call["headers"]["PayPal-Request-Id"] == "idem-1"
    assert call["json"] == {"intent": "CAPTURE"}
    assert call["timeout"] == client.timeout


def test_request_empty_body_returns_empty_dict():
    http = FakeHttp()
    http.responses.append(FakeResponse(204, text=""))
    client = make_client(http)

    assert client.request("/v1/billing/subscriptions/I-1/cancel", "POST", {"reason": "x"}) == {}


def test_request_non_2xx_raises_gateway_error():
    http = FakeHttp()
    http.responses.append(FakeResponse(422, text='{"name":"UNPROCESSABLE_ENTITY"}'))
    client = make_client(http)

    with pytest.raises(GatewayError) as excinfo:
        client.request("/v2/checkout/orders", "POST", {})

    assert excinfo.value.status_code == 422
    assert "UNPROCESSABLE_ENTITY" in excinfo.value.body


def test_verify_without_webhook_id_accepts_anything():
    http = FakeHttp()
    client = make_client(http, paypal_webhook_id="")

    assert client.verify_webhook_signature({}, b"not even json") is True
    assert http.posts == [] and http.requests == []


def test_verify_without_webhook_id_in_production_rejects():
    client = make_client(paypal_webhook_id="", app_env="production")

    assert client.verify_webhook_signature(SIGNATURE_HEADERS, b"{}") is False


@pytest.mark.parametrize("missing", sorted(SIGNATURE_HEADERS))
def test_verify_with_missing_header_fails_closed(missing):
    http = FakeHttp()
    client = make_client(http, paypal_webhook_id="WH-1")
    headers = {k: v for k, v in SIGNATURE_HEADERS.items() if k != missing}

    assert client.verify_webhook_signature(headers, b"{}") is False
    assert http.requests == []


def test_verify_delegates_to_paypal():
    http = FakeHttp()
    http.responses.append(FakeResponse(200, {"verification_status": "SUCCESS"}))
    client = make_client(http, paypal_webhook_id="WH-1")
    headers = {k.upper(): v for k, v in SIGNATURE_HEADERS.items()}

    assert client.verify_webhook_signature(headers, b'{"id": "WH-EVT-1"}') is True

    call = http.requests[0]
    assert call["url"].endswith("/v1/notifications/verify-webhook-signature")
    assert call["json"]["webhook_id"] == "WH-1"
    assert call["json"]["transmission_id"] == "tx-1"
    assert call["json"]["auth_algo"] == "SHA256withRSA"
    assert call["json"]["webhook_event"] == {"id": "WH-EVT-1"}


def test_verify_negative_verdict():
    http = FakeHttp()
    http.responses.append(FakeResponse(200, {"verification_status": "FAILURE"}))
    client = make_client(http, paypal_webhook_id="WH-1")

    assert client.verify_webhook_signature(SIGNATURE_HEADERS, b"{}") is False


def test_approval_link():
    resource = {
        "links": [
            {"rel": "self", "href": "https://api/self"},
            {"rel": "approve", "href": "https://paypal/approve"},
        ]
    }

    assert get_approval_link(resource) == "https://paypal/approve"
    assert get_approval_link({"links": [{"rel": "self", "href": "x"}]}) is None
    assert get_approval_link({}) is None
    assert get_approval_link(None) is None


def test_create_order_payload():
    http = FakeHttp()
    http.responses.append(FakeResponse(201, {"id": "ORDER-9", "links": []}))
    client = make_client(http)

    client.create_order(
        custom_id="purchase_type=ai_credits",
        description="AI Generation Credits - 10 Credits",
        amount=2.99,
        return_url="https://app/ok",
        cancel_url="https://app/cancel",
    )

    body = http.requests[0]["json"]
    unit = body["purchase_units"][0]
    assert body["intent"] == "CAPTURE"
    assert unit["custom_id"] == "purchase_type=ai_credits"
    assert unit["amount"] == {"currency_code": "USD", "value": "2.99"}


def test_create_subscription_includes_subscriber_only_with_email():
    http = FakeHttp()
    http.responses.extend([FakeResponse(201, {"id": "I-1"}), FakeResponse(201, {"id": "I-2"})])
    client = make_client(http)

    client.create_subscription(plan_id="P-1", custom_id="u1", return_url="r", cancel_url="c")
    client.create_subscription(plan_id="P-1", custom_id="u1", return_url="r", cancel_url="c", email="a@b.c")

    assert "subscriber" not in http.requests[0]["json"]
    assert http.requests[1]["json"]["subscriber"] == {"email_address": "a@b.c"}


def test_verify_rejects_body_that_is_not_utf8():
    http = FakeHttp()
    client = make_client(http, paypal_webhook_id="WH-1")

    assert client.verify_webhook_signature(SIGNATURE_HEADERS, b"\xff\xfe{}") is False
    assert http.requests == []
