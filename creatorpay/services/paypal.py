from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional, Union

import requests

from creatorpay.core.errors import ConfigurationError, GatewayError
from creatorpay.core.settings import S, Settings
from creatorpay.core.time import now_ts
from creatorpay.metrics import record_paypal_request, record_verification_bypass

logger = logging.getLogger(__name__)

# Refresh this many seconds before PayPal's stated expiry.
TOKEN_EXPIRY_MARGIN_SECONDS = 30

WEBHOOK_SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


def _is_success(status_code: int) -> bool:
    return 200 <= int(status_code) < 300


@dataclass
class TokenCache:
    """Holds one short-lived OAuth bearer token and when it stops being usable."""

    access_token: str = ""
    expires_at: int = 0

    def get(self, now: int) -> Optional[str]:
        if self.access_token and self.expires_at > now + TOKEN_EXPIRY_MARGIN_SECONDS:
            return self.access_token
        return None

    def store(self, access_token: str, expires_in: int, now: int) -> None:
        self.access_token = access_token
        self.expires_at = now + int(expires_in)

    def clear(self) -> None:
        self.access_token = ""
        self.expires_at = 0


class PayPalClient:
    def __init__(
        self,
        settings: Settings = S,
        *,
        http: Any = requests,
        token_cache: Optional[TokenCache] = None,
    ) -> None:
        self.settings = settings
        self.http = http
        self.token_cache = token_cache if token_cache is not None else TokenCache()

    @property
    def base_url(self) -> str:
        return self.settings.paypal_base_url

    @property
    def timeout(self) -> float:
        return self.settings.paypal_http_timeout_seconds

    def require_config(self) -> None:
        if not self.settings.paypal_client_id or not self.settings.paypal_client_secret:
            raise ConfigurationError("Missing PAYPAL_CLIENT_ID or PAYPAL_CLIENT_SECRET")

    # ------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------

    def get_access_token(self) -> str:
        self.require_config()
        cached = self.token_cache.get(now_ts())
        if cached:
            return cached

        r = self.http.post(
            f"{self.base_url}/v1/oauth2/token",
            auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
            headers={"Accept": "application/json", "Content-Type": "application/x-www-form-urlencoded"},
            data={"grant_type": "client_credentials"},
            timeout=self.timeout,
        )
        record_paypal_request("POST", r.status_code)
        if not _is_success(r.status_code):
            raise GatewayError("PayPal token request failed", status_code=r.status_code, body=r.text)
        data = r.json()
        access = data["access_token"]
        self.token_cache.store(access, int(data.get("expires_in", 300)), now_ts())
        return access

    # ------------------------------------------------------------
    # REST
    # ------------------------------------------------------------

    def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        access = self.get_access_token()
        headers = {"Authorization": f"Bearer {access}", "Content-Type": "application/json"}
        if idempotency_key:
            headers["PayPal-Request-Id"] = idempotency_key

        r = self.http.request(
            method.upper(),
            f"{self.base_url}{path}",
            headers=headers,
            json=body,
            timeout=self.timeout,
        )
        record_paypal_request(method, r.status_code)
        text = r.text or ""
        if not _is_success(r.status_code):
            raise GatewayError("PayPal API error", status_code=r.status_code, body=text)
        return json.loads(text) if text.strip() else {}

    # ------------------------------------------------------------
    # Webhook verification
    # ------------------------------------------------------------

    def verify_webhook_signature(self, headers: Mapping[str, str], raw_body: Union[bytes, str]) -> bool:
        """Ask PayPal whether a webhook delivery is authentic.

        With no PAYPAL_WEBHOOK_ID configured every delivery is accepted (a
        development convenience that is refused when APP_ENV=production).
        Missing signature headers or a non-SUCCESS verdict reject the delivery.
        """
        webhook_id = self.settings.paypal_webhook_id
        if not webhook_id:
            if self.settings.is_production:
                logger.error("PAYPAL_WEBHOOK_ID is not set in production; rejecting unverifiable webhook")
                return False
            logger.warning(
                "PAYPAL_WEBHOOK_ID is not set; accepting webhook WITHOUT signature verification"
            )
            record_verification_bypass()
            return True

        lowered = {str(k).lower(): v for k, v in headers.items()}
        values = {field: lowered.get(header) for field, header in WEBHOOK_SIGNATURE_HEADERS.items()}
        missing = [WEBHOOK_SIGNATURE_HEADERS[f] for f, v in values.items() if not v]
        if missing:
            logger.warning("Webhook missing signature headers: %s", ", ".join(missing))
            return False

        try:
            if isinstance(raw_body, bytes):
                raw_body = raw_body.decode("utf-8")
            webhook_event = json.loads(raw_body or "{}")
        except ValueError:
            logger.warning("Webhook body is not valid UTF-8 JSON; cannot verify")
            return False

        payload = dict(values)
        payload["webhook_id"] = webhook_id
        payload["webhook_event"] = webhook_event
        verification = self.request("/v1/notifications/verify-webhook-signature", "POST", payload)
        return verification.get("verification_status") == "SUCCESS"

    # ------------------------------------------------------------
    # Orders + subscriptions
    # ------------------------------------------------------------

    def create_order(
        self,
        *,
        custom_id: str,
        description: str,
        amount: float,
        return_url: str,
        cancel_url: str,
        currency: str = "USD",
    ) -> Dict[str, Any]:
        payload = {
            "intent": "CAPTURE",
            "processing_instruction": "ORDER_COMPLETE_ON_PAYMENT_APPROVAL",
            "purchase_units": [
                {
                    "custom_id": custom_id,
                    "description": description,
                    "amount": {"currency_code": currency, "value": f"{float(amount):.2f}"},
                }
            ],
            "payment_source": {
                "paypal": {
                    "experience_context": {
                        "user_action": "PAY_NOW",
                        "return_url": return_url,
                        "cancel_url": cancel_url,
                    }
                }
            },
        }
        return self.request("/v2/checkout/orders", "POST", payload)

    def create_subscription(
        self,
        *,
        plan_id: str,
        custom_id: str,
        return_url: str,
        cancel_url: str,
        email: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "plan_id": plan_id,
            "custom_id": custom_id,
            "application_context": {
                "brand_name": self.settings.paypal_brand_name,
                "return_url": return_url,
                "cancel_url": cancel_url,
                "user_action": "SUBSCRIBE_NOW",
            },
        }
        if email:
            payload["subscriber"] = {"email_address": email}
        return self.request("/v1/billing/subscriptions", "POST", payload)

    def cancel_subscription(self, subscription_id: str, reason: str = "Cancelled by user request") -> None:
        self.request(f"/v1/billing/subscriptions/{subscription_id}/cancel", "POST", {"reason": reason})

    def manage_subscriptions_url(self) -> str:
        if self.settings.paypal_mode == "live":
            return "https://www.paypal.com/myaccount/autopay"
        return "https://www.sandbox.paypal.com/myaccount/autopay"


def get_approval_link(resource: Any) -> Optional[str]:
    links = resource.get("links") if isinstance(resource, dict) else None
    for link in links if isinstance(links, list) else []:
        if isinstance(link, dict) and link.get("rel") == "approve" and link.get("href"):
            return link["href"]
    return None


@lru_cache(maxsize=1)
def get_paypal_client() -> PayPalClient:
    return PayPalClient(S)
