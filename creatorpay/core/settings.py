from __future__ import annotations

import os
from dataclasses import dataclass


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default) not in ("0", "false", "False", "")


@dataclass(frozen=True)
class Settings:
    app_env: str = os.environ.get("APP_ENV", "development").lower()
    public_base_url: str = os.environ.get("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
    log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()
    metrics_enabled: bool = _flag("METRICS_ENABLED", "1")

    # Supabase (service role bypasses RLS)
    supabase_url: str = os.environ.get("SUPABASE_URL", "")
    supabase_service_role_key: str = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")

    # PayPal
    paypal_mode: str = os.environ.get("PAYPAL_MODE", os.environ.get("PAYPAL_ENV", "sandbox")).lower()
    paypal_client_id: str = os.environ.get("PAYPAL_CLIENT_ID", "")
    paypal_client_secret: str = os.environ.get("PAYPAL_CLIENT_SECRET", "")
    paypal_webhook_id: str = os.environ.get("PAYPAL_WEBHOOK_ID", "")
    paypal_webhook_dedupe: bool = _flag("PAYPAL_WEBHOOK_DEDUPE", "0")
    paypal_http_timeout_seconds: float = float(os.environ.get("PAYPAL_HTTP_TIMEOUT_SECONDS", "20"))
    paypal_brand_name: str = os.environ.get("PAYPAL_BRAND_NAME", "VFX Studios")

    # PayPal billing plan ids per subscription tier
    paypal_plan_weekly: str = os.environ.get("PAYPAL_PLAN_WEEKLY", "")
    paypal_plan_monthly: str = os.environ.get("PAYPAL_PLAN_MONTHLY", "")
    paypal_plan_annual: str = os.environ.get("PAYPAL_PLAN_ANNUAL", "")
    paypal_plan_creator_pro: str = os.environ.get("PAYPAL_PLAN_CREATOR_PRO", "")
    paypal_plan_enterprise: str = os.environ.get("PAYPAL_PLAN_ENTERPRISE", "")

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def paypal_base_url(self) -> str:
        if self.paypal_mode == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    @property
    def plan_ids_by_tier(self) -> dict[str, str]:
        return {
            "weekly": self.paypal_plan_weekly,
            "monthly": self.paypal_plan_monthly,
            "annual": self.paypal_plan_annual,
            "creator_pro": self.paypal_plan_creator_pro,
            "enterprise": self.paypal_plan_enterprise,
        }


S = Settings()
