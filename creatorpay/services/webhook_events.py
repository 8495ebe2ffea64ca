"""Turn verified PayPal webhook events into entity mutations.

Each event type is handled independently. Branches are written to converge
on repeat delivery where they can (status flips, subscription upserts) but
increments (credit grants, asset counters) and receipts are applied once per
delivery; replay protection is opt-in via ``claim_event``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from creatorpay.core.settings import S, Settings
from creatorpay.core.time import days_from, iso, utc_now, utc_now_iso
from creatorpay.services.entities import EntityStore
from creatorpay.services.fees import compute_fee_split, normalize_tier
from creatorpay.services.metadata import decode_custom_metadata

logger = logging.getLogger(__name__)

PURCHASE_EVENTS = ("CHECKOUT.ORDER.APPROVED", "PAYMENT.CAPTURE.COMPLETED")
SUBSCRIPTION_SYNC_EVENTS = (
    "BILLING.SUBSCRIPTION.CREATED",
    "BILLING.SUBSCRIPTION.ACTIVATED",
    "BILLING.SUBSCRIPTION.UPDATED",
)
SUBSCRIPTION_END_EVENTS = (
    "BILLING.SUBSCRIPTION.CANCELLED",
    "BILLING.SUBSCRIPTION.EXPIRED",
    "BILLING.SUBSCRIPTION.SUSPENDED",
)
SUBSCRIPTION_PAYMENT_FAILED = "BILLING.SUBSCRIPTION.PAYMENT.FAILED"

PURCHASE_AI_CREDITS = "ai_credits"
PURCHASE_MARKETPLACE_ASSET = "marketplace_asset"
PURCHASE_CUSTOM_AI_MODEL = "custom_ai_model"
PURCHASE_FEATURED_ASSET = "featured_asset"


@dataclass
class DispatchResult:
    event_type: str
    handled: bool = False
    actions: List[str] = field(default_factory=list)

    def did(self, action: str) -> None:
        self.handled = True
        self.actions.append(action)


# ============================================================
# Event field extraction
# ============================================================

def _resource(event: Mapping[str, Any]) -> Dict[str, Any]:
    resource = event.get("resource") if isinstance(event, Mapping) else None
    return resource if isinstance(resource, dict) else {}


def _first_purchase_unit(resource: Mapping[str, Any]) -> Dict[str, Any]:
    units = resource.get("purchase_units")
    if isinstance(units, list) and units and isinstance(units[0], dict):
        return units[0]
    return {}


def _related_order_id(resource: Mapping[str, Any]) -> Optional[str]:
    related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
    return related.get("order_id") if isinstance(related, dict) else None


def extract_metadata(event: Mapping[str, Any]) -> Dict[str, str]:
    resource = _resource(event)
    raw = (
        resource.get("custom_id")
        or _first_purchase_unit(resource).get("custom_id")
        or _related_order_id(resource)
        or ""
    )
    return decode_custom_metadata(raw)


def _to_number(value: Any) -> float:
    try:
        return float(Decimal(str(value)))
    except (InvalidOperation, ValueError, TypeError):
        return 0.0


def capture_amount(event: Mapping[str, Any]) -> float:
    resource = _resource(event)
    value = (
        (resource.get("amount") or {}).get("value")
        or ((resource.get("seller_receivable_breakdown") or {}).get("gross_amount") or {}).get("value")
        or (_first_purchase_unit(resource).get("amount") or {}).get("value")
        or 0
    )
    return _to_number(value)


def tier_for_plan(plan_id: Optional[str], settings: Settings = S) -> str:
    if plan_id:
        for tier, configured in settings.plan_ids_by_tier.items():
            if configured and configured == plan_id:
                return tier
    return "free"


def _money(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01")))


# ============================================================
# Replay protection (opt-in)
# ============================================================

def claim_event(store: EntityStore, event: Mapping[str, Any]) -> bool:
    """Record the event id; False when it was already recorded."""
    event_id = event.get("id")
    if not event_id:
        return True
    processed = store.entity("ProcessedWebhookEvent")
    if processed.filter({"event_id": event_id}, limit=1):
        return False
    processed.create({"event_id": event_id, "event_type": event.get("event_type"), "created_at": utc_now_iso()})
    return True


def release_event(store: EntityStore, event: Mapping[str, Any]) -> None:
    """Forget a claimed event id so a redelivery is processed again."""
    event_id = event.get("id")
    if not event_id:
        return
    processed = store.entity("ProcessedWebhookEvent")
    for row in processed.filter({"event_id": event_id}):
        processed.delete(row["id"])
    logger.info("Released claim on PayPal event %s after a failed dispatch", event_id)


# ============================================================
# Purchases
# ============================================================

def grant_credits(store: EntityStore, metadata: Mapping[str, str], result: DispatchResult) -> None:
    user_id = metadata.get("user_id")
    credit_amount = _to_number(metadata.get("credit_amount") or 0)
    if not user_id or credit_amount <= 0:
        return
    if credit_amount.is_integer():
        credit_amount = int(credit_amount)

    users = store.entity("User")
    user = users.get(user_id)
    if not user:
        logger.warning("Credit purchase for unknown user %s", user_id)
        return
    users.update(
        user_id,
        {
            "ai_credits_remaining": (user.get("ai_credits_remaining") or 0) + credit_amount,
            "total_credits_purchased": (user.get("total_credits_purchased") or 0) + credit_amount,
        },
    )
    result.did("credits_granted")


def record_marketplace_purchase(
    store: EntityStore,
    event: Mapping[str, Any],
    metadata: Mapping[str, str],
    result: DispatchResult,
    env: Optional[Mapping[str, str]] = None,
) -> None:
    resource = _resource(event)
    buyer_user_id = metadata.get("buyer_user_id")
    seller_user_id = metadata.get("seller_user_id")
    asset_id = metadata.get("asset_id")
    amount = capture_amount(event)

    seller_subs = store.entity("Subscription").filter({"user_id": seller_user_id}) if seller_user_id else []
    seller_tier = normalize_tier(seller_subs[0].get("tier") if seller_subs else None)
    split = compute_fee_split(amount, seller_tier, env)

    store.entity("MarketplacePurchase").create(
        {
            "buyer_user_id": buyer_user_id,
            "seller_user_id": seller_user_id,
            "marketplace_asset_id": asset_id,
            **split.as_record(),
            "paypal_order_id": _related_order_id(resource) or resource.get("id"),
            "paypal_capture_id": resource.get("id"),
            "status": "completed",
        }
    )
    result.did("purchase_recorded")

    if not asset_id:
        return
    assets = store.entity("MarketplaceAsset")
    asset = assets.get(asset_id)
    if asset:
        assets.update(
            asset_id,
            {
                "purchase_count": (asset.get("purchase_count") or 0) + 1,
                "revenue_total": _money((asset.get("revenue_total") or 0) + split.price_paid),
            },
        )
        result.did("asset_counters_incremented")


def start_model_training(store: EntityStore, metadata: Mapping[str, str], result: DispatchResult) -> None:
    model_id = metadata.get("model_id")
    if not model_id:
        return
    store.entity("CustomAIModel").update(model_id, {"training_status": "training", "model_status": "training"})
    result.did("model_training_started")


def create_sponsorship(
    store: EntityStore,
    event: Mapping[str, Any],
    metadata: Mapping[str, str],
    result: DispatchResult,
    now: datetime,
) -> None:
    duration_days = _to_number(metadata.get("duration_days") or 0)
    placement_slot = _to_number(metadata.get("placement_slot") or 1) or 1
    store.entity("FeaturedAssetSponsorship").create(
        {
            "marketplace_asset_id": metadata.get("asset_id"),
            "creator_user_id": metadata.get("user_id"),
            "duration_days": int(duration_days) if duration_days.is_integer() else duration_days,
            "price_paid": capture_amount(event),
            "start_date": iso(now),
            "end_date": iso(days_from(now, duration_days)),
            "placement_slot": int(placement_slot),
            "status": "active",
        }
    )
    result.did("sponsorship_created")


def handle_purchase(
    store: EntityStore,
    event: Mapping[str, Any],
    result: DispatchResult,
    *,
    env: Optional[Mapping[str, str]] = None,
    now: Optional[datetime] = None,
) -> None:
    now = now or utc_now()
    metadata = extract_metadata(event)
    purchase_type = metadata.get("purchase_type")

    if purchase_type == PURCHASE_AI_CREDITS:
        grant_credits(store, metadata, result)
    elif purchase_type == PURCHASE_MARKETPLACE_ASSET:
        record_marketplace_purchase(store, event, metadata, result, env)
    elif purchase_type == PURCHASE_CUSTOM_AI_MODEL:
        start_model_training(store, metadata, result)
    elif purchase_type == PURCHASE_FEATURED_ASSET:
        create_sponsorship(store, event, metadata, result, now)
    else:
        logger.info("Purchase event without a known purchase_type: %r", purchase_type)

    store.entity("AnalyticsEvent").create(
        {
            "event_type": "purchase_completed",
            "user_id": metadata.get("user_id") or metadata.get("buyer_user_id"),
            "event_data": {
                "purchase_type": purchase_type,
                "amount": capture_amount(event),
                "timestamp": iso(now),
            },
        }
    )
    result.did("analytics_recorded")


# ============================================================
# Subscriptions
# ============================================================

def sync_subscription(
    store: EntityStore,
    event: Mapping[str, Any],
    result: DispatchResult,
    *,
    settings: Settings = S,
    now: Optional[datetime] = None,
) -> None:
    resource = _resource(event)
    user_id = resource.get("custom_id")
    if not user_id:
        logger.info("Subscription event %s has no custom_id; nothing to sync", resource.get("id"))
        return

    plan_id = resource.get("plan_id")
    tier = tier_for_plan(plan_id, settings)
    status = str(resource["status"]).lower() if resource.get("status") else "active"
    payload = {
        "user_id": user_id,
        "tier": tier,
        "status": status,
        "paypal_subscription_id": resource.get("id"),
        "paypal_plan_id": plan_id,
        "current_period_start": iso(now or utc_now()),
        "current_period_end": (resource.get("billing_info") or {}).get("next_billing_time"),
    }

    subscriptions = store.entity("Subscription")
    existing = subscriptions.filter({"user_id": user_id})
    if existing:
        subscriptions.update(existing[0]["id"], payload)
        result.did("subscription_updated")
    else:
        subscriptions.create(payload)
        result.did("subscription_created")

    store.entity("AnalyticsEvent").create(
        {
            "event_type": "subscription_updated",
            "user_id": user_id,
            "metadata": {"tier": tier, "status": status, "subscription_id": resource.get("id")},
        }
    )
    result.did("analytics_recorded")


def set_subscription_status(
    store: EntityStore,
    event: Mapping[str, Any],
    result: DispatchResult,
    *,
    status: str,
    analytics_type: str,
) -> None:
    subscription_id = _resource(event).get("id")
    if not subscription_id:
        return
    subscriptions = store.entity("Subscription")
    existing = subscriptions.filter({"paypal_subscription_id": subscription_id})
    if not existing:
        logger.info("No subscription stored for PayPal subscription %s", subscription_id)
        return

    sub = existing[0]
    subscriptions.update(sub["id"], {"status": status})
    result.did(f"subscription_{status}")
    store.entity("AnalyticsEvent").create(
        {
            "event_type": analytics_type,
            "user_id": sub.get("user_id"),
            "metadata": {"subscription_id": subscription_id},
        }
    )
    result.did("analytics_recorded")


# ============================================================
# Entry point
# ============================================================

def handle_paypal_event(
    store: EntityStore,
    event: Mapping[str, Any],
    *,
    settings: Settings = S,
    env: Optional[Mapping[str, str]] = None,
    now: Optional[datetime] = None,
) -> DispatchResult:
    event_type = str(event.get("event_type") or "") if isinstance(event, Mapping) else ""
    result = DispatchResult(event_type=event_type)

    if event_type in PURCHASE_EVENTS:
        handle_purchase(store, event, result, env=env, now=now)
    elif event_type in SUBSCRIPTION_SYNC_EVENTS:
        sync_subscription(store, event, result, settings=settings, now=now)
    elif event_type in SUBSCRIPTION_END_EVENTS:
        set_subscription_status(
            store, event, result, status="cancelled", analytics_type="subscription_cancelled"
        )
    elif event_type == SUBSCRIPTION_PAYMENT_FAILED:
        set_subscription_status(store, event, result, status="past_due", analytics_type="payment_failed")
    else:
        logger.debug("Ignoring PayPal event type %s", event_type)

    return result
