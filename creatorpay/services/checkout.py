"""Checkout flows that start a PayPal order or subscription.

Each order carries an encoded ``custom_id`` so the webhook dispatcher can tell
what was bought once the capture completes.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException

from creatorpay.core.settings import S
from creatorpay.core.time import utc_now_iso
from creatorpay.models import CustomModelCheckoutIn
from creatorpay.services.entities import EntityStore
from creatorpay.services.metadata import encode_custom_metadata
from creatorpay.services.paypal import PayPalClient, get_approval_link
from creatorpay.services.webhook_events import (
    PURCHASE_AI_CREDITS,
    PURCHASE_CUSTOM_AI_MODEL,
    PURCHASE_FEATURED_ASSET,
    PURCHASE_MARKETPLACE_ASSET,
)

logger = logging.getLogger(__name__)

CREDIT_PACKS: Dict[str, Dict[str, Any]] = {
    "starter": {"credits": 10, "price": 2.99, "name": "10 Credits"},
    "pro": {"credits": 50, "price": 11.99, "name": "50 Credits"},
    "mega": {"credits": 200, "price": 34.99, "name": "200 Credits"},
}

SPONSORSHIP_PRICING: Dict[int, float] = {7: 19.97, 14: 29.97, 30: 49.97}
MAX_FEATURED_SLOTS = 6

MODEL_TRAINING_FEES: Dict[str, float] = {"basic": 49.97, "advanced": 99.97, "professional": 199.97}
MIN_TRAINING_IMAGES = 5


def _url(path: str) -> str:
    return f"{S.public_base_url}{path}"


def start_credit_checkout(paypal: PayPalClient, user_id: str, credit_pack: str) -> Dict[str, Any]:
    pack = CREDIT_PACKS.get(credit_pack)
    if not pack:
        raise HTTPException(400, "Invalid credit pack")

    metadata = encode_custom_metadata(
        {"purchase_type": PURCHASE_AI_CREDITS, "user_id": user_id, "credit_amount": pack["credits"]}
    )
    order = paypal.create_order(
        custom_id=metadata,
        description=f"AI Generation Credits - {pack['name']}",
        amount=pack["price"],
        return_url=_url("/dashboard?credits_purchased=true"),
        cancel_url=_url("/dashboard?credits_cancelled=true"),
    )
    logger.info("Credit checkout %s created for user %s (%s)", order.get("id"), user_id, credit_pack)
    return {"checkout_url": get_approval_link(order), "order_id": order.get("id")}


def start_marketplace_checkout(
    paypal: PayPalClient, store: EntityStore, user_id: str, asset_id: str
) -> Dict[str, Any]:
    asset = store.entity("MarketplaceAsset").get(asset_id)
    if not asset or asset.get("status") != "approved":
        raise HTTPException(404, "Asset not available")

    owned = store.entity("MarketplacePurchase").filter(
        {"buyer_user_id": user_id, "marketplace_asset_id": asset_id}, limit=1
    )
    if owned:
        raise HTTPException(400, "You already own this asset")

    metadata = encode_custom_metadata(
        {
            "purchase_type": PURCHASE_MARKETPLACE_ASSET,
            "buyer_user_id": user_id,
            "seller_user_id": asset.get("seller_user_id"),
            "asset_id": asset_id,
        }
    )
    order = paypal.create_order(
        custom_id=metadata,
        description=str(asset.get("title") or "Marketplace asset"),
        amount=float(asset.get("price") or 0),
        return_url=_url(f"/marketplace?purchase_success=true&asset_id={asset_id}"),
        cancel_url=_url("/marketplace?purchase_cancelled=true"),
    )
    logger.info("Marketplace checkout %s created for asset %s", order.get("id"), asset_id)
    return {"checkout_url": get_approval_link(order), "order_id": order.get("id")}


def next_featured_slot(store: EntityStore) -> Optional[int]:
    active = store.entity("FeaturedAssetSponsorship").filter({"status": "active"})
    used = {s.get("placement_slot") for s in active}
    for slot in range(1, MAX_FEATURED_SLOTS + 1):
        if slot not in used:
            return slot
    return None


def start_featured_checkout(
    paypal: PayPalClient, store: EntityStore, user_id: str, asset_id: str, duration_days: int
) -> Dict[str, Any]:
    price = SPONSORSHIP_PRICING.get(duration_days)
    if not price:
        raise HTTPException(400, "Invalid duration")

    slot = next_featured_slot(store)
    if slot is None:
        raise HTTPException(409, "All featured slots are full. Try again later.")

    metadata = encode_custom_metadata(
        {
            "purchase_type": PURCHASE_FEATURED_ASSET,
            "user_id": user_id,
            "asset_id": asset_id,
            "duration_days": duration_days,
            "placement_slot": slot,
        }
    )
    order = paypal.create_order(
        custom_id=metadata,
        description=f"Featured Asset Sponsorship - {duration_days} Days",
        amount=price,
        return_url=_url("/marketplace?featured_activated=true"),
        cancel_url=_url("/marketplace"),
    )
    return {"checkout_url": get_approval_link(order), "order_id": order.get("id"), "placement_slot": slot}


def start_custom_model_checkout(
    paypal: PayPalClient, store: EntityStore, user_id: str, body: CustomModelCheckoutIn
) -> Dict[str, Any]:
    if not body.model_name or len(body.training_images) < MIN_TRAINING_IMAGES:
        raise HTTPException(400, f"Provide model name and at least {MIN_TRAINING_IMAGES} training images")

    tier = body.tier if body.tier in MODEL_TRAINING_FEES else "basic"
    model = store.entity("CustomAIModel").create(
        {
            "creator_user_id": user_id,
            "model_name": body.model_name,
            "training_images": body.training_images,
            "rental_price": body.rental_price,
            "tier": tier,
            "model_status": "pending_payment",
            "total_rentals": 0,
        }
    )
    if not model or not model.get("id"):
        raise HTTPException(500, "Failed to create model record")

    metadata = encode_custom_metadata(
        {"purchase_type": PURCHASE_CUSTOM_AI_MODEL, "user_id": user_id, "model_id": model["id"]}
    )
    order = paypal.create_order(
        custom_id=metadata,
        description=f"Custom AI Style Training - {tier}",
        amount=MODEL_TRAINING_FEES[tier],
        return_url=_url("/dashboard?model_training=true"),
        cancel_url=_url("/style-marketplace"),
    )
    return {"checkout_url": get_approval_link(order), "order_id": order.get("id"), "model_id": model["id"]}


def start_subscription_checkout(
    paypal: PayPalClient, user_id: str, tier: str, email: Optional[str] = None
) -> Dict[str, Any]:
    plan_id = S.plan_ids_by_tier.get(tier)
    if not plan_id:
        raise HTTPException(400, "Invalid tier or missing PayPal plan mapping")

    # custom_id carries the bare user id; subscription events read it back as-is.
    subscription = paypal.create_subscription(
        plan_id=plan_id,
        custom_id=user_id,
        email=email,
        return_url=_url(f"/dashboard?paypal_subscribed=true&tier={tier}"),
        cancel_url=_url("/pricing?checkout_cancelled=true"),
    )
    logger.info("Subscription checkout %s created for user %s (%s)", subscription.get("id"), user_id, tier)
    return {"checkout_url": get_approval_link(subscription), "subscription_id": subscription.get("id")}


def cancel_user_subscription(
    paypal: PayPalClient, store: EntityStore, user_id: str, reason: str
) -> Dict[str, Any]:
    subscriptions = store.entity("Subscription")
    subs = subscriptions.filter({"user_id": user_id})
    if not subs or not subs[0].get("paypal_subscription_id"):
        raise HTTPException(404, "No active PayPal subscription")

    sub = subs[0]
    paypal.cancel_subscription(sub["paypal_subscription_id"], reason)
    subscriptions.update(sub["id"], {"status": "cancelled", "cancelled_at": utc_now_iso()})
    logger.info("Subscription %s cancelled by user %s", sub["paypal_subscription_id"], user_id)
    return {"ok": True, "subscription_id": sub["paypal_subscription_id"]}


def manage_subscription_link(paypal: PayPalClient, store: EntityStore, user_id: str) -> Dict[str, Any]:
    subs = store.entity("Subscription").filter({"user_id": user_id})
    if not subs or not subs[0].get("paypal_subscription_id"):
        raise HTTPException(404, "No PayPal subscription found")

    # PayPal has no per-subscription portal; Auto Payments lists every billing agreement.
    return {
        "url": paypal.manage_subscriptions_url(),
        "subscription_id": subs[0]["paypal_subscription_id"],
    }
