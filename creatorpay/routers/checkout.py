from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from creatorpay.models import (
    CancelSubscriptionIn,
    CheckoutOut,
    CreditCheckoutIn,
    CustomModelCheckoutIn,
    FeaturedCheckoutIn,
    ManageSubscriptionOut,
    MarketplaceCheckoutIn,
    SubscriptionCheckoutIn,
)
from creatorpay.services import checkout
from creatorpay.services.entities import EntityStore, get_entity_store
from creatorpay.services.paypal import PayPalClient, get_paypal_client

router = APIRouter(tags=["checkout"])


def require_user(x_user_id: Optional[str]) -> str:
    if not x_user_id:
        raise HTTPException(401, "Missing X-User-Id (login assumed handled)")
    return x_user_id


@router.post("/api/checkout/credits", response_model=CheckoutOut)
def credit_checkout(
    body: CreditCheckoutIn,
    x_user_id: Optional[str] = Header(default=None),
    paypal: PayPalClient = Depends(get_paypal_client),
):
    user_id = require_user(x_user_id)
    return checkout.start_credit_checkout(paypal, user_id, body.credit_pack)


@router.post("/api/checkout/marketplace", response_model=CheckoutOut)
def marketplace_checkout(
    body: MarketplaceCheckoutIn,
    x_user_id: Optional[str] = Header(default=None),
    paypal: PayPalClient = Depends(get_paypal_client),
    store: EntityStore = Depends(get_entity_store),
):
    user_id = require_user(x_user_id)
    return checkout.start_marketplace_checkout(paypal, store, user_id, body.asset_id)


@router.post("/api/checkout/featured", response_model=CheckoutOut)
def featured_checkout(
    body: FeaturedCheckoutIn,
    x_user_id: Optional[str] = Header(default=None),
    paypal: PayPalClient = Depends(get_paypal_client),
    store: EntityStore = Depends(get_entity_store),
):
    user_id = require_user(x_user_id)
    return checkout.start_featured_checkout(paypal, store, user_id, body.asset_id, body.duration_days)


@router.post("/api/checkout/custom-model", response_model=CheckoutOut)
def custom_model_checkout(
    body: CustomModelCheckoutIn,
    x_user_id: Optional[str] = Header(default=None),
    paypal: PayPalClient = Depends(get_paypal_client),
    store: EntityStore = Depends(get_entity_store),
):
    user_id = require_user(x_user_id)
    return checkout.start_custom_model_checkout(paypal, store, user_id, body)


@router.post("/api/checkout/subscription", response_model=CheckoutOut)
def subscription_checkout(
    body: SubscriptionCheckoutIn,
    x_user_id: Optional[str] = Header(default=None),
    paypal: PayPalClient = Depends(get_paypal_client),
):
    user_id = require_user(x_user_id)
    return checkout.start_subscription_checkout(paypal, user_id, body.tier, body.email)


@router.post("/api/subscriptions/cancel")
def cancel_subscription(
    body: CancelSubscriptionIn,
    x_user_id: Optional[str] = Header(default=None),
    paypal: PayPalClient = Depends(get_paypal_client),
    store: EntityStore = Depends(get_entity_store),
):
    user_id = require_user(x_user_id)
    return checkout.cancel_user_subscription(paypal, store, user_id, body.reason)


@router.get("/api/subscriptions/manage", response_model=ManageSubscriptionOut)
def manage_subscription(
    x_user_id: Optional[str] = Header(default=None),
    paypal: PayPalClient = Depends(get_paypal_client),
    store: EntityStore = Depends(get_entity_store),
):
    user_id = require_user(x_user_id)
    return checkout.manage_subscription_link(paypal, store, user_id)
