from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class CreditCheckoutIn(BaseModel):
    credit_pack: str = Field(min_length=1, max_length=32)


class MarketplaceCheckoutIn(BaseModel):
    asset_id: str = Field(min_length=1)


class FeaturedCheckoutIn(BaseModel):
    asset_id: str = Field(min_length=1)
    duration_days: int


class CustomModelCheckoutIn(BaseModel):
    model_name: str = ""
    training_images: List[str] = Field(default_factory=list)
    rental_price: float = Field(default=0, ge=0)
    tier: str = "basic"


class SubscriptionCheckoutIn(BaseModel):
    tier: str = Field(min_length=1)
    email: Optional[str] = None


class CancelSubscriptionIn(BaseModel):
    reason: str = "Cancelled by user request"


class CheckoutOut(BaseModel):
    checkout_url: Optional[str] = None
    order_id: Optional[str] = None
    subscription_id: Optional[str] = None
    model_id: Optional[str] = None
    placement_slot: Optional[int] = None


class BillingConfigOut(BaseModel):
    paypal_mode: str
    paypal_base_url: str
    subscription_tiers: List[str]
    marketplace_fees: Dict[str, float]
    manage_subscriptions_url: str
    webhook_verification: str


class ManageSubscriptionOut(BaseModel):
    url: str
    subscription_id: str
