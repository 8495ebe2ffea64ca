from __future__ import annotations

import math
import os
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

DEFAULT_FEE_BY_TIER = {
    "free": 12,
    "weekly": 10,
    "monthly": 9,
    "annual": 8,
    "creator_pro": 8,
    "enterprise": 6,
}

MIN_FEE_PERCENT = 1.0
MAX_FEE_PERCENT = 20.0
FALLBACK_FEE_PERCENT = 10.0

_CENT = Decimal("0.01")


def normalize_tier(tier: Optional[str]) -> str:
    return str(tier or "free").strip().lower() or "free"


def clamp_percent(value: Any) -> float:
    try:
        pct = float(value)
    except (TypeError, ValueError):
        return FALLBACK_FEE_PERCENT
    if not math.isfinite(pct):
        return FALLBACK_FEE_PERCENT
    return min(MAX_FEE_PERCENT, max(MIN_FEE_PERCENT, pct))


def fee_percent_for_tier(tier: Optional[str], env: Optional[Mapping[str, str]] = None) -> float:
    """Platform fee percent for a seller tier.

    ``MARKETPLACE_FEE_<TIER>`` overrides the built-in default when it parses to
    a finite number; anything else is ignored. Unknown tiers use the ``free``
    default. The result is always within [1, 20].
    """
    env = os.environ if env is None else env
    normalized = normalize_tier(tier)
    override = _finite(env.get(f"MARKETPLACE_FEE_{normalized.upper()}"))
    if override is not None:
        return clamp_percent(override)
    return clamp_percent(DEFAULT_FEE_BY_TIER.get(normalized, DEFAULT_FEE_BY_TIER["free"]))


def _finite(value: Any) -> Optional[float]:
    if value is None or str(value).strip() == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class FeeSplit:
    price_paid: float
    platform_fee_percent: float
    platform_fee: float
    seller_payout: float

    def as_record(self) -> dict:
        return {
            "price_paid": self.price_paid,
            "platform_fee": self.platform_fee,
            "platform_fee_percent": self.platform_fee_percent,
            "seller_payout": self.seller_payout,
        }


def compute_fee_split(amount: Any, tier: Optional[str], env: Optional[Mapping[str, str]] = None) -> FeeSplit:
    pct = fee_percent_for_tier(tier, env)
    price = Decimal(str(amount or 0))
    fee = (price * Decimal(str(pct)) / Decimal(100)).quantize(_CENT, rounding=ROUND_HALF_UP)
    payout = price - fee
    return FeeSplit(
        price_paid=float(price),
        platform_fee_percent=pct,
        platform_fee=float(fee),
        seller_payout=float(payout),
    )
