from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

import anyio
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from creatorpay.core.settings import S
from creatorpay.metrics import record_verification_failure, record_webhook_event
from creatorpay.models import BillingConfigOut
from creatorpay.services.entities import EntityStore, get_entity_store
from creatorpay.services.fees import DEFAULT_FEE_BY_TIER, fee_percent_for_tier
from creatorpay.services.paypal import PayPalClient, get_paypal_client
from creatorpay.services.webhook_events import claim_event, handle_paypal_event, release_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["paypal"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.get("/api/billing/config", response_model=BillingConfigOut)
def billing_config(paypal: PayPalClient = Depends(get_paypal_client)):
    return {
        "paypal_mode": S.paypal_mode,
        "paypal_base_url": S.paypal_base_url,
        "subscription_tiers": [tier for tier, plan in S.plan_ids_by_tier.items() if plan],
        "marketplace_fees": {tier: fee_percent_for_tier(tier) for tier in DEFAULT_FEE_BY_TIER},
        "manage_subscriptions_url": paypal.manage_subscriptions_url(),
        "webhook_verification": "enabled" if S.paypal_webhook_id else "bypassed",
    }


def process_webhook(
    paypal: PayPalClient,
    store: EntityStore,
    headers: Mapping[str, str],
    raw_body: bytes,
) -> Any:
    if not paypal.verify_webhook_signature(headers, raw_body):
        record_verification_failure()
        logger.warning("Rejected PayPal webhook with invalid signature")
        return _error(400, "Invalid webhook signature")

    try:
        event = json.loads(raw_body.decode("utf-8") or "{}")
    except ValueError:
        return _error(400, "Webhook body is not valid JSON")
    if not isinstance(event, dict):
        return _error(400, "Webhook body must be a JSON object")

    event_type = str(event.get("event_type") or "")
    logger.info("PayPal webhook event: %s (%s)", event_type, event.get("id"))

    claimed = False
    if S.paypal_webhook_dedupe:
        if not claim_event(store, event):
            record_webhook_event(event_type, "deduped")
            return {"received": True, "deduped": True}
        claimed = True

    try:
        result = handle_paypal_event(store, event, settings=S)
    except Exception:
        # PayPal retries failed deliveries; the retry must not look like a replay.
        if claimed:
            release_event(store, event)
        record_webhook_event(event_type, "failed")
        raise
    record_webhook_event(event_type, "handled" if result.handled else "ignored")
    return {"received": True}


@router.post("/api/paypal/webhook")
async def paypal_webhook(
    req: Request,
    paypal: PayPalClient = Depends(get_paypal_client),
    store: EntityStore = Depends(get_entity_store),
):
    raw_body = await req.body()
    headers: Dict[str, str] = dict(req.headers)
    return await anyio.to_thread.run_sync(process_webhook, paypal, store, headers, raw_body)
