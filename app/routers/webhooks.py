import json
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.config import Config
from app.database import get_db
from app.services.checkout import apply_gateway_event

logger = logging.getLogger(__name__)

router = APIRouter()


def _event_reason(event_type: str, intent: dict):
    if event_type == "payment_intent.canceled":
        return intent.get("cancellation_reason")
    if event_type == "payment_intent.payment_failed":
        return (intent.get("last_payment_error") or {}).get("code")
    return None


@router.post("/gateway")
async def gateway_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Payment gateway events.

    The signature is checked when STRIPE_WEBHOOK_SECRET is set. The intent id
    names the payment and `metadata.tid` its transaction.
    """
    payload = await request.body()

    if Config.STRIPE_WEBHOOK_SECRET:
        sig_header = request.headers.get("Stripe-Signature")
        if not sig_header:
            raise HTTPException(status_code=400, detail="Missing webhook signature")
        try:
            stripe.Webhook.construct_event(payload, sig_header, Config.STRIPE_WEBHOOK_SECRET)
        except (ValueError, stripe.SignatureVerificationError):
            logger.warning("Cannot verify webhook signature.")
            raise HTTPException(status_code=400, detail="Invalid webhook signature")

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    event_type = event.get("type")
    intent = (event.get("data") or {}).get("object") or {}
    pid = intent.get("id")
    tid = (intent.get("metadata") or {}).get("tid")

    if not tid or not pid:
        logger.info("Cannot extract tid or pid. (%s)", event_type)
        return {"received": True}

    try:
        await apply_gateway_event(tid, pid, event_type, db, reason=_event_reason(event_type, intent))
    except ValueError as e:
        logger.warning("Gateway event %s for %s: %s", event_type, pid, e)

    return {"received": True}
