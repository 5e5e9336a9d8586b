import asyncio
import logging
from typing import Any, Dict, List, Optional

import stripe

from app.config import Config
from app.processors.base import BaseGateway

logger = logging.getLogger(__name__)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class StripeGateway(BaseGateway):
    """
    Stripe PaymentIntents.
    Amounts: major units in, minor units (x100) on the wire
    Methods: Config.PAYMENT_METHOD_TYPES (promptpay by default)
    Errors: every SDK failure is re-raised as RuntimeError
    """

    def __init__(self, api_key: Optional[str] = None, payment_method_types: Optional[List[str]] = None):
        self.api_key = api_key if api_key is not None else Config.STRIPE_SECRET_KEY
        self.payment_method_types = payment_method_types or Config.PAYMENT_METHOD_TYPES

    @property
    def gateway_name(self) -> str:
        return "stripe"

    async def _call(self, method, *args, **kwargs):
        if not self.api_key:
            raise RuntimeError("Stripe secret key missing (STRIPE_SECRET_KEY)")
        stripe.api_key = self.api_key
        try:
            # Blocking SDK call; keep it off the event loop.
            return await asyncio.to_thread(method, *args, **kwargs)
        except stripe.StripeError as e:
            raise RuntimeError(f"Stripe: {e.user_message or str(e)}") from e

    async def create_intent(self, amount: float, currency: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=to_minor_units(amount),
            currency=currency,
            payment_method_types=self.payment_method_types,
            metadata=metadata,
        )
        logger.info("Created payment intent %s for %s %s", intent["id"], amount, currency)
        return {"id": intent["id"], "client_secret": intent["client_secret"]}

    async def update_intent(self, intent_id: str, amount: float) -> None:
        await self._call(stripe.PaymentIntent.modify, intent_id, amount=to_minor_units(amount))
        logger.info("Updated payment intent %s to %s", intent_id, amount)

    async def cancel_intent(self, intent_id: str, reason: str) -> None:
        await self._call(stripe.PaymentIntent.cancel, intent_id, cancellation_reason=reason)
        logger.info("Canceled payment intent %s (%s)", intent_id, reason)
