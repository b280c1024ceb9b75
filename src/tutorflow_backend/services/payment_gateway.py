'''
Thin async wrapper around the payment processor (Stripe).
The processor owns settlement, retries and idempotency; this class only
forwards requests and translates its errors.
'''
import asyncio
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import stripe

from ..common.config import settings
from ..common.exceptions import PaymentProviderError
from ..common.logger import log


class PaymentGateway:
    """
    Creates and cancels payment intents for invoices. The SDK is blocking,
    so each call runs in a worker thread.
    """
    def __init__(self, api_key: Optional[str] = None, currency: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.STRIPE_API_KEY
        self.currency = currency or settings.CURRENCY

    @staticmethod
    def to_minor_units(amount: Decimal) -> int:
        """Converts an amount such as Decimal('12.50') to 1250."""
        return int((amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))

    async def create_payment_intent(self, amount: Decimal, description: str, metadata: dict) -> str:
        """Returns the id of the created payment intent."""
        log.info(f"Creating payment intent for {amount} {self.currency}: {description}")
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=self.to_minor_units(amount),
                currency=self.currency,
                description=description,
                metadata={key: str(value) for key, value in metadata.items()},
                api_key=self.api_key
            )
        except stripe.StripeError as e:
            log.error(f"Payment processor rejected payment intent creation: {e}", exc_info=True)
            raise PaymentProviderError(str(e)) from e
        log.info(f"Payment intent {intent.id} created.")
        return intent.id

    async def cancel_payment_intent(self, payment_intent_id: str) -> None:
        log.info(f"Cancelling payment intent {payment_intent_id}")
        try:
            await asyncio.to_thread(
                stripe.PaymentIntent.cancel,
                payment_intent_id,
                api_key=self.api_key
            )
        except stripe.StripeError as e:
            log.error(f"Payment processor failed to cancel payment intent {payment_intent_id}: {e}", exc_info=True)
            raise PaymentProviderError(str(e)) from e


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; overridden in tests."""
    return PaymentGateway()
