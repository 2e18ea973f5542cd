from __future__ import annotations

import asyncio
import logging

import stripe

from tts_checkout.core.config import Settings
from tts_checkout.payments.base import ConfirmationResult, PaymentConfirmationBridge
from tts_checkout.schemas.checkout import PaymentHandle

CONFIRMED_STATUSES = {"succeeded", "processing", "requires_capture"}
UNAVAILABLE_MESSAGE = "Payment is not available right now. Please try again later."
ACTION_REQUIRED_MESSAGE = "Additional authentication is required to complete this payment."


class StripeConfirmationBridge(PaymentConfirmationBridge):
    name = "stripe"

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._logger = logging.getLogger(__name__)

    async def confirm(self, handle: PaymentHandle, *, payment_method: str | None = None) -> ConfirmationResult:
        if not self._settings.stripe_secret_key:
            self._logger.warning(
                "stripe_secret_key_missing",
                extra={"payment_intent_id": handle.payment_intent_id},
            )
            return ConfirmationResult(ok=False, message=UNAVAILABLE_MESSAGE)
        try:
            intent = await asyncio.to_thread(self._confirm_intent, handle, payment_method)
        except stripe.CardError as exc:
            self._logger.info(
                "stripe_card_declined",
                extra={"payment_intent_id": handle.payment_intent_id, "code": exc.code},
            )
            return ConfirmationResult(ok=False, message=exc.user_message or str(exc))
        except stripe.StripeError as exc:
            self._logger.warning(
                "stripe_confirm_failed",
                extra={"payment_intent_id": handle.payment_intent_id, "error": str(exc)},
            )
            return ConfirmationResult(ok=False, message=exc.user_message or "Payment failed. Please try again.")

        status = intent.get("status")
        if status in CONFIRMED_STATUSES:
            self._logger.info(
                "stripe_payment_confirmed",
                extra={"payment_intent_id": intent.get("id"), "status": status},
            )
            return ConfirmationResult(ok=True, processor_payment_id=intent.get("id"))
        # Redirects are suppressed, so an intent that still needs customer action cannot finish here.
        self._logger.info(
            "stripe_payment_incomplete",
            extra={"payment_intent_id": handle.payment_intent_id, "status": status},
        )
        if status == "requires_action":
            return ConfirmationResult(ok=False, message=ACTION_REQUIRED_MESSAGE)
        return ConfirmationResult(ok=False, message="Payment was not completed. Please try another payment method.")

    def _confirm_intent(self, handle: PaymentHandle, payment_method: str | None) -> dict:
        params = {"api_key": self._settings.stripe_secret_key}
        if payment_method:
            params["payment_method"] = payment_method
        intent = stripe.PaymentIntent.confirm(handle.payment_intent_id, **params)
        return dict(intent)
