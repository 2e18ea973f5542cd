from __future__ import annotations

import logging
from collections.abc import Iterable

from tts_checkout.payments.base import ConfirmationResult, PaymentConfirmationBridge
from tts_checkout.schemas.checkout import PaymentHandle

logger = logging.getLogger(__name__)

DECLINE_MESSAGE = "Your card was declined."


class SandboxConfirmationBridge(PaymentConfirmationBridge):
    """Development bridge that approves payments without a processor."""

    name = "sandbox"

    def __init__(self, declined_payment_methods: Iterable[str] = ()) -> None:
        self._declined = set(declined_payment_methods)

    async def confirm(self, handle: PaymentHandle, *, payment_method: str | None = None) -> ConfirmationResult:
        if payment_method and payment_method in self._declined:
            logger.info("sandbox_payment_declined", extra={"payment_intent_id": handle.payment_intent_id})
            return ConfirmationResult(ok=False, message=DECLINE_MESSAGE)
        logger.info("sandbox_payment_confirmed", extra={"payment_intent_id": handle.payment_intent_id})
        return ConfirmationResult(ok=True, processor_payment_id=handle.payment_intent_id)
