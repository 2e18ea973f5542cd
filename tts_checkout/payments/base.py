from __future__ import annotations

import abc
from dataclasses import dataclass

from tts_checkout.schemas.checkout import PaymentHandle


@dataclass(frozen=True)
class ConfirmationResult:
    ok: bool
    processor_payment_id: str | None = None
    message: str | None = None


class PaymentConfirmationBridge(abc.ABC):
    """Hands a payment handle to the processor and reports its provisional verdict.

    `ok=True` only means the processor accepted the payment method. The
    booking becomes paid once the processor webhook reaches the backend.
    """

    name: str

    @abc.abstractmethod
    async def confirm(self, handle: PaymentHandle, *, payment_method: str | None = None) -> ConfirmationResult:
        raise NotImplementedError
