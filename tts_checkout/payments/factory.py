from __future__ import annotations

from tts_checkout.core.config import settings
from tts_checkout.payments.base import PaymentConfirmationBridge
from tts_checkout.payments.sandbox import SandboxConfirmationBridge
from tts_checkout.payments.stripe_bridge import StripeConfirmationBridge


def get_confirmation_bridge(bridge_name: str | None = None) -> PaymentConfirmationBridge:
    name = (bridge_name or settings.payment_bridge).lower()
    if name == StripeConfirmationBridge.name:
        return StripeConfirmationBridge(settings)
    return SandboxConfirmationBridge()
