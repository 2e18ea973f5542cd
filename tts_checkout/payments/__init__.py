from tts_checkout.payments.base import ConfirmationResult, PaymentConfirmationBridge
from tts_checkout.payments.factory import get_confirmation_bridge

__all__ = ["ConfirmationResult", "PaymentConfirmationBridge", "get_confirmation_bridge"]
