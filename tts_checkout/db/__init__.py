from tts_checkout.db.base import Base
from tts_checkout.db.models import CheckoutSlot

__all__ = [
    "Base",
    "CheckoutSlot",
]
