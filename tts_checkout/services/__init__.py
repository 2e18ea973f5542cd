from .booking_creator import BookingCreator, MemoryBookingInfoStore, SlotBookingInfoStore
from .confirmation_poller import CancellationToken, booking_status_fetcher, poll_until
from .payment_intents import MemoryPaymentHandleStore, PaymentIntentInitializer, SlotPaymentHandleStore
from .quote_snapshot import QuoteSnapshotStore
from .retry_state import MemoryRetryStateStore, RetryStateStore, SlotRetryStateStore
from .slot_store import CheckoutSlotStore, checkout_slots

__all__ = [
    "BookingCreator",
    "CancellationToken",
    "CheckoutSlotStore",
    "MemoryBookingInfoStore",
    "MemoryRetryStateStore",
    "PaymentIntentInitializer",
    "QuoteSnapshotStore",
    "RetryStateStore",
    "SlotBookingInfoStore",
    "SlotRetryStateStore",
    "booking_status_fetcher",
    "checkout_slots",
    "poll_until",
]
