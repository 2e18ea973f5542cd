from __future__ import annotations

import abc
import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal

from tts_checkout.clients.booking_api import BookingApiClient
from tts_checkout.core.errors import ApiError, PaymentInitializationFailed
from tts_checkout.schemas.checkout import (
    BookingGroup,
    BookingInfo,
    PaymentHandle,
    SingleBooking,
    payment_handle_from_dict,
    payment_handle_to_dict,
)
from tts_checkout.services.slot_store import PAYMENT_SLOT, CheckoutSlotStore

logger = logging.getLogger(__name__)


def format_amount(amount: float | Decimal) -> str:
    return str(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class PaymentHandleStore(abc.ABC):
    @abc.abstractmethod
    def load(self) -> PaymentHandle | None:
        raise NotImplementedError

    @abc.abstractmethod
    def save(self, handle: PaymentHandle) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def clear(self) -> None:
        raise NotImplementedError


class SlotPaymentHandleStore(PaymentHandleStore):
    def __init__(self, session_key: str, slots: CheckoutSlotStore) -> None:
        self._session_key = session_key
        self._slots = slots

    def load(self) -> PaymentHandle | None:
        return payment_handle_from_dict(self._slots.read(self._session_key, PAYMENT_SLOT))

    def save(self, handle: PaymentHandle) -> None:
        self._slots.write(self._session_key, PAYMENT_SLOT, payment_handle_to_dict(handle))

    def clear(self) -> None:
        self._slots.delete(self._session_key, PAYMENT_SLOT)


class MemoryPaymentHandleStore(PaymentHandleStore):
    def __init__(self, handle: PaymentHandle | None = None) -> None:
        self._handle = handle

    def load(self) -> PaymentHandle | None:
        return self._handle

    def save(self, handle: PaymentHandle) -> None:
        self._handle = handle

    def clear(self) -> None:
        self._handle = None


class PaymentIntentInitializer:
    """Obtains at most one payment handle per booking.

    A handle already in memory or in the handle store is returned as is and
    concurrent callers for the same booking await the same request. Failures
    are never stored.
    """

    def __init__(self, api: BookingApiClient, handle_store: PaymentHandleStore | None = None) -> None:
        self._api = api
        self._store = handle_store or MemoryPaymentHandleStore()
        self._handles: dict[BookingInfo, PaymentHandle] = {}
        self._pending: dict[BookingInfo, asyncio.Future[PaymentHandle]] = {}

    def cached(self, booking: BookingInfo) -> PaymentHandle | None:
        handle = self._handles.get(booking)
        if handle is not None:
            return handle
        stored = self._store.load()
        if stored is not None and stored.booking == booking:
            self._handles[booking] = stored
            return stored
        return None

    async def initialize(self, booking: BookingInfo, amount: float | Decimal) -> PaymentHandle:
        handle = self.cached(booking)
        if handle is not None:
            logger.info(
                "payment_intent_reused",
                extra={"reference": booking.reference, "payment_intent_id": handle.payment_intent_id},
            )
            return handle
        pending = self._pending.get(booking)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future[PaymentHandle] = asyncio.get_running_loop().create_future()
        self._pending[booking] = future
        try:
            handle = await self._request(booking, format_amount(amount))
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Retrieve the exception so an unawaited future does not warn.
            future.exception()
            raise
        else:
            self._handles[booking] = handle
            future.set_result(handle)
            self._store.save(handle)
            return handle
        finally:
            self._pending.pop(booking, None)

    async def _request(self, booking: BookingInfo, amount: str) -> PaymentHandle:
        try:
            match booking:
                case SingleBooking(booking_id=booking_id):
                    data = await self._api.create_payment_intent(booking_id=booking_id, amount=amount)
                case BookingGroup(booking_group_id=group_id):
                    data = await self._api.create_group_payment_intent(booking_group_id=group_id, amount=amount)
                case _:
                    raise TypeError(f"Unsupported booking info: {booking!r}")
            handle = PaymentHandle(
                client_secret=str(data["clientSecret"]),
                payment_intent_id=str(data["paymentIntentId"]),
                booking=booking,
            )
        except ApiError as exc:
            logger.warning(
                "payment_intent_failed",
                extra={"booking_kind": booking.kind, "reference": booking.reference, "error": exc.message},
            )
            raise PaymentInitializationFailed(exc.message) from exc
        except KeyError as exc:
            logger.warning(
                "payment_intent_malformed",
                extra={"booking_kind": booking.kind, "reference": booking.reference, "missing": str(exc)},
            )
            raise PaymentInitializationFailed("Failed to initialize payment") from exc
        logger.info(
            "payment_intent_created",
            extra={
                "booking_kind": booking.kind,
                "reference": booking.reference,
                "payment_intent_id": handle.payment_intent_id,
                "amount": amount,
            },
        )
        return handle
