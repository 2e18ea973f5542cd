from __future__ import annotations

import abc
import logging

from tts_checkout.clients.booking_api import BookingApiClient
from tts_checkout.core.errors import (
    ApiError,
    BookingAttemptsExhausted,
    BookingCreationFailed,
    BookingCreationInFlight,
    MissingPreconditionError,
    contextual_error_message,
)
from tts_checkout.schemas.checkout import (
    BookingGroup,
    BookingInfo,
    CustomerIdentity,
    RetryState,
    SingleBooking,
    booking_info_from_dict,
    booking_info_to_dict,
)
from tts_checkout.schemas.quote import QuoteSnapshot
from tts_checkout.services.booking_payload import build_booking_payload
from tts_checkout.services.retry_state import RetryStateStore
from tts_checkout.services.slot_store import BOOKING_SLOT, CheckoutSlotStore

logger = logging.getLogger(__name__)

EXHAUSTED_SUFFIX = "Maximum retry attempts reached. Please try again later or contact support."


class BookingInfoStore(abc.ABC):
    @abc.abstractmethod
    def load(self) -> BookingInfo | None:
        raise NotImplementedError

    @abc.abstractmethod
    def save(self, booking: BookingInfo) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def clear(self) -> None:
        raise NotImplementedError


class SlotBookingInfoStore(BookingInfoStore):
    def __init__(self, session_key: str, slots: CheckoutSlotStore) -> None:
        self._session_key = session_key
        self._slots = slots

    def load(self) -> BookingInfo | None:
        return booking_info_from_dict(self._slots.read(self._session_key, BOOKING_SLOT))

    def save(self, booking: BookingInfo) -> None:
        self._slots.write(self._session_key, BOOKING_SLOT, booking_info_to_dict(booking))

    def clear(self) -> None:
        self._slots.delete(self._session_key, BOOKING_SLOT)


class MemoryBookingInfoStore(BookingInfoStore):
    def __init__(self, booking: BookingInfo | None = None) -> None:
        self._booking = booking

    def load(self) -> BookingInfo | None:
        return self._booking

    def save(self, booking: BookingInfo) -> None:
        self._booking = booking

    def clear(self) -> None:
        self._booking = None


def attempts_remaining_message(remaining: int) -> str:
    if remaining <= 0:
        return f"0 attempts remaining. {EXHAUSTED_SUFFIX}"
    noun = "attempt" if remaining == 1 else "attempts"
    return f"{remaining} {noun} remaining."


class BookingCreator:
    """Creates one booking (or one linked return pair) per checkout session.

    Attempts are counted pessimistically: the persisted counter is bumped
    before the request goes out, so a crash mid-request still consumes an
    attempt. A success forgives earlier failures and removes the counter.
    """

    def __init__(
        self,
        api: BookingApiClient,
        retry_store: RetryStateStore,
        booking_store: BookingInfoStore,
    ) -> None:
        self._api = api
        self._retry_store = retry_store
        self._booking_store = booking_store
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def retry_state(self) -> RetryState:
        return self._retry_store.load()

    def reset(self) -> None:
        self._retry_store.clear()
        logger.info("booking_attempts_reset")

    async def create(self, snapshot: QuoteSnapshot, identity: CustomerIdentity | None) -> BookingInfo:
        # The flag is raised before the first await so a re-entrant call sees it.
        if self._in_flight:
            logger.warning("booking_creation_suppressed")
            raise BookingCreationInFlight("A booking request is already in progress.")
        self._in_flight = True
        try:
            return await self._create(snapshot, identity)
        finally:
            self._in_flight = False

    async def _create(self, snapshot: QuoteSnapshot, identity: CustomerIdentity | None) -> BookingInfo:
        existing = self._booking_store.load()
        if existing is not None:
            logger.info(
                "booking_creation_reused",
                extra={"booking_kind": existing.kind, "reference": existing.reference},
            )
            return existing
        if identity is None:
            raise MissingPreconditionError("Please sign in to continue.", redirect_to="/sign-in")

        state = self._retry_store.load()
        if state.exhausted:
            logger.warning("booking_attempts_exhausted", extra={"attempts": state.attempts})
            raise BookingAttemptsExhausted(
                f"Failed to create booking after {state.attempts} attempts. {attempts_remaining_message(0)}"
            )

        attempted = RetryState(attempts=state.attempts + 1, ceiling=state.ceiling)
        self._retry_store.save(attempted)

        payload = build_booking_payload(snapshot)
        try:
            if snapshot.is_return:
                created = await self._api.create_return_booking(payload)
                booking: BookingInfo = BookingGroup(
                    booking_group_id=str(created["id"]),
                    group_reference=str(created.get("groupReference") or ""),
                )
            else:
                created = await self._api.create_booking(payload)
                booking = SingleBooking(
                    booking_id=str(created["id"]),
                    booking_reference=str(created.get("bookingReference") or ""),
                )
        except (ApiError, KeyError) as exc:
            remaining = attempted.remaining
            message = f"{contextual_error_message(exc, 'submit')} {attempts_remaining_message(remaining)}"
            logger.warning(
                "booking_creation_failed",
                extra={
                    "user_id": identity.user_id,
                    "attempt": attempted.attempts,
                    "attempts_remaining": remaining,
                    "error": str(exc),
                },
            )
            if remaining == 0:
                raise BookingAttemptsExhausted(message) from exc
            raise BookingCreationFailed(message, attempts_remaining=remaining) from exc

        self._booking_store.save(booking)
        self._retry_store.clear()
        logger.info(
            "booking_created",
            extra={
                "user_id": identity.user_id,
                "booking_kind": booking.kind,
                "reference": booking.reference,
                "attempt": attempted.attempts,
            },
        )
        return booking
