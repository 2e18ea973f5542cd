from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from tts_checkout.clients.booking_api import BookingApiClient
from tts_checkout.core.errors import CheckoutCancelled, PollNetworkError
from tts_checkout.schemas.checkout import BookingGroup, BookingInfo, PollAttempt, PollResult, SingleBooking
from tts_checkout.schemas.enums import BookingStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

Fetcher = Callable[[], Awaitable[Any]]
Predicate = Callable[[Any], bool]

POLL_NETWORK_MESSAGE = (
    "We could not confirm your booking status right now. "
    "Your payment may still have gone through, please check your bookings again shortly."
)


class CancellationToken:
    """Signals that the caller of a long-running operation has gone away."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep for `seconds`; return True if the token fired first."""
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(seconds, 0))
        except asyncio.TimeoutError:
            return False
        return True

    async def run(self, awaitable: Awaitable[T]) -> T:
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CheckoutCancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task.result()
        raise CheckoutCancelled()


async def iter_poll_attempts(
    fetch: Fetcher,
    predicate: Predicate,
    *,
    interval: float,
    max_attempts: int,
    token: CancellationToken | None = None,
) -> AsyncIterator[PollAttempt]:
    token = token or CancellationToken()
    for number in range(1, max_attempts + 1):
        if token.cancelled:
            raise CheckoutCancelled()
        try:
            result = await token.run(fetch())
        except CheckoutCancelled:
            raise
        except Exception as exc:
            logger.warning("checkout_poll_fetch_failed", extra={"attempt": number, "error": str(exc)})
            raise PollNetworkError(POLL_NETWORK_MESSAGE, attempt=number) from exc

        paid = bool(predicate(result))
        logger.info("checkout_poll_attempt", extra={"attempt": number, "max_attempts": max_attempts, "paid": paid})
        yield PollAttempt(number=number, fetched_at=datetime.now(timezone.utc), paid=paid, result=result)
        if paid:
            return
        if number < max_attempts and await token.sleep(interval):
            raise CheckoutCancelled()


async def poll_until(
    fetch: Fetcher,
    predicate: Predicate,
    *,
    interval: float,
    max_attempts: int,
    token: CancellationToken | None = None,
    on_attempt: Callable[[PollAttempt], None] | None = None,
) -> PollResult:
    last: PollAttempt | None = None
    attempts = iter_poll_attempts(
        fetch,
        predicate,
        interval=interval,
        max_attempts=max_attempts,
        token=token,
    )
    try:
        async for attempt in attempts:
            last = attempt
            if on_attempt:
                on_attempt(attempt)
            if attempt.paid:
                return PollResult(success=True, data=attempt.result, attempts=attempt.number, timed_out=False)
    finally:
        await attempts.aclose()
    return PollResult(
        success=False,
        data=last.result if last else None,
        attempts=last.number if last else 0,
        timed_out=True,
    )


def is_booking_paid(booking: Any) -> bool:
    return isinstance(booking, dict) and booking.get("status") == BookingStatus.PAID.value


def is_group_paid(group: Any) -> bool:
    if not isinstance(group, dict):
        return False
    bookings = group.get("bookings") or []
    return bool(bookings) and all(is_booking_paid(item) for item in bookings)


def booking_status_fetcher(api: BookingApiClient, booking: BookingInfo) -> tuple[Fetcher, Predicate]:
    match booking:
        case SingleBooking(booking_id=booking_id):
            return (lambda: api.get_booking(booking_id)), is_booking_paid
        case BookingGroup(booking_group_id=group_id):
            return (lambda: api.get_booking_group(group_id)), is_group_paid
    raise TypeError(f"Unsupported booking info: {booking!r}")
