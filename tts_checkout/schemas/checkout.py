from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

BOOKING_ATTEMPT_CEILING = 3


@dataclass(frozen=True)
class RetryState:
    attempts: int = 0
    ceiling: int = BOOKING_ATTEMPT_CEILING

    @property
    def remaining(self) -> int:
        return max(self.ceiling - self.attempts, 0)

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.ceiling


@dataclass(frozen=True)
class CustomerIdentity:
    user_id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class SingleBooking:
    booking_id: str
    booking_reference: str
    kind: Literal["single"] = "single"

    @property
    def reference(self) -> str:
        return self.booking_reference


@dataclass(frozen=True)
class BookingGroup:
    booking_group_id: str
    group_reference: str
    kind: Literal["group"] = "group"

    @property
    def reference(self) -> str:
        return self.group_reference


BookingInfo = SingleBooking | BookingGroup


def booking_info_to_dict(booking: BookingInfo) -> dict[str, str]:
    match booking:
        case SingleBooking(booking_id=booking_id, booking_reference=reference):
            return {"kind": "single", "bookingId": booking_id, "bookingReference": reference}
        case BookingGroup(booking_group_id=group_id, group_reference=reference):
            return {"kind": "group", "bookingGroupId": group_id, "groupReference": reference}
    raise TypeError(f"Unsupported booking info: {booking!r}")


def booking_info_from_dict(data: dict[str, Any] | None) -> BookingInfo | None:
    if not isinstance(data, dict):
        return None
    kind = data.get("kind")
    if kind == "single" and data.get("bookingId"):
        return SingleBooking(
            booking_id=str(data["bookingId"]),
            booking_reference=str(data.get("bookingReference") or ""),
        )
    if kind == "group" and data.get("bookingGroupId"):
        return BookingGroup(
            booking_group_id=str(data["bookingGroupId"]),
            group_reference=str(data.get("groupReference") or ""),
        )
    return None


@dataclass(frozen=True)
class PaymentHandle:
    client_secret: str
    payment_intent_id: str
    booking: BookingInfo


def payment_handle_to_dict(handle: PaymentHandle) -> dict[str, Any]:
    payload: dict[str, Any] = booking_info_to_dict(handle.booking)
    payload["clientSecret"] = handle.client_secret
    payload["paymentIntentId"] = handle.payment_intent_id
    return payload


def payment_handle_from_dict(data: dict[str, Any] | None) -> PaymentHandle | None:
    booking = booking_info_from_dict(data)
    if booking is None or not data.get("clientSecret") or not data.get("paymentIntentId"):
        return None
    return PaymentHandle(
        client_secret=str(data["clientSecret"]),
        payment_intent_id=str(data["paymentIntentId"]),
        booking=booking,
    )


@dataclass(frozen=True)
class PollAttempt:
    number: int
    fetched_at: datetime
    paid: bool
    result: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class PollResult:
    success: bool
    data: Any
    attempts: int
    timed_out: bool


@dataclass(frozen=True)
class BookingConfirmation:
    booking: BookingInfo
    payment_intent_id: str
    verified: bool

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = booking_info_to_dict(self.booking)
        payload["paymentIntentId"] = self.payment_intent_id
        payload["verified"] = self.verified
        return payload
