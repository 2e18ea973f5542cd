from __future__ import annotations

from typing import Any

from sqlalchemy import delete, select

from tts_checkout.db.models import CheckoutSlot
from tts_checkout.db.session import get_session

QUOTE_SLOT = "quote"
RETRY_SLOT = "retry"
BOOKING_SLOT = "booking"
PAYMENT_SLOT = "payment"
CONFIRMATION_SLOT = "confirmation"


class CheckoutSlotStore:
    """Durable per-session key/value slots that survive reloads and restarts."""

    def read(self, session_key: str, slot: str) -> dict[str, Any] | None:
        with get_session() as session:
            record = session.get(CheckoutSlot, (session_key, slot))
            if not record or not isinstance(record.data, dict):
                return None
            return dict(record.data)

    def ping(self) -> None:
        with get_session() as session:
            session.execute(select(CheckoutSlot.session_key).limit(1))

    def write(self, session_key: str, slot: str, data: dict[str, Any]) -> None:
        with get_session() as session:
            record = session.get(CheckoutSlot, (session_key, slot))
            if record:
                record.data = data
            else:
                session.add(CheckoutSlot(session_key=session_key, slot=slot, data=data))
            session.flush()

    def delete(self, session_key: str, slot: str) -> None:
        self.clear(session_key, slot)

    def clear(self, session_key: str, *slots: str) -> None:
        statement = delete(CheckoutSlot).where(CheckoutSlot.session_key == session_key)
        if slots:
            statement = statement.where(CheckoutSlot.slot.in_(slots))
        with get_session() as session:
            session.execute(statement)


checkout_slots = CheckoutSlotStore()
