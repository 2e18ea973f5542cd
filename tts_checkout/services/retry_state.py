from __future__ import annotations

import abc

from tts_checkout.schemas.checkout import RetryState
from tts_checkout.services.slot_store import RETRY_SLOT, CheckoutSlotStore


class RetryStateStore(abc.ABC):
    """Persisted booking-attempt counter for one checkout session."""

    @abc.abstractmethod
    def load(self) -> RetryState:
        raise NotImplementedError

    @abc.abstractmethod
    def save(self, state: RetryState) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def clear(self) -> None:
        raise NotImplementedError


class SlotRetryStateStore(RetryStateStore):
    def __init__(self, session_key: str, slots: CheckoutSlotStore) -> None:
        self._session_key = session_key
        self._slots = slots

    def load(self) -> RetryState:
        data = self._slots.read(self._session_key, RETRY_SLOT) or {}
        try:
            attempts = int(data.get("attempts", 0))
        except (TypeError, ValueError):
            attempts = 0
        return RetryState(attempts=max(attempts, 0))

    def save(self, state: RetryState) -> None:
        self._slots.write(self._session_key, RETRY_SLOT, {"attempts": state.attempts})

    def clear(self) -> None:
        self._slots.delete(self._session_key, RETRY_SLOT)


class MemoryRetryStateStore(RetryStateStore):
    def __init__(self, attempts: int = 0) -> None:
        self._attempts = attempts

    def load(self) -> RetryState:
        return RetryState(attempts=self._attempts)

    def save(self, state: RetryState) -> None:
        self._attempts = state.attempts

    def clear(self) -> None:
        self._attempts = 0
