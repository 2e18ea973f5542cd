from __future__ import annotations

import logging

from pydantic import ValidationError

from tts_checkout.core.errors import QuoteSnapshotMissing
from tts_checkout.schemas.quote import QuoteSnapshot
from tts_checkout.services.slot_store import QUOTE_SLOT, CheckoutSlotStore

logger = logging.getLogger(__name__)


class QuoteSnapshotStore:
    def __init__(self, slots: CheckoutSlotStore) -> None:
        self._slots = slots

    def save(self, session_key: str, snapshot: QuoteSnapshot) -> None:
        self._slots.write(session_key, QUOTE_SLOT, snapshot.model_dump(mode="json", by_alias=True))

    def load(self, session_key: str) -> QuoteSnapshot:
        """Return the stored snapshot or raise `QuoteSnapshotMissing`.

        A missing slot and an unparsable one are treated alike: there is
        nothing to recover, so the caller sends the customer back to /quote.
        """
        data = self._slots.read(session_key, QUOTE_SLOT)
        if data is None:
            logger.info("quote_snapshot_missing", extra={"session_key": session_key})
            raise QuoteSnapshotMissing()
        try:
            return QuoteSnapshot.model_validate(data)
        except ValidationError as exc:
            logger.warning(
                "quote_snapshot_unparsable",
                extra={"session_key": session_key, "error_count": exc.error_count()},
            )
            raise QuoteSnapshotMissing() from exc

    def clear(self, session_key: str) -> None:
        self._slots.delete(session_key, QUOTE_SLOT)
