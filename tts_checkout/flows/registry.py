from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from tts_checkout.clients.booking_api import BookingApiClient
from tts_checkout.core.config import Settings, settings as default_settings
from tts_checkout.core.errors import CheckoutFlowError
from tts_checkout.flows.checkout_flow import CheckoutFlow
from tts_checkout.payments.base import PaymentConfirmationBridge
from tts_checkout.payments.factory import get_confirmation_bridge
from tts_checkout.schemas.checkout import CustomerIdentity
from tts_checkout.services.slot_store import CheckoutSlotStore, checkout_slots

logger = logging.getLogger(__name__)

ApiFactory = Callable[[str | None], BookingApiClient]
BridgeFactory = Callable[[], PaymentConfirmationBridge]


class CheckoutRegistry:
    """Keeps one live `CheckoutFlow` per checkout session and the tasks driving it."""

    def __init__(
        self,
        *,
        api_factory: ApiFactory | None = None,
        bridge_factory: BridgeFactory | None = None,
        slots: CheckoutSlotStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._api_factory = api_factory or self._default_api
        self._bridge_factory = bridge_factory or get_confirmation_bridge
        self._slots = slots or checkout_slots
        self._flows: dict[str, CheckoutFlow] = {}
        self._clients: dict[str, BookingApiClient] = {}
        self._tasks: dict[str, set[asyncio.Task[None]]] = {}

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def slots(self) -> CheckoutSlotStore:
        return self._slots

    @property
    def active_sessions(self) -> int:
        return len(self._flows)

    def get(self, session_key: str) -> CheckoutFlow | None:
        return self._flows.get(session_key)

    def get_or_create(
        self,
        session_key: str,
        *,
        access_token: str | None = None,
        identity: CustomerIdentity | None = None,
    ) -> CheckoutFlow:
        flow = self._flows.get(session_key)
        if flow is not None:
            self.set_access_token(session_key, access_token)
            return flow
        api = self._api_factory(access_token)
        flow = CheckoutFlow(
            session_key,
            api=api,
            bridge=self._bridge_factory(),
            identity=identity,
            slots=self._slots,
            settings=self._settings,
        )
        self._flows[session_key] = flow
        self._clients[session_key] = api
        logger.info("checkout_flow_created", extra={"session_key": session_key})
        return flow

    def set_access_token(self, session_key: str, access_token: str | None) -> None:
        client = self._clients.get(session_key)
        if client and access_token:
            client.set_access_token(access_token)

    def spawn(self, session_key: str, phase: Awaitable[object]) -> asyncio.Task[None]:
        async def _runner() -> None:
            try:
                await phase
            except CheckoutFlowError as exc:
                logger.warning(
                    "checkout_phase_rejected",
                    extra={"session_key": session_key, "event_code": exc.event_code, "error": exc.message},
                )
            except Exception:
                logger.exception("checkout_phase_crashed", extra={"session_key": session_key})
                raise

        task = asyncio.create_task(_runner())
        tasks = self._tasks.setdefault(session_key, set())
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        return task

    async def teardown(self, session_key: str) -> bool:
        flow = self._flows.pop(session_key, None)
        if flow is None:
            return False
        flow.teardown()
        tasks = self._tasks.pop(session_key, set())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        client = self._clients.pop(session_key, None)
        if client is not None:
            await client.aclose()
        return True

    async def shutdown(self) -> None:
        for session_key in list(self._flows):
            await self.teardown(session_key)

    def _default_api(self, access_token: str | None) -> BookingApiClient:
        return BookingApiClient(access_token=access_token, settings=self._settings)
