import asyncio
import unittest

from checkout_fixtures import (
    FakeBookingApi,
    SqliteSlotsMixin,
    build_return_snapshot,
    build_snapshot,
    fast_settings,
    server_error,
)
from tts_checkout.core.errors import ApiError, CheckoutStateError
from tts_checkout.flows.checkout_flow import TIMEOUT_MESSAGE, CheckoutFlow, CheckoutView
from tts_checkout.payments.sandbox import SandboxConfirmationBridge
from tts_checkout.schemas.checkout import BookingGroup, CustomerIdentity, SingleBooking
from tts_checkout.services.quote_snapshot import QuoteSnapshotStore
from tts_checkout.services.slot_store import (
    BOOKING_SLOT,
    CONFIRMATION_SLOT,
    PAYMENT_SLOT,
    QUOTE_SLOT,
    RETRY_SLOT,
    CheckoutSlotStore,
)

SESSION = "session-1"
IDENTITY = CustomerIdentity(user_id="user-1", email="alex@example.com", first_name="Alex", last_name="Morgan")


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class CheckoutFlowTests(SqliteSlotsMixin, unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.setup_slots()
        self.slots = CheckoutSlotStore()
        self.api = FakeBookingApi()
        self.bridge = SandboxConfirmationBridge(declined_payment_methods={"pm_card_chargeDeclined"})
        self.views: list[CheckoutView] = []

    def tearDown(self) -> None:
        self.teardown_slots()

    def _flow(self, snapshot=None, *, identity=IDENTITY, **settings_overrides) -> CheckoutFlow:
        if snapshot is not False:
            QuoteSnapshotStore(self.slots).save(SESSION, snapshot or build_snapshot())
        flow = CheckoutFlow(
            SESSION,
            api=self.api,
            bridge=self.bridge,
            identity=identity,
            slots=self.slots,
            settings=fast_settings(**settings_overrides),
        )
        flow.subscribe(self.views.append)
        return flow

    async def test_single_journey_reaches_verified_success(self) -> None:
        self.api.status_sequence = ["PENDING_PAYMENT", "PAID"]
        flow = self._flow()

        view = await flow.start()
        self.assertEqual(view.state, "CONFIRMING_PAYMENT")
        self.assertEqual(view.booking, SingleBooking(booking_id="bk_1", booking_reference="TTS-0001"))
        self.assertEqual(view.attempts_remaining, 3)

        view = await flow.submit_payment("pm_card_visa")

        self.assertEqual(view.state, "SUCCESS")
        self.assertTrue(view.verified)
        self.assertFalse(view.timed_out)
        self.assertEqual(view.poll_attempt, 2)
        self.assertEqual(
            self.slots.read(SESSION, CONFIRMATION_SLOT),
            {
                "kind": "single",
                "bookingId": "bk_1",
                "bookingReference": "TTS-0001",
                "paymentIntentId": "pi_1",
                "verified": True,
            },
        )
        for slot in (QUOTE_SLOT, RETRY_SLOT, BOOKING_SLOT, PAYMENT_SLOT):
            self.assertIsNone(self.slots.read(SESSION, slot))

    async def test_each_phase_is_published_in_order(self) -> None:
        self.api.status_sequence = ["PAID"]
        flow = self._flow()

        await flow.start()
        await flow.submit_payment()

        states: list[str] = []
        for view in self.views:
            if not states or states[-1] != view.state:
                states.append(view.state)
        self.assertEqual(
            states,
            [
                "AUTHENTICATING",
                "CREATING_BOOKING",
                "INITIALIZING_PAYMENT",
                "CONFIRMING_PAYMENT",
                "POLLING_CONFIRMATION",
                "SUCCESS",
            ],
        )

    async def test_return_journey_pays_combined_total_for_group(self) -> None:
        self.api.status_sequence = ["PAID"]
        flow = self._flow(build_return_snapshot())

        await flow.start()
        view = await flow.submit_payment()

        self.assertEqual(view.state, "SUCCESS")
        self.assertIsInstance(view.booking, BookingGroup)
        self.assertEqual(self.api.intent_requests, [{"bookingGroupId": "grp_1", "amount": "171.00"}])

    async def test_missing_quote_redirects_to_quote_entry(self) -> None:
        flow = self._flow(snapshot=False)

        view = await flow.start()

        self.assertEqual(view.state, "FAILED")
        self.assertEqual(view.error.category, "missing_precondition")
        self.assertEqual(view.error.next_action, "redirect")
        self.assertFalse(view.error.retryable)
        self.assertEqual(view.redirect_to, "/quote")
        self.assertEqual(self.api.calls, {})

    async def test_waits_for_sign_in_before_booking(self) -> None:
        flow = self._flow(identity=None)

        view = await flow.start()
        self.assertEqual(view.state, "AUTHENTICATING")
        self.assertEqual(view.redirect_to, "/sign-in")
        self.assertEqual(self.api.calls, {})

        view = await flow.authenticate(IDENTITY)

        self.assertEqual(view.state, "CONFIRMING_PAYMENT")
        self.assertIsNone(view.redirect_to)

    async def test_recoverable_booking_failure_waits_for_explicit_retry(self) -> None:
        self.api.booking_failures = [server_error()]
        flow = self._flow()

        view = await flow.start()
        self.assertEqual(view.state, "FAILED")
        self.assertEqual(view.error.category, "booking_recoverable")
        self.assertEqual(view.error.next_action, "retry")
        self.assertEqual(view.attempts_remaining, 2)
        self.assertIn("2 attempts remaining", view.message)
        await asyncio.sleep(0.02)
        self.assertEqual(self.api.calls["create_booking"], 1)

        view = await flow.retry_booking()

        self.assertEqual(view.state, "CONFIRMING_PAYMENT")
        self.assertEqual(self.api.calls["create_booking"], 2)
        self.assertEqual(view.attempts_remaining, 3)

    async def test_exhausted_booking_requires_reset(self) -> None:
        self.api.booking_failures = [server_error(), server_error(), server_error()]
        flow = self._flow()

        await flow.start()
        await flow.retry_booking()
        view = await flow.retry_booking()

        self.assertEqual(view.state, "FAILED")
        self.assertEqual(view.error.category, "booking_exhausted")
        self.assertEqual(view.error.next_action, "reset")
        self.assertEqual(view.attempts_remaining, 0)
        with self.assertRaises(CheckoutStateError) as ctx:
            await flow.retry_booking()
        self.assertEqual(ctx.exception.guard_reason, "booking_attempts_exhausted")
        self.assertEqual(self.api.calls["create_booking"], 3)

        view = await flow.reset_booking_attempts()

        self.assertEqual(view.state, "CONFIRMING_PAYMENT")
        self.assertEqual(self.api.calls["create_booking"], 4)

    async def test_payment_initialization_failure_allows_fresh_retry(self) -> None:
        self.api.intent_failures = [ApiError("Payment service unavailable", category="server")]
        flow = self._flow()

        view = await flow.start()
        self.assertEqual(view.state, "FAILED")
        self.assertEqual(view.error.category, "payment")
        self.assertEqual(view.message, "Payment service unavailable")
        self.assertTrue(view.error.retryable)

        view = await flow.retry_payment()

        self.assertEqual(view.state, "CONFIRMING_PAYMENT")
        self.assertEqual(self.api.calls["payment_intent"], 2)
        self.assertEqual(self.api.calls["create_booking"], 1)

    async def test_declined_payment_retries_with_same_handle(self) -> None:
        self.api.status_sequence = ["PAID"]
        flow = self._flow()
        await flow.start()

        view = await flow.submit_payment("pm_card_chargeDeclined")
        self.assertEqual(view.state, "FAILED")
        self.assertEqual(view.error.category, "payment")
        self.assertEqual(view.message, "Your card was declined.")
        self.assertEqual(self.api.calls.get("status", 0), 0)

        await flow.retry_payment()
        view = await flow.submit_payment("pm_card_visa")

        self.assertEqual(view.state, "SUCCESS")
        self.assertEqual(self.api.calls["payment_intent"], 1)

    async def test_poll_timeout_degrades_to_unverified_success(self) -> None:
        flow = self._flow(checkout_poll_max_attempts=3)
        await flow.start()

        view = await flow.submit_payment()

        self.assertEqual(view.state, "SUCCESS")
        self.assertFalse(view.verified)
        self.assertTrue(view.timed_out)
        self.assertEqual(self.api.calls["status"], 3)
        timeout_views = [item for item in self.views if item.message == TIMEOUT_MESSAGE]
        self.assertEqual(timeout_views[0].state, "POLLING_CONFIRMATION")
        self.assertFalse(self.slots.read(SESSION, CONFIRMATION_SLOT)["verified"])
        self.assertIsNone(self.slots.read(SESSION, QUOTE_SLOT))

    async def test_poll_network_error_is_not_a_timeout(self) -> None:
        self.api.status_error = ApiError("offline", category="network")
        flow = self._flow()
        await flow.start()

        view = await flow.submit_payment()

        self.assertEqual(view.state, "FAILED")
        self.assertEqual(view.error.category, "poll_network")
        self.assertEqual(view.error.next_action, "check_back_later")
        self.assertFalse(view.error.retryable)
        self.assertFalse(view.timed_out)
        self.assertEqual(self.api.calls["status"], 1)
        self.assertIsNotNone(self.slots.read(SESSION, QUOTE_SLOT))

    async def test_teardown_stops_polling_and_publishing(self) -> None:
        flow = self._flow(checkout_poll_interval_seconds=0.05)
        await flow.start()

        task = asyncio.create_task(flow.submit_payment())
        await _wait_until(lambda: flow.view().poll_attempt >= 1)
        flow.teardown()
        view = await asyncio.wait_for(task, timeout=1)
        published = len(self.views)
        calls = self.api.calls["status"]
        await asyncio.sleep(0.15)

        self.assertEqual(view.state, "POLLING_CONFIRMATION")
        self.assertEqual(self.api.calls["status"], calls)
        self.assertEqual(len(self.views), published)
        self.assertIsNone(self.slots.read(SESSION, CONFIRMATION_SLOT))

    async def test_reload_reuses_persisted_booking_and_payment_handle(self) -> None:
        first = self._flow()
        await first.start()
        first.teardown()

        second = CheckoutFlow(
            SESSION,
            api=self.api,
            bridge=self.bridge,
            identity=IDENTITY,
            slots=self.slots,
            settings=fast_settings(),
        )
        view = await second.start()

        self.assertEqual(view.state, "CONFIRMING_PAYMENT")
        self.assertEqual(self.api.calls["create_booking"], 1)
        self.assertEqual(self.api.calls["payment_intent"], 1)
        self.assertEqual(self.api.intent_requests, [{"bookingId": "bk_1", "amount": "85.50"}])

        self.api.status_sequence = ["PAID"]
        view = await second.submit_payment()

        self.assertEqual(view.state, "SUCCESS")
        self.assertEqual(self.slots.read(SESSION, CONFIRMATION_SLOT)["paymentIntentId"], "pi_1")
        self.assertIsNone(self.slots.read(SESSION, PAYMENT_SLOT))

    async def test_failed_intent_is_not_persisted_across_reload(self) -> None:
        self.api.intent_failures = [ApiError("Payment service unavailable", category="server")]
        first = self._flow()
        await first.start()
        first.teardown()
        self.assertIsNone(self.slots.read(SESSION, PAYMENT_SLOT))

        second = CheckoutFlow(
            SESSION,
            api=self.api,
            bridge=self.bridge,
            identity=IDENTITY,
            slots=self.slots,
            settings=fast_settings(),
        )
        view = await second.start()

        self.assertEqual(view.state, "CONFIRMING_PAYMENT")
        self.assertEqual(self.api.calls["payment_intent"], 2)
        self.assertEqual(self.slots.read(SESSION, PAYMENT_SLOT)["paymentIntentId"], "pi_2")

    async def test_repeated_start_while_booking_outstanding_creates_one_booking(self) -> None:
        self.api.booking_gate = asyncio.Event()
        flow = self._flow()

        first = asyncio.create_task(flow.start())
        second = asyncio.create_task(flow.start())
        await _wait_until(lambda: self.api.calls.get("create_booking") == 1)
        await asyncio.sleep(0.01)
        self.assertEqual(flow.view().state, "CREATING_BOOKING")

        self.api.booking_gate.set()
        await asyncio.gather(first, second)

        self.assertEqual(flow.view().state, "CONFIRMING_PAYMENT")
        self.assertEqual(self.api.calls["create_booking"], 1)
        self.assertEqual(self.api.calls["payment_intent"], 1)

    async def test_payment_cannot_be_submitted_before_intent(self) -> None:
        flow = self._flow(identity=None)
        await flow.start()

        with self.assertRaises(CheckoutStateError) as ctx:
            await flow.submit_payment()

        self.assertEqual(ctx.exception.guard_reason, "out_of_order")

    async def test_start_twice_does_not_restart_flow(self) -> None:
        flow = self._flow()
        await flow.start()

        view = await flow.start()

        self.assertEqual(view.state, "CONFIRMING_PAYMENT")
        self.assertEqual(self.api.calls["create_booking"], 1)


if __name__ == "__main__":
    unittest.main()
