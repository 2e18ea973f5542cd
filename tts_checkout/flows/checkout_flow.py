from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from tts_checkout.clients.booking_api import BookingApiClient
from tts_checkout.core.config import Settings, settings as default_settings
from tts_checkout.core.errors import (
    BookingAttemptsExhausted,
    BookingCreationFailed,
    BookingCreationInFlight,
    CheckoutCancelled,
    CheckoutStateError,
    MissingPreconditionError,
    PaymentInitializationFailed,
    PollNetworkError,
    QuoteSnapshotMissing,
)
from tts_checkout.flows.checkout_state_machine import (
    BOOKING_FAILURES,
    CheckoutContext,
    CheckoutDecision,
    CheckoutEvent,
    CheckoutState,
    FailureCategory,
    resolve_checkout_transition,
)
from tts_checkout.payments.base import PaymentConfirmationBridge
from tts_checkout.schemas.checkout import (
    BookingConfirmation,
    BookingInfo,
    CustomerIdentity,
    PaymentHandle,
    PollAttempt,
    booking_info_to_dict,
)
from tts_checkout.schemas.quote import QuoteSnapshot
from tts_checkout.services.booking_creator import BookingCreator, SlotBookingInfoStore
from tts_checkout.services.confirmation_poller import CancellationToken, booking_status_fetcher, poll_until
from tts_checkout.services.payment_intents import PaymentIntentInitializer, SlotPaymentHandleStore
from tts_checkout.services.quote_snapshot import QuoteSnapshotStore
from tts_checkout.services.retry_state import SlotRetryStateStore
from tts_checkout.services.slot_store import CONFIRMATION_SLOT, CheckoutSlotStore, checkout_slots

logger = logging.getLogger(__name__)

NextAction = Literal["redirect", "retry", "reset", "check_back_later"]

PHASE_MESSAGES: dict[CheckoutState, str] = {
    "LOADING_QUOTE": "Loading your quote...",
    "AUTHENTICATING": "Checking your account...",
    "CREATING_BOOKING": "Creating your booking...",
    "INITIALIZING_PAYMENT": "Preparing secure payment...",
    "CONFIRMING_PAYMENT": "Enter your payment details to complete the booking.",
    "POLLING_CONFIRMATION": "Processing your payment...",
    "SUCCESS": "Booking confirmed!",
    "FAILED": "We could not complete your checkout.",
}
SIGN_IN_MESSAGE = "Please sign in to continue."
TIMEOUT_MESSAGE = "Payment received! We're processing your booking..."
SIGN_IN_PATH = "/sign-in"


@dataclass(frozen=True)
class CheckoutError:
    category: FailureCategory
    message: str
    next_action: NextAction
    retryable: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "message": self.message,
            "nextAction": self.next_action,
            "retryable": self.retryable,
        }


@dataclass(frozen=True)
class CheckoutView:
    state: CheckoutState
    message: str
    error: CheckoutError | None = None
    attempts_remaining: int | None = None
    poll_attempt: int = 0
    poll_max_attempts: int = 0
    timed_out: bool = False
    redirect_to: str | None = None
    booking: BookingInfo | None = None
    verified: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "message": self.message,
            "error": self.error.to_dict() if self.error else None,
            "attemptsRemaining": self.attempts_remaining,
            "pollAttempt": self.poll_attempt,
            "pollMaxAttempts": self.poll_max_attempts,
            "timedOut": self.timed_out,
            "redirectTo": self.redirect_to,
            "booking": booking_info_to_dict(self.booking) if self.booking else None,
            "verified": self.verified,
        }


Listener = Callable[[CheckoutView], None]


class CheckoutFlow:
    """Drives one checkout session from the stored quote to a paid booking.

    Phases run strictly one after another. Every state change goes through
    `resolve_checkout_transition`, and after `teardown()` nothing is mutated
    or published any more.
    """

    def __init__(
        self,
        session_key: str,
        *,
        api: BookingApiClient,
        bridge: PaymentConfirmationBridge,
        identity: CustomerIdentity | None = None,
        slots: CheckoutSlotStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session_key = session_key
        self._api = api
        self._bridge = bridge
        self._identity = identity
        self._slots = slots or checkout_slots
        self._settings = settings or default_settings
        self._quotes = QuoteSnapshotStore(self._slots)
        self._retry_store = SlotRetryStateStore(session_key, self._slots)
        self._booking_store = SlotBookingInfoStore(session_key, self._slots)
        self._creator = BookingCreator(api, self._retry_store, self._booking_store)
        self._handle_store = SlotPaymentHandleStore(session_key, self._slots)
        self._intents = PaymentIntentInitializer(api, self._handle_store)
        self._token = CancellationToken()
        self._listeners: list[Listener] = []

        self._state: CheckoutState = "LOADING_QUOTE"
        self._message = PHASE_MESSAGES["LOADING_QUOTE"]
        self._error: CheckoutError | None = None
        self._redirect_to: str | None = None
        self._snapshot: QuoteSnapshot | None = None
        self._booking: BookingInfo | None = None
        self._handle: PaymentHandle | None = None
        self._attempts_remaining: int | None = None
        self._poll_attempt = 0
        self._timed_out = False
        self._verified: bool | None = None
        self._submitting = False
        self._torn_down = False

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def view(self) -> CheckoutView:
        return CheckoutView(
            state=self._state,
            message=self._message,
            error=self._error,
            attempts_remaining=self._attempts_remaining,
            poll_attempt=self._poll_attempt,
            poll_max_attempts=self._settings.checkout_poll_max_attempts,
            timed_out=self._timed_out,
            redirect_to=self._redirect_to,
            booking=self._booking,
            verified=self._verified,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def can(self, event: CheckoutEvent) -> CheckoutDecision:
        return resolve_checkout_transition(self._state, event, self._context(event))

    async def start(self) -> CheckoutView:
        if self._state != "LOADING_QUOTE":
            logger.info("checkout_start_ignored", extra={"session_key": self.session_key, "state": self._state})
            return self.view()
        return await self._drive(self._start())

    async def authenticate(self, identity: CustomerIdentity) -> CheckoutView:
        self._identity = identity
        if self._state != "AUTHENTICATING":
            return self.view()
        return await self._drive(self._authenticated())

    async def retry_booking(self) -> CheckoutView:
        self._require("booking_retry")
        return await self._drive(self._retry_booking())

    def reset_allowed(self) -> bool:
        return (
            not self._torn_down
            and self._state == "FAILED"
            and self._error is not None
            and self._error.category in BOOKING_FAILURES
        )

    async def reset_booking_attempts(self) -> CheckoutView:
        if not self.reset_allowed():
            raise CheckoutStateError("booking_retry_not_available")
        self._creator.reset()
        self._attempts_remaining = self._creator.retry_state().remaining
        return await self._drive(self._retry_booking())

    async def retry_payment(self) -> CheckoutView:
        self._require("payment_retry")
        return await self._drive(self._retry_payment())

    async def submit_payment(self, payment_method: str | None = None) -> CheckoutView:
        if self._submitting:
            raise CheckoutStateError("payment_submission_in_flight")
        self._require("payment_confirmed")
        self._submitting = True
        try:
            return await self._drive(self._confirm_payment(payment_method))
        finally:
            self._submitting = False

    def teardown(self) -> None:
        if self._torn_down:
            return
        self._token.cancel()
        self._torn_down = True
        self._listeners.clear()
        logger.info("checkout_torn_down", extra={"session_key": self.session_key, "state": self._state})

    async def _drive(self, phase: Awaitable[None]) -> CheckoutView:
        try:
            await phase
        except CheckoutCancelled:
            logger.info("checkout_cancelled", extra={"session_key": self.session_key, "state": self._state})
        return self.view()

    async def _start(self) -> None:
        try:
            self._snapshot = self._quotes.load(self.session_key)
        except QuoteSnapshotMissing as exc:
            self._fail(
                "quote_missing",
                "missing_precondition",
                exc.message,
                "redirect",
                redirect_to=exc.redirect_to,
            )
            return
        self._booking = self._booking_store.load()
        self._attempts_remaining = self._creator.retry_state().remaining
        self._apply("quote_loaded")
        if self._identity is None:
            self._message = SIGN_IN_MESSAGE
            self._redirect_to = SIGN_IN_PATH
            self._publish()
            return
        self._publish()
        await self._authenticated()

    async def _authenticated(self) -> None:
        self._apply("authenticated")
        self._publish()
        await self._create_booking()

    async def _retry_booking(self) -> None:
        self._apply("booking_retry")
        self._publish()
        await self._create_booking()

    async def _create_booking(self) -> None:
        snapshot = self._require_snapshot()
        try:
            booking = await self._token.run(self._creator.create(snapshot, self._identity))
        except BookingCreationInFlight:
            return
        except BookingAttemptsExhausted as exc:
            self._attempts_remaining = 0
            self._fail("booking_failed", "booking_exhausted", exc.message, "reset")
            return
        except BookingCreationFailed as exc:
            self._attempts_remaining = exc.attempts_remaining
            self._fail("booking_failed", "booking_recoverable", exc.message, "retry")
            return
        except MissingPreconditionError as exc:
            self._fail(
                "booking_failed",
                "missing_precondition",
                exc.message,
                "redirect",
                redirect_to=exc.redirect_to,
            )
            return
        self._booking = booking
        self._attempts_remaining = self._creator.retry_state().remaining
        self._apply("booking_created")
        self._publish()
        await self._initialize_payment()

    async def _retry_payment(self) -> None:
        self._apply("payment_retry")
        self._publish()
        await self._initialize_payment()

    async def _initialize_payment(self) -> None:
        booking = self._require_booking()
        snapshot = self._require_snapshot()
        try:
            self._handle = await self._token.run(self._intents.initialize(booking, snapshot.total_price))
        except PaymentInitializationFailed as exc:
            self._fail("intent_failed", "payment", exc.message, "retry")
            return
        self._apply("intent_created")
        self._publish()

    async def _confirm_payment(self, payment_method: str | None) -> None:
        handle = self._handle
        if handle is None:
            raise CheckoutStateError("payment_not_initialized")
        result = await self._token.run(self._bridge.confirm(handle, payment_method=payment_method))
        if not result.ok:
            message = result.message or "Payment failed. Please try again."
            self._fail("payment_declined", "payment", message, "retry")
            return
        logger.info(
            "checkout_payment_confirmed",
            extra={"session_key": self.session_key, "processor_payment_id": result.processor_payment_id},
        )
        self._apply("payment_confirmed")
        self._publish()
        await self._poll_confirmation(handle)

    async def _poll_confirmation(self, handle: PaymentHandle) -> None:
        fetch, predicate = booking_status_fetcher(self._api, handle.booking)
        logger.info(
            "checkout_poll_started",
            extra={
                "session_key": self.session_key,
                "reference": handle.booking.reference,
                "budget_seconds": self._settings.checkout_poll_budget_seconds,
            },
        )
        try:
            result = await poll_until(
                fetch,
                predicate,
                interval=self._settings.checkout_poll_interval_seconds,
                max_attempts=self._settings.checkout_poll_max_attempts,
                token=self._token,
                on_attempt=self._on_poll_attempt,
            )
        except PollNetworkError as exc:
            self._fail("poll_failed", "poll_network", exc.message, "check_back_later")
            return

        if result.success:
            self._complete("poll_paid", handle, verified=True)
            return

        logger.info(
            "checkout_poll_timed_out",
            extra={"session_key": self.session_key, "attempts": result.attempts},
        )
        self._timed_out = True
        self._message = TIMEOUT_MESSAGE
        self._publish()
        if await self._token.sleep(self._settings.checkout_timeout_grace_seconds):
            raise CheckoutCancelled()
        self._complete("poll_timeout", handle, verified=False)

    def _on_poll_attempt(self, attempt: PollAttempt) -> None:
        if self._torn_down:
            return
        self._poll_attempt = attempt.number
        self._publish()

    def _complete(self, event: CheckoutEvent, handle: PaymentHandle, *, verified: bool) -> None:
        timed_out = self._timed_out
        self._apply(event)
        self._timed_out = timed_out
        self._verified = verified
        confirmation = BookingConfirmation(
            booking=handle.booking,
            payment_intent_id=handle.payment_intent_id,
            verified=verified,
        )
        self._slots.write(self.session_key, CONFIRMATION_SLOT, confirmation.to_dict())
        self._quotes.clear(self.session_key)
        self._retry_store.clear()
        self._booking_store.clear()
        self._handle_store.clear()
        logger.info(
            "checkout_succeeded",
            extra={
                "session_key": self.session_key,
                "booking_kind": handle.booking.kind,
                "reference": handle.booking.reference,
                "verified": verified,
            },
        )
        self._publish()

    def _fail(
        self,
        event: CheckoutEvent,
        category: FailureCategory,
        message: str,
        next_action: NextAction,
        *,
        redirect_to: str | None = None,
    ) -> None:
        self._apply(event)
        self._error = CheckoutError(
            category=category,
            message=message,
            next_action=next_action,
            retryable=next_action in {"retry", "reset"},
        )
        self._message = message
        self._redirect_to = redirect_to
        logger.warning(
            "checkout_failed",
            extra={
                "session_key": self.session_key,
                "category": category,
                "next_action": next_action,
                "error": message,
            },
        )
        self._publish()

    def _apply(self, event: CheckoutEvent) -> None:
        if self._torn_down:
            raise CheckoutCancelled()
        decision = resolve_checkout_transition(self._state, event, self._context(event))
        if not decision.allowed:
            raise CheckoutStateError(decision.guard_reason or "unsupported_event")
        logger.info(
            "checkout_transition",
            extra={
                "session_key": self.session_key,
                "event": event,
                "from_state": self._state,
                "to_state": decision.next_state,
            },
        )
        self._state = decision.next_state
        self._message = PHASE_MESSAGES[decision.next_state]
        self._error = None
        self._redirect_to = None
        self._timed_out = False

    def _require(self, event: CheckoutEvent) -> None:
        if self._torn_down:
            raise CheckoutStateError("checkout_torn_down")
        decision = self.can(event)
        if not decision.allowed:
            raise CheckoutStateError(decision.guard_reason or "unsupported_event")

    def _context(self, event: CheckoutEvent) -> CheckoutContext:
        failure = self._error.category if self._error else None
        if event != "booking_retry":
            return CheckoutContext(failure_category=failure)
        return CheckoutContext(failure_category=failure, attempts_remaining=self._creator.retry_state().remaining)

    def _publish(self) -> None:
        if self._torn_down:
            return
        view = self.view()
        for listener in list(self._listeners):
            listener(view)

    def _require_snapshot(self) -> QuoteSnapshot:
        if self._snapshot is None:
            raise CheckoutStateError("quote_not_loaded")
        return self._snapshot

    def _require_booking(self) -> BookingInfo:
        if self._booking is None:
            raise CheckoutStateError("booking_not_created")
        return self._booking
