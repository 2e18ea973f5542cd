from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

CheckoutState = Literal[
    "LOADING_QUOTE",
    "AUTHENTICATING",
    "CREATING_BOOKING",
    "INITIALIZING_PAYMENT",
    "CONFIRMING_PAYMENT",
    "POLLING_CONFIRMATION",
    "SUCCESS",
    "FAILED",
]

CheckoutEvent = Literal[
    "quote_loaded",
    "quote_missing",
    "authenticated",
    "booking_created",
    "booking_failed",
    "booking_retry",
    "intent_created",
    "intent_failed",
    "payment_confirmed",
    "payment_declined",
    "payment_retry",
    "poll_paid",
    "poll_timeout",
    "poll_failed",
    "cancelled",
]

FailureCategory = Literal[
    "missing_precondition",
    "booking_recoverable",
    "booking_exhausted",
    "payment",
    "poll_network",
]

TERMINAL_STATES = {"SUCCESS", "FAILED"}
BOOKING_FAILURES = {"booking_recoverable", "booking_exhausted"}

# Forward edges: (state, event) -> next state.
_FORWARD: dict[tuple[CheckoutState, CheckoutEvent], CheckoutState] = {
    ("LOADING_QUOTE", "quote_loaded"): "AUTHENTICATING",
    ("LOADING_QUOTE", "quote_missing"): "FAILED",
    ("AUTHENTICATING", "authenticated"): "CREATING_BOOKING",
    ("CREATING_BOOKING", "booking_created"): "INITIALIZING_PAYMENT",
    ("CREATING_BOOKING", "booking_failed"): "FAILED",
    ("INITIALIZING_PAYMENT", "intent_created"): "CONFIRMING_PAYMENT",
    ("INITIALIZING_PAYMENT", "intent_failed"): "FAILED",
    ("CONFIRMING_PAYMENT", "payment_confirmed"): "POLLING_CONFIRMATION",
    ("CONFIRMING_PAYMENT", "payment_declined"): "FAILED",
    ("POLLING_CONFIRMATION", "poll_paid"): "SUCCESS",
    ("POLLING_CONFIRMATION", "poll_timeout"): "SUCCESS",
    ("POLLING_CONFIRMATION", "poll_failed"): "FAILED",
}


@dataclass(frozen=True)
class CheckoutContext:
    failure_category: FailureCategory | None = None
    attempts_remaining: int = 0


@dataclass(frozen=True)
class CheckoutDecision:
    allowed: bool
    next_state: CheckoutState
    guard_reason: str | None = None


def resolve_checkout_transition(
    state: CheckoutState,
    event: CheckoutEvent,
    context: CheckoutContext | None = None,
) -> CheckoutDecision:
    context = context or CheckoutContext()

    if event == "cancelled":
        # Teardown freezes the flow where it is.
        return CheckoutDecision(True, state)

    if event == "booking_retry":
        if state != "FAILED" or context.failure_category not in BOOKING_FAILURES:
            return CheckoutDecision(False, state, guard_reason="booking_retry_not_available")
        if context.attempts_remaining <= 0:
            return CheckoutDecision(False, state, guard_reason="booking_attempts_exhausted")
        return CheckoutDecision(True, "CREATING_BOOKING")

    if event == "payment_retry":
        if state != "FAILED" or context.failure_category != "payment":
            return CheckoutDecision(False, state, guard_reason="payment_retry_not_available")
        return CheckoutDecision(True, "INITIALIZING_PAYMENT")

    next_state = _FORWARD.get((state, event))
    if next_state is not None:
        return CheckoutDecision(True, next_state)
    if state in TERMINAL_STATES:
        return CheckoutDecision(False, state, guard_reason="checkout_finished")
    if any(event == known for _, known in _FORWARD):
        return CheckoutDecision(False, state, guard_reason="out_of_order")
    return CheckoutDecision(False, state, guard_reason="unsupported_event")
