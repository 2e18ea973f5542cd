from __future__ import annotations

from typing import Any, Literal

import httpx

ErrorCategory = Literal[
    "network",
    "authentication",
    "authorization",
    "validation",
    "not_found",
    "server",
    "timeout",
    "unknown",
]
ErrorContext = Literal["fetch", "submit", "delete", "update", "payment"]

DEFAULT_MESSAGES: dict[ErrorCategory, str] = {
    "network": "Unable to connect. Please check your internet connection and try again.",
    "authentication": "Your session has expired. Please sign in again.",
    "authorization": "You do not have permission to perform this action.",
    "validation": "Please check your input and try again.",
    "not_found": "The requested resource was not found.",
    "server": "Something went wrong on our end. Please try again later.",
    "timeout": "The request took too long. Please try again.",
    "unknown": "An unexpected error occurred. Please try again.",
}

_CONTEXT_MESSAGES: dict[ErrorContext, dict[ErrorCategory, str]] = {
    "fetch": {
        "network": "Unable to load data. Please check your connection.",
        "authentication": "Please sign in to view this content.",
        "authorization": "You do not have access to this content.",
        "not_found": "The requested data could not be found.",
        "server": "Unable to load data. Please try again later.",
        "timeout": "Loading took too long. Please try again.",
        "unknown": "Failed to load data. Please try again.",
    },
    "submit": {
        "network": "Unable to submit. Please check your connection.",
        "authentication": "Please sign in to continue.",
        "authorization": "You do not have permission to submit this.",
        "not_found": "The resource no longer exists.",
        "server": "Unable to save. Please try again later.",
        "timeout": "Submission timed out. Please try again.",
        "unknown": "Failed to submit. Please try again.",
    },
    "delete": {
        "network": "Unable to delete. Please check your connection.",
        "authentication": "Please sign in to continue.",
        "authorization": "You do not have permission to delete this.",
        "not_found": "Item already deleted or does not exist.",
        "server": "Unable to delete. Please try again later.",
        "timeout": "Request timed out. Please try again.",
        "unknown": "Failed to delete. Please try again.",
    },
    "update": {
        "network": "Unable to update. Please check your connection.",
        "authentication": "Please sign in to continue.",
        "authorization": "You do not have permission to update this.",
        "not_found": "The item no longer exists.",
        "server": "Unable to save changes. Please try again later.",
        "timeout": "Update timed out. Please try again.",
        "unknown": "Failed to update. Please try again.",
    },
    "payment": {
        "network": "Payment failed. Please check your connection and try again.",
        "authentication": "Please sign in to complete your payment.",
        "authorization": "You are not authorized to make this payment.",
        "not_found": "Payment session expired. Please start again.",
        "server": "Payment processing failed. Please try again later.",
        "timeout": "Payment timed out. Please try again.",
        "unknown": "Payment failed. Please try again.",
    },
}


class CheckoutFlowError(Exception):
    """Base class for every error raised by the checkout engine."""

    event_code = "checkout_error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or DEFAULT_MESSAGES["unknown"]
        super().__init__(self.message)


class ApiError(CheckoutFlowError):
    event_code = "booking_api_error"

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = "unknown",
        status_code: int | None = None,
        code: str | None = None,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.status_code = status_code
        self.code = code
        self.details = details or []

    @classmethod
    def from_http_error(cls, exc: httpx.HTTPError) -> ApiError:
        if isinstance(exc, httpx.TimeoutException):
            return cls(DEFAULT_MESSAGES["timeout"], category="timeout")
        if isinstance(exc, httpx.HTTPStatusError):
            return cls.from_response(exc.response)
        return cls(DEFAULT_MESSAGES["network"], category="network")

    @classmethod
    def from_response(cls, response: httpx.Response) -> ApiError:
        body = _safe_json(response)
        error = body.get("error") if isinstance(body.get("error"), dict) else {}
        details = error.get("details") if isinstance(error.get("details"), list) else []
        message = error.get("message") or body.get("message")
        if not message and details:
            message = ". ".join(str(item.get("message", "")) for item in details if isinstance(item, dict))
        category = category_for_status(response.status_code)
        return cls(
            message or DEFAULT_MESSAGES[category],
            category=category,
            status_code=response.status_code,
            code=error.get("code"),
            details=[item for item in details if isinstance(item, dict)],
        )


class MissingPreconditionError(CheckoutFlowError):
    event_code = "checkout_precondition_missing"

    def __init__(self, message: str, *, redirect_to: str) -> None:
        super().__init__(message)
        self.redirect_to = redirect_to


class QuoteSnapshotMissing(MissingPreconditionError):
    event_code = "quote_snapshot_missing"

    def __init__(self, message: str = "Your quote has expired. Please get a new quote.") -> None:
        super().__init__(message, redirect_to="/quote")


class BookingCreationInFlight(CheckoutFlowError):
    event_code = "booking_creation_in_flight"


class BookingCreationFailed(CheckoutFlowError):
    event_code = "booking_creation_failed"

    def __init__(self, message: str, *, attempts_remaining: int) -> None:
        super().__init__(message)
        self.attempts_remaining = max(attempts_remaining, 0)

    @property
    def recoverable(self) -> bool:
        return self.attempts_remaining > 0


class BookingAttemptsExhausted(BookingCreationFailed):
    event_code = "booking_attempts_exhausted"

    def __init__(self, message: str) -> None:
        super().__init__(message, attempts_remaining=0)


class PaymentInitializationFailed(CheckoutFlowError):
    event_code = "payment_initialization_failed"
    category = "payment"


class PollNetworkError(CheckoutFlowError):
    event_code = "checkout_poll_network_error"

    def __init__(self, message: str, *, attempt: int) -> None:
        super().__init__(message)
        self.attempt = attempt


class CheckoutCancelled(CheckoutFlowError):
    event_code = "checkout_cancelled"

    def __init__(self, message: str = "Checkout was cancelled.") -> None:
        super().__init__(message)


class CheckoutStateError(CheckoutFlowError):
    event_code = "checkout_transition_rejected"

    def __init__(self, guard_reason: str) -> None:
        super().__init__(f"Checkout action is not allowed: {guard_reason}")
        self.guard_reason = guard_reason


def category_for_status(status_code: int) -> ErrorCategory:
    if status_code == 401:
        return "authentication"
    if status_code == 403:
        return "authorization"
    if status_code in {400, 422}:
        return "validation"
    if status_code == 404:
        return "not_found"
    if status_code in {500, 502, 503, 504}:
        return "server"
    return "unknown"


def contextual_error_message(error: BaseException, context: ErrorContext) -> str:
    if not isinstance(error, ApiError):
        return _CONTEXT_MESSAGES[context]["unknown"]
    if error.category == "validation":
        return error.message
    return _CONTEXT_MESSAGES[context][error.category]


def _safe_json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    if isinstance(data, dict):
        return data
    return {}
