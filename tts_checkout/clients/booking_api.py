from __future__ import annotations

import logging
from typing import Any

import httpx

from tts_checkout.core.config import Settings, settings as default_settings
from tts_checkout.core.errors import ApiError

logger = logging.getLogger(__name__)


class BookingApiClient:
    """Async client for the booking and payment endpoints of the marketplace API.

    Every endpoint answers with an envelope `{"success": bool, "data": ...}`;
    methods return the unwrapped `data` part and raise `ApiError` on failure.
    """

    def __init__(
        self,
        *,
        access_token: str | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        config = settings or default_settings
        headers = {"Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._client = httpx.AsyncClient(
            base_url=config.booking_api_base_url,
            timeout=config.booking_api_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    async def __aenter__(self) -> BookingApiClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def set_access_token(self, access_token: str | None) -> None:
        if access_token:
            self._client.headers["Authorization"] = f"Bearer {access_token}"
        else:
            self._client.headers.pop("Authorization", None)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_booking(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = await self._request("POST", "/bookings", json=payload)
        return _require_mapping(data.get("booking"), "booking")

    async def create_return_booking(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = await self._request("POST", "/bookings/return", json=payload)
        return _require_mapping(data.get("bookingGroup"), "bookingGroup")

    async def create_payment_intent(self, *, booking_id: str, amount: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/payments/intent",
            json={"bookingId": booking_id, "amount": amount},
        )

    async def create_group_payment_intent(self, *, booking_group_id: str, amount: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/payments/group/create-intent",
            json={"bookingGroupId": booking_group_id, "amount": amount},
        )

    async def get_booking(self, booking_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/bookings/{booking_id}")

    async def get_booking_group(self, booking_group_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/bookings/groups/{booking_group_id}")

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            error = ApiError.from_http_error(exc)
            logger.warning(
                "booking_api_request_failed",
                extra={
                    "method": method,
                    "path": path,
                    "category": error.category,
                    "status_code": error.status_code,
                    "error": error.message,
                },
            )
            raise error from exc
        try:
            body = response.json()
        except ValueError as exc:
            raise ApiError("Malformed response from the booking service.", category="server") from exc
        if not isinstance(body, dict):
            raise ApiError("Malformed response from the booking service.", category="server")
        return _require_mapping(body.get("data"), "data")


def _require_mapping(value: Any, field_name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ApiError(f"Response is missing '{field_name}'.", category="server")
    return value
