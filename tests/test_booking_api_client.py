import json
import unittest

import httpx

from checkout_fixtures import fast_settings
from tts_checkout.clients.booking_api import BookingApiClient
from tts_checkout.core.errors import ApiError


class BookingApiClientTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responder = lambda request: httpx.Response(200, json={"success": True, "data": {}})

    def _client(self, access_token: str | None = "token-1") -> BookingApiClient:
        def _handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.responder(request)

        return BookingApiClient(
            access_token=access_token,
            settings=fast_settings(booking_api_base_url="http://booking.test"),
            transport=httpx.MockTransport(_handler),
        )

    async def test_create_booking_unwraps_envelope(self) -> None:
        self.responder = lambda request: httpx.Response(
            201,
            json={"success": True, "data": {"booking": {"id": "bk_1", "bookingReference": "TTS-0001"}}},
        )

        async with self._client() as client:
            booking = await client.create_booking({"isReturnJourney": False})

        self.assertEqual(booking, {"id": "bk_1", "bookingReference": "TTS-0001"})
        request = self.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.url.path, "/bookings")
        self.assertEqual(request.headers["Authorization"], "Bearer token-1")
        self.assertEqual(json.loads(request.content), {"isReturnJourney": False})

    async def test_return_booking_returns_group(self) -> None:
        self.responder = lambda request: httpx.Response(
            201,
            json={"success": True, "data": {"bookingGroup": {"id": "grp_1", "groupReference": "TTS-G0001"}}},
        )

        async with self._client() as client:
            group = await client.create_return_booking({"isReturnJourney": True})

        self.assertEqual(group["groupReference"], "TTS-G0001")
        self.assertEqual(self.requests[0].url.path, "/bookings/return")

    async def test_payment_intent_routes(self) -> None:
        self.responder = lambda request: httpx.Response(
            200,
            json={"success": True, "data": {"clientSecret": "cs", "paymentIntentId": "pi_1"}},
        )

        async with self._client() as client:
            await client.create_payment_intent(booking_id="bk_1", amount="85.50")
            await client.create_group_payment_intent(booking_group_id="grp_1", amount="171.00")

        self.assertEqual(self.requests[0].url.path, "/payments/intent")
        self.assertEqual(json.loads(self.requests[0].content), {"bookingId": "bk_1", "amount": "85.50"})
        self.assertEqual(self.requests[1].url.path, "/payments/group/create-intent")
        self.assertEqual(json.loads(self.requests[1].content), {"bookingGroupId": "grp_1", "amount": "171.00"})

    async def test_status_reads(self) -> None:
        self.responder = lambda request: httpx.Response(200, json={"success": True, "data": {"status": "PAID"}})

        async with self._client(access_token=None) as client:
            booking = await client.get_booking("bk_1")
            await client.get_booking_group("grp_1")

        self.assertEqual(booking["status"], "PAID")
        paths = [request.url.path for request in self.requests]
        self.assertEqual(paths, ["/bookings/bk_1", "/bookings/groups/grp_1"])
        self.assertNotIn("Authorization", self.requests[0].headers)

    async def test_validation_error_keeps_server_message(self) -> None:
        self.responder = lambda request: httpx.Response(
            400,
            json={
                "success": False,
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Pickup time must be in the future",
                    "details": [{"field": "pickupDatetime", "message": "must be in the future"}],
                },
            },
        )

        async with self._client() as client:
            with self.assertRaises(ApiError) as ctx:
                await client.create_booking({})

        error = ctx.exception
        self.assertEqual(error.category, "validation")
        self.assertEqual(error.status_code, 400)
        self.assertEqual(error.code, "VALIDATION_ERROR")
        self.assertEqual(error.message, "Pickup time must be in the future")
        self.assertEqual(error.details[0]["field"], "pickupDatetime")

    async def test_server_error_without_body(self) -> None:
        self.responder = lambda request: httpx.Response(503, text="upstream down")

        async with self._client() as client:
            with self.assertRaises(ApiError) as ctx:
                await client.get_booking("bk_1")

        self.assertEqual(ctx.exception.category, "server")
        self.assertEqual(ctx.exception.status_code, 503)

    async def test_transport_failures_are_categorised(self) -> None:
        def _timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        def _offline(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        for responder, category in ((_timeout, "timeout"), (_offline, "network")):
            self.responder = responder
            async with self._client() as client:
                with self.assertRaises(ApiError) as ctx:
                    await client.get_booking("bk_1")
            self.assertEqual(ctx.exception.category, category)

    async def test_missing_data_is_a_server_error(self) -> None:
        self.responder = lambda request: httpx.Response(201, json={"success": True, "data": {}})

        async with self._client() as client:
            with self.assertRaises(ApiError) as ctx:
                await client.create_booking({})

        self.assertEqual(ctx.exception.category, "server")

    async def test_access_token_can_be_set_later(self) -> None:
        async with self._client(access_token=None) as client:
            client.set_access_token("token-2")
            await client.get_booking("bk_1")

        self.assertEqual(self.requests[0].headers["Authorization"], "Bearer token-2")


if __name__ == "__main__":
    unittest.main()
