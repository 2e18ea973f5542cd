import unittest
from unittest.mock import patch

import stripe

from checkout_fixtures import fast_settings
from tts_checkout.payments.factory import get_confirmation_bridge
from tts_checkout.payments.sandbox import SandboxConfirmationBridge
from tts_checkout.payments.stripe_bridge import StripeConfirmationBridge
from tts_checkout.schemas.checkout import PaymentHandle, SingleBooking

HANDLE = PaymentHandle(
    client_secret="pi_1_secret_abc",
    payment_intent_id="pi_1",
    booking=SingleBooking(booking_id="bk_1", booking_reference="TTS-0001"),
)


class StripeConfirmationBridgeTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.bridge = StripeConfirmationBridge(fast_settings(stripe_secret_key="sk_test_123"))

    async def test_succeeded_intent_is_confirmed(self) -> None:
        intent = {"id": "pi_1", "status": "succeeded"}
        with patch.object(stripe.PaymentIntent, "confirm", return_value=intent) as confirm:
            result = await self.bridge.confirm(HANDLE, payment_method="pm_card_visa")

        self.assertTrue(result.ok)
        self.assertEqual(result.processor_payment_id, "pi_1")
        confirm.assert_called_once_with("pi_1", api_key="sk_test_123", payment_method="pm_card_visa")

    async def test_processing_intent_counts_as_provisional_success(self) -> None:
        with patch.object(stripe.PaymentIntent, "confirm", return_value={"id": "pi_1", "status": "processing"}):
            result = await self.bridge.confirm(HANDLE)

        self.assertTrue(result.ok)

    async def test_intent_requiring_action_is_not_confirmed(self) -> None:
        with patch.object(stripe.PaymentIntent, "confirm", return_value={"id": "pi_1", "status": "requires_action"}):
            result = await self.bridge.confirm(HANDLE)

        self.assertFalse(result.ok)
        self.assertIn("authentication", result.message)

    async def test_card_error_returns_processor_message(self) -> None:
        error = stripe.CardError("Your card was declined.", None, "card_declined")
        with patch.object(stripe.PaymentIntent, "confirm", side_effect=error):
            result = await self.bridge.confirm(HANDLE, payment_method="pm_card_chargeDeclined")

        self.assertFalse(result.ok)
        self.assertIn("declined", result.message)

    async def test_other_stripe_errors_are_reported(self) -> None:
        with patch.object(stripe.PaymentIntent, "confirm", side_effect=stripe.APIConnectionError("Network down")):
            result = await self.bridge.confirm(HANDLE)

        self.assertFalse(result.ok)
        self.assertTrue(result.message)

    async def test_missing_secret_key_skips_processor(self) -> None:
        bridge = StripeConfirmationBridge(fast_settings(stripe_secret_key=None))
        with patch.object(stripe.PaymentIntent, "confirm") as confirm:
            result = await bridge.confirm(HANDLE)

        self.assertFalse(result.ok)
        confirm.assert_not_called()


class SandboxConfirmationBridgeTests(unittest.IsolatedAsyncioTestCase):
    async def test_accepts_payment_methods_not_marked_declined(self) -> None:
        bridge = SandboxConfirmationBridge(declined_payment_methods={"pm_card_chargeDeclined"})

        accepted = await bridge.confirm(HANDLE, payment_method="pm_card_visa")
        declined = await bridge.confirm(HANDLE, payment_method="pm_card_chargeDeclined")

        self.assertTrue(accepted.ok)
        self.assertEqual(accepted.processor_payment_id, "pi_1")
        self.assertFalse(declined.ok)


def test_factory_selects_bridge_by_name() -> None:
    assert isinstance(get_confirmation_bridge("stripe"), StripeConfirmationBridge)
    assert isinstance(get_confirmation_bridge("SANDBOX"), SandboxConfirmationBridge)
    assert isinstance(get_confirmation_bridge("unknown"), SandboxConfirmationBridge)
