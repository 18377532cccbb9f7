"""
Payment Infrastructure Tests
==============================

Unit tests for the payment gateway abstraction layer.
"""

import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.test import TestCase, override_settings

from infrastructure.payments import (
    ChargeInit,
    GatewayException,
    GatewayInterface,
    MockGatewayProvider,
    PaymentFactory,
    PaystackProvider,
    from_minor_units,
    to_minor_units,
)
from infrastructure.payments.mock_provider import OUTCOME_TIMEOUT


def api_response(data=None, status_code=200, status=True, message="ok"):
    response = MagicMock()
    response.status_code = status_code
    response.content = b"{}"
    response.json.return_value = {"status": status, "message": message, "data": data or {}}
    return response


class GatewayInterfaceTest(TestCase):
    """Test GatewayInterface contract."""

    def test_interface_is_abstract(self):
        with self.assertRaises(TypeError):
            GatewayInterface()

    def test_minor_unit_conversion(self):
        self.assertEqual(to_minor_units(Decimal("100.00")), 10000)
        self.assertEqual(to_minor_units("45.5"), 4550)
        self.assertEqual(to_minor_units(Decimal("0.005")), 1)
        self.assertEqual(from_minor_units(12345), Decimal("123.45"))


@override_settings(PAYSTACK_SECRET_KEY="sk_test_fake", PAYSTACK_BASE_URL="https://api.paystack.test")
class PaystackProviderTest(TestCase):
    """Test PaystackProvider implementation."""

    def setUp(self):
        self.provider = PaystackProvider()

    def test_init_charge_success(self):
        with patch.object(self.provider.session, "request") as mock_request:
            mock_request.return_value = api_response(
                {"authorization_url": "https://checkout.paystack.com/abc", "reference": "pay_cs_1", "access_code": "abc"}
            )

            result = self.provider.init_charge(
                amount_minor=9999,
                currency="ghs",
                reference="pay_cs_1",
                email="buyer@example.com",
                metadata={"orderId": "42"},
            )

        self.assertIsInstance(result, ChargeInit)
        self.assertEqual(result.authorization_url, "https://checkout.paystack.com/abc")
        self.assertEqual(result.reference, "pay_cs_1")

        method, url = mock_request.call_args[0]
        kwargs = mock_request.call_args[1]
        self.assertEqual(method, "POST")
        self.assertEqual(url, "https://api.paystack.test/transaction/initialize")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk_test_fake")
        self.assertEqual(kwargs["json"]["amount"], 9999)
        self.assertEqual(kwargs["json"]["currency"], "GHS")
        self.assertEqual(kwargs["json"]["metadata"], {"orderId": "42"})

    def test_init_charge_api_error(self):
        with patch.object(self.provider.session, "request") as mock_request:
            mock_request.return_value = api_response(status_code=400, status=False, message="Invalid key")

            with self.assertRaises(GatewayException) as ctx:
                self.provider.init_charge(1000, "GHS", "pay_cs_2", "buyer@example.com")

        self.assertIn("Invalid key", str(ctx.exception))

    def test_verify_charge(self):
        with patch.object(self.provider.session, "request") as mock_request:
            mock_request.return_value = api_response({"reference": "pay_cs_1", "status": "success", "amount": 5000, "currency": "ghs"})

            result = self.provider.verify_charge("pay_cs_1")

        self.assertTrue(result.succeeded)
        self.assertEqual(result.amount_minor, 5000)
        self.assertEqual(result.currency, "GHS")

    def test_transfer_success(self):
        with patch.object(self.provider.session, "request") as mock_request:
            mock_request.return_value = api_response({"transfer_code": "TRF_abc123"})

            result = self.provider.transfer(8000, "GHS", "RCP_seller", "Order #1 Escrow Release - buyer_confirmed")

        self.assertTrue(result.success)
        self.assertEqual(result.transfer_reference, "TRF_abc123")
        payload = mock_request.call_args[1]["json"]
        self.assertEqual(payload["recipient"], "RCP_seller")
        self.assertEqual(payload["source"], "balance")

    def test_transfer_timeout_is_reported_not_raised(self):
        with patch.object(self.provider.session, "request", side_effect=requests.Timeout("read timeout")):
            result = self.provider.transfer(8000, "GHS", "RCP_seller", "payout")

        self.assertFalse(result.success)
        self.assertTrue(result.timed_out)

    def test_transfer_failure(self):
        with patch.object(self.provider.session, "request") as mock_request:
            mock_request.return_value = api_response(status_code=400, status=False, message="Insufficient balance")

            result = self.provider.transfer(8000, "GHS", "RCP_seller", "payout")

        self.assertFalse(result.success)
        self.assertFalse(result.timed_out)
        self.assertEqual(result.error, "Insufficient balance")

    def test_refund(self):
        with patch.object(self.provider.session, "request") as mock_request:
            mock_request.return_value = api_response({"id": 991})

            result = self.provider.refund("pay_cs_1", 2500, "Dispute resolved")

        self.assertTrue(result.success)
        self.assertEqual(result.refund_reference, "991")
        self.assertEqual(mock_request.call_args[1]["json"]["transaction"], "pay_cs_1")

    def test_connection_error_on_refund(self):
        with patch.object(self.provider.session, "request", side_effect=requests.ConnectionError("refused")):
            result = self.provider.refund("pay_cs_1", 2500, "Dispute resolved")

        self.assertFalse(result.success)
        self.assertFalse(result.timed_out)

    def test_verify_webhook_signature(self):
        payload = json.dumps({"event": "charge.success"}).encode()
        signature = hmac.new(b"sk_test_fake", payload, hashlib.sha512).hexdigest()

        self.assertTrue(self.provider.verify_webhook_signature(payload, signature))
        self.assertFalse(self.provider.verify_webhook_signature(payload, "0" * 128))
        self.assertFalse(self.provider.verify_webhook_signature(payload, None))
        self.assertFalse(self.provider.verify_webhook_signature(payload + b" ", signature))

    @override_settings(PAYSTACK_SECRET_KEY="")
    def test_missing_secret_key(self):
        provider = PaystackProvider()

        with self.assertRaises(GatewayException):
            provider.init_charge(1000, "GHS", "pay_cs_3", "buyer@example.com")
        self.assertFalse(provider.verify_webhook_signature(b"{}", "abc"))


class MockGatewayProviderTest(TestCase):
    def setUp(self):
        self.gateway = MockGatewayProvider(webhook_secret="whsec_test")

    def test_records_calls(self):
        self.gateway.init_charge(1000, "GHS", "pay_cs_9", "buyer@example.com", {"orderId": "1"})
        transfer = self.gateway.transfer(900, "GHS", "RCP_1", "payout")
        refund = self.gateway.refund("pay_cs_9", 100, "partial")

        self.assertEqual(self.gateway.charges[0]["reference"], "pay_cs_9")
        self.assertTrue(transfer.transfer_reference.startswith("TRF_"))
        self.assertTrue(refund.refund_reference.startswith("RFD_"))
        self.assertEqual(self.gateway.verify_charge("pay_cs_9").amount_minor, 1000)

    def test_configurable_outcomes(self):
        self.gateway.transfer_outcome = OUTCOME_TIMEOUT
        self.assertTrue(self.gateway.transfer(900, "GHS", "RCP_1", "payout").timed_out)

        self.gateway.fail_init = True
        with self.assertRaises(GatewayException):
            self.gateway.init_charge(1000, "GHS", "pay_cs_10", "buyer@example.com")

    def test_signatures(self):
        payload = b'{"event": "charge.failed"}'
        self.assertTrue(self.gateway.verify_webhook_signature(payload, self.gateway.sign(payload)))
        self.assertFalse(self.gateway.verify_webhook_signature(payload, "bad"))


class PaymentFactoryTest(TestCase):
    """Test PaymentFactory."""

    @override_settings(INFRASTRUCTURE={"PAYMENT_PROVIDER": "paystack"}, PAYSTACK_SECRET_KEY="sk_test_fake")
    def test_create_paystack_provider_from_settings(self):
        self.assertIsInstance(PaymentFactory.create(), PaystackProvider)

    def test_create_with_explicit_backend(self):
        self.assertIsInstance(PaymentFactory.create("mock"), MockGatewayProvider)

    def test_create_invalid_backend(self):
        with self.assertRaises(ValueError):
            PaymentFactory.create("square")
