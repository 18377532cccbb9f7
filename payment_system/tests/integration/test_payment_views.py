import json
from decimal import Decimal
from unittest.mock import patch

from django.test import Client, TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from infrastructure.container import container
from marketplace.models import Order
from marketplace.tests.factories import OrderFactory, StoreFactory, UserFactory
from payment_system.domain.services.webhook_service import WebhookProcessingError, WebhookService
from payment_system.models import Escrow, Payment


def charge_body(event, reference, amount_minor, metadata):
    return json.dumps(
        {
            "event": event,
            "data": {
                "reference": reference,
                "amount": amount_minor,
                "currency": "GHS",
                "status": "success" if event == "charge.success" else "failed",
                "metadata": metadata,
            },
        }
    ).encode("utf-8")


class PaymentWebhookViewTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.api = APIClient()
        self.gateway = container.gateway()
        self.url = reverse("payment_system:payment_webhook")
        self.buyer = UserFactory()

    def _checkout(self, *orders):
        self.api.force_authenticate(user=self.buyer)
        response = self.api.post(
            reverse("payment_system:create_checkout_session"), {"order_ids": [str(o.id) for o in orders]}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return response.data

    def _post(self, payload, signature=None, header="HTTP_X_SIGNATURE"):
        extra = {header: signature if signature is not None else self.gateway.sign(payload)}
        return self.client.post(self.url, data=payload, content_type="application/json", **extra)

    def test_checkout_then_webhook_settles_order(self):
        order = OrderFactory(buyer=self.buyer, subtotal=Decimal("60.00"))
        session = self._checkout(order)
        self.assertEqual(session["total_amount"], "60.00")
        self.assertEqual(session["order_count"], 1)

        response = self._post(charge_body("charge.success", session["reference"], 6000, {"orderId": str(order.id)}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"received": True, "event": "charge.success", "outcome": "settled"})
        order.refresh_from_db()
        self.assertEqual(order.status, Order.CONFIRMED)
        self.assertTrue(Escrow.objects.filter(order=order, release_status=Escrow.PENDING).exists())

    def test_paystack_signature_header_is_accepted(self):
        order = OrderFactory(buyer=self.buyer, subtotal=Decimal("60.00"))
        session = self._checkout(order)
        payload = charge_body("charge.failed", session["reference"], 6000, {"orderId": str(order.id)})

        response = self._post(payload, header="HTTP_X_PAYSTACK_SIGNATURE")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "failed")

    def test_redelivery_is_acknowledged(self):
        order = OrderFactory(buyer=self.buyer, subtotal=Decimal("60.00"))
        session = self._checkout(order)
        payload = charge_body("charge.success", session["reference"], 6000, {"orderId": str(order.id)})

        self._post(payload)
        response = self._post(payload)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "duplicate")
        self.assertEqual(Escrow.objects.filter(order=order).count(), 1)

    def test_invalid_signature(self):
        payload = charge_body("charge.success", "pay_unknown", 100, {"orderId": "1"})

        self.assertEqual(self._post(payload, signature="forged").status_code, 401)
        self.assertEqual(self.client.post(self.url, data=payload, content_type="application/json").status_code, 401)

    def test_malformed_body_is_acknowledged(self):
        response = self._post(b"{not json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "malformed")

    def test_invalid_order_id_does_not_trigger_retry(self):
        order = OrderFactory(buyer=self.buyer, subtotal=Decimal("60.00"))
        session = self._checkout(order)

        response = self._post(charge_body("charge.success", session["reference"], 6000, {"orderId": "not-a-uuid"}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"received": True, "event": "charge.success", "outcome": "malformed"})
        self.assertFalse(Escrow.objects.filter(order=order).exists())

    def test_unhandled_event_is_ignored(self):
        payload = json.dumps({"event": "transfer.success", "data": {}}).encode()
        response = self._post(payload)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "ignored")

    def test_unknown_reference_is_acknowledged(self):
        order = OrderFactory(buyer=self.buyer)
        response = self._post(charge_body("charge.success", "pay_nope", 10000, {"orderId": str(order.id)}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "unknown_reference")

    def test_partial_failure_asks_for_retry(self):
        with patch.object(WebhookService, "handle", side_effect=WebhookProcessingError("pay_x", ["1"])):
            response = self._post(b'{"event": "charge.success"}')

        self.assertEqual(response.status_code, 500)
        self.assertFalse(response.json()["received"])


class CheckoutAndPaymentViewsTest(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.gateway = container.gateway()
        self.buyer = UserFactory(email="buyer@example.com")
        self.client.force_authenticate(user=self.buyer)

    def test_multi_store_checkout_and_session_lookup(self):
        order1 = OrderFactory(buyer=self.buyer, store=StoreFactory(), subtotal=Decimal("10.00"))
        order2 = OrderFactory(buyer=self.buyer, store=StoreFactory(), subtotal=Decimal("15.00"))

        response = self.client.post(
            reverse("payment_system:create_checkout_session"),
            {"order_ids": [str(order1.id), str(order2.id)], "callback_url": "https://shop.example.com/done"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["total_amount"], "25.00")
        self.assertEqual(len(response.data["payment_ids"]), 2)
        self.assertEqual(self.gateway.charges[0]["callback_url"], "https://shop.example.com/done")

        session_url = reverse("payment_system:checkout_session_payments", args=[response.data["checkout_session_id"]])
        session = self.client.get(session_url)
        self.assertEqual(session.status_code, status.HTTP_200_OK)
        self.assertEqual(session.data["summary"]["count"], 2)
        self.assertFalse(session.data["summary"]["all_successful"])

        self.client.force_authenticate(user=UserFactory())
        self.assertEqual(self.client.get(session_url).status_code, status.HTTP_403_FORBIDDEN)

    def test_checkout_validation(self):
        response = self.client.post(reverse("payment_system:create_checkout_session"), {"order_ids": []}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "validation_error")

    def test_gateway_outage_is_bad_gateway(self):
        order = OrderFactory(buyer=self.buyer)
        self.gateway.fail_init = True

        response = self.client.post(
            reverse("payment_system:create_checkout_session"), {"order_ids": [str(order.id)]}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(response.data["error"], "external_service_error")

    def test_list_and_detail(self):
        order = OrderFactory(buyer=self.buyer)
        self.client.post(reverse("payment_system:create_checkout_session"), {"order_ids": [str(order.id)]}, format="json")
        payment = Payment.objects.get(order=order)

        listing = self.client.get(reverse("payment_system:list_payments"), {"status": Payment.PENDING})
        self.assertEqual(listing.status_code, status.HTTP_200_OK)
        self.assertEqual(listing.data["count"], 1)

        bad_filter = self.client.get(reverse("payment_system:list_payments"), {"status": "LOST"})
        self.assertEqual(bad_filter.status_code, status.HTTP_400_BAD_REQUEST)

        detail = self.client.get(reverse("payment_system:payment_detail", args=[payment.id]))
        self.assertEqual(detail.status_code, status.HTTP_200_OK)
        self.assertEqual(detail.data["reference"], payment.reference)

    def test_verify_payment_is_read_only(self):
        order = OrderFactory(buyer=self.buyer, subtotal=Decimal("20.00"))
        created = self.client.post(
            reverse("payment_system:create_checkout_session"), {"order_ids": [str(order.id)]}, format="json"
        )

        response = self.client.get(reverse("payment_system:verify_payment", args=[created.data["reference"]]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["gateway_status"], "success")
        self.assertEqual(response.data["amount"], "20.00")
        order.refresh_from_db()
        self.assertEqual(order.status, Order.PENDING)
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)

    def test_metrics_endpoint(self):
        self.client.force_authenticate(user=None)
        response = self.client.get(reverse("payment_system:payment_metrics"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn(b"webhook_events_total", response.content)
