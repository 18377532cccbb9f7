from decimal import Decimal

from django.test import TestCase

from infrastructure.container import container
from marketplace.models import Order
from marketplace.tests.factories import OrderFactory, PaymentFactory, StoreFactory, UserFactory
from payment_system.models import Payment
from utils.exceptions import ErrorCodes


class CheckoutServiceTest(TestCase):
    def setUp(self):
        self.service = container.checkout_service()
        self.gateway = container.gateway()
        self.buyer = UserFactory(email="buyer@example.com")

    def test_single_order_checkout(self):
        order = OrderFactory(buyer=self.buyer, subtotal=Decimal("120.00"))

        result = self.service.create_checkout(self.buyer, [order.id])

        self.assertTrue(result.ok, result.error_detail)
        session = result.value
        self.assertEqual(session.reference, f"pay_{session.checkout_session_id}")
        self.assertEqual(session.authorization_url, f"https://checkout.mock/{session.reference}")
        self.assertEqual(session.total_amount, Decimal("120.00"))
        self.assertEqual(session.order_count, 1)

        charge = self.gateway.charges[0]
        self.assertEqual(charge["amount_minor"], 12000)
        self.assertEqual(charge["email"], "buyer@example.com")
        self.assertEqual(charge["metadata"]["orderId"], str(order.id))
        self.assertNotIn("orderIds", charge["metadata"])

        payment = Payment.objects.get(order=order)
        self.assertEqual(payment.status, Payment.PENDING)
        self.assertEqual(payment.amount, Decimal("120.00"))
        self.assertEqual(payment.reference, session.reference)

        order.refresh_from_db()
        self.assertEqual(order.checkout_session, session.checkout_session_id)
        self.assertEqual(order.status, Order.PENDING)

    def test_multi_store_checkout_shares_one_charge(self):
        order1 = OrderFactory(buyer=self.buyer, store=StoreFactory(), subtotal=Decimal("30.00"))
        order2 = OrderFactory(buyer=self.buyer, store=StoreFactory(), subtotal=Decimal("45.50"))

        result = self.service.create_checkout(self.buyer, [order1.id, order2.id])

        self.assertTrue(result.ok, result.error_detail)
        session = result.value
        self.assertEqual(session.total_amount, Decimal("75.50"))
        self.assertEqual(len(self.gateway.charges), 1)

        metadata = self.gateway.charges[0]["metadata"]
        self.assertEqual(metadata["orderIds"], [str(order1.id), str(order2.id)])
        self.assertEqual(metadata["checkoutSessionId"], session.checkout_session_id)
        self.assertEqual(len(metadata["storeIds"]), 2)

        payments = Payment.objects.filter(reference=session.reference)
        self.assertEqual(payments.count(), 2)
        self.assertEqual({p.checkout_session for p in payments}, {session.checkout_session_id})
        self.assertTrue(all(p.metadata["multiStore"] for p in payments))

    def test_failed_payment_is_reopened_by_new_checkout(self):
        order = OrderFactory(buyer=self.buyer, payment_status=Order.PAYMENT_FAILED)
        PaymentFactory(order=order, status=Payment.FAILED)

        result = self.service.create_checkout(self.buyer, [order.id])

        self.assertTrue(result.ok, result.error_detail)
        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)
        self.assertEqual(Payment.objects.filter(order=order).count(), 2)
        self.assertEqual(Payment.objects.filter(order=order, status=Payment.PENDING).count(), 1)

    def test_confirmed_order_cannot_be_checked_out_again(self):
        order = OrderFactory(buyer=self.buyer, status=Order.CONFIRMED, payment_status=Order.PAYMENT_SUCCESS)

        result = self.service.create_checkout(self.buyer, [order.id])

        self.assertEqual(result.error, ErrorCodes.PRECONDITION_FAILED)
        self.assertEqual(self.gateway.charges, [])

    def test_cancelled_order_cannot_be_checked_out(self):
        order = OrderFactory(buyer=self.buyer, status=Order.CANCELLED)
        result = self.service.create_checkout(self.buyer, [order.id])
        self.assertEqual(result.error, ErrorCodes.PRECONDITION_FAILED)

    def test_only_own_orders(self):
        order = OrderFactory()
        result = self.service.create_checkout(self.buyer, [order.id])
        self.assertEqual(result.error, ErrorCodes.PERMISSION_DENIED)

    def test_unknown_order(self):
        result = self.service.create_checkout(self.buyer, ["00000000-0000-0000-0000-000000000000"])
        self.assertEqual(result.error, ErrorCodes.NOT_FOUND)

    def test_empty_and_duplicate_order_ids(self):
        order = OrderFactory(buyer=self.buyer)

        self.assertEqual(self.service.create_checkout(self.buyer, []).error, ErrorCodes.VALIDATION_ERROR)
        self.assertEqual(self.service.create_checkout(self.buyer, [order.id, order.id]).error, ErrorCodes.VALIDATION_ERROR)

    def test_mixed_currencies_rejected(self):
        order1 = OrderFactory(buyer=self.buyer, currency="GHS")
        order2 = OrderFactory(buyer=self.buyer, currency="NGN")

        result = self.service.create_checkout(self.buyer, [order1.id, order2.id])

        self.assertEqual(result.error, ErrorCodes.VALIDATION_ERROR)

    def test_gateway_failure_creates_no_payments(self):
        order = OrderFactory(buyer=self.buyer)
        self.gateway.fail_init = True

        result = self.service.create_checkout(self.buyer, [order.id])

        self.assertEqual(result.error, ErrorCodes.EXTERNAL_SERVICE_ERROR)
        self.assertNotIn("Mock gateway error", result.error_detail)
        self.assertFalse(Payment.objects.filter(order=order).exists())
        order.refresh_from_db()
        self.assertEqual(order.checkout_session, "")
