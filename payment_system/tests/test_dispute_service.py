from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from infrastructure.container import container
from infrastructure.payments.mock_provider import OUTCOME_FAILURE, OUTCOME_TIMEOUT
from marketplace.models import Order
from marketplace.tests.factories import AdminFactory, DisputeFactory, UserFactory, create_paid_order
from payment_system.models import Dispute, Escrow
from utils.exceptions import ErrorCodes


class OpenDisputeTest(TestCase):
    def setUp(self):
        self.service = container.dispute_service()
        self.notifier = container.notifier()
        self.order, self.payment, self.escrow = create_paid_order(status=Order.SHIPPED)
        self.buyer = self.order.buyer
        self.seller = self.order.store.owner

    def test_buyer_opens_dispute(self):
        with self.captureOnCommitCallbacks(execute=True):
            result = self.service.open_dispute(self.buyer, self.order.id, "Item arrived broken", "DAMAGED_ITEM")

        self.assertTrue(result.ok, result.error_detail)
        dispute = result.value
        self.assertEqual(dispute.status, Dispute.PENDING)
        self.assertEqual(dispute.payment, self.payment)
        self.assertEqual(dispute.seller, self.seller)
        self.assertIn("Dispute Opened", self.notifier.titles_for(self.seller.pk))
        self.assertIn("Dispute Submitted", self.notifier.titles_for(self.buyer.pk))

    def test_second_active_dispute_conflicts(self):
        self.service.open_dispute(self.buyer, self.order.id, "Late")

        result = self.service.open_dispute(self.buyer, self.order.id, "Still late")

        self.assertEqual(result.error, ErrorCodes.CONFLICT)
        self.assertEqual(Dispute.objects.filter(order=self.order).count(), 1)

    def test_new_dispute_after_cancelled_one(self):
        DisputeFactory(order=self.order, payment=self.payment, status=Dispute.CANCELLED)

        result = self.service.open_dispute(self.buyer, self.order.id, "Trying again")

        self.assertTrue(result.ok, result.error_detail)

    def test_requires_successful_payment(self):
        self.payment.status = "FAILED"
        self.payment.save()

        result = self.service.open_dispute(self.buyer, self.order.id, "Never paid")

        self.assertEqual(result.error, ErrorCodes.PRECONDITION_FAILED)

    def test_released_escrow_cannot_be_disputed(self):
        Escrow.objects.filter(pk=self.escrow.pk).update(release_status=Escrow.RELEASED)

        result = self.service.open_dispute(self.buyer, self.order.id, "Too late")

        self.assertEqual(result.error, ErrorCodes.PRECONDITION_FAILED)
        self.assertIn("contact support", result.error_detail)

    def test_only_buyer_opens(self):
        result = self.service.open_dispute(self.seller, self.order.id, "Hmm")
        self.assertEqual(result.error, ErrorCodes.PERMISSION_DENIED)

    def test_reason_and_type_are_validated(self):
        self.assertEqual(self.service.open_dispute(self.buyer, self.order.id, "  ").error, ErrorCodes.VALIDATION_ERROR)
        self.assertEqual(
            self.service.open_dispute(self.buyer, self.order.id, "Bad", "CHARGEBACK").error, ErrorCodes.VALIDATION_ERROR
        )


class ResolveDisputeTest(TestCase):
    def setUp(self):
        self.service = container.dispute_service()
        self.escrow_service = container.escrow_service()
        self.gateway = container.gateway()
        self.admin = AdminFactory()
        self.order, self.payment, self.escrow = create_paid_order(status=Order.CONFIRMED, amount=Decimal("80.00"))
        self.dispute = self.service.open_dispute(self.order.buyer, self.order.id, "Wrong colour").value

    def test_full_refund_then_scheduler_does_nothing(self):
        result = self.service.resolve_dispute(self.admin, self.dispute.id, Dispute.RESOLVED, "Refund approved")

        self.assertTrue(result.ok, result.error_detail)
        self.assertEqual(len(self.gateway.refunds), 1)
        self.assertEqual(self.gateway.refunds[0]["amount_minor"], 8000)
        self.assertEqual(self.gateway.refunds[0]["payment_reference"], self.payment.reference)

        dispute = result.value
        self.assertEqual(dispute.status, Dispute.RESOLVED)
        self.assertEqual(dispute.refund_amount, Decimal("80.00"))
        self.assertEqual(dispute.resolved_by, self.admin)
        self.assertFalse(dispute.requires_manual_refund)

        self.escrow.refresh_from_db()
        self.assertEqual(self.escrow.release_status, Escrow.REFUNDED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_REFUNDED)
        self.assertEqual(self.order.status, Order.CANCELLED)

        summary = self.escrow_service.release_due_escrows(now=timezone.now() + timedelta(days=30))
        self.assertEqual(summary.processed, 0)
        self.assertEqual(self.gateway.transfers, [])

    def test_partial_refund(self):
        result = self.service.resolve_dispute(
            self.admin, self.dispute.id, Dispute.RESOLVED, "Half back", refund_amount=Decimal("30.00")
        )

        self.assertTrue(result.ok, result.error_detail)
        self.assertEqual(self.gateway.refunds[0]["amount_minor"], 3000)
        self.escrow.refresh_from_db()
        self.assertEqual(self.escrow.release_status, Escrow.REFUNDED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PARTIALLY_REFUNDED)
        self.assertEqual(self.order.refund_amount, Decimal("30.00"))

    def test_refund_above_held_amount_is_rejected(self):
        result = self.service.resolve_dispute(
            self.admin, self.dispute.id, Dispute.RESOLVED, "Too much", refund_amount=Decimal("500.00")
        )

        self.assertEqual(result.error, ErrorCodes.VALIDATION_ERROR)
        self.assertEqual(self.gateway.refunds, [])

    def test_refund_failure_keeps_dispute_open(self):
        self.gateway.refund_outcome = OUTCOME_FAILURE

        result = self.service.resolve_dispute(self.admin, self.dispute.id, Dispute.RESOLVED, "Refund approved")

        self.assertEqual(result.error, ErrorCodes.EXTERNAL_SERVICE_ERROR)
        self.dispute.refresh_from_db()
        self.assertEqual(self.dispute.status, Dispute.PENDING)
        self.escrow.refresh_from_db()
        self.assertEqual(self.escrow.release_status, Escrow.PENDING)

    def test_refund_timeout_marks_escrow_failed(self):
        self.gateway.refund_outcome = OUTCOME_TIMEOUT

        result = self.service.resolve_dispute(self.admin, self.dispute.id, Dispute.RESOLVED, "Refund approved")

        self.assertEqual(result.error, ErrorCodes.EXTERNAL_SERVICE_ERROR)
        self.escrow.refresh_from_db()
        self.assertEqual(self.escrow.release_status, Escrow.FAILED)
        self.assertIn("reconcile", self.escrow.release_reason)
        self.dispute.refresh_from_db()
        self.assertEqual(self.dispute.status, Dispute.PENDING)

    def test_resolution_after_release_flags_manual_refund(self):
        Escrow.objects.filter(pk=self.escrow.pk).update(release_status=Escrow.RELEASED)

        result = self.service.resolve_dispute(self.admin, self.dispute.id, Dispute.RESOLVED, "Refund approved")

        self.assertTrue(result.ok, result.error_detail)
        dispute = result.value
        self.assertTrue(dispute.requires_manual_refund)
        self.assertTrue(dispute.resolution.endswith(Dispute.MANUAL_REFUND_NOTE))
        self.assertEqual(self.gateway.refunds, [])

    def test_resolve_in_sellers_favor_unfreezes_escrow(self):
        result = self.service.resolve_dispute(
            self.admin, self.dispute.id, Dispute.RESOLVED, "Item as described", refund_buyer=False
        )

        self.assertTrue(result.ok, result.error_detail)
        self.assertEqual(self.gateway.refunds, [])
        Order.objects.filter(pk=self.order.pk).update(status=Order.DELIVERED)

        summary = self.escrow_service.release_due_escrows(now=timezone.now() + timedelta(days=30))

        self.assertEqual(summary.released, 1)

    def test_only_admin_resolves(self):
        result = self.service.resolve_dispute(self.order.buyer, self.dispute.id, Dispute.RESOLVED, "Mine")
        self.assertEqual(result.error, ErrorCodes.PERMISSION_DENIED)

    def test_resolved_dispute_cannot_be_resolved_again(self):
        self.service.resolve_dispute(self.admin, self.dispute.id, Dispute.CANCELLED, "Withdrawn")

        result = self.service.resolve_dispute(self.admin, self.dispute.id, Dispute.RESOLVED, "Changed mind")

        self.assertEqual(result.error, ErrorCodes.INVALID_TRANSITION)

    def test_resolution_text_required(self):
        result = self.service.resolve_dispute(self.admin, self.dispute.id, Dispute.RESOLVED, "")
        self.assertEqual(result.error, ErrorCodes.VALIDATION_ERROR)


class DisputeMaintenanceTest(TestCase):
    def setUp(self):
        self.service = container.dispute_service()
        self.notifier = container.notifier()
        self.order, self.payment, _ = create_paid_order(status=Order.DELIVERED)
        self.buyer = self.order.buyer
        self.seller = self.order.store.owner
        self.dispute = self.service.open_dispute(self.buyer, self.order.id, "Missing parts").value

    def test_seller_adds_information(self):
        with self.captureOnCommitCallbacks(execute=True):
            result = self.service.update_dispute(self.seller, self.dispute.id, "Shipped complete, see photos")

        self.assertTrue(result.ok, result.error_detail)
        self.assertIn("[UPDATE from Seller]: Shipped complete, see photos", result.value.description)
        self.assertIn("Dispute Updated", self.notifier.titles_for(self.buyer.pk))

    def test_stranger_cannot_update(self):
        result = self.service.update_dispute(UserFactory(), self.dispute.id, "Hello")
        self.assertEqual(result.error, ErrorCodes.PERMISSION_DENIED)

    def test_buyer_cancels_dispute_and_escrow_can_release(self):
        result = self.service.cancel_dispute(self.buyer, self.dispute.id)

        self.assertTrue(result.ok, result.error_detail)
        self.assertEqual(result.value.status, Dispute.CANCELLED)
        self.assertEqual(result.value.resolution, "Cancelled by buyer")

        confirm = container.escrow_service().confirm_receipt(self.buyer, self.order.id)
        self.assertTrue(confirm.ok, confirm.error_detail)

    def test_cannot_update_closed_dispute(self):
        self.service.cancel_dispute(self.buyer, self.dispute.id, "Sorted out")

        result = self.service.update_dispute(self.buyer, self.dispute.id, "More info")

        self.assertEqual(result.error, ErrorCodes.PRECONDITION_FAILED)

    def test_listing(self):
        other = DisputeFactory()

        mine = self.service.list_user_disputes(self.buyer)
        self.assertEqual([d.pk for d in mine.value["results"]], [self.dispute.pk])
        self.assertEqual(self.service.list_user_disputes(self.seller, role="seller").value["count"], 1)
        self.assertEqual(self.service.list_user_disputes(self.seller, role="buyer").value["count"], 0)

        admin = AdminFactory()
        self.assertEqual(self.service.list_all_disputes(admin).value["count"], 2)
        self.assertEqual(self.service.list_all_disputes(self.buyer).error, ErrorCodes.PERMISSION_DENIED)

        self.assertEqual(self.service.get_dispute_details(admin, other.id).value, other)
        self.assertEqual(self.service.get_dispute_details(self.buyer, other.id).error, ErrorCodes.PERMISSION_DENIED)
