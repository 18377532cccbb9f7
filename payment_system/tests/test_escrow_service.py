from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from infrastructure.container import container
from infrastructure.payments.mock_provider import OUTCOME_FAILURE, OUTCOME_TIMEOUT
from marketplace.models import Order, StatusChange
from marketplace.tests.factories import AdminFactory, DisputeFactory, UserFactory, create_paid_order
from payment_system.domain.services.escrow_service import (
    FAILED,
    NO_PAYOUT_ACCOUNT_REASON,
    RELEASED,
    SKIPPED,
    TRANSFER_TIMEOUT_REASON,
)
from payment_system.models import Dispute, Escrow
from utils.exceptions import ErrorCodes


class ConfirmReceiptTest(TestCase):
    def setUp(self):
        self.service = container.escrow_service()
        self.gateway = container.gateway()
        self.notifier = container.notifier()
        self.order, self.payment, self.escrow = create_paid_order(status=Order.DELIVERED, amount=Decimal("250.00"))
        self.buyer = self.order.buyer

    def test_confirm_receipt_releases_and_completes(self):
        with self.captureOnCommitCallbacks(execute=True):
            result = self.service.confirm_receipt(self.buyer, self.order.id)

        self.assertTrue(result.ok, result.error_detail)
        self.assertEqual(result.value.status, RELEASED)
        self.assertTrue(result.value.transfer_reference.startswith("TRF_"))

        self.assertEqual(len(self.gateway.transfers), 1)
        transfer = self.gateway.transfers[0]
        self.assertEqual(transfer["amount_minor"], 25000)
        self.assertEqual(transfer["recipient_id"], self.order.store.payout_account.recipient_code)
        self.assertEqual(transfer["reason"], f"Order #{self.order.id} Escrow Release - buyer_confirmed")

        self.escrow.refresh_from_db()
        self.assertEqual(self.escrow.release_status, Escrow.RELEASED)
        self.assertEqual(self.escrow.released_to, Escrow.RELEASED_TO_BUYER_CONFIRMATION)
        self.assertIsNotNone(self.escrow.released_at)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.COMPLETED)
        change = StatusChange.objects.filter(order=self.order).last()
        self.assertEqual(change.changed_by, self.buyer)

        self.assertIn("Funds Released", self.notifier.titles_for(self.order.store.owner_id))
        self.assertIn("Order Completed", self.notifier.titles_for(self.buyer.pk))

    def test_second_confirmation_is_rejected(self):
        self.service.confirm_receipt(self.buyer, self.order.id)

        result = self.service.confirm_receipt(self.buyer, self.order.id)

        self.assertEqual(result.error, ErrorCodes.PRECONDITION_FAILED)
        self.assertEqual(len(self.gateway.transfers), 1)

    def test_only_buyer_can_confirm(self):
        result = self.service.confirm_receipt(self.order.store.owner, self.order.id)
        self.assertEqual(result.error, ErrorCodes.PERMISSION_DENIED)

    def test_order_must_be_delivered(self):
        Order.objects.filter(pk=self.order.pk).update(status=Order.SHIPPED)

        result = self.service.confirm_receipt(self.buyer, self.order.id)

        self.assertEqual(result.error, ErrorCodes.PRECONDITION_FAILED)
        self.assertEqual(self.gateway.transfers, [])

    def test_open_dispute_blocks_confirmation(self):
        DisputeFactory(order=self.order, payment=self.payment)

        result = self.service.confirm_receipt(self.buyer, self.order.id)

        self.assertEqual(result.error, ErrorCodes.PRECONDITION_FAILED)
        self.assertEqual(self.gateway.transfers, [])

    def test_processing_escrow_conflicts(self):
        Escrow.objects.filter(pk=self.escrow.pk).update(release_status=Escrow.PROCESSING)
        result = self.service.confirm_receipt(self.buyer, self.order.id)
        self.assertEqual(result.error, ErrorCodes.CONFLICT)

    def test_missing_payout_account_marks_escrow_failed(self):
        self.order.store.payout_account.delete()

        result = self.service.confirm_receipt(self.buyer, self.order.id)

        self.assertEqual(result.error, ErrorCodes.PRECONDITION_FAILED)
        self.escrow.refresh_from_db()
        self.assertEqual(self.escrow.release_status, Escrow.FAILED)
        self.assertEqual(self.escrow.release_reason, NO_PAYOUT_ACCOUNT_REASON)
        self.assertEqual(self.gateway.transfers, [])

    def test_transfer_failure_marks_escrow_failed(self):
        self.gateway.transfer_outcome = OUTCOME_FAILURE

        with self.captureOnCommitCallbacks(execute=True):
            result = self.service.confirm_receipt(self.buyer, self.order.id)

        self.assertEqual(result.error, ErrorCodes.EXTERNAL_SERVICE_ERROR)
        self.assertNotIn("Mock gateway error", result.error_detail)
        self.escrow.refresh_from_db()
        self.assertEqual(self.escrow.release_status, Escrow.FAILED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.DELIVERED)
        self.assertEqual(self.notifier.emails[-1]["template"], "escrow_release_failed")

    def test_transfer_timeout_marks_escrow_failed_for_reconciliation(self):
        self.gateway.transfer_outcome = OUTCOME_TIMEOUT

        result = self.service.confirm_receipt(self.buyer, self.order.id)

        self.assertEqual(result.error, ErrorCodes.EXTERNAL_SERVICE_ERROR)
        self.escrow.refresh_from_db()
        self.assertEqual(self.escrow.release_status, Escrow.FAILED)
        self.assertEqual(self.escrow.release_reason, TRANSFER_TIMEOUT_REASON)

    def test_scheduler_cannot_release_while_confirmation_holds_the_claim(self):
        summaries = []

        def scheduler_pass(call):
            summaries.append(self.service.release_due_escrows(now=timezone.now() + timedelta(days=30)))

        self.gateway.on_transfer = scheduler_pass

        result = self.service.confirm_receipt(self.buyer, self.order.id)

        self.assertEqual(result.value.status, RELEASED)
        self.assertEqual(len(self.gateway.transfers), 1)
        self.assertEqual(summaries[0].processed, 0)

    def test_confirmation_loses_to_scheduler_holding_the_claim(self):
        Escrow.objects.filter(pk=self.escrow.pk).update(release_date=timezone.now() - timedelta(minutes=1))
        confirmations = []

        def buyer_confirms(call):
            confirmations.append(self.service.confirm_receipt(self.buyer, self.order.id))

        self.gateway.on_transfer = buyer_confirms

        summary = self.service.release_due_escrows()

        self.assertEqual(summary.released, 1)
        self.assertEqual(len(self.gateway.transfers), 1)
        self.assertEqual(confirmations[0].error, ErrorCodes.CONFLICT)
        self.escrow.refresh_from_db()
        self.assertEqual(self.escrow.released_to, Escrow.RELEASED_TO_AUTO_TIMER)


class ReleaseDueEscrowsTest(TestCase):
    def setUp(self):
        self.service = container.escrow_service()
        self.gateway = container.gateway()
        self.now = timezone.now()

    def _due(self, **kwargs):
        order, payment, escrow = create_paid_order(**kwargs)
        Escrow.objects.filter(pk=escrow.pk).update(release_date=self.now - timedelta(hours=1))
        escrow.refresh_from_db()
        return order, payment, escrow

    def test_releases_only_due_escrows(self):
        due_order, _, due_escrow = self._due(status=Order.DELIVERED)
        _, _, future_escrow = create_paid_order(status=Order.DELIVERED)

        summary = self.service.release_due_escrows(now=self.now)

        self.assertEqual(summary.to_dict(), {"processed": 1, "released": 1, "failed": 0, "skipped": 0, "errors": 0})
        due_escrow.refresh_from_db()
        self.assertEqual(due_escrow.release_status, Escrow.RELEASED)
        self.assertEqual(due_escrow.released_to, Escrow.RELEASED_TO_AUTO_TIMER)
        due_order.refresh_from_db()
        self.assertEqual(due_order.status, Order.COMPLETED)
        future_escrow.refresh_from_db()
        self.assertEqual(future_escrow.release_status, Escrow.PENDING)

    def test_auto_release_keeps_undelivered_order_status(self):
        order, _, escrow = self._due(status=Order.SHIPPED)

        summary = self.service.release_due_escrows(now=self.now)

        self.assertEqual(summary.released, 1)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.SHIPPED)

    def test_disputed_escrow_stays_frozen(self):
        order, payment, escrow = self._due(status=Order.DELIVERED)
        DisputeFactory(order=order, payment=payment)

        summary = self.service.release_due_escrows(now=self.now)

        self.assertEqual(summary.processed, 0)
        self.assertEqual(self.gateway.transfers, [])
        escrow.refresh_from_db()
        self.assertEqual(escrow.release_status, Escrow.PENDING)

    def test_cancelled_dispute_does_not_freeze(self):
        order, payment, escrow = self._due(status=Order.DELIVERED)
        DisputeFactory(order=order, payment=payment, status=Dispute.CANCELLED)

        summary = self.service.release_due_escrows(now=self.now)

        self.assertEqual(summary.released, 1)

    def test_one_failure_does_not_stop_the_batch(self):
        _, _, no_account = self._due(status=Order.DELIVERED, with_payout_account=False)
        _, _, ok_escrow = self._due(status=Order.DELIVERED)

        summary = self.service.release_due_escrows(now=self.now)

        self.assertEqual(summary.failed, 1)
        self.assertEqual(summary.released, 1)
        no_account.refresh_from_db()
        self.assertEqual(no_account.release_status, Escrow.FAILED)
        self.assertEqual(no_account.release_reason, NO_PAYOUT_ACCOUNT_REASON)

    def test_invalid_amount_is_failed_without_transfer(self):
        _, _, escrow = self._due(status=Order.DELIVERED)
        Escrow.objects.filter(pk=escrow.pk).update(amount_held=Decimal("0.00"))

        summary = self.service.release_due_escrows(now=self.now)

        self.assertEqual(summary.failed, 1)
        self.assertEqual(self.gateway.transfers, [])
        escrow.refresh_from_db()
        self.assertTrue(escrow.release_reason.startswith("Transfer validation failed"))

    def test_failed_escrow_is_not_retried(self):
        _, _, escrow = self._due(status=Order.DELIVERED)
        self.gateway.transfer_outcome = OUTCOME_FAILURE
        self.service.release_due_escrows(now=self.now)
        self.gateway.transfer_outcome = "success"

        summary = self.service.release_due_escrows(now=self.now)

        self.assertEqual(summary.processed, 0)
        self.assertEqual(len(self.gateway.transfers), 1)

    def test_release_escrow_before_due_date(self):
        _, _, escrow = create_paid_order(status=Order.DELIVERED)

        result = self.service.release_escrow(escrow.id)

        self.assertEqual(result.error, ErrorCodes.PRECONDITION_FAILED)

    def test_release_escrow_skips_non_pending(self):
        _, _, escrow = self._due(status=Order.DELIVERED)
        Escrow.objects.filter(pk=escrow.pk).update(release_status=Escrow.REFUNDED)

        result = self.service.release_escrow(escrow.id, now=self.now)

        self.assertTrue(result.ok)
        self.assertEqual(result.value.status, SKIPPED)


class EscrowAdministrationTest(TestCase):
    def setUp(self):
        self.service = container.escrow_service()
        self.gateway = container.gateway()
        self.admin = AdminFactory()
        self.order, _, self.escrow = create_paid_order(status=Order.DELIVERED)

    def test_reset_failed_escrow_allows_retry(self):
        self.gateway.transfer_outcome = OUTCOME_TIMEOUT
        self.service.confirm_receipt(self.order.buyer, self.order.id)
        self.gateway.transfer_outcome = "success"

        result = self.service.reset_failed_escrow(self.admin, self.escrow.id, "Gateway shows no transfer")

        self.assertTrue(result.ok, result.error_detail)
        self.escrow.refresh_from_db()
        self.assertEqual(self.escrow.release_status, Escrow.PENDING)
        self.assertIn("[RESET by admin]: Gateway shows no transfer", self.escrow.release_reason)

        retry = self.service.confirm_receipt(self.order.buyer, self.order.id)
        self.assertEqual(retry.value.status, RELEASED)

    def test_reset_requires_admin_and_reason(self):
        Escrow.objects.filter(pk=self.escrow.pk).update(release_status=Escrow.FAILED)

        self.assertEqual(
            self.service.reset_failed_escrow(self.order.buyer, self.escrow.id, "please").error,
            ErrorCodes.PERMISSION_DENIED,
        )
        self.assertEqual(self.service.reset_failed_escrow(self.admin, self.escrow.id, " ").error, ErrorCodes.VALIDATION_ERROR)

    def test_only_failed_escrows_can_be_reset(self):
        result = self.service.reset_failed_escrow(self.admin, self.escrow.id, "why not")
        self.assertEqual(result.error, ErrorCodes.PRECONDITION_FAILED)

    def test_order_escrow_status(self):
        result = self.service.get_order_escrow_status(self.order.buyer, self.order.id)

        self.assertTrue(result.ok)
        self.assertTrue(result.value["can_confirm_receipt"])
        self.assertEqual(result.value["escrow"]["release_status"], Escrow.PENDING)
        self.assertEqual(result.value["escrow"]["amount_held"], "100.00")

        seller_view = self.service.get_order_escrow_status(self.order.store.owner, self.order.id)
        self.assertFalse(seller_view.value["can_confirm_receipt"])

        stranger = self.service.get_order_escrow_status(UserFactory(), self.order.id)
        self.assertEqual(stranger.error, ErrorCodes.PERMISSION_DENIED)

    def test_escrow_details_for_parties(self):
        self.assertTrue(self.service.get_escrow_details(self.order.buyer, self.escrow.id).ok)
        self.assertEqual(
            self.service.get_escrow_details(UserFactory(), self.escrow.id).error, ErrorCodes.PERMISSION_DENIED
        )

    def test_list_pending_escrows(self):
        create_paid_order()

        result = self.service.list_pending_escrows(self.admin)

        self.assertEqual(result.value["count"], 2)
        self.assertEqual(self.service.list_pending_escrows(self.order.buyer).error, ErrorCodes.PERMISSION_DENIED)
        self.assertEqual(self.service.list_pending_escrows(self.admin, status=Escrow.FAILED).value["count"], 0)
