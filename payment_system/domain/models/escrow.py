import uuid

from django.db import models

from marketplace.models import Order

from .payment import Payment


class Escrow(models.Model):
    """
    Funds held for one paid order until release to the seller or refund.

    ``release_status`` leaves PENDING at most once. PROCESSING is the claim
    held while a transfer or refund is in flight at the gateway.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    RELEASED = "RELEASED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (PROCESSING, "Processing"),
        (RELEASED, "Released"),
        (FAILED, "Failed"),
        (REFUNDED, "Refunded"),
    ]

    RELEASED_TO_BUYER_CONFIRMATION = "buyer_confirmation"
    RELEASED_TO_AUTO_TIMER = "auto_timer"
    RELEASED_TO_NONE = "none"

    RELEASED_TO_CHOICES = [
        (RELEASED_TO_BUYER_CONFIRMATION, "Buyer confirmation"),
        (RELEASED_TO_AUTO_TIMER, "Auto timer"),
        (RELEASED_TO_NONE, "None"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.OneToOneField(Order, on_delete=models.PROTECT, related_name="escrow")
    payment = models.OneToOneField(Payment, on_delete=models.PROTECT, related_name="escrow")

    amount_held = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="GHS")
    release_date = models.DateTimeField(db_index=True)
    release_status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING, db_index=True)
    released_at = models.DateTimeField(null=True, blank=True)
    released_to = models.CharField(max_length=30, choices=RELEASED_TO_CHOICES, default=RELEASED_TO_NONE)
    release_reason = models.TextField(blank=True)

    transfer_reference = models.CharField(max_length=100, blank=True)
    refund_reference = models.CharField(max_length=100, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["release_date"]
        app_label = "payment_system"
        indexes = [
            models.Index(fields=["release_status", "release_date"], name="escrow_due_idx"),
        ]

    def __str__(self):
        return f"Escrow {self.amount_held} {self.currency} for order {str(self.order_id)[:8]} ({self.release_status})"
