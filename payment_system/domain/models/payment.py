import uuid

from django.contrib.auth import get_user_model
from django.db import models

from marketplace.models import Order

User = get_user_model()


class Payment(models.Model):
    """
    One payment attempt for one order.

    Orders checked out together share ``reference`` (one gateway charge) and
    ``checkout_session``; each Payment still settles independently.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (PROCESSING, "Processing"),
        (SUCCESS, "Success"),
        (FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="payments")
    buyer = models.ForeignKey(User, on_delete=models.PROTECT, related_name="payments")

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="GHS")
    reference = models.CharField(max_length=100, db_index=True)
    checkout_session = models.CharField(max_length=100, db_index=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING, db_index=True)

    # Raw gateway data
    gateway_status = models.CharField(max_length=50, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        app_label = "payment_system"
        constraints = [
            models.UniqueConstraint(fields=["reference", "order"], name="unique_payment_per_reference_and_order"),
        ]

    def __str__(self):
        return f"Payment {self.reference} for order {str(self.order_id)[:8]} ({self.status})"
