import uuid

from django.contrib.auth import get_user_model
from django.db import models
from django.db.models import Q

from marketplace.models import Order

from .payment import Payment

User = get_user_model()


class Dispute(models.Model):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"

    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (RESOLVED, "Resolved"),
        (CANCELLED, "Cancelled"),
    ]

    ACTIVE_STATUSES = (PENDING, RESOLVED)

    TYPE_CHOICES = [
        ("REFUND_REQUEST", "Refund request"),
        ("ITEM_NOT_AS_DESCRIBED", "Item not as described"),
        ("ITEM_NOT_RECEIVED", "Item not received"),
        ("WRONG_ITEM_SENT", "Wrong item sent"),
        ("DAMAGED_ITEM", "Damaged item"),
        ("OTHER", "Other"),
    ]

    MANUAL_REFUND_NOTE = " [NOTE: Funds already released - manual refund required]"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="disputes")
    payment = models.ForeignKey(Payment, on_delete=models.PROTECT, related_name="disputes")
    buyer = models.ForeignKey(User, on_delete=models.PROTECT, related_name="disputes_opened")
    seller = models.ForeignKey(User, on_delete=models.PROTECT, related_name="disputes_received")

    dispute_type = models.CharField(max_length=30, choices=TYPE_CHOICES)
    description = models.TextField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING, db_index=True)

    resolution = models.TextField(blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    resolved_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name="disputes_resolved"
    )
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    requires_manual_refund = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        app_label = "payment_system"
        constraints = [
            models.UniqueConstraint(
                fields=["order"],
                condition=Q(status__in=["PENDING", "RESOLVED"]),
                name="one_active_dispute_per_order",
            ),
        ]

    def __str__(self):
        return f"Dispute {self.dispute_type} on order {str(self.order_id)[:8]} ({self.status})"
