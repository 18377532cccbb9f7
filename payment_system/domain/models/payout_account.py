from django.db import models

from marketplace.models import Store


class PayoutAccount(models.Model):
    """Gateway transfer recipient for a store's escrow releases."""

    store = models.OneToOneField(Store, on_delete=models.CASCADE, related_name="payout_account")
    recipient_code = models.CharField(max_length=100)
    bank_name = models.CharField(max_length=100, blank=True)
    account_name = models.CharField(max_length=200, blank=True)
    account_number_masked = models.CharField(max_length=30, blank=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        app_label = "payment_system"

    def __str__(self):
        return f"Payout account for {self.store_id} ({self.bank_name})"
