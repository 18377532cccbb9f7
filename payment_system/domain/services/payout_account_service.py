"""Seller payout accounts: the transfer recipient used by escrow release."""

from dataclasses import dataclass
from typing import Optional

from django.db import transaction

from marketplace.models import Store
from payment_system.domain.models import PayoutAccount
from utils.exceptions import AuthorizationError, NotFoundError, ValidationError
from utils.logging_utils import mask_account_number, mask_value
from utils.rbac import is_admin
from utils.service_base import BaseService, ServiceResult


@dataclass(frozen=True)
class PayoutRecipient:
    store_id: str
    recipient_id: str
    bank_name: str = ""
    account_name: str = ""


class PayoutAccountService(BaseService):
    def get_payout_account(self, store_id) -> Optional[PayoutRecipient]:
        """Active payout recipient for a store, or None when the seller has not onboarded."""
        account = PayoutAccount.objects.filter(store_id=store_id, is_active=True).first()
        if account is None or not account.recipient_code:
            return None
        return PayoutRecipient(
            store_id=str(account.store_id),
            recipient_id=account.recipient_code,
            bank_name=account.bank_name,
            account_name=account.account_name,
        )

    def _get_owned_store(self, user, store_id) -> Store:
        store = Store.objects.filter(pk=store_id).first()
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")
        if store.owner_id != user.pk and not is_admin(user):
            raise AuthorizationError("Only the store owner can manage its payout account")
        return store

    @BaseService.log_performance
    @BaseService.returns_result
    def get_store_payout_account(self, user, store_id) -> ServiceResult[PayoutAccount]:
        store = self._get_owned_store(user, store_id)
        account = PayoutAccount.objects.filter(store=store).first()
        if account is None:
            raise NotFoundError("No payout account configured for this store")
        return account

    @BaseService.log_performance
    @BaseService.returns_result
    def upsert_payout_account(
        self,
        seller,
        store_id,
        recipient_code: str,
        bank_name: str = "",
        account_name: str = "",
        account_number: str = "",
        is_active: bool = True,
    ) -> ServiceResult[PayoutAccount]:
        """
        Create or replace the payout account of a store owned by ``seller``.

        Only the last four digits of ``account_number`` are stored.
        """
        recipient_code = (recipient_code or "").strip()
        if not recipient_code:
            raise ValidationError("Recipient code is required", errors=["recipient_code: This field is required."])

        store = self._get_owned_store(seller, store_id)

        with transaction.atomic():
            account, created = PayoutAccount.objects.select_for_update().get_or_create(
                store=store,
                defaults={"recipient_code": recipient_code},
            )
            account.recipient_code = recipient_code
            account.bank_name = bank_name
            account.account_name = account_name
            if account_number:
                account.account_number_masked = mask_account_number(account_number)
            account.is_active = is_active
            account.save()

        self.logger.info(
            f"{'Created' if created else 'Updated'} payout account for store {store.pk} "
            f"(recipient {mask_value(recipient_code)})"
        )
        return account
