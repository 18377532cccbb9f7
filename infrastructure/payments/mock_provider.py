"""
Mock Payment Gateway
====================

In-memory implementation of GatewayInterface for testing and local runs.
Records every call and lets tests choose the outcome of transfers, refunds
and charge verification.
"""

import hashlib
import hmac
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from django.conf import settings

from .interface import (
    ChargeInit,
    ChargeVerification,
    GatewayException,
    GatewayInterface,
    RefundResult,
    TransferResult,
)

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"
OUTCOME_TIMEOUT = "timeout"


class MockGatewayProvider(GatewayInterface):
    """
    Mock gateway.

    Attributes:
        charges / transfers / refunds: recorded calls, in order
        transfer_outcome / refund_outcome: 'success', 'failure' or 'timeout'
        charge_status: status reported by verify_charge
        fail_init: make init_charge raise GatewayException
        on_transfer: optional hook invoked before a transfer returns
    """

    def __init__(self, webhook_secret: Optional[str] = None):
        self.webhook_secret = webhook_secret or getattr(settings, "PAYSTACK_SECRET_KEY", "") or "mock-secret"
        self.charges: List[Dict[str, Any]] = []
        self.transfers: List[Dict[str, Any]] = []
        self.refunds: List[Dict[str, Any]] = []
        self.transfer_outcome = OUTCOME_SUCCESS
        self.refund_outcome = OUTCOME_SUCCESS
        self.charge_status = "success"
        self.fail_init = False
        self.error_message = "Mock gateway error"
        self.on_transfer: Optional[Callable[[Dict[str, Any]], None]] = None

    def init_charge(
        self,
        amount_minor: int,
        currency: str,
        reference: str,
        email: str,
        metadata: Optional[Dict[str, Any]] = None,
        callback_url: Optional[str] = None,
    ) -> ChargeInit:
        if self.fail_init:
            raise GatewayException(self.error_message)

        call = {
            "amount_minor": int(amount_minor),
            "currency": currency,
            "reference": reference,
            "email": email,
            "metadata": metadata or {},
            "callback_url": callback_url,
        }
        self.charges.append(call)
        logger.info(f"[MOCK GATEWAY] init_charge {reference}: {amount_minor} {currency}")
        return ChargeInit(authorization_url=f"https://checkout.mock/{reference}", reference=reference)

    def verify_charge(self, reference: str) -> ChargeVerification:
        charge = next((c for c in self.charges if c["reference"] == reference), None)
        if charge is None:
            raise GatewayException(f"Transaction reference not found: {reference}")
        return ChargeVerification(
            reference=reference,
            status=self.charge_status,
            amount_minor=charge["amount_minor"],
            currency=charge["currency"].upper(),
            raw=dict(charge),
        )

    def transfer(
        self,
        amount_minor: int,
        currency: str,
        recipient_id: str,
        reason: str,
        reference: Optional[str] = None,
    ) -> TransferResult:
        call = {
            "amount_minor": int(amount_minor),
            "currency": currency,
            "recipient_id": recipient_id,
            "reason": reason,
            "reference": reference,
        }
        self.transfers.append(call)
        logger.info(f"[MOCK GATEWAY] transfer {amount_minor} {currency}: {reason}")

        if self.on_transfer is not None:
            self.on_transfer(call)

        if self.transfer_outcome == OUTCOME_TIMEOUT:
            return TransferResult(success=False, error="Request timed out", timed_out=True)
        if self.transfer_outcome == OUTCOME_FAILURE:
            return TransferResult(success=False, error=self.error_message)
        return TransferResult(success=True, transfer_reference=f"TRF_{uuid.uuid4().hex[:12]}")

    def refund(self, payment_reference: str, amount_minor: int, reason: str) -> RefundResult:
        self.refunds.append({"payment_reference": payment_reference, "amount_minor": int(amount_minor), "reason": reason})
        logger.info(f"[MOCK GATEWAY] refund {amount_minor} on {payment_reference}")

        if self.refund_outcome == OUTCOME_TIMEOUT:
            return RefundResult(success=False, error="Request timed out", timed_out=True)
        if self.refund_outcome == OUTCOME_FAILURE:
            return RefundResult(success=False, error=self.error_message)
        return RefundResult(success=True, refund_reference=f"RFD_{uuid.uuid4().hex[:12]}")

    def sign(self, payload: bytes) -> str:
        """Produce the signature a real gateway would send for ``payload``."""
        return hmac.new(self.webhook_secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(self.sign(payload), signature.strip())

    def clear(self):
        """Clear recorded calls (useful between tests)."""
        self.charges.clear()
        self.transfers.clear()
        self.refunds.clear()
