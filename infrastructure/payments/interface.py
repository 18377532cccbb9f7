"""
Payment Gateway Interface
=========================

Abstract base class defining the contract the reconciliation engine needs
from an external payment processor: initialize and verify charges, transfer
escrowed funds to a seller, refund a buyer, and authenticate webhooks.

All amounts crossing this interface are integers in minor currency units.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

MINOR_UNIT_FACTOR = Decimal("100")


def to_minor_units(amount) -> int:
    """Convert a major-unit amount (e.g. 100.00 GHS) to minor units (10000 pesewas)."""
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int(value * MINOR_UNIT_FACTOR)


def from_minor_units(amount_minor: int) -> Decimal:
    return (Decimal(int(amount_minor)) / MINOR_UNIT_FACTOR).quantize(Decimal("0.01"))


@dataclass
class ChargeInit:
    """
    Result of initializing a charge.

    Attributes:
        authorization_url: Redirect URL where the buyer completes payment
        reference: Gateway reference, unique per processor transaction
        access_code: Optional gateway access code
    """

    authorization_url: str
    reference: str
    access_code: str = ""


@dataclass
class ChargeVerification:
    """Gateway view of a charge, as returned by verify_charge."""

    reference: str
    status: str
    amount_minor: int
    currency: str
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass
class TransferResult:
    """
    Outcome of a payout transfer.

    ``timed_out`` means the outcome is unknown: the transfer may or may not
    have been executed by the gateway.
    """

    success: bool
    transfer_reference: str = ""
    error: str = ""
    timed_out: bool = False


@dataclass
class RefundResult:
    success: bool
    refund_reference: str = ""
    error: str = ""
    timed_out: bool = False


class GatewayInterface(ABC):
    """
    Abstract interface for payment gateway operations.

    Concrete implementations:
        - PaystackProvider: Paystack REST API
        - MockGatewayProvider: in-memory gateway for tests and local runs
    """

    @abstractmethod
    def init_charge(
        self,
        amount_minor: int,
        currency: str,
        reference: str,
        email: str,
        metadata: Optional[Dict[str, Any]] = None,
        callback_url: Optional[str] = None,
    ) -> ChargeInit:
        """
        Initialize a charge for the buyer to complete.

        Raises:
            GatewayException: If the gateway rejects the request or is unreachable
        """
        pass

    @abstractmethod
    def verify_charge(self, reference: str) -> ChargeVerification:
        """
        Fetch the gateway's view of a charge. Read-only.

        Raises:
            GatewayException: If verification fails
        """
        pass

    @abstractmethod
    def transfer(
        self,
        amount_minor: int,
        currency: str,
        recipient_id: str,
        reason: str,
        reference: Optional[str] = None,
    ) -> TransferResult:
        """
        Transfer funds from the platform balance to a seller recipient.

        Never raises for gateway failures; returns a failed TransferResult.
        Must not be retried automatically.
        """
        pass

    @abstractmethod
    def refund(self, payment_reference: str, amount_minor: int, reason: str) -> RefundResult:
        """Refund (part of) a charge to the buyer. Never raises for gateway failures."""
        pass

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """Check the keyed signature over the exact raw webhook body."""
        pass


class GatewayException(Exception):
    """Base exception for gateway operations."""

    pass


class GatewayTimeout(GatewayException):
    """The gateway did not answer within the configured timeout."""

    pass
