"""
Payment Gateway Abstraction Layer
=================================

Provides a unified interface for charge, transfer and refund operations
across payment processors.
"""

from .factory import PaymentFactory
from .interface import (
    ChargeInit,
    ChargeVerification,
    GatewayException,
    GatewayInterface,
    GatewayTimeout,
    RefundResult,
    TransferResult,
    from_minor_units,
    to_minor_units,
)
from .mock_provider import MockGatewayProvider
from .paystack_provider import PaystackProvider

__all__ = [
    "GatewayInterface",
    "ChargeInit",
    "ChargeVerification",
    "TransferResult",
    "RefundResult",
    "GatewayException",
    "GatewayTimeout",
    "to_minor_units",
    "from_minor_units",
    "PaystackProvider",
    "MockGatewayProvider",
    "PaymentFactory",
]
