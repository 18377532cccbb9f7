"""
Payment Gateway Factory
=======================

Factory pattern for creating gateway instances based on configuration.
"""

import logging
from typing import Literal

from django.conf import settings

from .interface import GatewayInterface
from .mock_provider import MockGatewayProvider
from .paystack_provider import PaystackProvider

logger = logging.getLogger(__name__)

PaymentBackend = Literal["paystack", "mock"]


class PaymentFactory:
    """
    Factory for creating payment gateway instances.

    Usage:
        # In settings.py
        INFRASTRUCTURE = {"PAYMENT_PROVIDER": "paystack"}  # or 'mock'

        # In your code
        gateway = PaymentFactory.create()
    """

    @staticmethod
    def create(backend: PaymentBackend | None = None) -> GatewayInterface:
        """
        Create a gateway instance.

        Args:
            backend: 'paystack' or 'mock'. If None, reads INFRASTRUCTURE['PAYMENT_PROVIDER']

        Raises:
            ValueError: If backend type is invalid
        """
        backend_type = backend or getattr(settings, "INFRASTRUCTURE", {}).get("PAYMENT_PROVIDER", "paystack")

        logger.info(f"Creating payment provider: {backend_type}")

        if backend_type == "paystack":
            return PaystackProvider()
        elif backend_type == "mock":
            return MockGatewayProvider()
        else:
            raise ValueError(f"Invalid payment provider: {backend_type}. Must be 'paystack' or 'mock'")
