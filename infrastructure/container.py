"""
Dependency Injection Container
================================

Simple service locator pattern for managing infrastructure dependencies.
Infrastructure clients (gateway, cache, notifier, email, event bus) are
created lazily through their factories and injected into the domain
services, which never construct their own collaborators.

Usage:
    from infrastructure.container import container

    escrow_service = container.escrow_service()
    gateway = container.gateway()
"""

import logging
from typing import Optional

from .cache import CacheFactory, CacheInterface
from .email import EmailFactory, EmailServiceInterface
from .events import EventBus, InMemoryEventBus, RedisEventBus
from .notifications import NotifierFactory, NotifierInterface
from .payments import GatewayInterface, PaymentFactory

logger = logging.getLogger(__name__)


class ServiceContainer:
    """
    Service container for infrastructure dependencies.

    Implements lazy initialization and caching of service instances.
    Singleton pattern.
    """

    _instance: Optional["ServiceContainer"] = None
    _initialized: bool = False

    def __new__(cls):
        """Ensure only one instance exists (singleton pattern)."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize container (only once)."""
        if not self._initialized:
            self._clear()
            self._initialized = True
            logger.info("Service container initialized")

    def _clear(self):
        self._gateway: Optional[GatewayInterface] = None
        self._cache: Optional[CacheInterface] = None
        self._notifier: Optional[NotifierInterface] = None
        self._email: Optional[EmailServiceInterface] = None
        self._event_bus: Optional[EventBus] = None

        # Domain Services
        self._order_service = None
        self._delivery_service = None
        self._checkout_service = None
        self._webhook_service = None
        self._escrow_service = None
        self._refund_service = None
        self._dispute_service = None
        self._payout_account_service = None
        self._payment_query_service = None

    # Infrastructure

    def gateway(self, backend: Optional[str] = None) -> GatewayInterface:
        """
        Get payment gateway instance.

        Args:
            backend: 'paystack' or 'mock'. If None, uses configuration from settings
        """
        if self._gateway is None or backend is not None:
            self._gateway = PaymentFactory.create(backend)
            logger.debug(f"Created payment gateway: {type(self._gateway).__name__}")
        return self._gateway

    def cache(self) -> CacheInterface:
        """Get cache client (connected on first use)."""
        if self._cache is None:
            self._cache = CacheFactory.create()
            self._cache.connect()
            logger.debug(f"Created cache client: {type(self._cache).__name__}")
        return self._cache

    def notifier(self) -> NotifierInterface:
        if self._notifier is None:
            self._notifier = NotifierFactory.create()
            logger.debug(f"Created notifier: {type(self._notifier).__name__}")
        return self._notifier

    def email(self, backend: Optional[str] = None) -> EmailServiceInterface:
        """
        Get email service instance.

        Args:
            backend: Email backend type ('smtp' or 'mock')
                    If None, uses configuration from settings
        """
        if self._email is None or backend is not None:
            self._email = EmailFactory.create(backend)
            logger.debug(f"Created email service: {type(self._email).__name__}")
        return self._email

    def event_bus(self) -> EventBus:
        if self._event_bus is None:
            self._event_bus = RedisEventBus()
            logger.debug("Created Redis event bus")
        return self._event_bus

    # Marketplace services

    def order_service(self):
        """Get OrderService instance."""
        if self._order_service is None:
            from marketplace.ordering.domain.services.order_service import OrderService

            self._order_service = OrderService(
                refund_service=self.refund_service(),
                notifier=self.notifier(),
                cache=self.cache(),
            )
            logger.debug("Created OrderService")
        return self._order_service

    def delivery_service(self):
        if self._delivery_service is None:
            from marketplace.ordering.domain.services.delivery_service import DeliveryService

            self._delivery_service = DeliveryService(notifier=self.notifier(), cache=self.cache())
            logger.debug("Created DeliveryService")
        return self._delivery_service

    # Payment services

    def refund_service(self):
        if self._refund_service is None:
            from payment_system.domain.services.refund_service import RefundService

            self._refund_service = RefundService(gateway=self.gateway())
            logger.debug("Created RefundService")
        return self._refund_service

    def payout_account_service(self):
        if self._payout_account_service is None:
            from payment_system.domain.services.payout_account_service import PayoutAccountService

            self._payout_account_service = PayoutAccountService()
            logger.debug("Created PayoutAccountService")
        return self._payout_account_service

    def checkout_service(self):
        if self._checkout_service is None:
            from payment_system.domain.services.checkout_service import CheckoutService

            self._checkout_service = CheckoutService(gateway=self.gateway(), cache=self.cache())
            logger.debug("Created CheckoutService")
        return self._checkout_service

    def webhook_service(self):
        if self._webhook_service is None:
            from payment_system.domain.services.webhook_service import WebhookService

            self._webhook_service = WebhookService(
                gateway=self.gateway(),
                notifier=self.notifier(),
                cache=self.cache(),
            )
            logger.debug("Created WebhookService")
        return self._webhook_service

    def escrow_service(self):
        if self._escrow_service is None:
            from payment_system.domain.services.escrow_service import EscrowService

            self._escrow_service = EscrowService(
                gateway=self.gateway(),
                payout_accounts=self.payout_account_service(),
                notifier=self.notifier(),
                cache=self.cache(),
            )
            logger.debug("Created EscrowService")
        return self._escrow_service

    def dispute_service(self):
        if self._dispute_service is None:
            from payment_system.domain.services.dispute_service import DisputeService

            self._dispute_service = DisputeService(
                refund_service=self.refund_service(),
                notifier=self.notifier(),
                cache=self.cache(),
            )
            logger.debug("Created DisputeService")
        return self._dispute_service

    def payment_query_service(self):
        if self._payment_query_service is None:
            from payment_system.domain.services.payment_query_service import PaymentQueryService

            self._payment_query_service = PaymentQueryService(gateway=self.gateway())
            logger.debug("Created PaymentQueryService")
        return self._payment_query_service

    # Lifecycle

    def shutdown(self):
        """Release connection handles (worker shutdown)."""
        if self._cache is not None:
            self._cache.disconnect()
        logger.info("Service container shut down")

    def reset(self):
        """
        Reset all cached service instances.

        Useful for testing or when switching between environments.
        """
        self.shutdown()
        self._clear()
        logger.info("Service container reset")

    def configure_for_testing(self):
        """
        Configure container with in-memory services for testing.

        Sets up:
            - Mock gateway (records calls, configurable outcomes)
            - Django (locmem) cache
            - Mock notifier and mock email service
            - In-memory event bus
        """
        self.reset()
        self._gateway = PaymentFactory.create("mock")
        self._cache = CacheFactory.create("django")
        self._notifier = NotifierFactory.create("mock")
        self._email = EmailFactory.create("mock")
        self._event_bus = InMemoryEventBus()
        logger.info("Service container configured for testing")


# Global singleton instance
container = ServiceContainer()
