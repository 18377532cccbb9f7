"""
Service Container Tests
========================

Unit tests for dependency injection container.
"""

from django.test import TestCase, override_settings

from infrastructure.cache import DjangoCache, RedisCache
from infrastructure.container import ServiceContainer, container
from infrastructure.email import EmailServiceInterface, MockEmailService
from infrastructure.events import InMemoryEventBus
from infrastructure.notifications import MockNotifier, QueuedNotifier
from infrastructure.payments import GatewayInterface, MockGatewayProvider, PaystackProvider


class ServiceContainerTest(TestCase):
    """Test ServiceContainer implementation."""

    def setUp(self):
        container.reset()

    def tearDown(self):
        container.configure_for_testing()

    def test_container_is_singleton(self):
        container1 = ServiceContainer()
        container2 = ServiceContainer()

        self.assertIs(container1, container2)
        self.assertIs(container1, container)

    def test_get_email_service(self):
        email = container.email()

        self.assertIsInstance(email, EmailServiceInterface)
        self.assertIsInstance(email, MockEmailService)
        self.assertIs(email, container.email())

    @override_settings(INFRASTRUCTURE={"PAYMENT_PROVIDER": "paystack"}, PAYSTACK_SECRET_KEY="sk_test_fake")
    def test_gateway_from_settings(self):
        gateway = container.gateway()

        self.assertIsInstance(gateway, GatewayInterface)
        self.assertIsInstance(gateway, PaystackProvider)
        self.assertIs(gateway, container.gateway())

    def test_gateway_with_explicit_backend(self):
        self.assertIsInstance(container.gateway("mock"), MockGatewayProvider)

    @override_settings(INFRASTRUCTURE={"CACHE_BACKEND": "redis", "NOTIFIER_BACKEND": "queued"})
    def test_production_backends_are_lazy(self):
        cache = container.cache()
        notifier = container.notifier()

        self.assertIsInstance(cache, RedisCache)
        self.assertIsInstance(notifier, QueuedNotifier)
        # connect() only builds the client; no round trip happens until first use
        self.assertIsNotNone(cache.client)

    def test_domain_services_share_infrastructure(self):
        container.configure_for_testing()

        escrow_service = container.escrow_service()
        dispute_service = container.dispute_service()

        self.assertIs(escrow_service, container.escrow_service())
        self.assertIs(escrow_service.gateway, container.gateway())
        self.assertIs(dispute_service.refund_service, container.refund_service())
        self.assertIs(container.order_service().refund_service, container.refund_service())

    def test_reset_container(self):
        container.configure_for_testing()
        gateway1 = container.gateway()
        service1 = container.webhook_service()

        container.reset()
        container.configure_for_testing()

        self.assertIsNot(gateway1, container.gateway())
        self.assertIsNot(service1, container.webhook_service())

    def test_configure_for_testing(self):
        container.configure_for_testing()

        self.assertIsInstance(container.gateway(), MockGatewayProvider)
        self.assertIsInstance(container.cache(), DjangoCache)
        self.assertIsInstance(container.notifier(), MockNotifier)
        self.assertIsInstance(container.email(), MockEmailService)
        self.assertIsInstance(container.event_bus(), InMemoryEventBus)
