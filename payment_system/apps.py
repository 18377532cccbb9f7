import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class PaymentSystemConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payment_system"
    verbose_name = "Payment System"

    def ready(self):
        """Initialize tracing for webhook processing and escrow releases."""
        from infrastructure.observability import setup_tracing

        if getattr(settings, "TRACING_ENABLED", False):
            setup_tracing(
                service_name="escrow-backend",
                console_export=getattr(settings, "TRACING_CONSOLE_EXPORT", False),
            )
            logger.info("[STARTUP] Payment System tracing enabled")
