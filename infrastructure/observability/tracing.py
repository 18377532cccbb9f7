"""
OpenTelemetry Distributed Tracing

Configures OpenTelemetry for the escrow backend. Django requests and
outgoing gateway calls (requests) are auto-instrumented; the reconciliation
engine adds its own spans around webhook processing and escrow release.
"""

import logging
from functools import wraps
from typing import Optional

from opentelemetry import trace
from opentelemetry.instrumentation.django import DjangoInstrumentor
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = logging.getLogger(__name__)

_initialized = False


def setup_tracing(service_name: str = "escrow-backend", console_export: bool = False, enable: bool = True) -> None:
    """
    Initialize OpenTelemetry tracing.

    Args:
        service_name: Name of the service for tracing
        console_export: Export finished spans to stdout
        enable: Enable/disable tracing
    """
    global _initialized

    if _initialized:
        logger.warning("Tracing already initialized. Skipping.")
        return

    if not enable:
        logger.info("Tracing disabled via configuration")
        return

    resource = Resource(attributes={SERVICE_NAME: service_name})
    tracer_provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(tracer_provider)

    if console_export:
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Console span exporter configured")

    # Auto-instrument Django (traces all HTTP requests)
    DjangoInstrumentor().instrument()

    # Auto-instrument requests library (traces outgoing gateway calls)
    RequestsInstrumentor().instrument()

    _initialized = True
    logger.info(f"OpenTelemetry tracing initialized for service: {service_name}")


def get_tracer(name: str = __name__) -> trace.Tracer:
    """
    Get tracer instance for creating custom spans.

    Example:
        tracer = get_tracer(__name__)

        with tracer.start_as_current_span("escrow.release"):
            ...
    """
    return trace.get_tracer(name)


def add_span_attributes(span: trace.Span, **attributes) -> None:
    """Add custom attributes to a span; values are stringified."""
    for key, value in attributes.items():
        span.set_attribute(key, str(value))


def trace_function(operation_name: Optional[str] = None):
    """
    Decorator to trace a function execution.

    Example:
        @trace_function("webhook.process")
        def process_webhook(self, payload, signature):
            ...
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            tracer = get_tracer(func.__module__)
            span_name = operation_name or f"{func.__module__}.{func.__name__}"

            with tracer.start_as_current_span(span_name):
                return func(*args, **kwargs)

        return wrapper

    return decorator
