"""
Infrastructure Package
======================

Provides abstraction layers for external dependencies following the Dependency Inversion Principle.

Modules:
    - payments: Payment gateway abstraction (Paystack, mock)
    - cache: Read-through cache abstraction (Redis, Django cache)
    - email: Email service abstraction (SMTP, mock)
    - notifications: Notification service abstraction (Celery-queued, mock)
    - events: Domain event bus (Redis pub/sub, in-memory)
    - observability: OpenTelemetry tracing setup

This package enables:
    - Easy testing with mock implementations
    - Switching between providers without code changes
    - Loose coupling between business logic and infrastructure
"""
