"""
Payment System Tasks Package

Celery task definitions for escrow release and notification delivery.
"""

# Import tasks to ensure they are registered with Celery
from .escrow_tasks import release_due_escrows_task, release_escrow_task
from .notification_tasks import deliver_email_notification, deliver_in_app_notification

__all__ = [
    # Escrow tasks
    "release_due_escrows_task",
    "release_escrow_task",
    # Notification tasks
    "deliver_in_app_notification",
    "deliver_email_notification",
]
