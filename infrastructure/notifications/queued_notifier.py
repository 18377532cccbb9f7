"""
Queued Notifier
===============

Hands notifications to Celery so delivery happens outside the request and
outside any database transaction.
"""

import logging
from typing import Any, Dict, Optional

from kombu.exceptions import OperationalError

from .interface import NotifierInterface

logger = logging.getLogger(__name__)


class QueuedNotifier(NotifierInterface):
    def notify(self, user_id, title, body, notification_type, payload=None) -> None:
        from payment_system.Tasks.notification_tasks import deliver_in_app_notification

        try:
            deliver_in_app_notification.delay(str(user_id), title, body, notification_type, payload or {})
        except OperationalError as e:
            logger.error(f"Could not queue notification '{title}' for user {user_id}: {e}")

    def email_notify(self, to: str, subject: str, template: str, data: Optional[Dict[str, Any]] = None) -> None:
        from payment_system.Tasks.notification_tasks import deliver_email_notification

        try:
            deliver_email_notification.delay(to, subject, template, data or {})
        except OperationalError as e:
            logger.error(f"Could not queue email '{template}': {e}")
