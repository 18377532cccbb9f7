"""
Notifier Interface
==================

Fire-and-forget delivery of user-facing messages. Callers never depend on
the outcome; implementations log failures instead of raising.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class NotifierInterface(ABC):
    """
    Concrete implementations:
        - QueuedNotifier: enqueues Celery delivery tasks
        - MockNotifier: records calls for tests
    """

    @abstractmethod
    def notify(
        self,
        user_id,
        title: str,
        body: str,
        notification_type: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Deliver an in-app notification to a user."""
        pass

    @abstractmethod
    def email_notify(self, to: str, subject: str, template: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Send a templated email."""
        pass
