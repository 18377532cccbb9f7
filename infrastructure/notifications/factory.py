import logging
from typing import Literal

from django.conf import settings

from .interface import NotifierInterface
from .mock_notifier import MockNotifier
from .queued_notifier import QueuedNotifier

logger = logging.getLogger(__name__)

NotifierBackend = Literal["queued", "mock"]


class NotifierFactory:
    @staticmethod
    def create(backend: NotifierBackend | None = None) -> NotifierInterface:
        """
        Create a notifier. Reads INFRASTRUCTURE['NOTIFIER_BACKEND'] when backend is None.

        Raises:
            ValueError: If backend type is invalid
        """
        backend_type = backend or getattr(settings, "INFRASTRUCTURE", {}).get("NOTIFIER_BACKEND", "queued")

        logger.info(f"Creating notifier backend: {backend_type}")

        if backend_type == "queued":
            return QueuedNotifier()
        elif backend_type == "mock":
            return MockNotifier()
        else:
            raise ValueError(f"Invalid notifier backend: {backend_type}. Must be 'queued' or 'mock'")
