"""
Notification Abstraction Layer
==============================

In-app and email notifications behind one fire-and-forget interface.
"""

from .factory import NotifierFactory
from .interface import NotifierInterface
from .mock_notifier import MockNotifier
from .queued_notifier import QueuedNotifier

__all__ = ["NotifierInterface", "QueuedNotifier", "MockNotifier", "NotifierFactory"]
