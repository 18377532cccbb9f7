from abc import ABC, abstractmethod
from typing import Any, Dict, List


class EventBus(ABC):
    """Publish-only event bus used to fan out in-app notifications."""

    @abstractmethod
    def publish(self, event_type: str, payload: dict):
        """Publish an event. Must never raise into business code."""
        pass


class InMemoryEventBus(EventBus):
    """Event bus that keeps published events in memory (tests, local runs)."""

    def __init__(self):
        self.published: List[Dict[str, Any]] = []

    def publish(self, event_type: str, payload: dict):
        self.published.append({"event_type": event_type, "payload": payload})
