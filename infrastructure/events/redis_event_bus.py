import json
import logging

import redis
from django.conf import settings
from django.utils import timezone

from .event_bus_interface import EventBus


logger = logging.getLogger(__name__)


class RedisEventBus(EventBus):
    """Redis pub/sub implementation of event bus."""

    def __init__(self, redis_url: str = None):
        self.redis_url = redis_url or getattr(settings, "EVENT_BUS_REDIS_URL", "redis://localhost:6379/0")
        self.redis_client = redis.from_url(self.redis_url)

    def publish(self, event_type: str, payload: dict):
        """Publish event to the ``events.<type>`` Redis channel."""
        try:
            message = {"event_type": event_type, "occurred_at": timezone.now().isoformat(), "payload": payload}
            channel = f"events.{event_type}"
            self.redis_client.publish(channel, json.dumps(message, default=str))
            logger.info(f"Published event: {event_type}")
        except redis.RedisError as e:
            logger.error(f"Failed to publish event {event_type}: {str(e)}")
            # Don't raise - event publishing should not break business logic
