from .event_bus_interface import EventBus, InMemoryEventBus
from .redis_event_bus import RedisEventBus

__all__ = ["EventBus", "InMemoryEventBus", "RedisEventBus"]
