# bus_tracker/infra/__init__.py
"""
Инфраструктурный слой: PostgreSQL, Redis, RabbitMQ.
"""

from bus_tracker.infra.database import DatabaseManager, get_db
from bus_tracker.infra.redis_client import RedisClient, get_redis
from bus_tracker.infra.event_bus import EventBus, get_event_bus

__all__ = [
    "DatabaseManager",
    "get_db",
    "RedisClient",
    "get_redis",
    "EventBus",
    "get_event_bus",
]
