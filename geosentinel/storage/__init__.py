"""
Storage layer for the monitor engine.

Modules:
    redis_client: Async Redis client (monitor documents, pub/sub)
    repository: Monitor repositories (in-memory and Redis)
"""

from geosentinel.storage.redis_client import (
    RedisClient,
    RedisClientError,
    RedisConnectionException,
    RedisOperationError,
)
from geosentinel.storage.repository import (
    InMemoryMonitorRepository,
    MonitorRepository,
    RedisMonitorRepository,
)

__all__ = [
    "RedisClient",
    "RedisClientError",
    "RedisConnectionException",
    "RedisOperationError",
    "InMemoryMonitorRepository",
    "MonitorRepository",
    "RedisMonitorRepository",
]
