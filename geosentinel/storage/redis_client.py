"""
Async Redis client for monitor state and pub/sub.

This module provides a Redis client for storing monitor documents and for
the pub/sub channels carrying monitor status events and feature store
change notifications.

Key Patterns:
    - Monitors: `monitor:{monitor_id}` (JSON string), `monitors:all` (set of ids)
    - Pub/Sub channels: `updates:monitors` (status events),
                        `changes:{service}` (feature store change events)

Example:
    >>> from geosentinel.config.models import RedisConnectionConfig
    >>> from geosentinel.storage.redis_client import RedisClient
    >>>
    >>> client = RedisClient(RedisConnectionConfig(url="redis://localhost:6379"))
    >>> await client.connect()
    >>> await client.set_monitor(monitor.id, monitor.model_dump_json())
    >>> raw = await client.get_monitor(monitor.id)
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.client import PubSub
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from geosentinel.config.models import RedisConnectionConfig

logger = structlog.get_logger(__name__)


class RedisClientError(Exception):
    """Common base for errors raised by RedisClient."""


class RedisConnectionException(RedisClientError):
    """Redis is unreachable or the client was never connected."""


class RedisOperationError(RedisClientError):
    """A command against a connected Redis failed."""


class RedisClient:
    """
    Async Redis client for the monitor engine.

    Attributes:
        config: URL, pool size and socket timeout.

    Example:
        >>> client = RedisClient(RedisConnectionConfig())
        >>> await client.connect()
        >>> try:
        ...     ids = await client.get_monitor_ids()
        ... finally:
        ...     await client.disconnect()
    """

    # Key prefixes
    KEY_MONITOR = "monitor"
    KEY_MONITORS_ALL = "monitors:all"

    # Pub/sub channels
    CHANNEL_MONITORS = "updates:monitors"
    CHANNEL_CHANGES = "changes"

    def __init__(self, config: RedisConnectionConfig) -> None:
        """
        Initialize the Redis client.

        Args:
            config: Redis connection configuration containing URL and pool settings.
        """
        self.config = config
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None  # type: ignore[type-arg]
        self._connected: bool = False

        logger.info(
            "redis_client_initialized",
            url=config.url,
            max_connections=config.max_connections,
        )

    @property
    def is_connected(self) -> bool:
        """True once connect() succeeded and until disconnect()."""
        return self._connected and self._client is not None

    async def connect(self) -> None:
        """
        Establish connection to Redis.

        Raises:
            RedisConnectionException: If connection fails.
        """
        if self._connected:
            logger.warning("redis_already_connected")
            return

        try:
            self._pool = ConnectionPool.from_url(
                self.config.url,
                max_connections=self.config.max_connections,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_timeout,
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            await self._client.ping()
            self._connected = True

            logger.info("redis_connected", url=self.config.url)

        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            self._connected = False
            logger.error(
                "redis_connection_failed",
                url=self.config.url,
                error=str(e),
            )
            raise RedisConnectionException(
                f"Failed to connect to Redis at {self.config.url}: {e}"
            ) from e

    async def disconnect(self) -> None:
        """
        Disconnect and drop the connection pool.

        Safe to call multiple times.
        """
        if self._client is not None:
            try:
                await self._client.aclose()
            except RedisError as e:
                logger.warning("redis_close_error", error=str(e))
            finally:
                self._client = None

        if self._pool is not None:
            try:
                await self._pool.aclose()
            except RedisError as e:
                logger.warning("redis_pool_close_error", error=str(e))
            finally:
                self._pool = None

        self._connected = False
        logger.info("redis_disconnected")

    async def ping(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            bool: Whether PING succeeded.
        """
        if not self._client:
            return False

        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    def _require_connection(self) -> Redis:  # type: ignore[type-arg]
        """
        Return the live Redis instance.

        Raises:
            RedisConnectionException: If not connected.
        """
        if not self._connected or self._client is None:
            raise RedisConnectionException("Redis client is not connected")
        return self._client

    # =========================================================================
    # MONITOR DOCUMENTS
    # =========================================================================

    def _monitor_key(self, monitor_id: str) -> str:
        """Generate Redis key for a monitor document."""
        return f"{self.KEY_MONITOR}:{monitor_id}"

    async def set_monitor(self, monitor_id: str, document: str) -> None:
        """
        Store a monitor document and index its id.

        Args:
            monitor_id: Monitor identifier.
            document: Serialized JSON document.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()

        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(self._monitor_key(monitor_id), document)
                pipe.sadd(self.KEY_MONITORS_ALL, monitor_id)
                await pipe.execute()

            logger.debug("monitor_stored", monitor_id=monitor_id)

        except RedisError as e:
            logger.error("monitor_store_failed", monitor_id=monitor_id, error=str(e))
            raise RedisOperationError(
                f"Failed to store monitor {monitor_id}: {e}"
            ) from e

    async def get_monitor(self, monitor_id: str) -> Optional[str]:
        """
        Retrieve a monitor document by id.

        Returns:
            Optional[str]: The serialized document if found, None otherwise.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()

        try:
            return await client.get(self._monitor_key(monitor_id))
        except RedisError as e:
            logger.error("monitor_retrieve_failed", monitor_id=monitor_id, error=str(e))
            raise RedisOperationError(
                f"Failed to retrieve monitor {monitor_id}: {e}"
            ) from e

    async def get_all_monitors(self) -> List[str]:
        """
        Retrieve every indexed monitor document.

        Ids whose document has vanished are skipped.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()

        try:
            monitor_ids = await client.smembers(self.KEY_MONITORS_ALL)
            if not monitor_ids:
                return []

            keys = [self._monitor_key(mid) for mid in sorted(monitor_ids)]
            values = await client.mget(keys)
            documents = [value for value in values if value is not None]

            logger.debug("monitors_retrieved", count=len(documents))
            return documents

        except RedisError as e:
            logger.error("monitors_retrieve_failed", error=str(e))
            raise RedisOperationError(f"Failed to retrieve monitors: {e}") from e

    async def remove_monitor(self, monitor_id: str) -> None:
        """
        Remove a monitor document and its index entry.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()

        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(self._monitor_key(monitor_id))
                pipe.srem(self.KEY_MONITORS_ALL, monitor_id)
                await pipe.execute()

            logger.info("monitor_removed", monitor_id=monitor_id)

        except RedisError as e:
            logger.error("monitor_remove_failed", monitor_id=monitor_id, error=str(e))
            raise RedisOperationError(
                f"Failed to remove monitor {monitor_id}: {e}"
            ) from e

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    def changes_channel(self, service: str) -> str:
        """Channel carrying change events of a feature store service."""
        return f"{self.CHANNEL_CHANGES}:{service}"

    async def publish(self, channel: str, payload: Dict[str, Any]) -> int:
        """
        Publish a JSON payload to a channel.

        Returns:
            int: Subscriber count reported by PUBLISH.

        Raises:
            RedisConnectionException: If not connected.
            RedisOperationError: If the operation fails.
        """
        client = self._require_connection()

        try:
            count = await client.publish(channel, json.dumps(payload, default=str))
            logger.debug("message_published", channel=channel, subscribers=count)
            return int(count)

        except RedisError as e:
            logger.error("message_publish_failed", channel=channel, error=str(e))
            raise RedisOperationError(
                f"Failed to publish to {channel}: {e}"
            ) from e

    async def publish_status(self, monitor_name: str, status: str) -> int:
        """Publish a monitor status event on `updates:monitors`."""
        return await self.publish(
            self.CHANNEL_MONITORS,
            {"monitor": monitor_name, "status": status},
        )

    @asynccontextmanager
    async def subscribe(
        self, channels: List[str]
    ) -> AsyncIterator[AsyncIterator[Dict[str, Any]]]:
        """
        Open a pub/sub subscription for the given channels.

        Context manager that yields an async iterator of parsed messages,
        each ``{"channel": name, "data": payload}``.

        Raises:
            RedisConnectionException: If not connected.

        Example:
            >>> async with client.subscribe(["updates:monitors"]) as messages:
            ...     async for message in messages:
            ...         print(message["data"]["status"])
        """
        client = self._require_connection()
        pubsub: PubSub = client.pubsub()

        try:
            await pubsub.subscribe(*channels)

            logger.info("pubsub_subscribed", channels=channels)

            async def message_iterator() -> AsyncIterator[Dict[str, Any]]:
                """Yield decoded payloads as they arrive."""
                async for message in pubsub.listen():
                    if message["type"] == "message":
                        try:
                            data = json.loads(message["data"])
                            yield {
                                "channel": message["channel"],
                                "data": data,
                            }
                        except json.JSONDecodeError as e:
                            logger.warning(
                                "pubsub_message_parse_failed",
                                channel=message["channel"],
                                error=str(e),
                            )

            yield message_iterator()

        finally:
            await pubsub.unsubscribe(*channels)
            await pubsub.aclose()

            logger.info("pubsub_unsubscribed", channels=channels)
