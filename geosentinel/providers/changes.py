"""
Change feed over Redis pub/sub.

Feature store services publish their change notifications on
``changes:<service>`` as ``{"event": "patched", "record": {...}}``. One
listener task runs per subscribed service and fans messages out to the
handlers registered for the message's event. A listener whose
subscription fails re-subscribes with exponential backoff.

Example:
    >>> feed = RedisChangeFeed(redis_client)
    >>> await feed.subscribe("vessels", ChangeEventName.PATCHED, on_change)
    >>> ...
    >>> await feed.close()
"""

import asyncio
import random
from collections import defaultdict
from typing import Any, Dict, List

import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from geosentinel.models.features import ChangeEvent
from geosentinel.models.monitor import ChangeEventName
from geosentinel.providers.base import ChangeFeed, ChangeHandler
from geosentinel.storage.redis_client import RedisClient, RedisClientError

logger = structlog.get_logger(__name__)


class RedisChangeFeed(ChangeFeed):
    """
    ChangeFeed reading per-service Redis channels.

    Attributes:
        client: Connected RedisClient.
        retry_delay: Base delay before re-subscribing after a failure.
        max_retry_delay: Upper bound for the backoff delay.
    """

    def __init__(
        self,
        client: RedisClient,
        retry_delay: float = 1.0,
        max_retry_delay: float = 60.0,
    ) -> None:
        self.client = client
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self._handlers: Dict[str, Dict[ChangeEventName, List[ChangeHandler]]] = (
            defaultdict(lambda: defaultdict(list))
        )
        self._listeners: Dict[str, asyncio.Task] = {}

    async def subscribe(
        self,
        service: str,
        event: ChangeEventName,
        handler: ChangeHandler,
    ) -> None:
        self._handlers[service][ChangeEventName(event)].append(handler)
        if service not in self._listeners:
            self._listeners[service] = asyncio.create_task(
                self._listen(service),
                name=f"change-feed:{service}",
            )
            logger.info("change_feed_listening", service=service)

    def _retry_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter, capped at max_retry_delay."""
        delay = min(self.retry_delay * (2**attempt), self.max_retry_delay)
        return delay + random.uniform(0, delay * 0.1)

    async def _listen(self, service: str) -> None:
        """Consume a service channel, re-subscribing after Redis failures."""
        channel = self.client.changes_channel(service)
        attempt = 0
        while True:
            try:
                async with self.client.subscribe([channel]) as messages:
                    attempt = 0
                    async for message in messages:
                        await self._deliver(service, message["data"])
                logger.warning("change_feed_ended", service=service)
            except (RedisClientError, RedisError) as e:
                logger.error(
                    "change_feed_failed",
                    service=service,
                    error=str(e),
                    error_type=type(e).__name__,
                )

            delay = self._retry_delay(attempt)
            attempt += 1
            logger.info(
                "change_feed_resubscribing",
                service=service,
                attempt=attempt,
                delay_seconds=delay,
            )
            await asyncio.sleep(delay)

    async def _deliver(self, service: str, payload: Any) -> None:
        if not isinstance(payload, dict):
            logger.warning("change_message_ignored", service=service)
            return
        try:
            change = ChangeEvent(
                service=service,
                event=payload.get("event"),
                record=payload.get("record") or {},
            )
        except ValidationError as e:
            logger.warning("change_message_invalid", service=service, error=str(e))
            return

        for handler in list(self._handlers[service].get(change.event, [])):
            try:
                await handler(change)
            except Exception as e:
                # Handler failures are scoped to one message
                logger.exception(
                    "change_handler_failed",
                    service=service,
                    change_event=change.event.value,
                    error=str(e),
                )

    async def close(self) -> None:
        """Stop every listener task."""
        listeners = list(self._listeners.values())
        self._listeners.clear()
        for task in listeners:
            task.cancel()
        await asyncio.gather(*listeners, return_exceptions=True)
        logger.info("change_feed_closed", services=len(listeners))
