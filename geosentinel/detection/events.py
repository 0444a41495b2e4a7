"""
Monitor status events.

Every successful run emits one event named after the monitor, carrying
``{"status": <alert state>}``. Subscribers register per monitor name; when
a RedisClient is attached the event is also published on the
``updates:monitors`` channel as ``{"monitor": name, "status": state}``.

Example:
    >>> bus = StatusEventBus()
    >>> bus.on("trucks-in-depot", lambda payload: print(payload["status"]))
    >>> payload = await bus.wait_for("trucks-in-depot", timeout=5)
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import structlog

from geosentinel.storage.redis_client import RedisClient, RedisClientError

logger = structlog.get_logger(__name__)

StatusHandler = Callable[[Dict[str, Any]], Any]


class StatusEventBus:
    """
    In-process named event emitter with optional Redis mirroring.

    Handlers may be plain functions or coroutine functions. A failing
    handler is logged and does not prevent delivery to the others.
    """

    def __init__(self, redis_client: Optional[RedisClient] = None) -> None:
        self.redis_client = redis_client
        self._handlers: Dict[str, List[StatusHandler]] = defaultdict(list)

    def on(self, name: str, handler: StatusHandler) -> StatusHandler:
        """Register a handler for every event with this name."""
        self._handlers[name].append(handler)
        return handler

    def off(self, name: str, handler: StatusHandler) -> None:
        """Remove a previously registered handler."""
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def once(self, name: str, handler: StatusHandler) -> StatusHandler:
        """Register a handler for the next event with this name only."""

        async def wrapper(payload: Dict[str, Any]) -> None:
            self.off(name, wrapper)
            result = handler(payload)
            if inspect.isawaitable(result):
                await result

        return self.on(name, wrapper)

    async def wait_for(self, name: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Wait for the next event with this name.

        Raises:
            asyncio.TimeoutError: If no event arrives within ``timeout``.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def resolve(payload: Dict[str, Any]) -> None:
            if not future.done():
                future.set_result(payload)

        wrapper = self.once(name, resolve)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            self.off(name, wrapper)

    async def emit(self, name: str, payload: Dict[str, Any]) -> None:
        """Deliver an event to its handlers and mirror it to Redis."""
        for handler in list(self._handlers.get(name, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("status_handler_failed", monitor=name, error=str(e))

        if self.redis_client is not None and self.redis_client.is_connected:
            try:
                await self.redis_client.publish_status(name, str(payload.get("status")))
            except RedisClientError as e:
                logger.warning("status_publish_failed", monitor=name, error=str(e))

        logger.debug("status_event_emitted", monitor=name, **payload)
