"""
Monitor persistence.

Monitors are stored as their JSON document keyed by id. Repositories
return fresh MonitorDefinition instances on every read, so callers never
share mutable state through the store.

Classes:
    MonitorRepository: Abstract repository interface
    InMemoryMonitorRepository: Dict-backed repository
    RedisMonitorRepository: Repository over RedisClient (`monitor:{id}`)
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import structlog
from pydantic import ValidationError

from geosentinel.models.monitor import MonitorDefinition
from geosentinel.storage.redis_client import RedisClient

logger = structlog.get_logger(__name__)


class MonitorRepository(ABC):
    """Persistence interface for monitor definitions."""

    @abstractmethod
    async def get(self, monitor_id: str) -> Optional[MonitorDefinition]:
        """Return the stored monitor, or None."""
        pass

    @abstractmethod
    async def save(self, monitor: MonitorDefinition) -> None:
        """Insert or replace a monitor."""
        pass

    @abstractmethod
    async def delete(self, monitor_id: str) -> bool:
        """Remove a monitor. Returns True if it existed."""
        pass

    @abstractmethod
    async def list(self) -> List[MonitorDefinition]:
        """Return every stored monitor."""
        pass

    async def find_by_name(self, name: str) -> Optional[MonitorDefinition]:
        """Return the monitor with the given name, or None."""
        for monitor in await self.list():
            if monitor.name == name:
                return monitor
        return None


class InMemoryMonitorRepository(MonitorRepository):
    """Repository holding monitor documents in a dict."""

    def __init__(self) -> None:
        self._documents: Dict[str, str] = {}

    async def get(self, monitor_id: str) -> Optional[MonitorDefinition]:
        document = self._documents.get(monitor_id)
        if document is None:
            return None
        return MonitorDefinition.model_validate_json(document)

    async def save(self, monitor: MonitorDefinition) -> None:
        self._documents[monitor.id] = monitor.model_dump_json()

    async def delete(self, monitor_id: str) -> bool:
        return self._documents.pop(monitor_id, None) is not None

    async def list(self) -> List[MonitorDefinition]:
        return [
            MonitorDefinition.model_validate_json(document)
            for document in self._documents.values()
        ]


class RedisMonitorRepository(MonitorRepository):
    """
    Repository storing monitor documents in Redis.

    Example:
        >>> repository = RedisMonitorRepository(redis_client)
        >>> await repository.save(monitor)
        >>> stored = await repository.get(monitor.id)
    """

    def __init__(self, client: RedisClient) -> None:
        self.client = client

    async def get(self, monitor_id: str) -> Optional[MonitorDefinition]:
        document = await self.client.get_monitor(monitor_id)
        if document is None:
            return None
        return MonitorDefinition.model_validate_json(document)

    async def save(self, monitor: MonitorDefinition) -> None:
        await self.client.set_monitor(monitor.id, monitor.model_dump_json())

    async def delete(self, monitor_id: str) -> bool:
        existed = await self.client.get_monitor(monitor_id) is not None
        await self.client.remove_monitor(monitor_id)
        return existed

    async def list(self) -> List[MonitorDefinition]:
        monitors: List[MonitorDefinition] = []
        for document in await self.client.get_all_monitors():
            try:
                monitors.append(MonitorDefinition.model_validate_json(document))
            except ValidationError as e:
                logger.warning("monitor_parse_failed", error=str(e))
        return monitors
