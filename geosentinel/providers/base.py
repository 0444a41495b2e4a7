"""
Abstract base classes for feature store adapters.

The engine reads layers and features through a LayerProvider and receives
data-change notifications through a ChangeFeed. Concrete implementations
live in this package:

    - HttpLayerProvider: remote feature store over HTTP (aiohttp)
    - InMemoryFeatureStore: in-process store, provider and feed at once
    - RedisChangeFeed: change notifications over Redis pub/sub

Example:
    >>> class StaticProvider(LayerProvider):
    ...     async def is_ready(self) -> bool:
    ...         return True
    ...
    ...     async def find_layer(self, name: str) -> Optional[LayerMetadata]:
    ...         return self._layers.get(name)
    ...
    ...     async def query_features(self, collection, query) -> QueryResult:
    ...         return QueryResult(total=0, features=[])
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

from geosentinel.models.features import ChangeEvent, LayerMetadata, QueryResult
from geosentinel.models.monitor import ChangeEventName

ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class LayerProvider(ABC):
    """
    Read access to a layer catalog and its feature collections.

    Implementations wrap transport failures in
    geosentinel.errors.Unavailable.
    """

    @abstractmethod
    async def is_ready(self) -> bool:
        """
        Check whether the catalog can be queried.

        Returns:
            bool: True once the provider's services are available.
        """
        pass

    @abstractmethod
    async def find_layer(self, name: str) -> Optional[LayerMetadata]:
        """
        Look up a catalog entry by name.

        An entry matches when its name equals ``name`` or its canonical
        form ``Layers.<NAME>`` (uppercased). Only entries backed by a
        collection are considered.

        Args:
            name: Layer name.

        Returns:
            The first matching entry, or None.
        """
        pass

    @abstractmethod
    async def query_features(
        self,
        collection: str,
        query: Dict[str, Any],
    ) -> QueryResult:
        """
        Query a feature collection.

        Args:
            collection: Backing collection name.
            query: Mongo-style query.

        Returns:
            QueryResult with the server-side match count and the returned
            features (which may be fewer when the service pages results).
        """
        pass


class ChangeFeed(ABC):
    """Source of data-change events per feature store service."""

    @abstractmethod
    async def subscribe(
        self,
        service: str,
        event: ChangeEventName,
        handler: ChangeHandler,
    ) -> None:
        """
        Register a handler for one event of one service.

        Handlers are invoked with the ChangeEvent for every matching change
        until the feed is closed.
        """
        pass

    async def close(self) -> None:
        """Release feed resources. Default: nothing to release."""
        return None
