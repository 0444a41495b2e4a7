"""
In-process feature store.

Implements both LayerProvider and ChangeFeed over plain Python collections,
matching queries with geosentinel.geo.matching. Useful for embedding the
engine, for local development and as the test double of a real store.

Key Features:
    - Layer catalog with ``Layers.<NAME>`` canonical names
    - Named collections, including the shared ``features`` collection
    - create/update/patch/remove notify subscribed change handlers
    - Optional page limit reproducing server-side result truncation

Example:
    >>> store = InMemoryFeatureStore()
    >>> depots = store.add_layer("depots", collection="depots")
    >>> await store.create("depots", {"type": "Feature", "geometry": polygon})
"""

import copy
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

import structlog

from geosentinel.errors import NotFound
from geosentinel.geo.matching import filter_features
from geosentinel.models.features import (
    GENERIC_FEATURES_COLLECTION,
    ChangeEvent,
    Feature,
    LayerMetadata,
    QueryResult,
)
from geosentinel.models.monitor import ChangeEventName
from geosentinel.providers.base import ChangeFeed, ChangeHandler, LayerProvider
from geosentinel.providers.resolver import canonical_layer_name

logger = structlog.get_logger(__name__)


class InMemoryFeatureStore(LayerProvider, ChangeFeed):
    """
    Feature store held in memory.

    Attributes:
        ready: Whether the store reports itself ready.
        page_limit: Maximum features returned per query (None for unlimited).
    """

    def __init__(self, ready: bool = True, page_limit: Optional[int] = None) -> None:
        self.ready = ready
        self.page_limit = page_limit
        self._layers: List[LayerMetadata] = []
        self._collections: Dict[str, List[Feature]] = defaultdict(list)
        self._handlers: Dict[Tuple[str, ChangeEventName], List[ChangeHandler]] = (
            defaultdict(list)
        )

    # =========================================================================
    # CATALOG
    # =========================================================================

    def add_layer(
        self,
        name: str,
        collection: str = GENERIC_FEATURES_COLLECTION,
        layer_id: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> LayerMetadata:
        """Register a layer in the catalog."""
        layer = LayerMetadata(
            id=layer_id or uuid4().hex,
            name=name,
            backing_collection=collection,
            display_name=display_name,
        )
        self._layers.append(layer)
        return layer

    async def is_ready(self) -> bool:
        return self.ready

    async def find_layer(self, name: str) -> Optional[LayerMetadata]:
        candidates = (name, canonical_layer_name(name))
        for layer in self._layers:
            if layer.name in candidates:
                return layer
        return None

    # =========================================================================
    # COLLECTIONS
    # =========================================================================

    def features(self, collection: str) -> List[Feature]:
        """All stored features of a collection."""
        return list(self._collections.get(collection, []))

    def add_features(
        self,
        collection: str,
        features: List[Feature],
        layer: Optional[LayerMetadata] = None,
    ) -> List[Feature]:
        """Store features without notifying subscribers."""
        stored = [self._prepare(feature, layer) for feature in features]
        self._collections[collection].extend(stored)
        return stored

    async def query_features(
        self,
        collection: str,
        query: Dict[str, Any],
    ) -> QueryResult:
        matched = filter_features(self._collections.get(collection, []), query)
        returned = matched if self.page_limit is None else matched[: self.page_limit]
        logger.debug(
            "memory_store_query",
            collection=collection,
            total=len(matched),
            returned=len(returned),
        )
        return QueryResult(
            total=len(matched),
            features=[copy.deepcopy(feature) for feature in returned],
        )

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def _prepare(self, feature: Feature, layer: Optional[LayerMetadata]) -> Feature:
        record = copy.deepcopy(feature)
        record.setdefault("_id", uuid4().hex)
        if layer is not None and layer.is_generic:
            record["layer"] = layer.id
        return record

    def _index_of(self, collection: str, record_id: str) -> int:
        for index, feature in enumerate(self._collections.get(collection, [])):
            if feature.get("_id") == record_id:
                return index
        raise NotFound(
            "Feature not found",
            data={"service": collection, "id": record_id},
        )

    async def create(
        self,
        collection: str,
        feature: Feature,
        layer: Optional[LayerMetadata] = None,
    ) -> Feature:
        """Store a feature and notify ``created`` subscribers."""
        record = self._prepare(feature, layer)
        self._collections[collection].append(record)
        await self.publish(collection, ChangeEventName.CREATED, record)
        return record

    async def update(self, collection: str, record_id: str, feature: Feature) -> Feature:
        """Replace a feature and notify ``updated`` subscribers."""
        index = self._index_of(collection, record_id)
        current = self._collections[collection][index]
        record = copy.deepcopy(feature)
        record["_id"] = record_id
        if "layer" in current and "layer" not in record:
            record["layer"] = current["layer"]
        self._collections[collection][index] = record
        await self.publish(collection, ChangeEventName.UPDATED, record)
        return record

    async def patch(self, collection: str, record_id: str, changes: Dict[str, Any]) -> Feature:
        """Merge top-level changes into a feature and notify ``patched`` subscribers."""
        index = self._index_of(collection, record_id)
        record = copy.deepcopy(self._collections[collection][index])
        record.update(copy.deepcopy(changes))
        self._collections[collection][index] = record
        await self.publish(collection, ChangeEventName.PATCHED, record)
        return record

    async def remove(self, collection: str, record_id: str) -> Feature:
        """Delete a feature and notify ``removed`` subscribers."""
        index = self._index_of(collection, record_id)
        record = self._collections[collection].pop(index)
        await self.publish(collection, ChangeEventName.REMOVED, record)
        return record

    # =========================================================================
    # CHANGE FEED
    # =========================================================================

    async def subscribe(
        self,
        service: str,
        event: ChangeEventName,
        handler: ChangeHandler,
    ) -> None:
        self._handlers[(service, ChangeEventName(event))].append(handler)
        logger.debug("memory_store_subscribed", service=service, change_event=str(event))

    def subscription_count(self, service: str) -> int:
        """Number of handlers registered for a service, across events."""
        return sum(
            len(handlers)
            for (name, _), handlers in self._handlers.items()
            if name == service
        )

    async def publish(
        self,
        service: str,
        event: ChangeEventName,
        record: Feature,
    ) -> None:
        """Deliver a change event to the handlers subscribed to it."""
        change = ChangeEvent(service=service, event=event, record=copy.deepcopy(record))
        for handler in list(self._handlers.get((service, event), [])):
            try:
                await handler(change)
            except Exception as e:
                logger.exception(
                    "memory_store_handler_failed",
                    service=service,
                    change_event=change.event.value,
                    error=str(e),
                )
