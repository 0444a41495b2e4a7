"""
Layer resolver.

Maps human-readable layer names to catalog entries and fetches or queries
their features, enforcing readiness and result completeness.

Key Features:
    - Name lookup by exact name or canonical ``Layers.<NAME>`` form
    - Layer scoping by id for the shared ``features`` collection only
    - Truncated result sets rejected with DataIntegrityError

Example:
    >>> resolver = LayerResolver(provider)
    >>> layer = await resolver.resolve_layer("depots")
    >>> zones = await resolver.fetch_features(layer, {"properties.open": True})
"""

from typing import Any, Dict, Optional

import structlog

from geosentinel.errors import BadRequest, NotFound, Unavailable
from geosentinel.geo.predicates import combine_filters
from geosentinel.models.features import LayerMetadata, QueryResult
from geosentinel.models.monitor import LayerInfo
from geosentinel.providers.base import LayerProvider

logger = structlog.get_logger(__name__)


def canonical_layer_name(name: str) -> str:
    """Catalog form of a built-in layer name."""
    return f"Layers.{name.upper()}"


def layer_info_for(layer: LayerMetadata) -> LayerInfo:
    """Derive the element's LayerInfo from a catalog entry."""
    return LayerInfo(backing_collection=layer.backing_collection, layer_id=layer.id)


class LayerResolver:
    """
    Resolves layers and runs feature queries through a LayerProvider.

    Attributes:
        provider: The underlying layer provider.
    """

    def __init__(self, provider: LayerProvider) -> None:
        self.provider = provider

    async def ensure_ready(self) -> None:
        """
        Raises:
            Unavailable: If the provider is not ready.
        """
        if not await self.provider.is_ready():
            raise Unavailable("Layer provider services are not ready")

    async def resolve_layer(self, name: Optional[str]) -> LayerMetadata:
        """
        Resolve a layer name to its catalog entry.

        Args:
            name: Layer name as written in the monitor.

        Returns:
            LayerMetadata of the first matching catalog entry.

        Raises:
            BadRequest: If the name is empty.
            Unavailable: If the provider is not ready.
            NotFound: If no catalog entry matches.
        """
        if not name:
            raise BadRequest("Layer name is required")
        await self.ensure_ready()

        layer = await self.provider.find_layer(name)
        if layer is None:
            raise NotFound("Layer not found", data={"layer": name})

        logger.debug(
            "layer_resolved",
            layer=name,
            layer_id=layer.id,
            collection=layer.backing_collection,
        )
        return layer

    def _scoped(self, layer: LayerMetadata, query: Dict[str, Any]) -> Dict[str, Any]:
        if layer.is_generic:
            return {**query, "layer": layer.id}
        return query

    async def _run(self, layer: LayerMetadata, query: Dict[str, Any]) -> QueryResult:
        result = await self.provider.query_features(layer.backing_collection, query)
        return result.check_complete(
            {"layer": layer.name, "service": layer.backing_collection}
        )

    async def fetch_features(
        self,
        layer: LayerMetadata,
        filter: Optional[Dict[str, Any]] = None,
    ) -> QueryResult:
        """
        Fetch a layer's features, optionally filtered.

        Raises:
            Unavailable: If the provider is not ready.
            DataIntegrityError: If the store returned fewer features than matched.
        """
        await self.ensure_ready()
        query = self._scoped(layer, dict(filter or {}))
        return await self._run(layer, query)

    async def query(
        self,
        layer: LayerMetadata,
        predicate: Dict[str, Any],
        extra_filter: Optional[Dict[str, Any]] = None,
    ) -> QueryResult:
        """
        Query a layer's features with a spatial predicate.

        The element filter, when present, is ANDed with the predicate.

        Raises:
            DataIntegrityError: If the store returned fewer features than matched.
        """
        query = self._scoped(layer, combine_filters(predicate, extra_filter))
        return await self._run(layer, query)
