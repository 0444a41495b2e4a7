"""
Spatial evaluation engine.

This module provides the EvaluationEngine which compares a monitor's
target features against its zone features.

Key Features:
    - Resolves both layers through the LayerResolver (inline elements skip it)
    - Builds one predicate per zone feature; zones with unusable geometry
      are skipped with a warning
    - Queries the target per zone concurrently
    - Any MonitorError aborts the evaluation and is returned as a failure

Example:
    >>> engine = EvaluationEngine(LayerResolver(provider))
    >>> working = monitor.model_copy(deep=True)
    >>> result = await engine.evaluate(working)
    >>> if result.success and not result.is_data_empty:
    ...     print(len(result.matches), "zones matched")
"""

import asyncio
from typing import List, Optional, Tuple

import structlog

from geosentinel.errors import MonitorError, UnusableGeometryError
from geosentinel.geo.matching import filter_features
from geosentinel.geo.predicates import build_predicate, combine_filters
from geosentinel.models.features import EvaluationResult, Feature, LayerMetadata, ZoneMatch
from geosentinel.models.monitor import ElementSpec, MonitorDefinition
from geosentinel.providers.resolver import LayerResolver, layer_info_for

logger = structlog.get_logger(__name__)


class EvaluationEngine:
    """
    Evaluates monitors against the feature store.

    The engine writes refreshed ``layer_info`` onto the monitor it is
    handed, so callers pass a working copy.

    Attributes:
        resolver: Layer resolver used for lookups and queries.
    """

    def __init__(self, resolver: LayerResolver) -> None:
        self.resolver = resolver

    async def _resolve(self, element: ElementSpec) -> Optional[LayerMetadata]:
        if element.is_inline:
            return None
        layer = await self.resolver.resolve_layer(element.layer_name)
        element.layer_info = layer_info_for(layer)
        return layer

    async def _zone_features(
        self,
        zone: ElementSpec,
        layer: Optional[LayerMetadata],
    ) -> List[Feature]:
        if layer is None:
            return filter_features(zone.features or [], zone.filter)
        result = await self.resolver.fetch_features(layer, zone.filter)
        return result.features

    async def _match_zone(
        self,
        monitor: MonitorDefinition,
        zone_feature: Feature,
        target_layer: Optional[LayerMetadata],
    ) -> Optional[ZoneMatch]:
        try:
            predicate = build_predicate(monitor.evaluation, zone_feature.get("geometry"))
        except UnusableGeometryError as e:
            logger.warning(
                "zone_skipped",
                monitor=monitor.name,
                zone_id=zone_feature.get("_id"),
                reason=e.message,
                **e.data,
            )
            return None

        target = monitor.target
        if target_layer is None:
            matched = filter_features(
                target.features or [],
                combine_filters(predicate, target.filter),
            )
        else:
            result = await self.resolver.query(target_layer, predicate, target.filter)
            matched = result.features

        if not matched:
            return None
        return ZoneMatch(zone_feature=zone_feature, target_features=matched)

    async def _evaluate(self, monitor: MonitorDefinition) -> List[ZoneMatch]:
        zone_layer, target_layer = await self._resolve_both(monitor)
        zones = await self._zone_features(monitor.zone, zone_layer)

        results = await asyncio.gather(
            *(self._match_zone(monitor, zone, target_layer) for zone in zones)
        )
        return [match for match in results if match is not None]

    async def _resolve_both(
        self,
        monitor: MonitorDefinition,
    ) -> Tuple[Optional[LayerMetadata], Optional[LayerMetadata]]:
        zone_layer = await self._resolve(monitor.zone)
        target_layer = await self._resolve(monitor.target)
        return zone_layer, target_layer

    async def evaluate(self, monitor: MonitorDefinition) -> EvaluationResult:
        """
        Evaluate a monitor.

        Args:
            monitor: Working copy of the monitor; its elements' layer_info
                is refreshed in place.

        Returns:
            EvaluationResult: Matches on success, the structured error otherwise.
        """
        try:
            matches = await self._evaluate(monitor)
        except MonitorError as e:
            logger.warning(
                "evaluation_failed",
                monitor=monitor.name,
                error_type=e.code,
                error=e.message,
            )
            return EvaluationResult.failed(e)

        logger.debug(
            "evaluation_complete",
            monitor=monitor.name,
            predicate=monitor.evaluation.predicate_type.value,
            matched_zones=len(matches),
        )
        return EvaluationResult.ok(matches)
