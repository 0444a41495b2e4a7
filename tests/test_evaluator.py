"""Tests for the spatial evaluation engine."""

import pytest

from geosentinel.detection import EvaluationEngine
from geosentinel.models.monitor import MonitorDefinition
from geosentinel.providers import InMemoryFeatureStore, LayerResolver
from tests.helpers import feature, monitor_doc, point, square


@pytest.fixture
def engine(resolver):
    return EvaluationEngine(resolver)


def make_monitor(**overrides) -> MonitorDefinition:
    return MonitorDefinition.model_validate(monitor_doc(**overrides))


class TestEvaluate:

    @pytest.mark.asyncio
    async def test_matches_grouped_by_zone(self, store, resolver, engine):
        vehicles = await resolver.resolve_layer("vehicles")
        store.add_features("zones", [feature(square(), name="a"), feature(square(10, 10), name="b")])
        store.add_features(
            "features",
            [feature(point(0.2, 0.2)), feature(point(-0.5, 0.1)), feature(point(30, 30))],
            layer=vehicles,
        )

        result = await engine.evaluate(make_monitor())

        assert result.success
        assert len(result.matches) == 1
        assert result.matches[0].zone_feature["properties"]["name"] == "a"
        assert len(result.matches[0].target_features) == 2

    @pytest.mark.asyncio
    async def test_refreshes_layer_info(self, store, engine):
        monitor = make_monitor()
        await engine.evaluate(monitor)
        assert monitor.zone.layer_info.backing_collection == "zones"
        assert monitor.target.layer_info.backing_collection == "features"
        assert monitor.target.layer_info.layer_id == "vehicles-layer"

    @pytest.mark.asyncio
    async def test_zone_filter_restricts_zones(self, store, resolver, engine):
        vehicles = await resolver.resolve_layer("vehicles")
        store.add_features("zones", [feature(square(), open=False)])
        store.add_features("features", [feature(point(0, 0))], layer=vehicles)

        monitor = make_monitor(zone={"layer_name": "zones", "filter": {"properties.open": True}})
        result = await engine.evaluate(monitor)

        assert result.success
        assert result.is_data_empty

    @pytest.mark.asyncio
    async def test_unusable_zone_geometry_is_skipped(self, store, resolver, engine):
        vehicles = await resolver.resolve_layer("vehicles")
        store.add_features("zones", [feature(point(0, 0)), feature(square())])
        store.add_features("features", [feature(point(0.1, 0.1))], layer=vehicles)

        result = await engine.evaluate(make_monitor())

        assert result.success
        assert len(result.matches) == 1

    @pytest.mark.asyncio
    async def test_unknown_layer_fails_evaluation(self, engine):
        monitor = make_monitor(target={"layer_name": "rivers"})
        result = await engine.evaluate(monitor)
        assert not result.success
        assert result.error["type"] == "not_found"

    @pytest.mark.asyncio
    async def test_truncated_zone_fetch_fails_evaluation(self):
        store = InMemoryFeatureStore(page_limit=10)
        store.add_layer("zones", collection="zones")
        store.add_layer("vehicles")
        store.add_features("zones", [feature(square(i * 3, 0)) for i in range(15)])

        result = await EvaluationEngine(LayerResolver(store)).evaluate(make_monitor())

        assert not result.success
        assert result.error["type"] == "data_integrity"
        assert result.matches == []

    @pytest.mark.asyncio
    async def test_inline_elements_skip_the_store(self, engine):
        monitor = make_monitor(
            target={
                "layer_name": "inline-targets",
                "source": "inline",
                "features": [feature(point(0.5, 0.5)), feature(point(9, 9))],
            },
            zone={"layer_name": "inline-zones", "source": "inline", "features": [feature(square())]},
        )
        result = await engine.evaluate(monitor)

        assert result.success
        assert len(result.matches) == 1
        assert monitor.target.layer_info is None

    @pytest.mark.asyncio
    async def test_evaluation_is_idempotent(self, store, resolver, engine):
        vehicles = await resolver.resolve_layer("vehicles")
        store.add_features("zones", [feature(square())])
        store.add_features("features", [feature(point(0, 0))], layer=vehicles)
        monitor = make_monitor()

        first = await engine.evaluate(monitor)
        second = await engine.evaluate(monitor)

        assert first.matches == second.matches
