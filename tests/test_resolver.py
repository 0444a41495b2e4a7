"""Tests for layer resolution and checked feature queries."""

import pytest

from geosentinel.errors import BadRequest, DataIntegrityError, NotFound, Unavailable
from geosentinel.providers import InMemoryFeatureStore, LayerResolver, canonical_layer_name
from tests.helpers import feature, point, square


class TestResolveLayer:

    @pytest.mark.asyncio
    async def test_resolves_by_name(self, resolver):
        layer = await resolver.resolve_layer("zones")
        assert layer.id == "zones-layer"
        assert layer.backing_collection == "zones"

    @pytest.mark.asyncio
    async def test_resolves_canonical_name(self):
        store = InMemoryFeatureStore()
        store.add_layer(canonical_layer_name("alerts"), collection="alerts")
        layer = await LayerResolver(store).resolve_layer("alerts")
        assert layer.name == "Layers.ALERTS"

    @pytest.mark.asyncio
    async def test_empty_name_is_bad_request(self, resolver):
        with pytest.raises(BadRequest):
            await resolver.resolve_layer("")

    @pytest.mark.asyncio
    async def test_unknown_layer_is_not_found(self, resolver):
        with pytest.raises(NotFound) as exc_info:
            await resolver.resolve_layer("rivers")
        assert exc_info.value.data == {"layer": "rivers"}

    @pytest.mark.asyncio
    async def test_not_ready_provider_is_unavailable(self, store, resolver):
        store.ready = False
        with pytest.raises(Unavailable):
            await resolver.resolve_layer("zones")


class TestQueries:

    @pytest.mark.asyncio
    async def test_generic_collection_is_scoped_by_layer(self, store, resolver):
        vehicles = await resolver.resolve_layer("vehicles")
        other = store.add_layer("bikes", layer_id="bikes-layer")
        store.add_features("features", [feature(point(0, 0))], layer=vehicles)
        store.add_features("features", [feature(point(0, 0))], layer=other)

        result = await resolver.fetch_features(vehicles)

        assert result.total == 1
        assert result.features[0]["layer"] == "vehicles-layer"

    @pytest.mark.asyncio
    async def test_query_applies_predicate_and_filter(self, store, resolver):
        vehicles = await resolver.resolve_layer("vehicles")
        store.add_features(
            "features",
            [
                feature(point(0.5, 0.5), kind="truck"),
                feature(point(0.5, 0.5), kind="van"),
                feature(point(5, 5), kind="truck"),
            ],
            layer=vehicles,
        )
        predicate = {"geometry": {"$geoWithin": {"$geometry": square()}}}

        result = await resolver.query(vehicles, predicate, {"properties.kind": "truck"})

        assert result.total == 1
        assert result.features[0]["properties"]["kind"] == "truck"

    @pytest.mark.asyncio
    async def test_truncated_result_raises_data_integrity(self):
        store = InMemoryFeatureStore(page_limit=10)
        zones = store.add_layer("zones", collection="zones")
        store.add_features("zones", [feature(square(i, 0, 0.1)) for i in range(15)])

        with pytest.raises(DataIntegrityError) as exc_info:
            await LayerResolver(store).fetch_features(zones)

        assert exc_info.value.data["total"] == 15
        assert exc_info.value.data["returned"] == 10
