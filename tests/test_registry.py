"""Tests for the active monitor registry and its triggers."""

from unittest.mock import AsyncMock

import pytest

from geosentinel.detection import MonitorRegistry
from geosentinel.errors import NotFound, Unavailable
from geosentinel.models.monitor import MonitorDefinition
from tests.helpers import feature, monitor_doc, point, square


def event_monitor(**overrides) -> MonitorDefinition:
    doc = monitor_doc(
        name="trucks-in-zones",
        trigger={"kind": "event", "events": ["patched"]},
        target={"layer_name": "vehicles", "filter": {"properties.kind": "truck"}},
    )
    doc.update(overrides)
    return MonitorDefinition.model_validate(doc)


def count_runs(events, name):
    runs = []
    events.on(name, runs.append)
    return runs


class TestEventTrigger:

    @pytest.mark.asyncio
    async def test_runs_once_per_matching_patch(self, store, registry, events, repository):
        vehicles = await registry.resolver.resolve_layer("vehicles")
        store.add_features("zones", [feature(square())])
        (truck,) = store.add_features("features", [feature(point(0.5, 0.5), kind="truck")], layer=vehicles)
        monitor = event_monitor()
        await repository.save(monitor)
        await registry.start(monitor)
        runs = count_runs(events, monitor.name)

        await store.patch("features", truck["_id"], {"properties": {"kind": "truck", "speed": 3}})
        await registry.wait_idle()
        assert len(runs) == 1

        await store.patch("features", truck["_id"], {"properties": {"kind": "truck", "speed": 4}})
        await registry.wait_idle()
        assert len(runs) == 2

    @pytest.mark.asyncio
    async def test_non_matching_patch_does_not_run(self, store, registry, events, repository):
        vehicles = await registry.resolver.resolve_layer("vehicles")
        (van,) = store.add_features("features", [feature(point(0.5, 0.5), kind="van")], layer=vehicles)
        monitor = event_monitor()
        await repository.save(monitor)
        await registry.start(monitor)
        runs = count_runs(events, monitor.name)

        await store.patch("features", van["_id"], {"properties": {"kind": "van", "speed": 3}})
        await registry.wait_idle()

        assert runs == []

    @pytest.mark.asyncio
    async def test_other_layer_in_shared_collection_does_not_run(
        self, store, registry, events, repository
    ):
        bikes = store.add_layer("bikes", layer_id="bikes-layer")
        (bike,) = store.add_features("features", [feature(point(0.5, 0.5), kind="truck")], layer=bikes)
        monitor = event_monitor()
        await repository.save(monitor)
        await registry.start(monitor)
        runs = count_runs(events, monitor.name)

        await store.patch("features", bike["_id"], {"properties": {"kind": "truck"}})
        await registry.wait_idle()

        assert runs == []

    @pytest.mark.asyncio
    async def test_unwatched_event_does_not_run(self, store, registry, events, repository):
        monitor = event_monitor()
        await repository.save(monitor)
        await registry.start(monitor)
        runs = count_runs(events, monitor.name)
        vehicles = await registry.resolver.resolve_layer("vehicles")

        await store.create("features", feature(point(0.5, 0.5), kind="truck"), layer=vehicles)
        await registry.wait_idle()

        assert runs == []

    @pytest.mark.asyncio
    async def test_broken_filter_skips_monitor_without_fatal_error(
        self, store, registry, events, repository, fatal_errors
    ):
        vehicles = await registry.resolver.resolve_layer("vehicles")
        (truck,) = store.add_features("features", [feature(point(0.5, 0.5), kind="truck")], layer=vehicles)
        monitor = event_monitor()
        # stored before filters were checked on parse
        monitor.target.filter = {"properties.kind": {"$regex": "("}}
        await repository.save(monitor)
        await registry.start(monitor)
        runs = count_runs(events, monitor.name)

        await store.patch("features", truck["_id"], {"properties": {"kind": "truck"}})
        await registry.wait_idle()

        assert runs == []
        assert fatal_errors == []

    @pytest.mark.asyncio
    async def test_subscriptions_are_shared_per_service(self, store, registry, repository):
        first = event_monitor()
        second = event_monitor(name="second")
        await registry.start(first)
        await registry.start(second)

        assert registry.subscribed_services == {"zones", "features"}
        assert store.subscription_count("features") == 4
        assert store.subscription_count("zones") == 4

    @pytest.mark.asyncio
    async def test_stopped_monitor_no_longer_runs(self, store, registry, events, repository):
        vehicles = await registry.resolver.resolve_layer("vehicles")
        (truck,) = store.add_features("features", [feature(point(0.5, 0.5), kind="truck")], layer=vehicles)
        monitor = event_monitor()
        await repository.save(monitor)
        await registry.start(monitor)
        runs = count_runs(events, monitor.name)

        assert registry.stop(monitor.id)
        await store.patch("features", truck["_id"], {"properties": {"kind": "truck"}})
        await registry.wait_idle()

        assert runs == []
        assert "features" in registry.subscribed_services

    @pytest.mark.asyncio
    async def test_subscription_bound_is_enforced(self, runner, resolver, store):
        registry = MonitorRegistry(runner, resolver, store, max_event_services=1)
        monitor = event_monitor()

        with pytest.raises(Unavailable):
            await registry.start(monitor)

        assert not registry.is_active(monitor.id)
        assert registry.subscribed_services == set()

    @pytest.mark.asyncio
    async def test_unknown_layer_is_not_registered(self, registry):
        monitor = event_monitor(target={"layer_name": "rivers"})
        with pytest.raises(NotFound):
            await registry.start(monitor)
        assert not registry.is_active(monitor.id)


class TestScheduleTrigger:

    @pytest.mark.asyncio
    async def test_timer_fires_runs(self, registry, repository, events):
        monitor = MonitorDefinition.model_validate(
            monitor_doc(trigger={"kind": "schedule", "expression": "* * * * * *"})
        )
        await repository.save(monitor)

        await registry.start(monitor)
        try:
            payload = await events.wait_for(monitor.name, timeout=3)
        finally:
            await registry.close()

        assert payload == {"status": "notFiring"}
        assert not registry.is_active(monitor.id)

    @pytest.mark.asyncio
    async def test_restart_replaces_timer(self, registry):
        monitor = MonitorDefinition.model_validate(monitor_doc())
        await registry.start(monitor)
        first_timer = registry._entries[monitor.id].timer

        await registry.start(monitor)

        assert registry._entries[monitor.id].timer is not first_timer
        assert registry.active_ids() == [monitor.id]
        await registry.close()

    @pytest.mark.asyncio
    async def test_disabled_and_dry_run_monitors_are_ignored(self, registry):
        disabled = MonitorDefinition.model_validate(monitor_doc(enabled=False))
        dry_run = MonitorDefinition.model_validate(monitor_doc(trigger={"kind": "dryRun"}))

        await registry.start(disabled)
        await registry.start(dry_run)

        assert registry.active_ids() == []


class TestRunErrors:

    @pytest.mark.asyncio
    async def test_unexpected_error_reaches_fatal_handler(self, registry, runner, fatal_errors):
        runner.run_by_id = AsyncMock(side_effect=RuntimeError("registry corrupted"))

        registry.spawn_run("any")
        await registry.wait_idle()

        assert len(fatal_errors) == 1
        assert isinstance(fatal_errors[0], RuntimeError)

    @pytest.mark.asyncio
    async def test_monitor_errors_are_not_fatal(self, registry, runner, fatal_errors):
        runner.run_by_id = AsyncMock(side_effect=Unavailable("not ready"))

        registry.spawn_run("any")
        await registry.wait_idle()

        assert fatal_errors == []
