"""Tests for the monitor lifecycle callbacks."""

import asyncio

import pytest

from geosentinel.detection import MonitorLifecycle, MonitorRegistry, merge_document, strip_derived
from geosentinel.errors import BadRequest, Conflict, NotFound, Unavailable
from geosentinel.models.monitor import AlertState, MonitorDefinition
from tests.helpers import feature, monitor_doc, point, square

INCIDENT = {
    "kind": "incident-webhook",
    "endpoint": "https://incidents.example.com/api",
    "organisation": "org-1",
    "token": "secret",
    "template": "geofence",
}


class TestDocumentHelpers:

    def test_strip_derived_fields(self):
        doc = monitor_doc(
            id="client-id",
            last_run={"at": "2024-01-01T00:00:00Z"},
            target={"layer_name": "vehicles", "layer_info": {"backing_collection": "x", "layer_id": "y"}},
            action={**INCIDENT, "incident_id": "forged"},
        )
        stripped = strip_derived(doc)
        assert "id" not in stripped
        assert "last_run" not in stripped
        assert "layer_info" not in stripped["target"]
        assert "incident_id" not in stripped["action"]
        assert doc["id"] == "client-id"

    def test_strip_derived_rejects_non_objects(self):
        with pytest.raises(BadRequest):
            strip_derived(["not", "a", "monitor"])

    def test_merge_keeps_unpatched_fields(self):
        base = {"evaluation": {"predicate_type": "near", "max_distance": 10}, "name": "a"}
        merged = merge_document(base, {"evaluation": {"max_distance": 20}})
        assert merged == {"evaluation": {"predicate_type": "near", "max_distance": 20}, "name": "a"}

    def test_merge_replaces_variant_on_kind_change(self):
        base = {"trigger": {"kind": "event", "events": ["patched"]}}
        merged = merge_document(base, {"trigger": {"kind": "schedule"}})
        assert merged == {"trigger": {"kind": "schedule"}}

    def test_merge_replaces_filters(self):
        base = {"target": {"layer_name": "v", "filter": {"a": 1, "b": 2}}}
        merged = merge_document(base, {"target": {"filter": {"c": 3}}})
        assert merged["target"] == {"layer_name": "v", "filter": {"c": 3}}


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_persists_and_starts(self, lifecycle, repository, registry, clock):
        monitor = await lifecycle.on_create(monitor_doc())

        stored = await repository.get(monitor.id)
        assert stored is not None
        assert stored.created_at == clock.now
        assert stored.last_run.alert == AlertState.NOT_FIRING
        assert stored.action.cooldown_seconds == 60
        assert registry.is_active(monitor.id)
        await registry.close()

    @pytest.mark.asyncio
    async def test_dry_run_returns_firing_without_side_effects(
        self, store, resolver, lifecycle, repository, registry, sender
    ):
        vehicles = await resolver.resolve_layer("vehicles")
        store.add_features("zones", [feature(square())])
        store.add_features(
            "features",
            [
                feature({"type": "LineString", "coordinates": [[-3, 0.5], [3, 0.5]]}),
                feature(point(40, 40)),
            ],
            layer=vehicles,
        )
        doc = monitor_doc(
            trigger={"kind": "dryRun"},
            evaluation={"predicate_type": "geoIntersects"},
            action={"kind": "chat-webhook", "endpoint": "https://chat.example.com/hook"},
        )
        del doc["name"]

        outcome = await lifecycle.run_once(doc)

        assert outcome.monitor.name == "dry-run"
        assert outcome.monitor.last_run.alert == AlertState.FIRING
        assert len(outcome.result.matches) == 1
        assert await repository.list() == []
        assert registry.active_ids() == []
        assert sender.calls == []

    @pytest.mark.asyncio
    async def test_create_with_dry_run_trigger_is_not_persisted(self, lifecycle, repository):
        monitor = await lifecycle.on_create(monitor_doc(trigger={"kind": "dryRun"}))
        assert monitor.is_dry_run
        assert await repository.get(monitor.id) is None

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, lifecycle, repository, registry):
        await lifecycle.on_create(monitor_doc())
        with pytest.raises(Conflict):
            await lifecycle.on_create(monitor_doc())
        assert len(await repository.list()) == 1
        await registry.close()

    @pytest.mark.asyncio
    async def test_invalid_field_is_bad_request(self, lifecycle):
        with pytest.raises(BadRequest) as exc_info:
            await lifecycle.on_create(monitor_doc(evaluation={"predicate_type": "inside"}))
        assert "evaluation.predicate_type" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_concurrent_creates_with_one_name_persist_once(self, lifecycle, repository, registry):
        results = await asyncio.gather(
            lifecycle.on_create(monitor_doc()),
            lifecycle.on_create(monitor_doc()),
            return_exceptions=True,
        )

        assert sum(isinstance(result, MonitorDefinition) for result in results) == 1
        assert sum(isinstance(result, Conflict) for result in results) == 1
        assert len(await repository.list()) == 1
        await registry.close()

    @pytest.mark.asyncio
    async def test_invalid_filter_regex_is_bad_request(self, lifecycle, repository):
        doc = monitor_doc(target={"layer_name": "vehicles", "filter": {"properties.name": {"$regex": "("}}})

        with pytest.raises(BadRequest) as exc_info:
            await lifecycle.on_create(doc)

        assert "target.filter" in exc_info.value.message
        assert await repository.list() == []

    @pytest.mark.asyncio
    async def test_missing_name_is_bad_request(self, lifecycle):
        doc = monitor_doc()
        del doc["name"]
        with pytest.raises(BadRequest):
            await lifecycle.on_create(doc)

    @pytest.mark.asyncio
    async def test_unknown_layer_aborts_create(self, lifecycle, repository):
        with pytest.raises(NotFound):
            await lifecycle.on_create(monitor_doc(zone={"layer_name": "rivers"}))
        assert await repository.list() == []

    @pytest.mark.asyncio
    async def test_provider_not_ready_aborts_create(self, store, lifecycle, repository):
        store.ready = False
        with pytest.raises(Unavailable):
            await lifecycle.on_create(monitor_doc())
        assert await repository.list() == []

    @pytest.mark.asyncio
    async def test_registry_failure_rolls_back(self, repository, runner, resolver, store, clock):
        registry = MonitorRegistry(runner, resolver, store, max_event_services=1)
        lifecycle = MonitorLifecycle(repository, runner, registry, clock=clock)

        with pytest.raises(Unavailable):
            await lifecycle.on_create(monitor_doc(trigger={"kind": "event", "events": ["created"]}))

        assert await repository.list() == []


class TestUpdate:

    @pytest.mark.asyncio
    async def test_patch_trigger_kind_without_expression_is_rejected(self, lifecycle, repository, registry):
        created = await lifecycle.on_create(
            monitor_doc(trigger={"kind": "event", "events": ["patched"]})
        )

        with pytest.raises(BadRequest) as exc_info:
            await lifecycle.on_patch(created.id, {"trigger": {"kind": "schedule"}})
        assert "trigger" in exc_info.value.message
        assert (await repository.get(created.id)).is_event_triggered

        patched = await lifecycle.on_patch(
            created.id, {"trigger": {"kind": "schedule", "expression": "*/5 * * * *"}}
        )
        assert patched.is_scheduled
        assert registry.is_active(created.id)
        await registry.close()

    @pytest.mark.asyncio
    async def test_patch_merges_nested_fields(self, lifecycle, registry):
        created = await lifecycle.on_create(monitor_doc(description="before"))

        patched = await lifecycle.on_patch(created.id, {"evaluation": {"alert_on": "noData"}})

        assert patched.evaluation.predicate_type.value == "geoWithin"
        assert patched.evaluation.alert_on.value == "noData"
        assert patched.description == "before"
        assert patched.created_at == created.created_at
        assert patched.last_run.alert == AlertState.FIRING
        await registry.close()

    @pytest.mark.asyncio
    async def test_patch_disable_stops_monitor(self, lifecycle, registry):
        created = await lifecycle.on_create(monitor_doc())
        await lifecycle.on_patch(created.id, {"enabled": False})
        assert not registry.is_active(created.id)

    @pytest.mark.asyncio
    async def test_update_replaces_definition_and_keeps_identity(self, lifecycle, repository, registry):
        created = await lifecycle.on_create(monitor_doc())

        updated = await lifecycle.on_update(
            created.id, monitor_doc(name="renamed", id="forged", description="new")
        )

        assert updated.id == created.id
        assert updated.name == "renamed"
        assert (await repository.get(created.id)).description == "new"
        assert await repository.get("forged") is None
        await registry.close()

    @pytest.mark.asyncio
    async def test_update_keeps_open_incident(self, lifecycle, repository, registry):
        created = await lifecycle.on_create(monitor_doc(action=INCIDENT))
        created.action.incident_id = "inc-1"
        await repository.save(created)

        updated = await lifecycle.on_update(created.id, monitor_doc(action={**INCIDENT, "template": "other"}))

        assert updated.action.incident_id == "inc-1"
        assert updated.action.template == "other"
        await registry.close()

    @pytest.mark.asyncio
    async def test_update_to_taken_name_conflicts(self, lifecycle, registry):
        await lifecycle.on_create(monitor_doc(name="first"))
        second = await lifecycle.on_create(monitor_doc(name="second"))
        with pytest.raises(Conflict):
            await lifecycle.on_update(second.id, monitor_doc(name="first"))
        await registry.close()

    @pytest.mark.asyncio
    async def test_update_to_dry_run_is_rejected(self, lifecycle, registry):
        created = await lifecycle.on_create(monitor_doc())
        with pytest.raises(BadRequest):
            await lifecycle.on_update(created.id, monitor_doc(trigger={"kind": "dryRun"}))
        await registry.close()

    @pytest.mark.asyncio
    async def test_update_unknown_monitor_is_not_found(self, lifecycle):
        with pytest.raises(NotFound):
            await lifecycle.on_update("missing", monitor_doc())


class TestDeleteAndStartup:

    @pytest.mark.asyncio
    async def test_delete_stops_and_removes(self, lifecycle, repository, registry):
        created = await lifecycle.on_create(monitor_doc())

        deleted = await lifecycle.on_delete(created.id)

        assert deleted.id == created.id
        assert not registry.is_active(created.id)
        with pytest.raises(NotFound):
            await lifecycle.get(created.id)

    @pytest.mark.asyncio
    async def test_delete_unknown_monitor_is_not_found(self, lifecycle):
        with pytest.raises(NotFound):
            await lifecycle.on_delete("missing")

    @pytest.mark.asyncio
    async def test_start_existing_starts_enabled_monitors_once(self, lifecycle, repository, registry):
        first = MonitorDefinition.model_validate(monitor_doc(name="first"))
        second = MonitorDefinition.model_validate(monitor_doc(name="second"))
        disabled = MonitorDefinition.model_validate(monitor_doc(name="off", enabled=False))
        for monitor in (first, second, disabled):
            await repository.save(monitor)

        assert await lifecycle.start_existing() == 2
        assert await lifecycle.start_existing() == 0
        assert sorted(registry.active_ids()) == sorted([first.id, second.id])
        await registry.close()

    @pytest.mark.asyncio
    async def test_find_lists_monitors(self, lifecycle, registry):
        await lifecycle.on_create(monitor_doc(name="first"))
        await lifecycle.on_create(monitor_doc(name="second"))
        names = sorted(monitor.name for monitor in await lifecycle.find())
        assert names == ["first", "second"]
        await registry.close()
