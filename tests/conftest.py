"""Shared fixtures for the monitor engine tests."""

from typing import List

import pytest

from geosentinel.detection import (
    EvaluationEngine,
    MonitorLifecycle,
    MonitorRegistry,
    MonitorRunner,
    StatusEventBus,
    create_dispatcher,
)
from geosentinel.providers import InMemoryFeatureStore, LayerResolver
from geosentinel.storage import InMemoryMonitorRepository
from tests.helpers import FakeClock, FakeSender


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def store() -> InMemoryFeatureStore:
    """Feature store with a 'zones' layer (own collection) and a 'vehicles' layer
    (shared features collection)."""
    store = InMemoryFeatureStore()
    store.add_layer("zones", collection="zones", layer_id="zones-layer")
    store.add_layer("vehicles", layer_id="vehicles-layer")
    return store


@pytest.fixture
def repository() -> InMemoryMonitorRepository:
    return InMemoryMonitorRepository()


@pytest.fixture
def events() -> StatusEventBus:
    return StatusEventBus()


@pytest.fixture
def resolver(store: InMemoryFeatureStore) -> LayerResolver:
    return LayerResolver(store)


@pytest.fixture
def runner(resolver, sender, repository, events, clock) -> MonitorRunner:
    return MonitorRunner(
        engine=EvaluationEngine(resolver),
        dispatcher=create_dispatcher(sender),
        repository=repository,
        events=events,
        clock=clock,
    )


@pytest.fixture
def fatal_errors() -> List[BaseException]:
    return []


@pytest.fixture
def registry(runner, resolver, store, fatal_errors) -> MonitorRegistry:
    return MonitorRegistry(
        runner=runner,
        resolver=resolver,
        change_feed=store,
        fatal_handler=fatal_errors.append,
    )


@pytest.fixture
def lifecycle(repository, runner, registry, clock) -> MonitorLifecycle:
    return MonitorLifecycle(
        repository=repository,
        runner=runner,
        registry=registry,
        default_cooldown_seconds=60,
        clock=clock,
    )
