"""
Feature store adapters and layer resolution.

Modules:
    base: LayerProvider and ChangeFeed interfaces
    resolver: Layer name resolution and checked feature queries
    http: Remote feature store over HTTP
    memory: In-process feature store (provider and change feed)
    changes: Change feed over Redis pub/sub
"""

from geosentinel.providers.base import ChangeFeed, ChangeHandler, LayerProvider
from geosentinel.providers.changes import RedisChangeFeed
from geosentinel.providers.http import HttpLayerProvider
from geosentinel.providers.memory import InMemoryFeatureStore
from geosentinel.providers.resolver import (
    LayerResolver,
    canonical_layer_name,
    layer_info_for,
)

__all__ = [
    "ChangeFeed",
    "ChangeHandler",
    "LayerProvider",
    "RedisChangeFeed",
    "HttpLayerProvider",
    "InMemoryFeatureStore",
    "LayerResolver",
    "canonical_layer_name",
    "layer_info_for",
]
