"""
GeoSentinel spatial monitor engine.

Continuously evaluates pairs of geographic feature layers against a spatial
predicate and raises or clears alerts when the relationship between them
changes, dispatching notifications through pluggable action channels.

This package provides:
- Data models for monitor definitions, features and evaluation results
- Spatial predicate construction and a Mongo-style query matcher
- Layer provider adapters (HTTP, in-memory) and a Redis change feed
- The monitor engine: evaluation, firing states, dispatch, scheduling
- Monitor persistence (in-memory and Redis)
"""

__version__ = "0.1.0"
