"""
Spatial predicates and query matching.

Modules:
    predicates: Builds the per-zone spatial predicate for an evaluation
    matching: Evaluates Mongo-style queries on in-memory feature records
"""

from geosentinel.geo.matching import check_query, filter_features, matches, resolve_path
from geosentinel.geo.predicates import build_predicate, combine_filters, meters_to_radians

__all__ = [
    "build_predicate",
    "check_query",
    "combine_filters",
    "filter_features",
    "matches",
    "meters_to_radians",
    "resolve_path",
]
