"""
Spatial predicate builder.

Turns an evaluation settings and a reference (zone) geometry into a Mongo-style
predicate on the ``geometry`` field of target features. The predicate is
understood by the feature store and by geosentinel.geo.matching.

Predicates:
    geoWithin:     target geometry lies within the reference polygon
    geoIntersects: target geometry intersects the reference geometry
    near:          target lies inside the annulus [min, max] meters around
                   the reference point, expressed as ``$centerSphere`` radii
                   in radians on a 6,378,137 m sphere

Example:
    >>> predicate = build_predicate(
    ...     Evaluation(predicate_type="near", max_distance=500),
    ...     {"type": "Point", "coordinates": [2.35, 48.85]},
    ... )
    >>> list(predicate["geometry"]["$geoWithin"])
    ['$centerSphere']
"""

from typing import Any, Dict

from geosentinel.errors import BadRequest, UnusableGeometryError
from geosentinel.models.monitor import EARTH_RADIUS_METERS, Evaluation, PredicateType

POLYGON_TYPES = ("Polygon", "MultiPolygon")


def meters_to_radians(meters: float) -> float:
    """Convert a distance on the Earth's surface to an angular radius."""
    return meters / EARTH_RADIUS_METERS


def _geometry_type(geometry: Any) -> Any:
    if not isinstance(geometry, dict):
        return None
    return geometry.get("type")


def build_predicate(evaluation: Evaluation, geometry: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the predicate matching target features against one zone geometry.

    Args:
        evaluation: Evaluation settings (predicate type and distances).
        geometry: GeoJSON geometry of the zone feature.

    Returns:
        Predicate dict on the ``geometry`` field.

    Raises:
        UnusableGeometryError: If the geometry type does not suit the predicate.
        BadRequest: If the predicate type is unknown.
    """
    predicate_type = evaluation.predicate_type
    geometry_type = _geometry_type(geometry)

    if predicate_type == PredicateType.GEO_WITHIN:
        if geometry_type not in POLYGON_TYPES:
            raise UnusableGeometryError(
                "geoWithin requires a Polygon or MultiPolygon reference geometry",
                data={"predicate_type": predicate_type.value, "geometry_type": geometry_type},
            )
        return {"geometry": {"$geoWithin": {"$geometry": geometry}}}

    if predicate_type == PredicateType.GEO_INTERSECTS:
        if geometry_type is None:
            raise UnusableGeometryError(
                "geoIntersects requires a reference geometry",
                data={"predicate_type": predicate_type.value, "geometry_type": None},
            )
        return {"geometry": {"$geoIntersects": {"$geometry": geometry}}}

    if predicate_type == PredicateType.NEAR:
        if geometry_type != "Point":
            raise UnusableGeometryError(
                "near requires a Point reference geometry",
                data={"predicate_type": predicate_type.value, "geometry_type": geometry_type},
            )
        coordinates = geometry["coordinates"]
        outer = {
            "geometry": {
                "$geoWithin": {
                    "$centerSphere": [
                        coordinates,
                        meters_to_radians(evaluation.effective_max_distance),
                    ]
                }
            }
        }
        if evaluation.effective_min_distance <= 0:
            return outer
        inner = {
            "geometry": {
                "$not": {
                    "$geoWithin": {
                        "$centerSphere": [
                            coordinates,
                            meters_to_radians(evaluation.effective_min_distance),
                        ]
                    }
                }
            }
        }
        return {"$and": [outer, inner]}

    raise BadRequest(
        f"Unknown predicate type: {predicate_type}",
        data={"predicate_type": str(predicate_type)},
    )


def combine_filters(predicate: Dict[str, Any], extra_filter: Dict[str, Any] | None) -> Dict[str, Any]:
    """AND a spatial predicate with an element's attribute filter."""
    if not extra_filter:
        return predicate
    return {"$and": [extra_filter, predicate]}
