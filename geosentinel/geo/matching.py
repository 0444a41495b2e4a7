"""
Mongo-style query matching on feature records.

Evaluates the subset of the query language used by monitor filters and
spatial predicates against in-memory feature dicts. Used to re-apply an
element's filter to a changed record and by the in-memory feature store.

Supported:
    - Dotted field paths (``properties.kind``), implicit equality, and
      array membership for equality on list values
    - Logical: $and, $or, $nor, $not
    - Comparison: $eq, $ne, $gt, $gte, $lt, $lte, $in, $nin, $exists, $regex
    - Geo: $geoWithin ($geometry, $centerSphere), $geoIntersects ($geometry)

Geo operators use shapely for planar tests on lon/lat coordinates and the
haversine formula for $centerSphere, whose radius is in radians.

Example:
    >>> record = {"properties": {"kind": "truck", "speed": 42}}
    >>> matches({"properties.kind": "truck", "properties.speed": {"$gt": 30}}, record)
    True
"""

import math
import re
from typing import Any, Dict, Iterable, List, Optional

import shapely
import structlog
from shapely.errors import ShapelyError
from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry

from geosentinel.errors import BadRequest

logger = structlog.get_logger(__name__)


class _Missing:
    """Marker for an absent field."""

    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()

_LOGICAL = ("$and", "$or", "$nor")


# =============================================================================
# FIELD ACCESS
# =============================================================================


def resolve_path(record: Any, path: str) -> Any:
    """
    Resolve a dotted path in a record.

    Numeric segments index into lists. When a segment lands on a list of
    dicts, values are collected from every element.

    Returns:
        The value, a list of collected values, or MISSING.
    """
    current = record
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, list):
            if segment.isdigit():
                index = int(segment)
                if index >= len(current):
                    return MISSING
                current = current[index]
            else:
                collected = [
                    item[segment]
                    for item in current
                    if isinstance(item, dict) and segment in item
                ]
                if not collected:
                    return MISSING
                current = collected
        else:
            return MISSING
    return current


# =============================================================================
# GEOMETRY
# =============================================================================


def _to_shape(geometry: Any) -> Optional[BaseGeometry]:
    if not isinstance(geometry, dict) or "type" not in geometry:
        return None
    try:
        return shape(geometry)
    except (ShapelyError, ValueError, TypeError, KeyError, IndexError) as e:
        logger.debug("unparseable_geometry", error=str(e))
        return None


def angular_distance(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """Great-circle distance between two lon/lat points, in radians."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return 2 * math.asin(min(1.0, math.sqrt(a)))


def _within_center_sphere(target: BaseGeometry, operand: Any) -> bool:
    try:
        (center_lon, center_lat), radius = operand[0], float(operand[1])
    except (TypeError, ValueError, IndexError) as e:
        raise BadRequest(
            "$centerSphere expects [[lon, lat], radius]",
            data={"value": operand},
        ) from e
    coordinates = shapely.get_coordinates(target)
    if len(coordinates) == 0:
        return False
    return all(
        angular_distance(center_lon, center_lat, lon, lat) <= radius
        for lon, lat in coordinates
    )


def _geo_within(value: Any, operand: Any) -> bool:
    target = _to_shape(value)
    if target is None or not isinstance(operand, dict):
        return False
    if "$centerSphere" in operand:
        return _within_center_sphere(target, operand["$centerSphere"])
    if "$geometry" in operand:
        reference = _to_shape(operand["$geometry"])
        return reference is not None and reference.covers(target)
    raise BadRequest("$geoWithin expects $geometry or $centerSphere", data={"value": operand})


def _geo_intersects(value: Any, operand: Any) -> bool:
    target = _to_shape(value)
    if target is None or not isinstance(operand, dict) or "$geometry" not in operand:
        return False
    reference = _to_shape(operand["$geometry"])
    return reference is not None and reference.intersects(target)


# =============================================================================
# OPERATORS
# =============================================================================


def _candidates(value: Any) -> List[Any]:
    """Values an equality-style operator is tested against."""
    if isinstance(value, list):
        return [value, *value]
    return [value]


def _compare(value: Any, operand: Any, op) -> bool:
    if value is MISSING:
        return False
    for candidate in _candidates(value):
        try:
            if op(candidate, operand):
                return True
        except TypeError:
            continue
    return False


def _equals(value: Any, operand: Any) -> bool:
    if value is MISSING:
        return operand is None
    return any(candidate == operand for candidate in _candidates(value))


def compile_pattern(pattern: Any, options: Any = "") -> "re.Pattern[str]":
    """
    Compile a $regex operand with its $options flags (i, m, s).

    Raises:
        BadRequest: If the pattern or the options are not usable.
    """
    if not isinstance(options, str):
        raise BadRequest("$options expects a string", data={"value": options})
    flags = 0
    if "i" in options:
        flags |= re.IGNORECASE
    if "m" in options:
        flags |= re.MULTILINE
    if "s" in options:
        flags |= re.DOTALL
    try:
        return re.compile(pattern, flags)
    except (re.error, TypeError) as e:
        raise BadRequest(
            f"Invalid $regex pattern: {e}",
            data={"pattern": str(pattern)},
        ) from e


def _regex(value: Any, pattern: Any, options: Any = "") -> bool:
    compiled = compile_pattern(pattern, options)
    if value is MISSING:
        return False
    return any(
        isinstance(candidate, str) and compiled.search(candidate) is not None
        for candidate in _candidates(value)
    )


def _apply_operators(value: Any, operators: Dict[str, Any]) -> bool:
    for op, operand in operators.items():
        if op == "$eq":
            ok = _equals(value, operand)
        elif op == "$ne":
            ok = not _equals(value, operand)
        elif op == "$gt":
            ok = _compare(value, operand, lambda a, b: a > b)
        elif op == "$gte":
            ok = _compare(value, operand, lambda a, b: a >= b)
        elif op == "$lt":
            ok = _compare(value, operand, lambda a, b: a < b)
        elif op == "$lte":
            ok = _compare(value, operand, lambda a, b: a <= b)
        elif op == "$in":
            ok = any(_equals(value, item) for item in _as_list(op, operand))
        elif op == "$nin":
            ok = not any(_equals(value, item) for item in _as_list(op, operand))
        elif op == "$exists":
            ok = (value is not MISSING) == bool(operand)
        elif op == "$regex":
            ok = _regex(value, operand, operators.get("$options", ""))
        elif op == "$options":
            continue
        elif op == "$not":
            ok = not _match_condition(value, operand)
        elif op == "$geoWithin":
            ok = _geo_within(value, operand)
        elif op == "$geoIntersects":
            ok = _geo_intersects(value, operand)
        else:
            raise BadRequest(f"Unsupported query operator: {op}", data={"operator": op})
        if not ok:
            return False
    return True


def _as_list(op: str, operand: Any) -> Iterable[Any]:
    if not isinstance(operand, list):
        raise BadRequest(f"{op} expects an array", data={"operator": op, "value": operand})
    return operand


def _is_operator_dict(condition: Any) -> bool:
    return (
        isinstance(condition, dict)
        and len(condition) > 0
        and all(isinstance(key, str) and key.startswith("$") for key in condition)
    )


def _match_condition(value: Any, condition: Any) -> bool:
    if _is_operator_dict(condition):
        return _apply_operators(value, condition)
    if isinstance(condition, re.Pattern):
        return _regex(value, condition.pattern)
    return _equals(value, condition)


# =============================================================================
# PUBLIC API
# =============================================================================


def matches(query: Optional[Dict[str, Any]], record: Dict[str, Any]) -> bool:
    """
    Check whether a record satisfies a query.

    An empty or missing query matches everything.

    Raises:
        BadRequest: If the query uses an unsupported or malformed operator.
    """
    if not query:
        return True
    if not isinstance(query, dict):
        raise BadRequest("Query must be an object", data={"query": query})

    for key, condition in query.items():
        if key in _LOGICAL:
            clauses = _as_list(key, condition)
            results = (matches(clause, record) for clause in clauses)
            if key == "$and":
                ok = all(results)
            elif key == "$or":
                ok = any(results)
            else:
                ok = not any(results)
        elif key == "$not":
            ok = not matches(condition, record)
        elif key.startswith("$"):
            raise BadRequest(f"Unsupported query operator: {key}", data={"operator": key})
        else:
            ok = _match_condition(resolve_path(record, key), condition)
        if not ok:
            return False
    return True


def check_query(query: Any) -> None:
    """
    Compile every $regex in a query so a bad pattern is rejected up front.

    Raises:
        BadRequest: If a $regex pattern or its $options are invalid.
    """
    if isinstance(query, dict):
        if "$regex" in query:
            compile_pattern(query["$regex"], query.get("$options", ""))
        for value in query.values():
            check_query(value)
    elif isinstance(query, list):
        for item in query:
            check_query(item)


def filter_features(
    features: Iterable[Dict[str, Any]],
    query: Optional[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """Return the features matching a query, preserving order."""
    return [feature for feature in features if matches(query, feature)]
