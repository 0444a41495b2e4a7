"""
Feature-side data models.

Features themselves are plain GeoJSON dicts as stored by the feature store
(``{"type": "Feature", "geometry": {...}, "properties": {...}, ...}``);
these models describe what the engine exchanges with the store around them.

Models:
    LayerMetadata: A catalog entry describing one layer
    QueryResult: Features returned by a collection query and the matched total
    ChangeEvent: A data-change notification from a feature store service
    ZoneMatch: A zone feature paired with the target features it matched
    EvaluationResult: Outcome of one spatial evaluation
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, PrivateAttr

from geosentinel.errors import DataIntegrityError, MonitorError
from geosentinel.models.monitor import ChangeEventName

Feature = Dict[str, Any]

# Multi-layer collection shared by user-defined layers; queries against it
# are scoped by layer id.
GENERIC_FEATURES_COLLECTION = "features"


class LayerMetadata(BaseModel):
    """Catalog entry for a layer."""

    model_config = {"frozen": True, "extra": "ignore"}

    id: str = Field(..., description="Layer identifier", min_length=1)
    name: str = Field(..., description="Catalog name (possibly Layers.<NAME>)")
    backing_collection: str = Field(
        ...,
        description="Collection holding the layer's features",
        min_length=1,
    )
    display_name: Optional[str] = Field(default=None)

    @property
    def is_generic(self) -> bool:
        """Check if the layer lives in the shared multi-layer collection."""
        return self.backing_collection == GENERIC_FEATURES_COLLECTION


class QueryResult(BaseModel):
    """Result of a feature query. ``total`` is the server-side match count."""

    model_config = {"extra": "forbid"}

    total: int = Field(..., ge=0)
    features: List[Feature] = Field(default_factory=list)

    def check_complete(self, context: Optional[Dict[str, Any]] = None) -> "QueryResult":
        """
        Ensure no feature was dropped by paging.

        Raises:
            DataIntegrityError: If ``total`` differs from the features returned.
        """
        if self.total != len(self.features):
            data = dict(context or {})
            data.update(total=self.total, returned=len(self.features))
            raise DataIntegrityError(
                "Feature query returned fewer features than it matched",
                data=data,
            )
        return self


class ChangeEvent(BaseModel):
    """Data-change notification published by a feature store service."""

    model_config = {"frozen": True, "extra": "forbid"}

    service: str = Field(..., min_length=1)
    event: ChangeEventName
    record: Feature = Field(default_factory=dict)

    @property
    def layer_id(self) -> Optional[str]:
        """Layer id carried by the record, if any."""
        layer = self.record.get("layer")
        return None if layer is None else str(layer)


class ZoneMatch(BaseModel):
    """A zone feature and the target features satisfying the predicate."""

    model_config = {"extra": "forbid"}

    zone_feature: Feature
    target_features: List[Feature]


class EvaluationResult(BaseModel):
    """
    Outcome of one evaluation.

    On failure ``matches`` is empty and ``error`` holds the serialized
    MonitorError; ``raise_for_status`` re-raises the original exception.
    """

    model_config = {"extra": "forbid"}

    success: bool
    matches: List[ZoneMatch] = Field(default_factory=list)
    error: Optional[Dict[str, Any]] = None

    _exception: Optional[MonitorError] = PrivateAttr(default=None)

    @classmethod
    def ok(cls, matches: List[ZoneMatch]) -> "EvaluationResult":
        return cls(success=True, matches=matches)

    @classmethod
    def failed(cls, error: MonitorError) -> "EvaluationResult":
        result = cls(success=False, matches=[], error=error.to_dict())
        result._exception = error
        return result

    @property
    def is_data_empty(self) -> bool:
        """True when no zone produced a match."""
        return len(self.matches) == 0

    def raise_for_status(self) -> "EvaluationResult":
        """Re-raise the evaluation error, if any."""
        if not self.success and self._exception is not None:
            raise self._exception
        return self
