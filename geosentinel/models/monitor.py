"""
Monitor data models.

This module defines the persistent monitor definition and its parts: the
two layer elements being compared, the trigger, the spatial evaluation
settings, the action channel configuration and the last run record.

Models:
    AlertState: Firing states (firing, stillFiring, noLongerFiring, notFiring)
    AlertOn: Whether matches (data) or their absence (noData) raise an alert
    PredicateType: Spatial predicate (geoWithin, geoIntersects, near)
    ChangeEventName: Feature store change events (created, updated, patched, removed)
    LayerInfo: Resolved backing collection and layer id of an element
    ElementSpec: A target or zone layer reference
    ScheduleTrigger / EventTrigger / DryRunTrigger: Tagged trigger variants
    Evaluation: Spatial evaluation settings
    NoAction / ChatWebhookAction / TemplateRequestAction / IncidentWebhookAction:
        Tagged action channel variants
    EvaluationStatus: Outcome of the last evaluation
    LastRun: Record of the last run
    MonitorDefinition: The persistent unit of configuration
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from urllib.parse import urlparse
from uuid import uuid4

from croniter import croniter
from pydantic import BaseModel, Field, field_validator, model_validator

from geosentinel.errors import BadRequest


# Mean Earth radius used to turn distances into angular radii
EARTH_RADIUS_METERS = 6378137.0

DEFAULT_MAX_DISTANCE_METERS = 1000.0
DEFAULT_MIN_DISTANCE_METERS = 0.0
DEFAULT_COOLDOWN_SECONDS = 60.0

DRY_RUN_NAME = "dry-run"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================


class AlertState(str, Enum):
    """
    Alert states produced by the firing state machine.

    Attributes:
        FIRING: Alert condition just became true.
        STILL_FIRING: Alert condition remains true.
        NO_LONGER_FIRING: Alert condition just became false.
        NOT_FIRING: Alert condition remains false.
    """

    FIRING = "firing"
    STILL_FIRING = "stillFiring"
    NO_LONGER_FIRING = "noLongerFiring"
    NOT_FIRING = "notFiring"

    @property
    def is_firing(self) -> bool:
        """Check if this state counts as firing for the next transition."""
        return self in (AlertState.FIRING, AlertState.STILL_FIRING)


class AlertOn(str, Enum):
    """Whether the alert condition is 'matches exist' or 'matches are absent'."""

    DATA = "data"
    NO_DATA = "noData"


class PredicateType(str, Enum):
    """Spatial predicate applied between zone and target features."""

    GEO_WITHIN = "geoWithin"
    GEO_INTERSECTS = "geoIntersects"
    NEAR = "near"


class ChangeEventName(str, Enum):
    """Change events emitted by feature store services."""

    CREATED = "created"
    UPDATED = "updated"
    PATCHED = "patched"
    REMOVED = "removed"


class TriggerKind(str, Enum):
    """How a monitor is triggered."""

    SCHEDULE = "schedule"
    EVENT = "event"
    DRY_RUN = "dryRun"


class ActionKind(str, Enum):
    """Action channel kinds."""

    NONE = "none"
    CHAT_WEBHOOK = "chat-webhook"
    TEMPLATE_REQUEST = "template-request"
    INCIDENT_WEBHOOK = "incident-webhook"


# =============================================================================
# ELEMENTS
# =============================================================================


class LayerInfo(BaseModel):
    """Resolved metadata for a layer element. Derived, never user-supplied."""

    model_config = {"extra": "forbid"}

    backing_collection: str = Field(
        ...,
        description="Feature store collection holding the layer's features",
        min_length=1,
    )
    layer_id: str = Field(
        ...,
        description="Resolved layer identifier",
        min_length=1,
    )


class ElementSpec(BaseModel):
    """
    A layer reference compared by a monitor (its target or its zone).

    Attributes:
        layer_name: Human-readable layer name, resolved through the catalog.
        filter: Optional query restricting the layer's features.
        layer_info: Resolved metadata, refreshed on every evaluation.
        source: "store" to resolve the layer, "inline" to use ``features``.
        features: Inline GeoJSON features when ``source`` is "inline".
    """

    model_config = {"extra": "forbid"}

    layer_name: str = Field(
        ...,
        description="Layer name",
        min_length=1,
    )
    filter: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Query applied to the layer's features",
    )
    layer_info: Optional[LayerInfo] = Field(
        default=None,
        description="Resolved layer metadata",
    )
    source: Literal["store", "inline"] = Field(
        default="store",
        description="Where the element's features come from",
    )
    features: Optional[List[Dict[str, Any]]] = Field(
        default=None,
        description="Inline features (source=inline only)",
    )

    @field_validator("layer_name")
    @classmethod
    def strip_layer_name(cls, v: str) -> str:
        """Reject whitespace-only layer names."""
        if not v.strip():
            raise ValueError("layer_name must not be blank")
        return v

    @field_validator("filter")
    @classmethod
    def check_filter(cls, v: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Reject filters whose $regex patterns do not compile."""
        if v is None:
            return v
        # geo.predicates imports this module
        from geosentinel.geo.matching import check_query

        try:
            check_query(v)
        except BadRequest as e:
            raise ValueError(e.message) from e
        return v

    @model_validator(mode="after")
    def check_source(self) -> "ElementSpec":
        """Inline elements carry features, stored elements must not."""
        if self.source == "inline" and self.features is None:
            raise ValueError("features are required when source is 'inline'")
        if self.source == "store" and self.features is not None:
            raise ValueError("features are only allowed when source is 'inline'")
        return self

    @property
    def is_inline(self) -> bool:
        """Check if the element's features are supplied inline."""
        return self.source == "inline"


# =============================================================================
# TRIGGERS
# =============================================================================


class ScheduleTrigger(BaseModel):
    """Cron-style schedule trigger."""

    model_config = {"extra": "forbid"}

    kind: Literal["schedule"] = "schedule"
    expression: str = Field(
        ...,
        description="Cron expression (5 fields, or 6 with trailing seconds)",
    )

    @field_validator("expression")
    @classmethod
    def validate_expression(cls, v: str) -> str:
        """Ensure the expression is a valid cron expression."""
        if not croniter.is_valid(v):
            raise ValueError(f"invalid cron expression: {v!r}")
        return v


class EventTrigger(BaseModel):
    """Data-change event trigger."""

    model_config = {"extra": "forbid"}

    kind: Literal["event"] = "event"
    events: List[ChangeEventName] = Field(
        ...,
        description="Change events that trigger a run",
        min_length=1,
    )

    @field_validator("events")
    @classmethod
    def dedupe_events(cls, v: List[ChangeEventName]) -> List[ChangeEventName]:
        """Keep the first occurrence of each event, preserving order."""
        return list(dict.fromkeys(v))


class DryRunTrigger(BaseModel):
    """One-shot evaluation at creation time, never registered."""

    model_config = {"extra": "forbid"}

    kind: Literal["dryRun"] = "dryRun"


Trigger = Annotated[
    Union[ScheduleTrigger, EventTrigger, DryRunTrigger],
    Field(discriminator="kind"),
]


# =============================================================================
# EVALUATION
# =============================================================================


class Evaluation(BaseModel):
    """
    Spatial evaluation settings.

    Distances are in meters and only meaningful for the ``near`` predicate,
    where they default to 1000 (max) and 0 (min).
    """

    model_config = {"extra": "forbid"}

    predicate_type: PredicateType = Field(
        ...,
        description="Spatial predicate",
    )
    alert_on: AlertOn = Field(
        default=AlertOn.DATA,
        description="Alert when matches exist (data) or are absent (noData)",
    )
    max_distance: Optional[float] = Field(
        default=None,
        description="Outer radius in meters (near only)",
        ge=0,
    )
    min_distance: Optional[float] = Field(
        default=None,
        description="Inner radius in meters (near only)",
        ge=0,
    )

    @model_validator(mode="after")
    def check_distances(self) -> "Evaluation":
        """The inner radius cannot exceed the outer radius."""
        if self.predicate_type == PredicateType.NEAR:
            if self.effective_min_distance > self.effective_max_distance:
                raise ValueError("min_distance must not exceed max_distance")
        return self

    @property
    def effective_max_distance(self) -> float:
        """Outer radius with the default applied."""
        if self.max_distance is None:
            return DEFAULT_MAX_DISTANCE_METERS
        return self.max_distance

    @property
    def effective_min_distance(self) -> float:
        """Inner radius with the default applied."""
        if self.min_distance is None:
            return DEFAULT_MIN_DISTANCE_METERS
        return self.min_distance


# =============================================================================
# ACTIONS
# =============================================================================


def _check_http_url(v: str) -> str:
    parsed = urlparse(v)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"endpoint must be an http(s) URL: {v!r}")
    return v


class NoAction(BaseModel):
    """No external call; only the status event is emitted."""

    model_config = {"extra": "forbid"}

    kind: Literal["none"] = "none"
    cooldown_seconds: float = Field(default=DEFAULT_COOLDOWN_SECONDS, ge=0)


class ChatWebhookAction(BaseModel):
    """Posts a fixed-shape, color-coded chat message."""

    model_config = {"extra": "forbid"}

    kind: Literal["chat-webhook"] = "chat-webhook"
    cooldown_seconds: float = Field(default=DEFAULT_COOLDOWN_SECONDS, ge=0)
    endpoint: str = Field(..., description="Incoming webhook URL")

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Endpoints must be absolute http(s) URLs."""
        return _check_http_url(v)


class TemplateRequestAction(BaseModel):
    """
    Arbitrary HTTP request with token substitution.

    The literal tokens ``%monitorName%`` and ``%monitorStatus%`` are replaced
    verbatim (unescaped) in the endpoint, headers and body before sending.
    """

    model_config = {"extra": "forbid"}

    kind: Literal["template-request"] = "template-request"
    cooldown_seconds: float = Field(default=DEFAULT_COOLDOWN_SECONDS, ge=0)
    endpoint: str = Field(..., description="Request URL (may contain tokens)")
    method: Literal["get", "post", "put", "delete"] = Field(
        ...,
        description="HTTP method",
    )
    headers: Dict[str, Any] = Field(default_factory=dict)
    body: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Endpoints must be absolute http(s) URLs."""
        return _check_http_url(v)


class IncidentWebhookAction(BaseModel):
    """
    Opens an external incident on firing and removes it when no longer firing.

    ``incident_id`` is derived: it holds the id returned by the incident
    service and is cleared once the incident is removed.
    """

    model_config = {"extra": "forbid"}

    kind: Literal["incident-webhook"] = "incident-webhook"
    cooldown_seconds: float = Field(default=DEFAULT_COOLDOWN_SECONDS, ge=0)
    endpoint: str = Field(..., description="Incident service URL")
    organisation: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)
    template: str = Field(..., min_length=1)
    incident_name: Optional[str] = Field(default=None)
    incident_description: Optional[str] = Field(default=None)
    incident_id: Optional[str] = Field(default=None)

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Endpoints must be absolute http(s) URLs."""
        return _check_http_url(v)


Action = Annotated[
    Union[NoAction, ChatWebhookAction, TemplateRequestAction, IncidentWebhookAction],
    Field(discriminator="kind"),
]


# =============================================================================
# RUN STATE
# =============================================================================


class EvaluationStatus(BaseModel):
    """Outcome of the last evaluation."""

    model_config = {"extra": "forbid"}

    success: bool
    error: Optional[Dict[str, Any]] = None


class LastRun(BaseModel):
    """
    Record of a monitor's last run.

    ``alert`` stays None until the first successful evaluation.
    ``action_error`` holds the last dispatch failure, if the last attempted
    action failed.
    """

    model_config = {"extra": "forbid"}

    at: datetime
    alert: Optional[AlertState] = None
    evaluation_status: EvaluationStatus
    last_action_at: Optional[datetime] = None
    action_error: Optional[Dict[str, Any]] = None


# =============================================================================
# MONITOR
# =============================================================================


class MonitorDefinition(BaseModel):
    """
    Persistent monitor definition.

    Compares ``target`` features against ``zone`` features with the
    evaluation predicate, on a schedule or on data-change events, and
    notifies through ``action`` when the firing state changes.

    Example:
        >>> monitor = MonitorDefinition.model_validate({
        ...     "name": "trucks-in-depot",
        ...     "target": {"layer_name": "trucks"},
        ...     "zone": {"layer_name": "depots"},
        ...     "trigger": {"kind": "schedule", "expression": "*/5 * * * *"},
        ...     "evaluation": {"predicate_type": "geoWithin"},
        ... })
        >>> monitor.is_scheduled
        True
    """

    model_config = {"extra": "forbid"}

    id: str = Field(default_factory=lambda: uuid4().hex)
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: str = Field(default="")
    target: ElementSpec
    zone: ElementSpec
    trigger: Trigger
    enabled: bool = Field(default=True)
    evaluation: Evaluation
    action: Action = Field(default_factory=NoAction)
    last_run: Optional[LastRun] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_name(self) -> "MonitorDefinition":
        """Names are required except for dry runs."""
        if self.name is None:
            if not self.is_dry_run:
                raise ValueError("name is required unless trigger.kind is 'dryRun'")
            self.name = DRY_RUN_NAME
        return self

    @property
    def trigger_kind(self) -> TriggerKind:
        """The trigger variant's kind."""
        return TriggerKind(self.trigger.kind)

    @property
    def is_dry_run(self) -> bool:
        """Check if this monitor only runs once at creation."""
        return isinstance(self.trigger, DryRunTrigger)

    @property
    def is_scheduled(self) -> bool:
        """Check if this monitor runs on a cron schedule."""
        return isinstance(self.trigger, ScheduleTrigger)

    @property
    def is_event_triggered(self) -> bool:
        """Check if this monitor runs on data-change events."""
        return isinstance(self.trigger, EventTrigger)

    @property
    def previous_alert(self) -> Optional[AlertState]:
        """Alert state of the last run, None before the first evaluation."""
        if self.last_run is None:
            return None
        return self.last_run.alert

    def elements(self) -> List[ElementSpec]:
        """Return the monitor's elements (target first, then zone)."""
        return [self.target, self.zone]

    def to_document(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible document for persistence."""
        return self.model_dump(mode="json")
