"""
Data models for the monitor engine.

Modules:
    monitor: Monitor definition, triggers, evaluation, actions, run state
    features: Layer metadata, query results, change events, evaluation results
"""

from geosentinel.models.features import (
    GENERIC_FEATURES_COLLECTION,
    ChangeEvent,
    EvaluationResult,
    Feature,
    LayerMetadata,
    QueryResult,
    ZoneMatch,
)
from geosentinel.models.monitor import (
    EARTH_RADIUS_METERS,
    Action,
    ActionKind,
    AlertOn,
    AlertState,
    ChangeEventName,
    ChatWebhookAction,
    DryRunTrigger,
    ElementSpec,
    Evaluation,
    EvaluationStatus,
    EventTrigger,
    IncidentWebhookAction,
    LastRun,
    LayerInfo,
    MonitorDefinition,
    NoAction,
    PredicateType,
    ScheduleTrigger,
    TemplateRequestAction,
    Trigger,
    TriggerKind,
    utc_now,
)

__all__ = [
    "GENERIC_FEATURES_COLLECTION",
    "ChangeEvent",
    "EvaluationResult",
    "Feature",
    "LayerMetadata",
    "QueryResult",
    "ZoneMatch",
    "EARTH_RADIUS_METERS",
    "Action",
    "ActionKind",
    "AlertOn",
    "AlertState",
    "ChangeEventName",
    "ChatWebhookAction",
    "DryRunTrigger",
    "ElementSpec",
    "Evaluation",
    "EvaluationStatus",
    "EventTrigger",
    "IncidentWebhookAction",
    "LastRun",
    "LayerInfo",
    "MonitorDefinition",
    "NoAction",
    "PredicateType",
    "ScheduleTrigger",
    "TemplateRequestAction",
    "Trigger",
    "TriggerKind",
    "utc_now",
]
