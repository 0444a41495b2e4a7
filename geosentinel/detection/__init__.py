"""
Monitor detection core.

Modules:
    evaluator: Spatial evaluation of a monitor's zones against its targets
    firing: Four-state firing state machine
    channels: Action channels (none, chat, template request, incident)
    dispatcher: Cooldown-gated action dispatch
    runner: Run orchestrator with per-monitor locks
    registry: Active monitors, schedule timers and change routing
    lifecycle: Create/update/patch/delete callbacks and dry runs
    events: Per-monitor status events
"""

from geosentinel.detection.dispatcher import ActionDispatcher, create_dispatcher, in_cooldown
from geosentinel.detection.evaluator import EvaluationEngine
from geosentinel.detection.events import StatusEventBus
from geosentinel.detection.firing import next_alert, was_firing
from geosentinel.detection.lifecycle import (
    DryRunResult,
    MonitorLifecycle,
    merge_document,
    strip_derived,
)
from geosentinel.detection.registry import MonitorRegistry, ScheduleTimer
from geosentinel.detection.runner import MonitorRunner

__all__ = [
    "ActionDispatcher",
    "create_dispatcher",
    "in_cooldown",
    "EvaluationEngine",
    "StatusEventBus",
    "next_alert",
    "was_firing",
    "DryRunResult",
    "MonitorLifecycle",
    "merge_document",
    "strip_derived",
    "MonitorRegistry",
    "ScheduleTimer",
    "MonitorRunner",
]
