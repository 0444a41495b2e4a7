"""
Monitor lifecycle callbacks.

This module exposes the callbacks an outer CRUD surface invokes when a
monitor document is created, replaced, patched or deleted, plus the dry-run
entry point and start-up of persisted monitors.

Key Features:
    - Incoming documents are stripped of derived fields, validated, and
      evaluated once before anything is written or registered
    - Configuration errors (BadRequest, NotFound, Conflict) and evaluation
      errors propagate to the caller and abort the write
    - Monitor names are unique; a dry run is never persisted or registered
    - Patches deep-merge over the current document; a ``trigger`` or
      ``action`` whose ``kind`` changes is replaced wholesale

Example:
    >>> lifecycle = MonitorLifecycle(repository, runner, registry)
    >>> monitor = await lifecycle.on_create({
    ...     "name": "trucks-in-depot",
    ...     "target": {"layer_name": "trucks"},
    ...     "zone": {"layer_name": "depots"},
    ...     "trigger": {"kind": "schedule", "expression": "*/5 * * * *"},
    ...     "evaluation": {"predicate_type": "geoWithin"},
    ... })
    >>> monitor.last_run.alert
    <AlertState.NOT_FIRING: 'notFiring'>
"""

import asyncio
import copy
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ValidationError

from geosentinel.detection.registry import MonitorRegistry
from geosentinel.detection.runner import Clock, MonitorRunner
from geosentinel.errors import BadRequest, Conflict, MonitorError, NotFound
from geosentinel.models.features import EvaluationResult
from geosentinel.models.monitor import (
    DEFAULT_COOLDOWN_SECONDS,
    IncidentWebhookAction,
    MonitorDefinition,
    utc_now,
)
from geosentinel.storage.repository import MonitorRepository

logger = structlog.get_logger(__name__)

# Fields computed by the engine; ignored when supplied by callers
DERIVED_FIELDS = ("id", "last_run", "created_at", "updated_at")

# Keys whose value is replaced rather than merged by a patch
REPLACED_ON_PATCH = ("filter", "features")


class DryRunResult(BaseModel):
    """Outcome of a dry run: the would-be-persisted document and the raw result."""

    monitor: MonitorDefinition
    result: EvaluationResult


# =============================================================================
# DOCUMENT HELPERS
# =============================================================================


def strip_derived(document: Any) -> Dict[str, Any]:
    """
    Return a copy of a monitor document without derived fields.

    Raises:
        BadRequest: If the document is not a mapping.
    """
    if not isinstance(document, dict):
        raise BadRequest(
            "Monitor document must be an object",
            data={"type": type(document).__name__},
        )

    doc = copy.deepcopy(document)
    for field in DERIVED_FIELDS:
        doc.pop(field, None)
    for element in ("target", "zone"):
        if isinstance(doc.get(element), dict):
            doc[element].pop("layer_info", None)
    if isinstance(doc.get("action"), dict):
        doc["action"].pop("incident_id", None)
    return doc


def merge_document(base: Dict[str, Any], partial: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep-merge a partial document over a base document.

    Nested mappings are merged key by key, except when the partial mapping
    carries a ``kind`` different from the base one, in which case it
    replaces the base mapping entirely.
    """
    merged = dict(base)
    for key, value in partial.items():
        current = merged.get(key)
        if (
            isinstance(value, dict)
            and isinstance(current, dict)
            and key not in REPLACED_ON_PATCH
        ):
            if "kind" in value and value["kind"] != current.get("kind"):
                merged[key] = copy.deepcopy(value)
            else:
                merged[key] = merge_document(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validation_error_to_bad_request(error: ValidationError) -> BadRequest:
    """Convert a pydantic ValidationError into a BadRequest naming the field."""
    details = [
        {
            "field": ".".join(str(part) for part in item["loc"]),
            "message": item["msg"],
        }
        for item in error.errors(include_url=False)
    ]
    first = details[0] if details else {"field": "", "message": str(error)}
    if first["field"]:
        message = f"Invalid monitor field '{first['field']}': {first['message']}"
    else:
        message = f"Invalid monitor: {first['message']}"
    return BadRequest(message, data={"errors": details})


def parse_monitor(document: Dict[str, Any]) -> MonitorDefinition:
    """
    Validate a monitor document.

    Raises:
        BadRequest: If validation fails.
    """
    try:
        return MonitorDefinition.model_validate(document)
    except ValidationError as e:
        raise validation_error_to_bad_request(e) from e


# =============================================================================
# LIFECYCLE
# =============================================================================


class MonitorLifecycle:
    """
    Lifecycle callbacks for monitor documents.

    Attributes:
        repository: Monitor repository.
        runner: Run orchestrator (previews and per-id locks).
        registry: Active monitor registry.
        default_cooldown_seconds: Cooldown applied when an action omits one.
        clock: Source of the current time.

    Writes for one monitor id hold that id's run lock; the name check and
    the write that follows it also hold a lifecycle-wide names lock.
    """

    def __init__(
        self,
        repository: MonitorRepository,
        runner: MonitorRunner,
        registry: MonitorRegistry,
        default_cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.runner = runner
        self.registry = registry
        self.default_cooldown_seconds = default_cooldown_seconds
        self.clock = clock
        self._names_lock = asyncio.Lock()

    def _with_default_cooldown(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        action = doc.get("action")
        if isinstance(action, dict) and "cooldown_seconds" not in action:
            action["cooldown_seconds"] = self.default_cooldown_seconds
        return doc

    async def _check_unique_name(self, monitor: MonitorDefinition) -> None:
        existing = await self.repository.find_by_name(monitor.name)
        if existing is not None and existing.id != monitor.id:
            raise Conflict(
                f"A monitor named '{monitor.name}' already exists",
                data={"name": monitor.name, "id": existing.id},
            )

    async def get(self, monitor_id: str) -> MonitorDefinition:
        """
        Get a persisted monitor.

        Raises:
            NotFound: If no monitor has this id.
        """
        monitor = await self.repository.get(monitor_id)
        if monitor is None:
            raise NotFound(f"Monitor '{monitor_id}' not found", data={"id": monitor_id})
        return monitor

    async def find(self) -> List[MonitorDefinition]:
        """List every persisted monitor."""
        return await self.repository.list()

    async def run_once(self, document: Dict[str, Any]) -> DryRunResult:
        """
        Evaluate a monitor document once without side effects.

        Nothing is persisted, dispatched, emitted or registered.

        Raises:
            MonitorError: On invalid configuration or a failed evaluation.
        """
        monitor = parse_monitor(self._with_default_cooldown(strip_derived(document)))
        working, result = await self.runner.preview(monitor)
        logger.info(
            "monitor_dry_run",
            monitor=working.name,
            status=working.last_run.alert.value,
            matched_zones=len(result.matches),
        )
        return DryRunResult(monitor=working, result=result)

    async def on_create(self, document: Dict[str, Any]) -> MonitorDefinition:
        """
        Create a monitor: validate, evaluate, persist, then start it.

        A dry-run document is delegated to ``run_once`` and returns its
        would-be-persisted monitor.

        Raises:
            BadRequest: If the document is invalid.
            Conflict: If the name is already taken.
            NotFound: If a layer cannot be resolved.
            Unavailable: If the layer provider is not ready.
        """
        doc = self._with_default_cooldown(strip_derived(document))
        monitor = parse_monitor(doc)

        if monitor.is_dry_run:
            return (await self.run_once(doc)).monitor

        now = self.clock()
        monitor.created_at = now
        monitor.updated_at = now

        async with self.runner.lock_for(monitor.id), self._names_lock:
            await self._check_unique_name(monitor)
            working, _ = await self.runner.preview(monitor)
            await self.repository.save(working)
            try:
                await self.registry.start(working)
            except MonitorError:
                await self.repository.delete(working.id)
                raise

        logger.info(
            "monitor_created",
            monitor=working.name,
            id=working.id,
            trigger=working.trigger_kind.value,
        )
        return working

    async def on_update(self, monitor_id: str, document: Dict[str, Any]) -> MonitorDefinition:
        """
        Replace a monitor's definition.

        Raises:
            NotFound: If the monitor does not exist.
            BadRequest: If the document is invalid or is a dry run.
            Conflict: If the new name is taken by another monitor.
        """
        async with self.runner.lock_for(monitor_id):
            current = await self.get(monitor_id)
            doc = self._with_default_cooldown(strip_derived(document))
            monitor = parse_monitor(doc)

            if (
                isinstance(current.action, IncidentWebhookAction)
                and isinstance(monitor.action, IncidentWebhookAction)
                and monitor.action.incident_id is None
            ):
                monitor.action.incident_id = current.action.incident_id

            return await self._replace(current, monitor, "monitor_updated")

    async def on_patch(self, monitor_id: str, partial: Dict[str, Any]) -> MonitorDefinition:
        """
        Apply a partial document to a monitor.

        Raises:
            NotFound: If the monitor does not exist.
            BadRequest: If the merged document is invalid, e.g. a trigger
                kind change without a compatible definition.
            Conflict: If the new name is taken by another monitor.
        """
        async with self.runner.lock_for(monitor_id):
            current = await self.get(monitor_id)
            changes = strip_derived(partial)
            merged = merge_document(current.to_document(), changes)
            monitor = parse_monitor(self._with_default_cooldown(merged))
            return await self._replace(current, monitor, "monitor_patched")

    async def _replace(
        self,
        current: MonitorDefinition,
        monitor: MonitorDefinition,
        event: str,
    ) -> MonitorDefinition:
        if monitor.is_dry_run:
            raise BadRequest(
                "A persisted monitor cannot be turned into a dry run",
                data={"id": current.id, "field": "trigger.kind"},
            )

        monitor.id = current.id
        monitor.created_at = current.created_at
        monitor.updated_at = self.clock()

        async with self._names_lock:
            await self._check_unique_name(monitor)
            working, _ = await self.runner.preview(monitor)

            self.registry.stop(current.id)
            await self.repository.save(working)
            try:
                await self.registry.start(working)
            except MonitorError:
                await self.repository.save(current)
                await self.registry.start(current)
                raise

        logger.info(event, monitor=working.name, id=working.id, enabled=working.enabled)
        return working

    async def on_delete(self, monitor_id: str) -> MonitorDefinition:
        """
        Stop and delete a monitor. In-flight runs are not aborted.

        Raises:
            NotFound: If the monitor does not exist.
        """
        async with self.runner.lock_for(monitor_id):
            monitor = await self.get(monitor_id)
            self.registry.stop(monitor_id)
            await self.repository.delete(monitor_id)
        self.runner.forget(monitor_id)

        logger.info("monitor_deleted", monitor=monitor.name, id=monitor_id)
        return monitor

    async def start_existing(self) -> int:
        """
        Start every enabled persisted monitor once.

        A monitor failing to start is logged and left stopped.

        Returns:
            int: Number of monitors started.
        """
        started = 0
        for monitor in await self.repository.list():
            if not monitor.enabled or monitor.is_dry_run:
                continue
            if self.registry.is_active(monitor.id):
                continue
            try:
                await self.registry.start(monitor)
            except MonitorError as e:
                logger.error(
                    "monitor_start_failed",
                    monitor=monitor.name,
                    id=monitor.id,
                    error=e.message,
                )
                continue
            started += 1

        logger.info("monitors_started", count=started)
        return started
