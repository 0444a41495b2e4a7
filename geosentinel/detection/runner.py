"""
Monitor run orchestrator.

One run is one pass over a monitor:

    1. Deep-copy the monitor into a working copy
    2. Evaluate it (layer_info is refreshed on the copy)
    3. On failure: record the error in last_run.evaluation_status, keep the
       previous alert, persist, stop
    4. On success: compute the next alert, dispatch the action unless
       notFiring, record last_run, persist, emit the status event

Runs of the same monitor id are serialized with a per-id asyncio.Lock,
which lifecycle writes also take.

Example:
    >>> runner = MonitorRunner(engine, dispatcher, repository, events)
    >>> updated = await runner.run_by_id(monitor_id)
    >>> updated.last_run.alert
    <AlertState.FIRING: 'firing'>
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

import structlog

from geosentinel.detection.dispatcher import ActionDispatcher
from geosentinel.detection.evaluator import EvaluationEngine
from geosentinel.detection.events import StatusEventBus
from geosentinel.detection.firing import next_alert, was_firing
from geosentinel.models.features import EvaluationResult
from geosentinel.models.monitor import (
    AlertState,
    EvaluationStatus,
    LastRun,
    MonitorDefinition,
    utc_now,
)
from geosentinel.storage.repository import MonitorRepository

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


class MonitorRunner:
    """
    Executes monitor runs.

    Attributes:
        engine: Evaluation engine.
        dispatcher: Action dispatcher.
        repository: Monitor repository the run result is persisted to.
        events: Status event bus.
        clock: Source of the current time (timezone-aware UTC).
    """

    def __init__(
        self,
        engine: EvaluationEngine,
        dispatcher: ActionDispatcher,
        repository: MonitorRepository,
        events: StatusEventBus,
        clock: Clock = utc_now,
    ) -> None:
        self.engine = engine
        self.dispatcher = dispatcher
        self.repository = repository
        self.events = events
        self.clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, monitor_id: str) -> asyncio.Lock:
        """Lock serializing runs and writes of one monitor."""
        lock = self._locks.get(monitor_id)
        if lock is None:
            lock = self._locks[monitor_id] = asyncio.Lock()
        return lock

    def forget(self, monitor_id: str) -> None:
        """Drop the lock of a deleted monitor."""
        self._locks.pop(monitor_id, None)

    async def run(self, monitor: MonitorDefinition) -> MonitorDefinition:
        """
        Run a monitor once and persist the outcome.

        Returns:
            MonitorDefinition: The updated document as persisted.
        """
        async with self.lock_for(monitor.id):
            return await self._run(monitor)

    async def run_by_id(self, monitor_id: str) -> Optional[MonitorDefinition]:
        """
        Run the persisted version of a monitor.

        Returns:
            The updated document, or None if the monitor no longer exists
            or is disabled.
        """
        async with self.lock_for(monitor_id):
            monitor = await self.repository.get(monitor_id)
            if monitor is None:
                logger.info("monitor_run_skipped_deleted", monitor_id=monitor_id)
                return None
            if not monitor.enabled:
                logger.info("monitor_run_skipped_disabled", monitor_id=monitor_id)
                return None
            return await self._run(monitor)

    async def _run(self, monitor: MonitorDefinition) -> MonitorDefinition:
        working = monitor.model_copy(deep=True)
        previous = working.last_run
        now = self.clock()

        result = await self.engine.evaluate(working)

        if not result.success:
            working.last_run = LastRun(
                at=now,
                alert=previous.alert if previous else None,
                evaluation_status=EvaluationStatus(success=False, error=result.error),
                last_action_at=previous.last_action_at if previous else None,
                action_error=previous.action_error if previous else None,
            )
            await self.repository.save(working)
            logger.warning(
                "monitor_run_failed",
                monitor=working.name,
                error=result.error,
            )
            return working

        state = next_alert(
            working.evaluation.alert_on,
            was_firing(working.previous_alert),
            result.is_data_empty,
        )

        last_action_at = previous.last_action_at if previous else None
        action_error = previous.action_error if previous else None
        if state != AlertState.NOT_FIRING:
            outcome = await self.dispatcher.dispatch(working, state, result.matches, now)
            if outcome.attempted:
                last_action_at = now
                action_error = outcome.error

        working.last_run = LastRun(
            at=now,
            alert=state,
            evaluation_status=EvaluationStatus(success=True),
            last_action_at=last_action_at,
            action_error=action_error,
        )
        await self.repository.save(working)

        logger.info(
            "monitor_run_complete",
            monitor=working.name,
            status=state.value,
            matched_zones=len(result.matches),
        )
        await self.events.emit(working.name, {"status": state.value})
        return working

    async def preview(
        self,
        monitor: MonitorDefinition,
    ) -> Tuple[MonitorDefinition, EvaluationResult]:
        """
        Evaluate a monitor from a clean history without side effects.

        Used at creation and update time, and for dry runs: nothing is
        dispatched, persisted or emitted.

        Returns:
            The working copy with a baseline last_run, and the raw result.

        Raises:
            MonitorError: If the evaluation fails.
        """
        working = monitor.model_copy(deep=True)
        now = self.clock()

        result = await self.engine.evaluate(working)
        result.raise_for_status()

        state = next_alert(working.evaluation.alert_on, False, result.is_data_empty)
        working.last_run = LastRun(
            at=now,
            alert=state,
            evaluation_status=EvaluationStatus(success=True),
        )
        return working, result
