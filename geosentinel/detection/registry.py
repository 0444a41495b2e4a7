"""
Active monitor registry and scheduler bridge.

The registry is the single owner of the active-monitor map, the schedule
timers and the change subscriptions. Mutations never await between
reading and writing that state.

Key Features:
    - Schedule triggers: one ScheduleTimer task per monitor (croniter),
      replaced on restart; every fire spawns an independent run task
    - Event triggers: one subscription per backing service and allowed
      event, shared by all monitors; the set is bounded and never shrinks
    - Change routing by service, by layer id for the shared ``features``
      collection, then by the element's filter re-applied to the record
    - Unexpected errors escaping a run are passed to a fatal handler

Example:
    >>> registry = MonitorRegistry(runner, resolver, change_feed)
    >>> await registry.start(monitor)
    >>> registry.is_active(monitor.id)
    True
    >>> registry.stop(monitor.id)
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

import structlog
from croniter import croniter
from pydantic import BaseModel

from geosentinel.detection.runner import MonitorRunner
from geosentinel.errors import MonitorError, Unavailable
from geosentinel.geo.matching import matches
from geosentinel.models.features import GENERIC_FEATURES_COLLECTION, ChangeEvent
from geosentinel.models.monitor import (
    ChangeEventName,
    ElementSpec,
    EventTrigger,
    MonitorDefinition,
    ScheduleTrigger,
)
from geosentinel.providers.base import ChangeFeed
from geosentinel.providers.resolver import LayerResolver, layer_info_for
from geosentinel.storage.redis_client import RedisClientError

logger = structlog.get_logger(__name__)

DEFAULT_MAX_EVENT_SERVICES = 64

FatalHandler = Callable[[BaseException], None]


def _log_fatal(error: BaseException) -> None:
    logger.critical("monitor_engine_fatal_error", error=str(error), error_type=type(error).__name__)


class ScheduleTimer:
    """
    Fires a callback on a cron schedule.

    The callback must not block; it is invoked from the timer task.
    """

    def __init__(self, expression: str, callback: Callable[[], None], name: str) -> None:
        self.expression = expression
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self._task = asyncio.create_task(self._loop(), name=f"schedule:{self.name}")

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _loop(self) -> None:
        schedule = croniter(self.expression, datetime.now(timezone.utc))
        while True:
            fire_at = schedule.get_next(datetime)
            delay = (fire_at - datetime.now(timezone.utc)).total_seconds()
            await asyncio.sleep(max(0.0, delay))
            self.callback()


class ActiveMonitorEntry(BaseModel):
    """Registry entry for a started monitor."""

    model_config = {"arbitrary_types_allowed": True}

    monitor: MonitorDefinition
    timer: Optional[ScheduleTimer] = None


class MonitorRegistry:
    """
    Starts, stops and triggers active monitors.

    Attributes:
        runner: Orchestrator invoked for every trigger.
        resolver: Layer resolver used to find the backing service of
            event-triggered elements lacking layer_info.
        change_feed: Source of data-change events.
        allowed_events: Events subscribed per backing service.
        max_event_services: Bound on distinct subscribed services.
    """

    def __init__(
        self,
        runner: MonitorRunner,
        resolver: LayerResolver,
        change_feed: ChangeFeed,
        allowed_events: Optional[List[ChangeEventName]] = None,
        max_event_services: int = DEFAULT_MAX_EVENT_SERVICES,
        fatal_handler: FatalHandler = _log_fatal,
    ) -> None:
        self.runner = runner
        self.resolver = resolver
        self.change_feed = change_feed
        self.allowed_events = list(allowed_events or list(ChangeEventName))
        self.max_event_services = max_event_services
        self.fatal_handler = fatal_handler

        self._entries: Dict[str, ActiveMonitorEntry] = {}
        self._subscribed_services: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # STATE
    # =========================================================================

    def is_active(self, monitor_id: str) -> bool:
        return monitor_id in self._entries

    def active_ids(self) -> List[str]:
        return list(self._entries)

    @property
    def subscribed_services(self) -> Set[str]:
        return set(self._subscribed_services)

    # =========================================================================
    # START / STOP
    # =========================================================================

    async def start(self, monitor: MonitorDefinition) -> None:
        """
        Register a monitor with its trigger.

        Disabled and dry-run monitors are ignored. Starting an active
        monitor replaces its previous registration.

        Raises:
            Unavailable: If an event monitor needs a new service subscription
                and the bound is reached.
            NotFound: If an event monitor's layer cannot be resolved.
        """
        if not monitor.enabled or monitor.is_dry_run:
            logger.debug("monitor_start_ignored", monitor=monitor.name, enabled=monitor.enabled)
            return

        if isinstance(monitor.trigger, ScheduleTrigger):
            self._start_scheduled(monitor, monitor.trigger)
        elif isinstance(monitor.trigger, EventTrigger):
            await self._start_event(monitor)

    def _start_scheduled(self, monitor: MonitorDefinition, trigger: ScheduleTrigger) -> None:
        self.stop(monitor.id)
        timer = ScheduleTimer(
            trigger.expression,
            lambda: self.spawn_run(monitor.id),
            name=monitor.id,
        )
        self._entries[monitor.id] = ActiveMonitorEntry(monitor=monitor, timer=timer)
        timer.start()
        logger.info(
            "monitor_started",
            monitor=monitor.name,
            trigger="schedule",
            expression=trigger.expression,
        )

    async def _element_service(self, element: ElementSpec) -> Optional[str]:
        if element.is_inline:
            return None
        if element.layer_info is None:
            layer = await self.resolver.resolve_layer(element.layer_name)
            element.layer_info = layer_info_for(layer)
        return element.layer_info.backing_collection

    async def _start_event(self, monitor: MonitorDefinition) -> None:
        monitor = monitor.model_copy(deep=True)
        services: List[str] = []
        for element in monitor.elements():
            service = await self._element_service(element)
            if service is not None and service not in services:
                services.append(service)

        new_services = [s for s in services if s not in self._subscribed_services]
        if len(self._subscribed_services) + len(new_services) > self.max_event_services:
            raise Unavailable(
                "Event subscription limit reached",
                data={
                    "limit": self.max_event_services,
                    "services": new_services,
                },
            )

        self.stop(monitor.id)
        self._subscribed_services.update(new_services)
        self._entries[monitor.id] = ActiveMonitorEntry(monitor=monitor)

        for service in new_services:
            for event in self.allowed_events:
                await self.change_feed.subscribe(service, event, self._on_change)
            logger.info("service_subscribed", service=service, events=[e.value for e in self.allowed_events])

        logger.info(
            "monitor_started",
            monitor=monitor.name,
            trigger="event",
            events=[e.value for e in monitor.trigger.events],
            services=services,
        )

    def stop(self, monitor_id: str) -> bool:
        """
        Remove a monitor from the registry, cancelling its timer.

        In-flight runs are not aborted. Returns True if it was active.
        """
        entry = self._entries.pop(monitor_id, None)
        if entry is None:
            return False
        if entry.timer is not None:
            entry.timer.cancel()
        logger.info("monitor_stopped", monitor=entry.monitor.name)
        return True

    async def close(self) -> None:
        """Stop every monitor and wait for in-flight runs."""
        for monitor_id in list(self._entries):
            self.stop(monitor_id)
        await self.wait_idle()

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    def spawn_run(self, monitor_id: str) -> asyncio.Task:
        """Start an independent run task for a monitor."""
        task = asyncio.create_task(self._guarded_run(monitor_id), name=f"run:{monitor_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until every spawned run task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _guarded_run(self, monitor_id: str) -> None:
        try:
            await self.runner.run_by_id(monitor_id)
        except (MonitorError, RedisClientError) as e:
            logger.error("monitor_run_error", monitor_id=monitor_id, error=str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("monitor_run_crashed", monitor_id=monitor_id)
            self.fatal_handler(e)

    def _element_matches(self, element: ElementSpec, change: ChangeEvent) -> bool:
        info = element.layer_info
        if element.is_inline or info is None:
            return False
        if info.backing_collection != change.service:
            return False
        if info.backing_collection == GENERIC_FEATURES_COLLECTION and change.layer_id != info.layer_id:
            return False
        return matches(element.filter, change.record)

    async def _on_change(self, change: ChangeEvent) -> None:
        """Route a change event to the event monitors it concerns."""
        for entry in list(self._entries.values()):
            monitor = entry.monitor
            if not isinstance(monitor.trigger, EventTrigger):
                continue
            if change.event not in monitor.trigger.events:
                continue
            try:
                concerned = any(
                    self._element_matches(element, change) for element in monitor.elements()
                )
            except MonitorError as e:
                logger.warning("event_filter_failed", monitor=monitor.name, error=e.message)
                continue
            if concerned:
                logger.debug(
                    "event_triggered_run",
                    monitor=monitor.name,
                    service=change.service,
                    change_event=change.event.value,
                )
                self.spawn_run(monitor.id)
