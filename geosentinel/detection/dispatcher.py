"""
Action dispatcher with cooldown gating.

This module provides the ActionDispatcher which routes a monitor's state
transition to the channel configured by its action.

Key Features:
    - Only invoked for states other than notFiring
    - stillFiring transitions inside the cooldown window are skipped
    - Channel failures (ActionDispatchError) are logged and returned on the
      outcome, never raised

Example:
    >>> dispatcher = create_dispatcher(AiohttpSender())
    >>> outcome = await dispatcher.dispatch(monitor, AlertState.FIRING, matches, now)
    >>> if outcome.attempted:
    ...     monitor.last_run.last_action_at = now
"""

from datetime import datetime
from typing import Dict, List

import structlog

from geosentinel.detection.channels import (
    ActionChannel,
    ChannelOutcome,
    HttpSender,
    create_channels,
)
from geosentinel.errors import ActionDispatchError
from geosentinel.models.features import ZoneMatch
from geosentinel.models.monitor import ActionKind, AlertState, MonitorDefinition

logger = structlog.get_logger(__name__)


def in_cooldown(monitor: MonitorDefinition, now: datetime) -> bool:
    """Check whether the last dispatched action is within the cooldown window."""
    last_run = monitor.last_run
    if last_run is None or last_run.last_action_at is None:
        return False
    elapsed = (now - last_run.last_action_at).total_seconds()
    return elapsed < monitor.action.cooldown_seconds


class ActionDispatcher:
    """
    Routes state transitions to action channels.

    Attributes:
        channels: Dict mapping ActionKind to channel instance.
    """

    def __init__(self, channels: Dict[ActionKind, ActionChannel]) -> None:
        self.channels = channels

        logger.info(
            "action_dispatcher_initialized",
            available_channels=[kind.value for kind in channels],
        )

    async def dispatch(
        self,
        monitor: MonitorDefinition,
        state: AlertState,
        matches: List[ZoneMatch],
        now: datetime,
    ) -> ChannelOutcome:
        """
        Dispatch the monitor's action for a state transition.

        Args:
            monitor: Working copy of the monitor (its last_run is the
                previous run's record; channels may update its action).
            state: The new alert state.
            matches: Matches of the current evaluation.
            now: Time of the run.

        Returns:
            ChannelOutcome: ``attempted`` tells whether an external call was made.
        """
        if state == AlertState.NOT_FIRING:
            return ChannelOutcome.skipped()

        if state == AlertState.STILL_FIRING and in_cooldown(monitor, now):
            logger.info(
                "action_skipped_cooldown",
                monitor=monitor.name,
                cooldown_seconds=monitor.action.cooldown_seconds,
            )
            return ChannelOutcome.skipped()

        kind = ActionKind(monitor.action.kind)
        channel = self.channels.get(kind)
        if channel is None:
            logger.warning("channel_not_found", monitor=monitor.name, kind=kind.value)
            return ChannelOutcome.skipped()

        try:
            outcome = await channel.send(monitor, state, matches, now)
        except ActionDispatchError as e:
            logger.error(
                "action_dispatch_failed",
                monitor=monitor.name,
                kind=kind.value,
                status=state.value,
                error=e.message,
            )
            return ChannelOutcome.failed(e)

        if outcome.attempted:
            logger.info(
                "action_dispatched",
                monitor=monitor.name,
                kind=kind.value,
                status=state.value,
            )
        return outcome


def create_dispatcher(sender: HttpSender) -> ActionDispatcher:
    """
    Factory function to create an ActionDispatcher with every channel.

    Args:
        sender: HttpSender shared by the HTTP channels.

    Returns:
        ActionDispatcher: Configured dispatcher instance.
    """
    return ActionDispatcher(channels=create_channels(sender))
