"""No-op channel for monitors without an external action."""

from datetime import datetime
from typing import List

from geosentinel.detection.channels.base import ChannelOutcome
from geosentinel.models.features import ZoneMatch
from geosentinel.models.monitor import AlertState, MonitorDefinition


class NoActionChannel:
    """Makes no external call."""

    async def send(
        self,
        monitor: MonitorDefinition,
        state: AlertState,
        matches: List[ZoneMatch],
        now: datetime,
    ) -> ChannelOutcome:
        return ChannelOutcome.skipped()
