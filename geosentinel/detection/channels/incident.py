"""
Incident webhook channel.

Opens an external incident when a monitor starts firing and removes it
when the monitor is no longer firing. The id returned by the incident
service is kept on the monitor's action (``incident_id``) in between.

Requests (POST, ``Authorization: Bearer <token>``):
    firing:          {"organisation", "data": {"template", "name",
                      "description", "location"?}}
    noLongerFiring:  {"organisation", "operation": "remove", "id"}

``location`` is a GeoJSON Feature whose GeometryCollection holds the first
matched zone geometry followed by its matching target geometries; it is
omitted when there are no matches (noData monitors).
"""

from datetime import datetime
from typing import Any, Dict, List

import structlog

from geosentinel.detection.channels.base import (
    DEFAULT_HEADERS,
    ChannelOutcome,
    HttpSender,
    action_of,
    check_response,
)
from geosentinel.errors import ActionDispatchError
from geosentinel.models.features import ZoneMatch
from geosentinel.models.monitor import AlertState, IncidentWebhookAction, MonitorDefinition

logger = structlog.get_logger(__name__)


def build_location(
    monitor: MonitorDefinition,
    matches: List[ZoneMatch],
    now: datetime,
) -> Dict[str, Any]:
    """GeoJSON Feature locating the first match."""
    first = matches[0]
    geometries = [first.zone_feature.get("geometry")] + [
        feature.get("geometry") for feature in first.target_features
    ]
    return {
        "type": "Feature",
        "geometry": {"type": "GeometryCollection", "geometries": geometries},
        "properties": {
            "name": monitor.name,
            "date": now.isoformat(),
            "condition": monitor.evaluation.predicate_type.value,
            "alertOn": monitor.evaluation.alert_on.value,
        },
    }


class IncidentWebhookChannel:
    """Manages the external incident lifecycle of a monitor."""

    def __init__(self, sender: HttpSender) -> None:
        self.sender = sender

    def _headers(self, action: IncidentWebhookAction) -> Dict[str, str]:
        headers = dict(DEFAULT_HEADERS)
        headers["Authorization"] = f"Bearer {action.token}"
        return headers

    async def send(
        self,
        monitor: MonitorDefinition,
        state: AlertState,
        matches: List[ZoneMatch],
        now: datetime,
    ) -> ChannelOutcome:
        action = action_of(monitor, IncidentWebhookAction)

        if state == AlertState.FIRING:
            return await self._open(monitor, action, matches, now)
        if state == AlertState.NO_LONGER_FIRING:
            return await self._close(monitor, action)
        return ChannelOutcome.skipped()

    async def _open(
        self,
        monitor: MonitorDefinition,
        action: IncidentWebhookAction,
        matches: List[ZoneMatch],
        now: datetime,
    ) -> ChannelOutcome:
        data: Dict[str, Any] = {
            "template": action.template,
            "name": action.incident_name or monitor.name,
            "description": action.incident_description or monitor.description,
        }
        if matches:
            data["location"] = build_location(monitor, matches, now)

        response = await self.sender.send(
            "post",
            action.endpoint,
            self._headers(action),
            {"organisation": action.organisation, "data": data},
        )
        check_response(response, action.kind, monitor.name)

        body = response.json_body if isinstance(response.json_body, dict) else {}
        incident_id = body.get("_id")
        if incident_id is None:
            raise ActionDispatchError(
                "Incident service returned no incident id",
                data={"monitor": monitor.name, "status": response.status},
            )
        action.incident_id = str(incident_id)

        logger.info("incident_opened", monitor=monitor.name, incident_id=action.incident_id)
        return ChannelOutcome.sent(response)

    async def _close(
        self,
        monitor: MonitorDefinition,
        action: IncidentWebhookAction,
    ) -> ChannelOutcome:
        incident_id = action.incident_id
        if incident_id is None:
            logger.warning(
                "incident_close_skipped",
                monitor=monitor.name,
                reason="no_open_incident",
            )
            return ChannelOutcome.skipped()
        action.incident_id = None

        response = await self.sender.send(
            "post",
            action.endpoint,
            self._headers(action),
            {"organisation": action.organisation, "operation": "remove", "id": incident_id},
        )
        check_response(response, action.kind, monitor.name)

        logger.info("incident_removed", monitor=monitor.name, incident_id=incident_id)
        return ChannelOutcome.sent(response)
