"""
Template request channel.

Sends an arbitrary request whose endpoint, headers and body may contain
the literal tokens ``%monitorName%`` and ``%monitorStatus%``. Tokens are
replaced verbatim in the URL and in the JSON-serialized headers and body,
which are then parsed back. Values are not escaped: a monitor name holding
a double quote yields invalid JSON and the dispatch fails.
"""

import json
from datetime import datetime
from typing import Any, List

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
from geosentinel.models.monitor import AlertState, MonitorDefinition, TemplateRequestAction

logger = structlog.get_logger(__name__)

TOKEN_MONITOR_NAME = "%monitorName%"
TOKEN_MONITOR_STATUS = "%monitorStatus%"


def substitute(text: str, monitor_name: str, status: str) -> str:
    """Replace the monitor tokens in a string."""
    return text.replace(TOKEN_MONITOR_NAME, monitor_name).replace(TOKEN_MONITOR_STATUS, status)


def substitute_json(value: Any, monitor_name: str, status: str) -> Any:
    """
    Substitute tokens in the serialized form of a JSON value.

    Raises:
        ActionDispatchError: If the substituted text is no longer valid JSON.
    """
    serialized = substitute(json.dumps(value), monitor_name, status)
    try:
        return json.loads(serialized)
    except json.JSONDecodeError as e:
        raise ActionDispatchError(
            "Token substitution produced invalid JSON",
            data={"monitor": monitor_name, "error": str(e)},
        ) from e


class TemplateRequestChannel:
    """Sends user-templated HTTP requests."""

    def __init__(self, sender: HttpSender) -> None:
        self.sender = sender

    async def send(
        self,
        monitor: MonitorDefinition,
        state: AlertState,
        matches: List[ZoneMatch],
        now: datetime,
    ) -> ChannelOutcome:
        action = action_of(monitor, TemplateRequestAction)

        status = state.value
        headers = action.headers or dict(DEFAULT_HEADERS)
        url = substitute(action.endpoint, monitor.name, status)
        headers = substitute_json(headers, monitor.name, status)
        body = substitute_json(action.body, monitor.name, status)

        response = await self.sender.send(
            action.method,
            url,
            {str(k): str(v) for k, v in headers.items()},
            body,
        )
        check_response(response, action.kind, monitor.name)

        logger.info(
            "template_request_sent",
            monitor=monitor.name,
            method=action.method,
            status=status,
        )
        return ChannelOutcome.sent(response)
