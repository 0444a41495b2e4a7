"""
Chat webhook channel.

Posts a fixed-shape, color-coded message to an incoming chat webhook
(Slack attachment format). The body is not user-templated.

Colors:
    firing: red (#f52a2a)
    stillFiring: orange (#fc7703)
    otherwise: green (#03fc07)
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
from geosentinel.models.features import ZoneMatch
from geosentinel.models.monitor import AlertState, ChatWebhookAction, MonitorDefinition

logger = structlog.get_logger(__name__)

COLOR_FIRING = "#f52a2a"
COLOR_STILL_FIRING = "#fc7703"
COLOR_RESOLVED = "#03fc07"


def state_color(state: AlertState) -> str:
    """Attachment color for a state."""
    if state == AlertState.FIRING:
        return COLOR_FIRING
    if state == AlertState.STILL_FIRING:
        return COLOR_STILL_FIRING
    return COLOR_RESOLVED


def build_chat_message(monitor_name: str, state: AlertState) -> Dict[str, Any]:
    """Build the webhook payload for a state transition."""
    return {
        "attachments": [
            {
                "color": state_color(state),
                "blocks": [
                    {
                        "type": "section",
                        "text": {
                            "type": "mrkdwn",
                            "text": (
                                f"*[GeoSentinel]*\n*Monitor :* `{monitor_name}`\n"
                                f"*Status :* {state.value}"
                            ),
                        },
                    }
                ],
            }
        ]
    }


class ChatWebhookChannel:
    """Sends chat webhook notifications."""

    def __init__(self, sender: HttpSender) -> None:
        self.sender = sender

    async def send(
        self,
        monitor: MonitorDefinition,
        state: AlertState,
        matches: List[ZoneMatch],
        now: datetime,
    ) -> ChannelOutcome:
        action = action_of(monitor, ChatWebhookAction)

        response = await self.sender.send(
            "post",
            action.endpoint,
            dict(DEFAULT_HEADERS),
            build_chat_message(monitor.name, state),
        )
        check_response(response, action.kind, monitor.name)

        logger.info("chat_webhook_sent", monitor=monitor.name, status=state.value)
        return ChannelOutcome.sent(response)
