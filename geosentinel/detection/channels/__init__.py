"""
Action channels.

Components:
    none: No external call
    chat: Color-coded chat webhook message
    template: User-templated HTTP request with token substitution
    incident: External incident open/remove lifecycle
    http: aiohttp-based HttpSender

Example:
    >>> from geosentinel.detection.channels import AiohttpSender, create_channels
    >>>
    >>> channels = create_channels(AiohttpSender(timeout_seconds=10))
    >>> outcome = await channels[ActionKind.CHAT_WEBHOOK].send(monitor, state, matches, now)
"""

from typing import Dict

from geosentinel.detection.channels.base import (
    ActionChannel,
    ChannelOutcome,
    HttpResponse,
    HttpSender,
)
from geosentinel.detection.channels.chat import ChatWebhookChannel, build_chat_message
from geosentinel.detection.channels.http import AiohttpSender
from geosentinel.detection.channels.incident import IncidentWebhookChannel
from geosentinel.detection.channels.none import NoActionChannel
from geosentinel.detection.channels.template import TemplateRequestChannel
from geosentinel.models.monitor import ActionKind


def create_channels(sender: HttpSender) -> Dict[ActionKind, ActionChannel]:
    """
    Build one channel per action kind sharing a sender.

    Args:
        sender: HttpSender used by every HTTP channel.

    Returns:
        Dict mapping ActionKind to its channel.
    """
    return {
        ActionKind.NONE: NoActionChannel(),
        ActionKind.CHAT_WEBHOOK: ChatWebhookChannel(sender),
        ActionKind.TEMPLATE_REQUEST: TemplateRequestChannel(sender),
        ActionKind.INCIDENT_WEBHOOK: IncidentWebhookChannel(sender),
    }


__all__ = [
    "ActionChannel",
    "ChannelOutcome",
    "HttpResponse",
    "HttpSender",
    "AiohttpSender",
    "ChatWebhookChannel",
    "IncidentWebhookChannel",
    "NoActionChannel",
    "TemplateRequestChannel",
    "build_chat_message",
    "create_channels",
]
