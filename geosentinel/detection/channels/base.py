"""
Action channel interfaces.

Channels turn a monitor state transition into an outbound call. They send
HTTP through an HttpSender so transports can be swapped in tests.

Components:
    HttpResponse: Minimal response view returned by senders
    HttpSender: Protocol for outbound HTTP
    ChannelOutcome: What a channel did for one dispatch
    ActionChannel: Protocol every channel implements
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, Field

from geosentinel.errors import ActionDispatchError
from geosentinel.models.features import ZoneMatch
from geosentinel.models.monitor import AlertState, MonitorDefinition

DEFAULT_HEADERS = {"Content-Type": "application/json"}

ActionT = TypeVar("ActionT")


class HttpResponse(BaseModel):
    """Response of an outbound request."""

    model_config = {"frozen": True, "extra": "forbid"}

    ok: bool
    status: int
    json_body: Optional[Any] = None
    text: str = ""


class HttpSender(Protocol):
    """Protocol for sending outbound HTTP requests."""

    async def send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[Any] = None,
    ) -> HttpResponse:
        """
        Send a request with a JSON body.

        Raises:
            ActionDispatchError: On transport failure or timeout.
        """
        ...


class ChannelOutcome(BaseModel):
    """
    Result of dispatching one action.

    ``attempted`` is False when no external call was made (``none``
    channel, incident channel while still firing, or cooldown).
    """

    model_config = {"frozen": True, "extra": "forbid"}

    attempted: bool
    success: bool = True
    status: Optional[int] = None
    error: Optional[Dict[str, Any]] = Field(default=None)

    @classmethod
    def skipped(cls) -> "ChannelOutcome":
        return cls(attempted=False)

    @classmethod
    def sent(cls, response: HttpResponse) -> "ChannelOutcome":
        return cls(attempted=True, success=True, status=response.status)

    @classmethod
    def failed(cls, error: ActionDispatchError) -> "ChannelOutcome":
        return cls(
            attempted=True,
            success=False,
            status=error.data.get("status"),
            error=error.to_dict(),
        )


class ActionChannel(Protocol):
    """
    Protocol for action channels.

    Channels raise ActionDispatchError when the remote call fails; the
    dispatcher records it without failing the run.
    """

    async def send(
        self,
        monitor: MonitorDefinition,
        state: AlertState,
        matches: List[ZoneMatch],
        now: datetime,
    ) -> ChannelOutcome:
        """Dispatch the action for one state transition."""
        ...


def check_response(response: HttpResponse, kind: str, monitor_name: str) -> HttpResponse:
    """
    Raise for non-success responses.

    Raises:
        ActionDispatchError: If the response is not 2xx.
    """
    if not response.ok:
        raise ActionDispatchError(
            f"{kind} request failed with status {response.status}",
            data={
                "monitor": monitor_name,
                "status": response.status,
                "response": response.text[:500],
            },
        )
    return response


def action_of(monitor: MonitorDefinition, action_type: Type[ActionT]) -> ActionT:
    """
    Return the monitor's action if it has the channel's type.

    Raises:
        ActionDispatchError: If the action belongs to another channel.
    """
    action = monitor.action
    if not isinstance(action, action_type):
        raise ActionDispatchError(
            f"Action kind '{action.kind}' cannot be sent by this channel",
            data={"monitor": monitor.name, "kind": action.kind},
        )
    return action
