"""
Error taxonomy for the monitor engine.

Configuration errors (BadRequest, NotFound, Conflict) abort monitor writes
and propagate to the caller. Errors raised during a scheduled or
event-triggered run are recorded on the monitor's last run instead.

Classes:
    MonitorError: Base class carrying a message and structured data.
    BadRequest: Malformed monitor configuration or unknown predicate type.
    NotFound: Unresolvable layer name or monitor id.
    Conflict: Duplicate monitor name.
    Unavailable: Upstream layer provider not ready or unreachable.
    DataIntegrityError: Feature store truncated a result set.
    ActionDispatchError: Remote action channel call failed (non-fatal).
    UnusableGeometryError: Reference geometry incompatible with a predicate.
"""

from typing import Any, Dict, Optional


class MonitorError(Exception):
    """
    Base exception for monitor engine errors.

    Attributes:
        message: Human-readable error message.
        data: Structured context identifying the offending input.
    """

    code = "monitor_error"

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        """
        Initialize MonitorError.

        Args:
            message: Error message.
            data: Optional structured context.
        """
        self.message = message
        self.data = data or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for storage in an evaluation status."""
        return {"type": self.code, "message": self.message, "data": self.data}


class BadRequest(MonitorError):
    """Raised when a monitor definition is malformed."""

    code = "bad_request"


class NotFound(MonitorError):
    """Raised when a layer or monitor cannot be found."""

    code = "not_found"


class Conflict(MonitorError):
    """Raised when a monitor name is already taken."""

    code = "conflict"


class Unavailable(MonitorError):
    """Raised when the layer provider is not ready."""

    code = "unavailable"


class DataIntegrityError(MonitorError):
    """Raised when the feature store returns fewer features than it matched."""

    code = "data_integrity"


class ActionDispatchError(MonitorError):
    """Raised when an action channel call fails."""

    code = "action_dispatch"


class UnusableGeometryError(MonitorError):
    """
    Raised when a zone geometry cannot be used with the predicate type.

    This is a skip signal: the zone feature is ignored, the run continues.
    """

    code = "unusable_geometry"
