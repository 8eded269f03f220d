"""
Error types for the nsticky daemon.

Errors carry a structured code so the command server can report them to
clients and the supervisor can decide between skipping, reconnecting and
exiting.
"""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(Enum):
    """
    Error codes for nsticky.

    - 1000-1099: niri action errors
    - 1100-1199: niri transport errors
    - 1200-1299: protocol errors
    """

    # Action errors (1000-1099)
    WINDOW_NOT_FOUND = 1000
    ACTION_REJECTED = 1001

    # Transport errors (1100-1199)
    TRANSPORT_FAILED = 1100
    REQUEST_TIMEOUT = 1101
    EVENT_STREAM_CLOSED = 1102

    # Protocol errors (1200-1299)
    MALFORMED_EVENT = 1200
    MALFORMED_REPLY = 1201
    BAD_REQUEST = 1202


class NStickyError(Exception):
    """Base exception for nsticky errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            suggestion: Suggested recovery action
            context: Additional context for debugging
        """
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a dictionary for logging and client replies."""
        result = {
            "code": self.code.value,
            "message": self.message
        }

        if self.suggestion:
            result["suggestion"] = self.suggestion

        if self.context:
            result["context"] = self.context

        return result


class ActionError(NStickyError):
    """A niri action or query did not succeed."""


class WindowNotFoundError(ActionError):
    """The target window no longer exists in niri."""

    def __init__(self, window_id: int, reason: str = "window not found"):
        super().__init__(
            code=ErrorCode.WINDOW_NOT_FOUND,
            message=f"Window {window_id} not found: {reason}",
            context={"window_id": window_id, "reason": reason}
        )
        self.window_id = window_id


class ActionRejectedError(ActionError):
    """niri replied with an error unrelated to window existence."""

    def __init__(self, request: str, reason: str):
        super().__init__(
            code=ErrorCode.ACTION_REJECTED,
            message=f"niri rejected {request}: {reason}",
            context={"request": request, "reason": reason}
        )


class TransportError(ActionError):
    """The niri control channel is broken or did not answer in time."""

    def __init__(self, operation: str, reason: str, code: ErrorCode = ErrorCode.TRANSPORT_FAILED):
        super().__init__(
            code=code,
            message=f"niri IPC {operation} failed: {reason}",
            suggestion="Ensure niri is running and $NIRI_SOCKET points at its socket",
            context={"operation": operation, "reason": reason}
        )


class ProtocolError(NStickyError):
    """Malformed message from niri or from a client."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.MALFORMED_EVENT, raw: Optional[str] = None):
        context = {}
        if raw is not None:
            context["raw"] = raw[:200]
        super().__init__(code=code, message=message, context=context)


class EventStreamClosed(NStickyError):
    """niri closed the event stream."""

    def __init__(self):
        super().__init__(
            code=ErrorCode.EVENT_STREAM_CLOSED,
            message="niri event stream closed",
            suggestion="niri exited or restarted; the daemon will try to reconnect"
        )
