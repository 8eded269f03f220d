"""
Pydantic models for niri IPC messages and the nsticky command protocol.

niri events arrive as single-key JSON objects, e.g.
``{"WorkspaceActivated": {"id": 3, "focused": true}}``. They are decoded into
the small set of variants the reconciler cares about; everything else becomes
an ``UnknownEvent`` so new niri event kinds never break the daemon.
"""

from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, model_validator

from .errors import ErrorCode, ProtocolError


# niri wire models

class NiriWindow(BaseModel):
    """A window as reported by niri (``Windows``, ``FocusedWindow``, window events)."""

    model_config = ConfigDict(extra="ignore")

    id: int = Field(..., ge=0, description="niri window id")
    workspace_id: Optional[int] = Field(None, description="Workspace the window is on")
    app_id: Optional[str] = None
    title: Optional[str] = None
    is_focused: bool = False
    is_floating: bool = False


class WorkspaceActivated(BaseModel):
    """A workspace became active on its output."""

    workspace: int
    focused: bool = True


class WindowOpened(BaseModel):
    """A window opened or changed (niri ``WindowOpenedOrChanged``)."""

    window: int
    workspace: Optional[int] = None


class WindowClosed(BaseModel):
    """A window closed."""

    window: int


class WindowsChanged(BaseModel):
    """Full window list, sent by niri when the event stream starts."""

    windows: List[NiriWindow] = Field(default_factory=list)


class UnknownEvent(BaseModel):
    """Any event kind nsticky does not act on."""

    kind: str


NiriEvent = Union[WorkspaceActivated, WindowOpened, WindowClosed, WindowsChanged, UnknownEvent]


def parse_event(payload: Any) -> NiriEvent:
    """Decode one niri event object.

    Args:
        payload: Decoded JSON value of one event-stream line

    Returns:
        Event variant; unknown kinds map to UnknownEvent

    Raises:
        ProtocolError: If a known event kind has missing or invalid fields
    """
    if not isinstance(payload, dict) or len(payload) != 1:
        raise ProtocolError(f"Expected single-key event object, got {type(payload).__name__}")

    kind, body = next(iter(payload.items()))

    try:
        if kind == "WorkspaceActivated":
            return WorkspaceActivated(workspace=body["id"], focused=body.get("focused", True))
        if kind == "WindowOpenedOrChanged":
            window = NiriWindow.model_validate(body["window"])
            return WindowOpened(window=window.id, workspace=window.workspace_id)
        if kind == "WindowClosed":
            return WindowClosed(window=body["id"])
        if kind == "WindowsChanged":
            return WindowsChanged(windows=body["windows"])
    except (KeyError, TypeError, ValidationError) as e:
        raise ProtocolError(f"Malformed {kind} event: {e}") from e

    return UnknownEvent(kind=kind)


# Command protocol

class CommandAction(str, Enum):
    """Requests accepted by the command server."""
    ADD = "add"
    REMOVE = "remove"
    LIST = "list"
    TOGGLE_ACTIVE = "toggle-active"


class ResponseStatus(str, Enum):
    """Response statuses returned by the command server."""
    OK = "ok"
    ALREADY_PRESENT = "already-present"
    NOT_FOUND = "not-found"
    ADDED = "added"
    REMOVED = "removed"
    ERROR = "error"
    BAD_REQUEST = "bad-request"


SUCCESS_STATUSES = frozenset({
    ResponseStatus.OK,
    ResponseStatus.ALREADY_PRESENT,
    ResponseStatus.NOT_FOUND,
    ResponseStatus.ADDED,
    ResponseStatus.REMOVED,
})


class CommandRequest(BaseModel):
    """One client request: ``{"action": ..., "window": ...}``."""

    model_config = ConfigDict(extra="ignore")

    action: CommandAction
    window: Optional[StrictInt] = Field(None, ge=0, description="Target window id")

    @model_validator(mode='after')
    def validate_window_required(self):
        """add/remove need a window id."""
        if self.action in (CommandAction.ADD, CommandAction.REMOVE) and self.window is None:
            raise ValueError(f"'{self.action.value}' requires a window id")
        return self

    @classmethod
    def from_line(cls, line: bytes) -> "CommandRequest":
        """Decode one request line.

        Raises:
            ProtocolError: If the line is not a valid request
        """
        try:
            return cls.model_validate_json(line)
        except ValidationError as e:
            errors = "; ".join(err["msg"] for err in e.errors())
            raise ProtocolError(
                f"Invalid request: {errors}",
                code=ErrorCode.BAD_REQUEST,
                raw=line.decode(errors="replace")
            ) from e

    def to_line(self) -> bytes:
        return (self.model_dump_json(exclude_none=True) + "\n").encode()


class CommandResponse(BaseModel):
    """One server response: ``{"status": ..., "windows": [...]}``."""

    model_config = ConfigDict(extra="ignore")

    status: ResponseStatus
    windows: Optional[List[int]] = None
    message: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status in SUCCESS_STATUSES

    def to_line(self) -> bytes:
        return (self.model_dump_json(exclude_none=True) + "\n").encode()
