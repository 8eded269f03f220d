"""Reconciliation engine.

Consumes niri events and keeps sticky windows on the active workspace:

- WorkspaceActivated: move every sticky window to the new workspace
- WindowClosed: drop the window from the sticky set
- WindowOpened / WindowsChanged: update the window -> workspace map only

Moves are issued window by window. A failure for one window never stops the
pass for the rest; windows are only removed from the set by close events,
never because a move failed.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol

from .errors import (
    ActionError,
    EventStreamClosed,
    ProtocolError,
    TransportError,
    WindowNotFoundError,
)
from .models import (
    NiriEvent,
    UnknownEvent,
    WindowClosed,
    WindowOpened,
    WindowsChanged,
    WorkspaceActivated,
)
from .state import StickySet

logger = logging.getLogger(__name__)


class WindowManager(Protocol):
    """The part of NiriClient the engine depends on."""

    async def next_event(self) -> Optional[NiriEvent]: ...

    async def move_window_to_workspace(self, window_id: int, workspace_id: int) -> None: ...


class EngineState(str, Enum):
    IDLE = "idle"
    REACTING = "reacting"


@dataclass
class ReconciliationResult:
    """Outcome of one reconciliation pass."""

    workspace: int
    moved: List[int] = field(default_factory=list)
    missing: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    transport_error: Optional[TransportError] = None


class Reconciler:
    """Applies niri events to the sticky set and issues compensating moves."""

    def __init__(self, sticky: StickySet, niri: WindowManager) -> None:
        self.sticky = sticky
        self.niri = niri
        self.state = EngineState.IDLE
        self.active_workspace: Optional[int] = None
        self.window_workspaces: Dict[int, Optional[int]] = {}
        self.events_handled = 0

    async def run(self) -> None:
        """Process events until the stream ends.

        Raises:
            EventStreamClosed: When niri closes the event stream
            TransportError: After a pass in which the control channel failed
        """
        while True:
            try:
                event = await self.niri.next_event()
            except ProtocolError as e:
                logger.warning(f"Skipping malformed niri event: {e.message}")
                continue

            if event is None:
                raise EventStreamClosed()

            self.events_handled += 1
            await self.handle_event(event)

    async def handle_event(self, event: NiriEvent) -> Optional[ReconciliationResult]:
        """Apply one event.

        Returns:
            The pass result for workspace activations, None otherwise

        Raises:
            TransportError: If the control channel failed during a pass
        """
        if isinstance(event, WorkspaceActivated):
            return await self._on_workspace_activated(event)

        if isinstance(event, WindowClosed):
            self.window_workspaces.pop(event.window, None)
            if await self.sticky.remove(event.window):
                logger.info(f"Sticky window {event.window} closed, removed from sticky set")
            return None

        if isinstance(event, WindowOpened):
            self.window_workspaces[event.window] = event.workspace
            return None

        if isinstance(event, WindowsChanged):
            self.window_workspaces = {w.id: w.workspace_id for w in event.windows}
            logger.debug(f"Window map reset: {len(self.window_workspaces)} windows")
            return None

        if isinstance(event, UnknownEvent):
            logger.debug(f"Ignoring niri event {event.kind}")
        return None

    async def _on_workspace_activated(self, event: WorkspaceActivated) -> Optional[ReconciliationResult]:
        self.active_workspace = event.workspace
        logger.info(f"Workspace switched to: {event.workspace} (focused={event.focused})")

        result = await self.reconcile(event.workspace)
        if result.transport_error is not None:
            raise result.transport_error
        return result

    async def reconcile(self, workspace: int) -> ReconciliationResult:
        """Move every sticky window to a workspace.

        Each window is attempted independently. A transport failure is
        recorded and returned, not raised, so the remaining windows are still
        attempted.
        """
        # snapshot under the lock, move outside it
        windows = await self.sticky.snapshot()
        result = ReconciliationResult(workspace=workspace)

        self.state = EngineState.REACTING
        try:
            for window_id in windows:
                try:
                    await self.niri.move_window_to_workspace(window_id, workspace)
                except WindowNotFoundError as e:
                    logger.info(f"Sticky window {window_id} is gone, skipping: {e.message}")
                    result.missing.append(window_id)
                except TransportError as e:
                    logger.error(f"Failed to move window {window_id}: {e.message}")
                    result.failed.append(window_id)
                    if result.transport_error is None:
                        result.transport_error = e
                except ActionError as e:
                    logger.warning(f"Failed to move window {window_id}: {e.message}")
                    result.failed.append(window_id)
                else:
                    self.window_workspaces[window_id] = workspace
                    result.moved.append(window_id)
        finally:
            self.state = EngineState.IDLE

        if windows:
            logger.debug(
                f"Reconciled workspace {workspace}: moved={result.moved} "
                f"missing={result.missing} failed={result.failed}"
            )
        return result
