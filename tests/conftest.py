"""Pytest configuration and fixtures for nsticky tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Optional

import pytest

from nsticky.models import NiriWindow
from nsticky.state import DaemonContext, StickySet


class FakeNiri:
    """In-memory stand-in for NiriClient.

    ``events`` is consumed by next_event(); an Exception instance in the list
    is raised instead of returned. ``move_failures`` maps a window id to the
    exception its move raises.
    """

    def __init__(self) -> None:
        self.events: List = []
        self.open_windows: List[int] = []
        self.focused: Optional[int] = None
        self.focused_error: Optional[Exception] = None
        self.windows_error: Optional[Exception] = None
        self.connected = True
        self.moves: List[tuple] = []
        self.move_failures: Dict[int, Exception] = {}

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def next_event(self):
        if not self.events:
            return None
        event = self.events.pop(0)
        if isinstance(event, Exception):
            raise event
        return event

    async def move_window_to_workspace(self, window_id: int, workspace_id: int) -> None:
        self.moves.append((window_id, workspace_id))
        if window_id in self.move_failures:
            raise self.move_failures[window_id]

    async def focused_window(self) -> Optional[NiriWindow]:
        if self.focused_error is not None:
            raise self.focused_error
        if self.focused is None:
            return None
        return NiriWindow(id=self.focused, is_focused=True)

    async def windows(self) -> List[NiriWindow]:
        if self.windows_error is not None:
            raise self.windows_error
        return [NiriWindow(id=window_id) for window_id in self.open_windows]


@pytest.fixture
def sticky() -> StickySet:
    return StickySet()


@pytest.fixture
def fake_niri() -> FakeNiri:
    return FakeNiri()


@pytest.fixture
def context(sticky, fake_niri) -> DaemonContext:
    return DaemonContext(sticky=sticky, niri=fake_niri)


@pytest.fixture
def short_tmp() -> Generator[Path, None, None]:
    """Temp dir with a short path; Unix socket paths are limited to ~108 bytes."""
    path = Path(tempfile.mkdtemp(prefix="ns-", dir="/tmp"))
    yield path
    shutil.rmtree(path, ignore_errors=True)
