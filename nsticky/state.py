"""Sticky window registry.

The set is shared by the reconciler and the command server, so every method
takes the same asyncio lock. Nothing here awaits niri I/O while holding it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Set

if TYPE_CHECKING:
    from .niri_client import NiriClient

logger = logging.getLogger(__name__)


class StickySet:
    """Set of niri window ids kept on the active workspace."""

    def __init__(self) -> None:
        self._windows: Set[int] = set()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    async def add(self, window_id: int) -> bool:
        """Mark a window sticky.

        Returns:
            True if newly added, False if it was already sticky
        """
        async with self._lock:
            if window_id in self._windows:
                return False
            self._windows.add(window_id)
            logger.debug(f"Added sticky window {window_id} ({len(self._windows)} total)")
            return True

    async def remove(self, window_id: int) -> bool:
        """Unmark a window.

        Returns:
            True if the window was sticky and is now removed
        """
        async with self._lock:
            if window_id not in self._windows:
                return False
            self._windows.discard(window_id)
            logger.debug(f"Removed sticky window {window_id} ({len(self._windows)} total)")
            return True

    async def contains(self, window_id: int) -> bool:
        async with self._lock:
            return window_id in self._windows

    async def toggle(self, window_id: int) -> bool:
        """Flip membership of a window in one locked step.

        Returns:
            True if the window was added, False if it was removed
        """
        async with self._lock:
            if window_id in self._windows:
                self._windows.discard(window_id)
                logger.debug(f"Toggled sticky window {window_id} off")
                return False
            self._windows.add(window_id)
            logger.debug(f"Toggled sticky window {window_id} on")
            return True

    async def snapshot(self) -> List[int]:
        """Sticky window ids in ascending order."""
        async with self._lock:
            return sorted(self._windows)


@dataclass
class DaemonContext:
    """State shared by the reconciler and the command server."""

    sticky: StickySet
    niri: "NiriClient"

    @property
    def niri_connected(self) -> bool:
        return self.niri.is_connected
