"""niri IPC client.

niri speaks line-delimited JSON over the Unix socket in ``$NIRI_SOCKET``.
Two connections are kept open:

- control channel: requests (actions and queries), one reply line each,
  serialized with a lock so niri sees one request at a time
- event channel: ``"EventStream"`` subscription, read by the reconciler
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import (
    ActionRejectedError,
    ErrorCode,
    ProtocolError,
    TransportError,
    WindowNotFoundError,
)
from .models import NiriEvent, NiriWindow, parse_event

logger = logging.getLogger(__name__)

# niri sends the full window list in one line when the event stream starts
STREAM_LIMIT = 4 * 1024 * 1024

_NOT_FOUND_MARKERS = ("not found", "no window", "doesn't exist", "does not exist")


def _encode(request: Any) -> bytes:
    return (json.dumps(request) + "\n").encode()


def move_window_action(window_id: int, workspace_id: int) -> Dict[str, Any]:
    """Build niri's MoveWindowToWorkspace action for one window."""
    return {
        "Action": {
            "MoveWindowToWorkspace": {
                "window_id": window_id,
                "reference": {"Id": workspace_id},
                "focus": False,
            }
        }
    }


class NiriClient:
    """Async client for niri's control and event channels."""

    def __init__(self, socket_path: Optional[Path], request_timeout: float = 5.0) -> None:
        """Initialize client.

        Args:
            socket_path: niri IPC socket ($NIRI_SOCKET)
            request_timeout: Seconds to wait for a reply to one request
        """
        self.socket_path = socket_path
        self.request_timeout = request_timeout

        self._control_reader: Optional[asyncio.StreamReader] = None
        self._control_writer: Optional[asyncio.StreamWriter] = None
        self._control_lock = asyncio.Lock()

        self._event_reader: Optional[asyncio.StreamReader] = None
        self._event_writer: Optional[asyncio.StreamWriter] = None

    @property
    def is_connected(self) -> bool:
        """True while the event channel is open."""
        return self._event_reader is not None

    async def _open(self):
        if not self.socket_path:
            raise ConnectionError("NIRI_SOCKET is not set; run inside a niri session")
        try:
            return await asyncio.wait_for(
                asyncio.open_unix_connection(str(self.socket_path), limit=STREAM_LIMIT),
                timeout=self.request_timeout
            )
        except asyncio.TimeoutError:
            raise ConnectionError(f"Timed out connecting to niri at {self.socket_path}")
        except OSError as e:
            raise ConnectionError(f"Cannot connect to niri at {self.socket_path}: {e}") from e

    async def connect(self) -> None:
        """Open both channels.

        Raises:
            ConnectionError: If niri is unreachable
        """
        await self.connect_control()
        try:
            await self.connect_events()
        except ConnectionError:
            await self._close_control()
            raise

    async def connect_control(self) -> None:
        """Open the control channel, replacing any channel already open.

        Raises:
            ConnectionError: If niri is unreachable
        """
        async with self._control_lock:
            await self._dial_control()

    async def _dial_control(self) -> None:
        # caller holds _control_lock
        await self._close_control()
        self._control_reader, self._control_writer = await self._open()
        logger.debug(f"Control channel connected to {self.socket_path}")

    async def connect_events(self) -> None:
        """Open the event channel and subscribe to the event stream.

        Raises:
            ConnectionError: If niri is unreachable or refuses the subscription
        """
        reader, writer = await self._open()
        try:
            writer.write(_encode("EventStream"))
            await writer.drain()
            line = await asyncio.wait_for(reader.readline(), timeout=self.request_timeout)
            reply = json.loads(line) if line else None
        except (OSError, ValueError, asyncio.TimeoutError) as e:
            writer.close()
            raise ConnectionError(f"EventStream subscription failed: {e}") from e

        if not isinstance(reply, dict) or "Ok" not in reply:
            writer.close()
            raise ConnectionError(f"niri refused EventStream subscription: {reply!r}")

        self._event_reader, self._event_writer = reader, writer
        logger.info(f"Subscribed to niri event stream at {self.socket_path}")

    async def _close_control(self) -> None:
        writer = self._control_writer
        self._control_reader = None
        self._control_writer = None
        if writer:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def _close_events(self) -> None:
        writer = self._event_writer
        self._event_reader = None
        self._event_writer = None
        if writer:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def close(self) -> None:
        """Close both channels."""
        await self._close_control()
        await self._close_events()
        logger.debug("niri channels closed")

    async def request(self, request: Any, operation: str) -> Dict[str, Any]:
        """Send one request on the control channel and return niri's reply object.

        A dropped control channel is redialed once per request.

        Raises:
            TransportError: If the channel is broken, closes or times out
        """
        async with self._control_lock:
            if self._control_writer is None:
                try:
                    await self._dial_control()
                except ConnectionError as e:
                    raise TransportError(operation, str(e))

            try:
                self._control_writer.write(_encode(request))
                await self._control_writer.drain()
                line = await asyncio.wait_for(
                    self._control_reader.readline(),
                    timeout=self.request_timeout
                )
            except asyncio.TimeoutError:
                await self._close_control()
                raise TransportError(
                    operation,
                    f"no reply within {self.request_timeout}s",
                    code=ErrorCode.REQUEST_TIMEOUT
                )
            except (OSError, ValueError) as e:
                await self._close_control()
                raise TransportError(operation, str(e))

            if not line:
                await self._close_control()
                raise TransportError(operation, "control channel closed by niri")

            try:
                reply = json.loads(line)
            except json.JSONDecodeError as e:
                await self._close_control()
                raise TransportError(operation, f"undecodable reply: {e}")

        if not isinstance(reply, dict) or not ("Ok" in reply or "Err" in reply):
            raise TransportError(operation, f"unexpected reply: {reply!r}")
        return reply

    async def send_action(self, action: Dict[str, Any]) -> None:
        """Send one action and wait for niri's acknowledgement.

        Raises:
            WindowNotFoundError: If the action targets a window niri does not know
            ActionRejectedError: If niri rejects the action for another reason
            TransportError: If the control channel fails
        """
        name = next(iter(action.get("Action", {})), "Action")
        reply = await self.request(action, name)
        if "Err" in reply:
            reason = str(reply["Err"])
            window_id = action.get("Action", {}).get(name, {}).get("window_id")
            if window_id is not None and any(m in reason.lower() for m in _NOT_FOUND_MARKERS):
                raise WindowNotFoundError(window_id, reason)
            raise ActionRejectedError(name, reason)

    async def move_window_to_workspace(self, window_id: int, workspace_id: int) -> None:
        """Move a window to a workspace without focusing it."""
        await self.send_action(move_window_action(window_id, workspace_id))

    async def focused_window(self) -> Optional[NiriWindow]:
        """Currently focused window, or None if nothing has focus.

        Raises:
            ActionRejectedError, TransportError
        """
        reply = await self.request("FocusedWindow", "FocusedWindow")
        if "Err" in reply:
            raise ActionRejectedError("FocusedWindow", str(reply["Err"]))
        payload = reply["Ok"]
        window = payload.get("FocusedWindow") if isinstance(payload, dict) else None
        if window is None:
            return None
        return NiriWindow.model_validate(window)

    async def windows(self) -> List[NiriWindow]:
        """All open windows.

        Raises:
            ActionRejectedError, TransportError
        """
        reply = await self.request("Windows", "Windows")
        if "Err" in reply:
            raise ActionRejectedError("Windows", str(reply["Err"]))
        payload = reply["Ok"]
        items = payload.get("Windows", []) if isinstance(payload, dict) else []
        return [NiriWindow.model_validate(item) for item in items]

    async def next_event(self) -> Optional[NiriEvent]:
        """Wait for the next event.

        Returns:
            Decoded event, or None once the event stream has ended

        Raises:
            ProtocolError: If a line cannot be decoded; the stream stays usable
        """
        while True:
            if self._event_reader is None:
                return None

            try:
                line = await self._event_reader.readline()
            except ValueError as e:
                raise ProtocolError(f"Oversized event line: {e}")
            except OSError as e:
                logger.warning(f"Event channel error: {e}")
                await self._close_events()
                return None

            if not line:
                await self._close_events()
                return None

            line = line.strip()
            if not line:
                continue

            try:
                payload = json.loads(line)
            except json.JSONDecodeError as e:
                raise ProtocolError(f"Undecodable event: {e}", raw=line.decode(errors="replace"))

            return parse_event(payload)
