"""
Command server for nsticky.

Unix socket server for the CLI. Each connection carries exactly one JSON
request line and gets exactly one JSON response line, then closes.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .errors import ActionError, ProtocolError
from .models import CommandAction, CommandRequest, CommandResponse, ResponseStatus
from .state import DaemonContext

logger = logging.getLogger(__name__)

# Requests are tiny; anything longer is not a client of ours
MAX_REQUEST_BYTES = 64 * 1024


class IPCServer:
    """Serves add/remove/list/toggle-active requests against the sticky set."""

    def __init__(self, context: DaemonContext, socket_path: Path):
        """
        Initialize command server.

        Args:
            context: Shared daemon context
            socket_path: Unix socket to listen on
        """
        self.context = context
        self.socket_path = socket_path
        self.server: Optional[asyncio.AbstractServer] = None

    async def start(self):
        """Start listening."""
        # Ensure socket directory exists
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)

        # Remove stale socket from a previous run
        if self.socket_path.exists() or self.socket_path.is_symlink():
            self.socket_path.unlink()

        self.server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(self.socket_path),
            limit=MAX_REQUEST_BYTES
        )
        self.socket_path.chmod(0o600)

        logger.info(f"Command server listening on {self.socket_path}")

    async def stop(self):
        """Stop listening and remove the socket."""
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None

        if self.socket_path.exists():
            self.socket_path.unlink()

        logger.info("Command server stopped")

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Read one request, write one response, close."""
        try:
            try:
                data = await reader.readline()
            except ValueError:
                response = CommandResponse(
                    status=ResponseStatus.BAD_REQUEST,
                    message=f"Request exceeds {MAX_REQUEST_BYTES} bytes"
                )
            else:
                if not data:
                    logger.debug("Client disconnected without a request")
                    return
                response = await self.handle_line(data)

            writer.write(response.to_line())
            await writer.drain()

        except (ConnectionError, OSError) as e:
            logger.debug(f"Client went away: {e}")
        except Exception as e:
            logger.error(f"Client handler error: {e}", exc_info=True)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def handle_line(self, data: bytes) -> CommandResponse:
        """Decode and dispatch one request line."""
        try:
            request = CommandRequest.from_line(data)
        except ProtocolError as e:
            logger.warning(f"Bad request: {e.message}")
            return CommandResponse(status=ResponseStatus.BAD_REQUEST, message=e.message)

        logger.debug(f"Received request: {request.action.value} {request.window}")
        return await self.handle_request(request)

    async def handle_request(self, request: CommandRequest) -> CommandResponse:
        """Route a decoded request to its handler."""
        if request.action == CommandAction.ADD:
            return await self._handle_add(request.window)
        elif request.action == CommandAction.REMOVE:
            return await self._handle_remove(request.window)
        elif request.action == CommandAction.LIST:
            return await self._handle_list()
        elif request.action == CommandAction.TOGGLE_ACTIVE:
            return await self._handle_toggle_active()

        return CommandResponse(
            status=ResponseStatus.BAD_REQUEST,
            message=f"Unknown action: {request.action}"
        )

    async def _window_exists(self, window_id: int) -> Optional[bool]:
        """Ask niri whether a window is open.

        Returns:
            True/False, or None when niri cannot be asked right now
        """
        if not self.context.niri_connected:
            return None
        try:
            windows = await self.context.niri.windows()
        except ActionError as e:
            logger.warning(f"Could not verify window {window_id} with niri: {e.message}")
            return None
        return any(w.id == window_id for w in windows)

    async def _handle_add(self, window_id: int) -> CommandResponse:
        # check outside the sticky lock
        exists = await self._window_exists(window_id)
        if exists is False:
            return CommandResponse(
                status=ResponseStatus.NOT_FOUND,
                message=f"Window {window_id} not found in niri"
            )
        if exists is None:
            logger.info(f"Adding window {window_id} without niri verification")

        if await self.context.sticky.add(window_id):
            logger.info(f"Window {window_id} marked sticky")
            return CommandResponse(status=ResponseStatus.OK)
        return CommandResponse(status=ResponseStatus.ALREADY_PRESENT)

    async def _handle_remove(self, window_id: int) -> CommandResponse:
        if await self.context.sticky.remove(window_id):
            logger.info(f"Window {window_id} no longer sticky")
            return CommandResponse(status=ResponseStatus.OK)
        return CommandResponse(status=ResponseStatus.NOT_FOUND)

    async def _handle_list(self) -> CommandResponse:
        windows = await self.context.sticky.snapshot()
        return CommandResponse(status=ResponseStatus.OK, windows=windows)

    async def _handle_toggle_active(self) -> CommandResponse:
        if not self.context.niri_connected:
            return CommandResponse(
                status=ResponseStatus.ERROR,
                message="Not connected to niri"
            )

        try:
            focused = await self.context.niri.focused_window()
        except ActionError as e:
            logger.warning(f"Failed to get active window: {e.message}")
            return CommandResponse(
                status=ResponseStatus.ERROR,
                message=f"Failed to get active window: {e.message}"
            )

        if focused is None:
            return CommandResponse(status=ResponseStatus.ERROR, message="No focused window")

        if await self.context.sticky.toggle(focused.id):
            logger.info(f"Active window {focused.id} marked sticky")
            return CommandResponse(status=ResponseStatus.ADDED, windows=[focused.id])

        logger.info(f"Active window {focused.id} no longer sticky")
        return CommandResponse(status=ResponseStatus.REMOVED, windows=[focused.id])
