"""A minimal niri IPC server for integration tests.

Speaks niri's line-delimited JSON: answers ``"EventStream"``,
``"FocusedWindow"``, ``"Windows"`` and ``{"Action": ...}`` requests and lets
tests push events to subscribed clients.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional


class FakeNiriServer:

    def __init__(self, path: Path) -> None:
        self.path = path
        self.windows: List[Dict[str, Any]] = []
        self.focused: Optional[Dict[str, Any]] = None
        self.actions: List[Dict[str, Any]] = []
        self.action_errors: Dict[int, str] = {}
        self.silent = False
        self.initial_events: List[Dict[str, Any]] = []
        # accept EventStream, then hang up at once
        self.drop_streams = False

        self.server: Optional[asyncio.AbstractServer] = None
        self.subscribers: List[asyncio.StreamWriter] = []
        self.writers: List[asyncio.StreamWriter] = []
        self.subscribed = asyncio.Event()
        self.action_received = asyncio.Event()
        self.connections = 0
        self.subscriptions = 0

    async def __aenter__(self) -> "FakeNiriServer":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    async def start(self) -> None:
        self.server = await asyncio.start_unix_server(self._handle, path=str(self.path))

    async def stop(self) -> None:
        if self.server:
            self.server.close()
        for writer in self.writers:
            writer.close()
        if self.server:
            await self.server.wait_closed()
            self.server = None

    async def emit(self, event: Dict[str, Any]) -> None:
        """Send one event to every subscriber."""
        for writer in self.subscribers:
            writer.write((json.dumps(event) + "\n").encode())
            await writer.drain()

    async def emit_raw(self, data: bytes) -> None:
        for writer in self.subscribers:
            writer.write(data)
            await writer.drain()

    async def end_streams(self) -> None:
        """Close every event stream, as niri does when it exits."""
        for writer in self.subscribers:
            writer.close()
        self.subscribers = []
        self.subscribed = asyncio.Event()

    def _reply(self, request: Any) -> Optional[Dict[str, Any]]:
        if request == "FocusedWindow":
            return {"Ok": {"FocusedWindow": self.focused}}
        if request == "Windows":
            return {"Ok": {"Windows": self.windows}}
        if isinstance(request, dict) and "Action" in request:
            self.actions.append(request["Action"])
            self.action_received.set()
            move = request["Action"].get("MoveWindowToWorkspace", {})
            error = self.action_errors.get(move.get("window_id"))
            if error:
                return {"Err": error}
            return {"Ok": "Handled"}
        return {"Err": f"unknown request {request!r}"}

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self.writers.append(writer)
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                request = json.loads(line)

                if request == "EventStream":
                    self.subscriptions += 1
                    writer.write(b'{"Ok":"Handled"}\n')
                    if self.drop_streams:
                        await writer.drain()
                        break
                    for event in self.initial_events:
                        writer.write((json.dumps(event) + "\n").encode())
                    await writer.drain()
                    self.subscribers.append(writer)
                    self.subscribed.set()
                    continue

                if self.silent:
                    continue

                writer.write((json.dumps(self._reply(request)) + "\n").encode())
                await writer.drain()
        except (ConnectionError, OSError):
            pass
        finally:
            writer.close()
