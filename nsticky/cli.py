"""
nsticky CLI

Usage:
    nsticky                      run the daemon
    nsticky add <window_id> [--json]
    nsticky remove <window_id> [--json]
    nsticky list [--json]
    nsticky toggle-active [--json]

Exit codes:
    0 - request handled (ok, already-present, not-found, added, removed)
    1 - daemon replied error or bad-request
    2 - daemon not reachable
"""

import json
import socket
import sys
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console

from .config import default_socket_path
from .models import CommandAction, CommandRequest, CommandResponse, ResponseStatus

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_UNREACHABLE = 2


class DaemonClient:
    """One-shot client for the nsticky command server."""

    def __init__(self, socket_path: Optional[Path] = None, timeout: float = 5.0):
        """
        Initialize daemon client.

        Args:
            socket_path: Command server socket (default: $XDG_RUNTIME_DIR/nsticky/ipc.sock)
            timeout: Socket timeout in seconds
        """
        self.socket_path = socket_path or default_socket_path()
        self.timeout = timeout

    def call(self, request: CommandRequest) -> CommandResponse:
        """
        Send one request and return the response.

        Raises:
            RuntimeError: If the daemon is not reachable or replies garbage
        """
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                sock.settimeout(self.timeout)
                sock.connect(str(self.socket_path))
                sock.sendall(request.to_line())

                response_data = b''
                while b'\n' not in response_data:
                    chunk = sock.recv(4096)
                    if not chunk:
                        break
                    response_data += chunk

        except socket.timeout:
            raise RuntimeError(f"Timeout talking to daemon ({self.timeout}s)")
        except FileNotFoundError:
            raise RuntimeError(
                f"Daemon socket not found: {self.socket_path}\n"
                "Start the daemon with: nsticky"
            )
        except ConnectionRefusedError:
            raise RuntimeError("Daemon not running. Start it with: nsticky")
        except OSError as e:
            raise RuntimeError(f"Failed to communicate with daemon: {e}")

        if not response_data:
            raise RuntimeError("Daemon closed the connection without replying")

        try:
            return CommandResponse.model_validate_json(response_data.split(b'\n', 1)[0])
        except ValidationError as e:
            raise RuntimeError(f"Invalid response from daemon: {e}")


_MESSAGES = {
    CommandAction.ADD: {
        ResponseStatus.OK: "Added",
        ResponseStatus.ALREADY_PRESENT: "Already in sticky list",
        ResponseStatus.NOT_FOUND: "Window not found in niri",
    },
    CommandAction.REMOVE: {
        ResponseStatus.OK: "Removed",
        ResponseStatus.NOT_FOUND: "Not in sticky list",
    },
    CommandAction.TOGGLE_ACTIVE: {
        ResponseStatus.ADDED: "Added active window to sticky",
        ResponseStatus.REMOVED: "Removed active window from sticky",
    },
}


def format_response(action: CommandAction, response: CommandResponse) -> str:
    """Human-readable line for a response."""
    if action == CommandAction.LIST and response.status == ResponseStatus.OK:
        return str(response.windows or [])

    text = _MESSAGES.get(action, {}).get(response.status)
    if text is None:
        text = response.status.value
        if response.message:
            text = f"{text}: {response.message}"
    return text


def _send(ctx: click.Context, request: CommandRequest, output_json: bool) -> None:
    console = Console()
    err_console = Console(stderr=True)
    client = DaemonClient(ctx.obj.get("socket_path"))

    try:
        response = client.call(request)
    except RuntimeError as e:
        err_console.print(f"Error: {e}", style="red", markup=False)
        sys.exit(EXIT_UNREACHABLE)

    if output_json:
        console.print_json(json.dumps(response.model_dump(mode="json", exclude_none=True)))
    elif response.is_success:
        console.print(format_response(request.action, response), highlight=False, markup=False)
    else:
        err_console.print(format_response(request.action, response), style="red", markup=False)

    sys.exit(EXIT_OK if response.is_success else EXIT_ERROR)


json_option = click.option('--json', 'output_json', is_flag=True, help='Print the raw JSON response')


@click.group(invoke_without_command=True)
@click.option(
    '--socket', 'socket_path',
    type=click.Path(path_type=Path),
    envvar='NSTICKY_SOCKET',
    help='Command server socket (default: $XDG_RUNTIME_DIR/nsticky/ipc.sock)'
)
@click.pass_context
def cli(ctx: click.Context, socket_path: Optional[Path]):
    """Keep niri windows visible on every workspace.

    Without a command, runs the daemon.
    """
    ctx.ensure_object(dict)
    ctx.obj["socket_path"] = socket_path

    if ctx.invoked_subcommand is None:
        _run_daemon(socket_path)


def _run_daemon(socket_path: Optional[Path]) -> None:
    from .daemon import main as daemon_main
    daemon_main(socket_path=socket_path)


@cli.command()
@click.pass_context
def daemon(ctx: click.Context):
    """Run the sticky window daemon."""
    _run_daemon(ctx.obj["socket_path"])


@cli.command()
@click.argument('window_id', type=click.IntRange(min=0))
@json_option
@click.pass_context
def add(ctx: click.Context, window_id: int, output_json: bool):
    """Add WINDOW_ID to the sticky list."""
    _send(ctx, CommandRequest(action=CommandAction.ADD, window=window_id), output_json)


@cli.command()
@click.argument('window_id', type=click.IntRange(min=0))
@json_option
@click.pass_context
def remove(ctx: click.Context, window_id: int, output_json: bool):
    """Remove WINDOW_ID from the sticky list."""
    _send(ctx, CommandRequest(action=CommandAction.REMOVE, window=window_id), output_json)


@cli.command(name='list')
@json_option
@click.pass_context
def list_windows(ctx: click.Context, output_json: bool):
    """List sticky window ids."""
    _send(ctx, CommandRequest(action=CommandAction.LIST), output_json)


@cli.command(name='toggle-active')
@json_option
@click.pass_context
def toggle_active(ctx: click.Context, output_json: bool):
    """Toggle stickiness of the focused window."""
    _send(ctx, CommandRequest(action=CommandAction.TOGGLE_ACTIVE), output_json)


if __name__ == '__main__':
    cli()
