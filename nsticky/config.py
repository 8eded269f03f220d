"""Runtime configuration for the nsticky daemon and CLI.

All settings come from environment variables so the daemon can run unchanged
under a systemd user unit or from a niri ``spawn-at-startup`` line.
"""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)


def default_socket_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Command server socket path.

    ``$NSTICKY_SOCKET`` wins; otherwise ``$XDG_RUNTIME_DIR/nsticky/ipc.sock``.
    """
    env = os.environ if environ is None else environ
    if env.get("NSTICKY_SOCKET"):
        return Path(env["NSTICKY_SOCKET"])
    runtime_dir = env.get("XDG_RUNTIME_DIR") or f"/run/user/{os.getuid()}"
    return Path(runtime_dir) / "nsticky" / "ipc.sock"


class DaemonConfig(BaseModel):
    """Daemon settings."""

    niri_socket: Optional[Path] = Field(None, description="niri IPC socket ($NIRI_SOCKET)")
    socket_path: Path = Field(default_factory=lambda: default_socket_path(), description="Command server socket")
    request_timeout: float = Field(5.0, gt=0, description="Seconds to wait for a niri reply")
    max_reconnect_attempts: int = Field(10, ge=1, description="Consecutive failed dials before exiting")
    reconnect_initial_delay: float = Field(0.1, gt=0, description="First backoff delay in seconds")
    reconnect_max_delay: float = Field(5.0, gt=0, description="Backoff delay cap in seconds")

    @model_validator(mode='after')
    def validate_backoff(self):
        if self.reconnect_max_delay < self.reconnect_initial_delay:
            raise ValueError("reconnect_max_delay must be >= reconnect_initial_delay")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DaemonConfig":
        """Build config from environment variables.

        Raises:
            pydantic.ValidationError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ
        values = {"socket_path": default_socket_path(env)}

        if env.get("NIRI_SOCKET"):
            values["niri_socket"] = env["NIRI_SOCKET"]

        mapping = {
            "NSTICKY_REQUEST_TIMEOUT": "request_timeout",
            "NSTICKY_MAX_RECONNECT_ATTEMPTS": "max_reconnect_attempts",
            "NSTICKY_RECONNECT_INITIAL_DELAY": "reconnect_initial_delay",
            "NSTICKY_RECONNECT_MAX_DELAY": "reconnect_max_delay",
        }
        for var, field in mapping.items():
            if env.get(var):
                values[field] = env[var]

        config = cls(**values)
        logger.debug(f"Loaded config: {config.model_dump()}")
        return config
