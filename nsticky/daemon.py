"""Daemon entry point with systemd integration.

Runs the command server and the niri supervisor side by side. The supervisor
dials niri with exponential backoff, runs the reconciler until the event
stream ends or the control channel breaks, then reconnects. When niri stays
unreachable for ``max_reconnect_attempts`` dials the daemon exits non-zero.
"""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

try:
    from systemd import journal, daemon as sd_daemon
    SYSTEMD_AVAILABLE = True
except ImportError:
    SYSTEMD_AVAILABLE = False

from .config import DaemonConfig
from .errors import EventStreamClosed, TransportError
from .ipc_server import IPCServer
from .niri_client import NiriClient
from .reconciler import Reconciler
from .state import DaemonContext, StickySet

logger = logging.getLogger(__name__)


class DaemonHealthMonitor:
    """systemd readiness and watchdog notifications."""

    def __init__(self) -> None:
        self.watchdog_interval: Optional[float] = None
        self._setup_watchdog()

    def _setup_watchdog(self) -> None:
        """Detect watchdog interval from systemd environment."""
        if not SYSTEMD_AVAILABLE:
            return

        watchdog_usec = os.environ.get("WATCHDOG_USEC")
        if watchdog_usec:
            # ping at 1/3 of the timeout
            self.watchdog_interval = int(watchdog_usec) / 3_000_000
            logger.info(f"Systemd watchdog enabled: {self.watchdog_interval:.1f}s interval")

    def notify_ready(self) -> None:
        if SYSTEMD_AVAILABLE:
            sd_daemon.notify("READY=1")
            logger.info("Sent READY=1 to systemd")

    def notify_stopping(self) -> None:
        if SYSTEMD_AVAILABLE:
            sd_daemon.notify("STOPPING=1")

    async def watchdog_loop(self) -> None:
        if not self.watchdog_interval:
            return
        while True:
            sd_daemon.notify("WATCHDOG=1")
            await asyncio.sleep(self.watchdog_interval)


class NStickyDaemon:
    """Owns the shared context and the long-running tasks."""

    def __init__(self, config: DaemonConfig) -> None:
        self.config = config
        self.niri = NiriClient(config.niri_socket, request_timeout=config.request_timeout)
        self.context = DaemonContext(sticky=StickySet(), niri=self.niri)
        self.reconciler = Reconciler(self.context.sticky, self.niri)
        self.ipc_server = IPCServer(self.context, config.socket_path)
        self.health_monitor = DaemonHealthMonitor()
        self.shutdown_event = asyncio.Event()

    async def connect_with_retry(self) -> None:
        """Dial niri with exponential backoff.

        Raises:
            ConnectionError: If every attempt fails
        """
        max_attempts = self.config.max_reconnect_attempts
        delay = self.config.reconnect_initial_delay

        for attempt in range(1, max_attempts + 1):
            try:
                logger.info(f"Connecting to niri (attempt {attempt}/{max_attempts})")
                await self.niri.connect()
                return
            except ConnectionError as e:
                logger.warning(f"Connection attempt {attempt} failed: {e}")
                if attempt < max_attempts:
                    logger.debug(f"Waiting {delay:.1f}s before retry...")
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self.config.reconnect_max_delay)

        raise ConnectionError(f"Failed to connect to niri after {max_attempts} attempts")

    async def supervise(self) -> None:
        """Keep the reconciler running across niri disconnects.

        A session in which niri delivered no events counts as a failed attempt
        and backs off like a failed dial.

        Raises:
            ConnectionError: When niri cannot be reached any more, or keeps
                closing the event stream before sending anything
        """
        max_attempts = self.config.max_reconnect_attempts
        delay = self.config.reconnect_initial_delay
        empty_sessions = 0

        while True:
            await self.connect_with_retry()
            handled_before = self.reconciler.events_handled
            try:
                await self.reconciler.run()
            except EventStreamClosed as e:
                logger.warning(f"{e.message}; reconnecting")
            except TransportError as e:
                logger.warning(f"Control channel lost ({e.message}); reconnecting")
            finally:
                await self.niri.close()

            if self.reconciler.events_handled > handled_before:
                empty_sessions = 0
                delay = self.config.reconnect_initial_delay
            else:
                empty_sessions += 1
                if empty_sessions >= max_attempts:
                    raise ConnectionError(
                        f"niri closed the event stream {empty_sessions} times without sending events"
                    )
                logger.debug(f"No events this session ({empty_sessions}/{max_attempts}), waiting {delay:.1f}s")

            await asyncio.sleep(delay)
            if empty_sessions:
                delay = min(delay * 2, self.config.reconnect_max_delay)

    async def run(self) -> int:
        """Run until a shutdown signal or a fatal niri error.

        Returns:
            Exit code
        """
        await self.ipc_server.start()
        self.health_monitor.notify_ready()

        watchdog_task = asyncio.create_task(self.health_monitor.watchdog_loop())
        supervise_task = asyncio.create_task(self.supervise())
        shutdown_task = asyncio.create_task(self.shutdown_event.wait())

        try:
            done, pending = await asyncio.wait(
                [supervise_task, shutdown_task], return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (watchdog_task, supervise_task, shutdown_task):
                if not task.done():
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass
            await self.shutdown()

        if supervise_task in done and not supervise_task.cancelled():
            error = supervise_task.exception()
            if error is not None:
                logger.error(f"Fatal niri error: {error}")
                return 1
        return 0

    async def shutdown(self) -> None:
        """Stop the command server and close niri channels."""
        logger.info("Shutting down daemon...")
        self.health_monitor.notify_stopping()

        try:
            await asyncio.wait_for(self.ipc_server.stop(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Command server shutdown timed out after 5s (continuing)")

        await self.niri.close()
        logger.info("Daemon shutdown complete")

    def setup_signal_handlers(self) -> None:
        """SIGINT/SIGTERM trigger a graceful shutdown."""
        loop = asyncio.get_running_loop()

        def shutdown_handler(signum: int) -> None:
            logger.info(f"Received signal {signum}, initiating shutdown...")
            self.shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, shutdown_handler, sig)


def setup_logging() -> None:
    """Setup logging to systemd journal or stderr."""
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if SYSTEMD_AVAILABLE and os.environ.get("JOURNAL_STREAM"):
        handler = journal.JournalHandler(SYSLOG_IDENTIFIER="nsticky")
    else:
        handler = logging.StreamHandler(sys.stderr)

    formatter = logging.Formatter(
        "%(levelname)s [%(name)s] %(message)s"
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logger.info(f"Logging configured: level={log_level}")


async def main_async(config: Optional[DaemonConfig] = None, socket_path: Optional[Path] = None) -> int:
    """Async main function.

    Args:
        config: Daemon settings; read from the environment when omitted
        socket_path: Command server socket overriding the configured one

    Returns:
        Exit code (0 = success, non-zero = error)
    """
    try:
        config = config or DaemonConfig.from_env()
        if socket_path is not None:
            config = config.model_copy(update={"socket_path": Path(socket_path)})
        daemon = NStickyDaemon(config)
        daemon.setup_signal_handlers()
        return await daemon.run()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


def main(socket_path: Optional[Path] = None) -> None:
    """Main entry point."""
    setup_logging()

    logger.info("nsticky daemon starting...")
    logger.info(f"PID: {os.getpid()}")

    try:
        exit_code = asyncio.run(main_async(socket_path=socket_path))
        sys.exit(exit_code)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)
