"""
Server list reporter lifecycle.

ServerListReporter is the object a game server embeds: it receives host
events, keeps the player list, and runs one background worker that connects
to a receiver, runs a session, and reconnects after a cooldown.

Nothing raised inside the worker reaches the host; failures are logged.
"""

import argparse
import logging
import signal
import socket
import sys
import threading
import time
from collections.abc import Callable
from functools import lru_cache, partial
from pathlib import Path

from . import binary_serializer, network_utils
from .config import ReportingSettings, get_config_overrides, load_reporting_settings
from .connection import Connection, ConnectionManager
from .endpoint import Resolver
from .events import EventHandler
from .host import (
    CommandRegistry,
    ConsoleCommands,
    HostServer,
    StaticHost,
    host_info_from_dict,
)
from .logging_utils import configure_logging_from_config
from .outbound_queue import OutboundQueue
from .session import Session, SessionEnd
from .types import SessionState, build_descriptor

logger = logging.getLogger(__name__)

RELOAD_COMMAND = "reloadreporter"
RELOAD_COMMAND_DESCRIPTION = "Reload the reporting plugin settings"


class ServerListReporter:
    """
    Pushes full server status reports to the configured server list receivers.

    Design: producers (host callbacks) only build frames and enqueue them;
    the worker thread is the sole owner of the socket and the sole consumer
    of the queue.
    """

    def __init__(
        self,
        host: HostServer,
        settings_loader: Callable[[], ReportingSettings],
        clock: Callable[[], float] = time.monotonic,
        resolver: Resolver = socket.getaddrinfo,
    ):
        """
        Args:
            host: Source of live server metadata
            settings_loader: Builds a fresh settings value; called now and on reload
            clock: Monotonic clock used for heartbeat timing
            resolver: getaddrinfo-compatible callable for endpoint host names
        """
        self._host = host
        self._settings_loader = settings_loader
        self._settings = settings_loader()
        self._clock = clock
        self._resolver = resolver

        self._queue = OutboundQueue()

        self._players: list[str] = []
        self._players_lock = threading.Lock()

        # Threading
        self._lifecycle_lock = threading.RLock()
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._connection: Connection | None = None
        self._connection_lock = threading.Lock()
        self._state = SessionState.STOPPED
        self._state_lock = threading.Lock()

        # Event handlers
        self.on_connected = EventHandler("on_connected")
        self.on_disconnected = EventHandler("on_disconnected")
        self.on_reloaded = EventHandler("on_reloaded")

    # Properties
    @property
    def settings(self) -> ReportingSettings:
        """Settings currently in effect."""
        return self._settings

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def players(self) -> list[str]:
        """Copy of the current player list."""
        with self._players_lock:
            return list(self._players)

    @property
    def outbound_queue(self) -> OutboundQueue:
        return self._queue

    # Host hooks
    def on_server_start(self) -> None:
        self.start()

    def on_server_stop(self) -> None:
        self.stop()

    def on_player_joined(self, player_name: str) -> None:
        with self._players_lock:
            self._players.append(player_name)
        self.report()

    def on_player_left(self, player_name: str) -> None:
        with self._players_lock:
            if player_name in self._players:
                self._players.remove(player_name)
        self.report()

    def register_commands(self, registry: CommandRegistry) -> None:
        """Register the operator reload command with the host."""
        registry.register_command(
            RELOAD_COMMAND, self.reload, RELOAD_COMMAND_DESCRIPTION
        )

    # Reporting
    def report(self) -> bool:
        """Queue a full status report. Returns False if it could not be built."""
        frame = self._build_report_frame()
        if frame is None:
            return False
        self._queue.enqueue(frame)
        return True

    def _build_report_frame(self) -> bytes | None:
        settings = self._settings
        players = self.players
        if len(players) == 1:
            logger.debug("Sending report: 1 player.")
        else:
            logger.debug(f"Sending report: {len(players)} players.")
        try:
            descriptor = build_descriptor(
                self._host.get_host_info(),
                settings.config,
                settings.description,
                players,
            )
            return binary_serializer.serialize_report(
                settings.identity.token_hash, descriptor
            )
        except binary_serializer.EncodingError as e:
            logger.error(f"Skipping report, encoding failed: {e}")
        except Exception as e:
            logger.error(f"Skipping report, could not read server state: {e}")
        return None

    # Lifecycle
    def start(self) -> None:
        """Start the background worker. A no-op while a worker is already running."""
        with self._lifecycle_lock:
            if self.is_running:
                logger.warning("Reporter already running; stop it before starting again")
                return

            self._stop_event = threading.Event()
            with self._state_lock:
                self._state = SessionState.CONNECTING
            self._thread = threading.Thread(
                target=self._reporter_main,
                args=(self._stop_event, self._settings),
                name="dmp-reporter",
                daemon=True,
            )
            self._thread.start()
            logger.info("Reporter started")

    def stop(self, timeout: float | None = None) -> None:
        """
        Cancel the worker and close any open connection.

        Waits at most ``timeout`` seconds for the worker to exit; by default
        slightly longer than one connection attempt.
        """
        with self._lifecycle_lock:
            thread = self._thread
            if thread is None:
                return

            logger.info("Stopping reporter")
            self._stop_event.set()
            self._queue.wake()
            with self._connection_lock:
                connection = self._connection
            if connection is not None:
                connection.close()

            if timeout is None:
                timeout = self._settings.config.connect_timeout + 1.0
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Reporter worker did not exit within {timeout:g}s")

            self._thread = None
            with self._state_lock:
                self._state = SessionState.STOPPED

    def reload(self, command_text: str = "") -> None:
        """Stop, load fresh settings, and start again.

        If loading fails the previous settings stay in effect.
        """
        with self._lifecycle_lock:
            self.stop()
            try:
                settings = self._settings_loader()
            except Exception as e:
                logger.error(f"Failed to reload reporter settings, keeping previous: {e}")
            else:
                self._settings = settings
                logger.info("Reporter settings reloaded")
                self.on_reloaded.invoke(settings)
            self.start()

    # Worker
    def _set_state(self, state: SessionState, stop_event: threading.Event) -> None:
        with self._state_lock:
            # A cancelled worker must not overwrite the state of its successor
            if not stop_event.is_set():
                self._state = state

    def _reporter_main(
        self, stop_event: threading.Event, settings: ReportingSettings
    ) -> None:
        config = settings.config
        manager = ConnectionManager(
            connect_timeout=config.connect_timeout,
            resolver=self._resolver,
            cancel_event=stop_event,
        )

        while not stop_event.is_set():
            self._set_state(SessionState.CONNECTING, stop_event)
            try:
                connection = manager.connect(config.endpoints)
            except Exception as e:
                logger.error(f"Unexpected error while connecting: {e}")
                connection = None

            if connection is None:
                if stop_event.is_set():
                    break
                logger.warning(
                    f"All reporters are down, trying again in {config.outage_retry_delay:g} seconds"
                )
                stop_event.wait(config.outage_retry_delay)
                continue

            outcome = self._run_session(connection, stop_event, settings)
            if outcome is SessionEnd.STOPPED or stop_event.is_set():
                break

            logger.info(f"Reconnecting in {config.retry_delay:g} seconds...")
            stop_event.wait(config.retry_delay)

        logger.debug("Reporter worker exiting")

    def _run_session(
        self,
        connection: Connection,
        stop_event: threading.Event,
        settings: ReportingSettings,
    ) -> SessionEnd:
        with self._connection_lock:
            if stop_event.is_set():
                connection.close()
                return SessionEnd.STOPPED
            self._connection = connection

        self.on_connected.invoke(connection.endpoint, connection.address)
        session = Session(
            connection,
            self._queue,
            self._build_report_frame,
            stop_event,
            heartbeat_interval=settings.config.heartbeat_interval,
            poll_interval=settings.config.poll_interval,
            clock=self._clock,
        )
        self._set_state(SessionState.ACTIVE, stop_event)
        try:
            outcome = session.run()
        except Exception as e:
            logger.error(f"Unexpected error in reporter session: {e}")
            outcome = SessionEnd.TRANSPORT_ERROR
        finally:
            self._set_state(SessionState.CLOSING, stop_event)
            connection.close()
            with self._connection_lock:
                self._connection = None

        self.on_disconnected.invoke(connection.endpoint, outcome.value)
        return outcome


@lru_cache(maxsize=1)
def get_version() -> str:
    """
    Return the reporter version.
    Priority:
      1) importlib.metadata for 'dmp-server-list-reporter' (when installed)
      2) parse nearest pyproject.toml (when running from source)
      3) 'unknown'
    """
    import importlib.metadata as im
    import tomllib

    try:
        return im.version("dmp-server-list-reporter")
    except im.PackageNotFoundError:
        pass

    for parent in Path(__file__).resolve().parents:
        toml_path = parent / "pyproject.toml"
        if toml_path.exists():
            data = tomllib.loads(toml_path.read_text(encoding="utf-8"))
            v = (data.get("project") or {}).get("version")
            if v:
                return v
            break

    return "unknown"


def _console_loop(commands: ConsoleCommands, stop: threading.Event) -> None:
    """Read operator commands from stdin until EOF."""
    for line in sys.stdin:
        if stop.is_set():
            return
        try:
            commands.dispatch(line)
        except Exception as e:
            logger.error(f"Command failed: {e}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="DMP Server List Reporter")
    parser.add_argument(
        "--settings-dir",
        type=Path,
        default=Path("."),
        help="Directory holding ReportingSettings.toml and the token file (default: .)",
    )
    parser.add_argument(
        "--host-config",
        type=Path,
        default=None,
        help="TOML file with a [host] table describing the game server",
    )
    parser.add_argument(
        "--endpoint",
        action="append",
        default=None,
        help="Receiver endpoint (host:port); repeat to override the configured list",
    )
    parser.add_argument(
        "--console",
        action="store_true",
        help=f"Read operator commands (e.g. {RELOAD_COMMAND}) from stdin",
    )
    parser.add_argument("--log-dir", type=Path, default=None, help="Enable JSON file logging")
    parser.add_argument(
        "--log-level-console",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Console log level",
    )
    parser.add_argument(
        "--log-json-console", action="store_true", help="Emit console logs as JSON"
    )
    parser.add_argument("--log-rotation", default=None, help="loguru rotation rule")
    parser.add_argument("--log-retention", default=None, help="loguru retention rule")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {get_version()}",
        help="Show version and exit",
    )

    args = parser.parse_args(argv)

    if args.host_config is not None:
        host = StaticHost.from_toml(args.host_config)
    else:
        host = StaticHost(host_info_from_dict({}))

    reporter = ServerListReporter(
        host, partial(load_reporting_settings, args.settings_dir, args)
    )
    config = reporter.settings.config
    configure_logging_from_config(config)

    logger.info("=" * 80)
    logger.info("DMP Server List Reporter Starting")
    logger.info("=" * 80)
    logger.info(f"  Version: {get_version()}")
    logger.info(f"  Settings: {args.settings_dir.resolve()}")
    logger.info(f"  Server: {host.get_host_info().server_name}")
    for endpoint in config.endpoints:
        logger.info(f"  Receiver: {endpoint}")
    if not config.game_address:
        local_ips = network_utils.get_local_ip_addresses()
        if local_ips and not network_utils.has_public_address(local_ips):
            joined = ", ".join(local_ips)
            logger.info(
                f"  game_address is unset; receivers will use your public IP "
                f"(local addresses: {joined})"
            )
    for override in get_config_overrides(config):
        logger.info(f"  {override.key}: {override.new_value}")
    logger.info("=" * 80)

    for player_name in host.players:
        reporter.on_player_joined(player_name)

    # [logging] changes apply on reload, whether from SIGHUP or the console
    reporter.on_reloaded.add_listener(
        lambda settings: configure_logging_from_config(settings.config)
    )

    commands = ConsoleCommands()
    reporter.register_commands(commands)

    reload_requested = threading.Event()
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, lambda signum, frame: reload_requested.set())

    console_stop = threading.Event()
    if args.console:
        threading.Thread(
            target=_console_loop, args=(commands, console_stop), daemon=True
        ).start()

    try:
        reporter.on_server_start()
        logger.info("Reporter running. Press Ctrl+C to stop.")
        while True:
            try:
                time.sleep(1)
            except KeyboardInterrupt:
                logger.info("Received interrupt signal (Ctrl+C)...")
                break
            if reload_requested.is_set():
                reload_requested.clear()
                reporter.reload()
    finally:
        console_stop.set()
        try:
            reporter.on_server_stop()
        except Exception as e:
            logger.error(f"Error during reporter shutdown: {e}")
        logger.info("Reporter shutdown complete.")
