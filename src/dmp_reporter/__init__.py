"""
DMP Server List Reporter

Background client that pushes a game server's live status (players, settings,
version) to server list receivers over a length-prefixed TCP protocol.

Main Classes:
    ServerListReporter: Lifecycle controller embedded by the game server
    ConnectionManager: Connects to the first reachable receiver endpoint
    OutboundQueue: Thread-safe FIFO of framed messages

Examples:
    # Run standalone (after installation)
    dmp-reporter --settings-dir ./settings --host-config host.toml

    # Embed in a game server
    from dmp_reporter import ServerListReporter, load_reporting_settings
    reporter = ServerListReporter(host, lambda: load_reporting_settings("settings"))
    reporter.on_server_start()
    reporter.on_player_joined("Alice")
"""

from .config import ReporterConfig, ReportingSettings, load_reporting_settings
from .connection import Connection, ConnectionManager
from .outbound_queue import OutboundQueue
from .reporter import ServerListReporter, get_version
from .types import (
    GameMode,
    HostInfo,
    ModControlMode,
    ServerDescriptor,
    SessionState,
    WarpMode,
)

# Export public API
__all__ = [
    # Reporter API
    "ServerListReporter",
    "get_version",
    # Networking
    "Connection",
    "ConnectionManager",
    "OutboundQueue",
    # Configuration
    "ReporterConfig",
    "ReportingSettings",
    "load_reporting_settings",
    # Data types
    "HostInfo",
    "ServerDescriptor",
    "SessionState",
    "ModControlMode",
    "GameMode",
    "WarpMode",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("dmp-server-list-reporter")
except PackageNotFoundError:
    __version__ = "unknown"
