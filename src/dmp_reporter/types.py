"""
Data types for the server list reporter.

Snapshots are immutable: a fresh ServerDescriptor is built for every report.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum


class ModControlMode(IntEnum):
    DISABLED = 0
    ENABLED_STOP_INVALID_PART_SYNC = 1
    ENABLED_STOP_INVALID_PART_LAUNCH = 2


class GameMode(IntEnum):
    SANDBOX = 0
    SCIENCE = 1
    CAREER = 2


class WarpMode(IntEnum):
    MCW_FORCE = 0
    MCW_VOTE = 1
    MCW_LOWEST = 2
    SUBSPACE_SIMPLE = 3
    SUBSPACE = 4
    NONE = 5


class SessionState(Enum):
    """Reporter worker state."""

    STOPPED = "stopped"
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"


@dataclass(frozen=True)
class HostInfo:
    """Live metadata exposed by the embedding game server."""

    server_name: str
    port: int
    protocol_version: int
    program_version: str
    max_players: int
    http_port: int = 0
    mod_control: ModControlMode = ModControlMode.DISABLED
    mod_control_sha: str = ""
    game_mode: GameMode = GameMode.SANDBOX
    cheats: bool = False
    warp_mode: WarpMode = WarpMode.SUBSPACE
    universe_size: int = 0


@dataclass(frozen=True)
class ServerDescriptor:
    """Complete server status encoded into one report."""

    server_name: str
    description: str
    port: int
    game_address: str
    protocol_version: int
    program_version: str
    max_players: int
    mod_control: ModControlMode
    mod_control_sha: str
    game_mode: GameMode
    cheats: bool
    warp_mode: WarpMode
    universe_size: int
    banner: str
    homepage: str
    http_port: int
    admin: str
    team: str
    location: str
    fixed_ip: bool
    players: tuple[str, ...] = field(default_factory=tuple)


def build_descriptor(host_info: HostInfo, config, description: str, players) -> ServerDescriptor:
    """Combine host state, reporter settings and the player list into a descriptor."""
    return ServerDescriptor(
        server_name=host_info.server_name,
        description=description,
        port=host_info.port,
        game_address=config.game_address,
        protocol_version=host_info.protocol_version,
        program_version=host_info.program_version,
        max_players=host_info.max_players,
        mod_control=host_info.mod_control,
        mod_control_sha=host_info.mod_control_sha,
        game_mode=host_info.game_mode,
        cheats=host_info.cheats,
        warp_mode=host_info.warp_mode,
        universe_size=host_info.universe_size,
        banner=config.banner,
        homepage=config.homepage,
        http_port=host_info.http_port,
        admin=config.admin,
        team=config.team,
        location=config.location,
        fixed_ip=config.fixed_ip,
        players=tuple(players),
    )
