"""
Interfaces the reporter consumes from the embedding game server.

Also provides StaticHost and ConsoleCommands, a file-driven host and a tiny
command surface used by the standalone CLI.
"""

import logging
import tomllib
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from .types import GameMode, HostInfo, ModControlMode, WarpMode

logger = logging.getLogger(__name__)

CommandHandler = Callable[[str], None]


class HostServer(Protocol):
    """Live metadata source. Called from the reporter worker and from event hooks."""

    def get_host_info(self) -> HostInfo: ...


class CommandRegistry(Protocol):
    """Operator command surface of the host."""

    def register_command(
        self, name: str, handler: CommandHandler, description: str
    ) -> None: ...


def _enum_value(enum_cls, value: Any):
    if isinstance(value, str):
        try:
            return enum_cls[value.upper()]
        except KeyError:
            raise ValueError(f"Unknown {enum_cls.__name__} {value!r}") from None
    return enum_cls(value)


def host_info_from_dict(data: dict[str, Any]) -> HostInfo:
    """
    Build HostInfo from a plain mapping (e.g. a TOML ``[host]`` table).

    Enum fields accept either the member name or its ordinal.
    """
    return HostInfo(
        server_name=str(data.get("server_name", "DMP Server")),
        port=int(data.get("port", 6702)),
        protocol_version=int(data.get("protocol_version", 0)),
        program_version=str(data.get("program_version", "")),
        max_players=int(data.get("max_players", 20)),
        http_port=int(data.get("http_port", 0)),
        mod_control=_enum_value(ModControlMode, data.get("mod_control", 0)),
        mod_control_sha=str(data.get("mod_control_sha", "")),
        game_mode=_enum_value(GameMode, data.get("game_mode", 0)),
        cheats=bool(data.get("cheats", False)),
        warp_mode=_enum_value(WarpMode, data.get("warp_mode", WarpMode.SUBSPACE)),
        universe_size=int(data.get("universe_size", 0)),
    )


class StaticHost:
    """Host whose metadata comes from a TOML file instead of a running game server."""

    def __init__(self, host_info: HostInfo, players: list[str] | None = None):
        self._host_info = host_info
        self.players = list(players or [])

    @classmethod
    def from_toml(cls, path: Path) -> "StaticHost":
        with open(path, "rb") as f:
            data = tomllib.load(f)
        table = data.get("host", data)
        return cls(host_info_from_dict(table), players=table.get("players", []))

    def get_host_info(self) -> HostInfo:
        return self._host_info


class ConsoleCommands:
    """Minimal command registry that dispatches ``name [args]`` lines."""

    def __init__(self):
        self._commands: dict[str, tuple[CommandHandler, str]] = {}

    def register_command(
        self, name: str, handler: CommandHandler, description: str
    ) -> None:
        self._commands[name] = (handler, description)

    @property
    def commands(self) -> dict[str, str]:
        """Registered command names and their descriptions."""
        return {name: description for name, (_, description) in self._commands.items()}

    def dispatch(self, line: str) -> bool:
        """Run the command named by the first word. Returns False if unknown."""
        name, _, rest = line.strip().partition(" ")
        if not name:
            return False
        entry = self._commands.get(name)
        if entry is None:
            logger.warning(f"Unknown command: {name}")
            return False
        handler, _ = entry
        handler(rest)
        return True
