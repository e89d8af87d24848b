"""Shared fixtures: settings builders and a loopback server list receiver."""

from __future__ import annotations

import socket
import struct
import threading
import time
from dataclasses import replace as dataclass_replace

import pytest

from dmp_reporter import binary_serializer
from dmp_reporter.config import ReportingSettings, load_default_config
from dmp_reporter.host import StaticHost
from dmp_reporter.identity import ReportingIdentity, calculate_sha256_hash
from dmp_reporter.types import GameMode, HostInfo, ModControlMode, WarpMode

TEST_TOKEN_HASH = calculate_sha256_hash("test-token")


def make_host_info(**overrides) -> HostInfo:
    values = dict(
        server_name="Test Server",
        port=6702,
        protocol_version=46,
        program_version="v0.3.8.5",
        max_players=20,
        http_port=8081,
        mod_control=ModControlMode.ENABLED_STOP_INVALID_PART_SYNC,
        mod_control_sha="abc123",
        game_mode=GameMode.CAREER,
        cheats=False,
        warp_mode=WarpMode.SUBSPACE,
        universe_size=4096,
    )
    values.update(overrides)
    return HostInfo(**values)


def make_settings(endpoints, description: str = "A test server", **overrides) -> ReportingSettings:
    values = dict(
        endpoints=tuple(endpoints),
        connect_timeout=1.0,
        poll_interval=0.02,
        retry_delay=0.2,
        outage_retry_delay=0.2,
    )
    values.update(overrides)
    config = dataclass_replace(load_default_config(), **values)
    return ReportingSettings(
        config=config,
        identity=ReportingIdentity(token_hash=TEST_TOKEN_HASH),
        description=description,
    )


def closed_port() -> int:
    """A loopback port with nothing listening on it."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeReceiver:
    """Loopback TCP server that records every frame it receives, per connection."""

    def __init__(self):
        self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._server.bind(("127.0.0.1", 0))
        self._server.listen(8)
        self._server.settimeout(0.1)
        self.port = self._server.getsockname()[1]
        self.sessions: list[list[tuple[int, bytes]]] = []
        self.eof_seen: list[bool] = []
        self._clients: list[socket.socket] = []
        self._lock = threading.Lock()
        self._running = True
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()

    @property
    def endpoint(self) -> str:
        return f"127.0.0.1:{self.port}"

    def frames(self, session: int = -1) -> list[tuple[int, bytes]]:
        with self._lock:
            if not self.sessions:
                return []
            return list(self.sessions[session])

    def reports(self, session: int = -1) -> list[dict]:
        return [
            binary_serializer.decode_report(payload)
            for message_type, payload in self.frames(session)
            if message_type == binary_serializer.REPORTING_PROTOCOL_ID
        ]

    def session_count(self) -> int:
        with self._lock:
            return len(self.sessions)

    def drop_clients(self) -> None:
        """Abort every open connection (RST) to simulate a transport failure."""
        with self._lock:
            clients = list(self._clients)
            self._clients.clear()
        for client in clients:
            try:
                client.setsockopt(
                    socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0)
                )
            except OSError:
                pass
            client.close()

    def close(self) -> None:
        self._running = False
        self.drop_clients()
        self._thread.join(timeout=2.0)
        self._server.close()

    def _accept_loop(self) -> None:
        while self._running:
            try:
                client, _ = self._server.accept()
            except TimeoutError:
                continue
            except OSError:
                return
            with self._lock:
                index = len(self.sessions)
                self.sessions.append([])
                self.eof_seen.append(False)
                self._clients.append(client)
            threading.Thread(
                target=self._read_loop, args=(client, index), daemon=True
            ).start()

    def _read_loop(self, client: socket.socket, index: int) -> None:
        buffer = b""
        while True:
            try:
                data = client.recv(65536)
            except OSError:
                return
            if not data:
                with self._lock:
                    self.eof_seen[index] = True
                return
            buffer += data
            while True:
                message_type, payload, consumed = binary_serializer.deserialize_frame(buffer)
                if payload is None:
                    break
                buffer = buffer[consumed:]
                with self._lock:
                    self.sessions[index].append((message_type, payload))


@pytest.fixture
def receiver():
    r = FakeReceiver()
    yield r
    r.close()


@pytest.fixture
def static_host() -> StaticHost:
    return StaticHost(make_host_info())
