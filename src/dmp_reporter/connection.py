"""
Connection management for server list receivers.

Tries every configured endpoint in order and hands back the first live TCP
connection. A total failure is reported as None so the caller can back off.
"""

import logging
import select
import socket
import threading
from collections.abc import Callable, Sequence

from .endpoint import Candidate, EndpointError, Resolver, resolve_endpoint

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 5.0

SocketFactory = Callable[[int], socket.socket]


class ConnectionClosedError(ConnectionError):
    """Raised when the receiver closed the connection."""


def _default_socket_factory(family: int) -> socket.socket:
    return socket.socket(family, socket.SOCK_STREAM)


class Connection:
    """An established connection to one receiver address."""

    def __init__(self, sock: socket.socket, candidate: Candidate):
        self._sock = sock
        self._candidate = candidate
        self._closed = False
        self._lock = threading.Lock()

    @property
    def endpoint(self) -> str:
        """Configured endpoint string this connection came from."""
        return self._candidate.endpoint

    @property
    def address(self) -> str:
        """Resolved address as host:port."""
        host = self._candidate.host
        if self._candidate.family == socket.AF_INET6:
            host = f"[{host}]"
        return f"{host}:{self._candidate.port}"

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, frame: bytes) -> None:
        """Write a whole frame. Raises OSError on any transport failure."""
        self._sock.sendall(frame)

    def check_alive(self) -> None:
        """
        Detect an orderly close by the receiver without blocking.

        The protocol is one-directional, so anything readable is either EOF
        or data we discard.
        """
        if self._closed:
            raise ConnectionClosedError(f"Connection to {self.address} is closed")
        try:
            readable, _, _ = select.select([self._sock], [], [], 0)
        except ValueError:
            # fileno() is -1 once the socket was closed from another thread
            raise ConnectionClosedError(f"Connection to {self.address} is closed") from None
        if not readable:
            return
        data = self._sock.recv(4096)
        if not data:
            raise ConnectionClosedError(f"{self.endpoint} ({self.address}) closed the connection")
        logger.debug(f"Discarded {len(data)} unexpected bytes from {self.address}")

    def close(self) -> None:
        """Close the socket. Safe to call more than once and from any thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self._sock.close()
        except OSError:
            pass


class ConnectionManager:
    """Connects to the first reachable receiver out of an ordered endpoint list."""

    def __init__(
        self,
        connect_timeout: float = CONNECT_TIMEOUT,
        resolver: Resolver = socket.getaddrinfo,
        socket_factory: SocketFactory = _default_socket_factory,
        cancel_event: threading.Event | None = None,
    ):
        """
        Args:
            connect_timeout: Seconds allowed for each candidate address
            resolver: getaddrinfo-compatible callable used for host names
            socket_factory: Creates an unconnected stream socket for a family
            cancel_event: When set, remaining candidates are skipped
        """
        self._connect_timeout = connect_timeout
        self._resolver = resolver
        self._socket_factory = socket_factory
        self._cancel_event = cancel_event or threading.Event()

    def connect(self, endpoints: Sequence[str]) -> Connection | None:
        """Return the first successful connection, or None if every endpoint failed."""
        for endpoint in endpoints:
            if self._cancel_event.is_set():
                return None
            try:
                for candidate in resolve_endpoint(endpoint, self._resolver):
                    if self._cancel_event.is_set():
                        return None
                    connection = self._try_candidate(candidate)
                    if connection is not None:
                        return connection
            except EndpointError as e:
                logger.warning(f"Error connecting to {endpoint}: {e.reason}")
        return None

    def _try_candidate(self, candidate: Candidate) -> Connection | None:
        """One bounded connect attempt."""
        sock = None
        try:
            sock = self._socket_factory(candidate.family)
            sock.settimeout(self._connect_timeout)
            sock.connect(candidate.sockaddr)
            # Writes are bounded too, so a stalled receiver cannot wedge the session
            sock.settimeout(self._connect_timeout)
        except OSError as e:
            logger.info(
                f"Failed to connect to {candidate.endpoint} ({candidate.host}): {e}"
            )
            if sock is not None:
                sock.close()
            return None

        connection = Connection(sock, candidate)
        logger.info(f"Connected to {candidate.endpoint} ({connection.address})")
        return connection
