"""Endpoint parsing and resolution for server list receivers.

Receivers are configured as ``host:port``, ``ipv4:port`` or ``[ipv6]:port``.
"""

import ipaddress
import logging
import socket
from collections.abc import Callable, Iterator
from typing import NamedTuple

logger = logging.getLogger(__name__)

Resolver = Callable[..., list]


class EndpointError(ValueError):
    """Raised when an endpoint string cannot be parsed or resolved."""

    def __init__(self, endpoint: str, reason: str) -> None:
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"{endpoint}: {reason}")


class Candidate(NamedTuple):
    """One concrete address to try for a configured endpoint."""

    endpoint: str
    family: int
    host: str
    port: int
    scope_id: int = 0

    @property
    def sockaddr(self) -> tuple:
        if self.family == socket.AF_INET6:
            return (self.host, self.port, 0, self.scope_id)
        return (self.host, self.port)


def parse_endpoint(address: str) -> tuple[str, int]:
    """
    Split an endpoint string into (host, port).

    Raises:
        EndpointError: If the string is malformed or the port is not in 1-65535.
    """
    address = address.strip()
    if "[" in address:
        start = address.index("[") + 1
        end = address.rfind("]")
        if end < start:
            raise EndpointError(address, "missing closing bracket")
        host = address[start:end]
        rest = address[end + 1 :]
        if not rest.startswith(":"):
            raise EndpointError(address, "missing port")
        port_text = rest[1:]
    else:
        host, sep, port_text = address.rpartition(":")
        if not sep:
            raise EndpointError(address, "missing port")

    if not host:
        raise EndpointError(address, "missing host")

    # int() alone would also take "+9001", "9_001" and non-ASCII digits
    if not (port_text.isascii() and port_text.isdigit()):
        raise EndpointError(address, f"invalid port {port_text!r}")
    port = int(port_text)
    if not 0 < port < 65536:
        raise EndpointError(address, f"port {port} out of range")

    return host, port


def resolve_endpoint(
    address: str, resolver: Resolver = socket.getaddrinfo
) -> Iterator[Candidate]:
    """
    Lazily yield connect candidates for one endpoint, in resolution order.

    IP literals yield a single candidate without a DNS lookup. Host names
    yield every address the resolver returns, skipping duplicates.

    Raises:
        EndpointError: On a malformed endpoint or a failed DNS lookup. Raised
            on first iteration, since this is a generator.
    """
    host, port = parse_endpoint(address)

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        ip = None

    if ip is not None:
        family = socket.AF_INET6 if ip.version == 6 else socket.AF_INET
        yield Candidate(address, family, str(ip), port)
        return

    try:
        infos = resolver(host, port, type=socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError, OSError) as e:
        raise EndpointError(address, f"DNS lookup failed: {e}") from e

    seen: set[tuple[int, str, int]] = set()
    for family, _type, _proto, _canonname, sockaddr in infos:
        if family not in (socket.AF_INET, socket.AF_INET6):
            continue
        # Link-local IPv6 results are only reachable through their scope id
        scope_id = sockaddr[3] if family == socket.AF_INET6 else 0
        key = (family, sockaddr[0], scope_id)
        if key in seen:
            continue
        seen.add(key)
        yield Candidate(address, family, sockaddr[0], port, scope_id)

    if not seen:
        logger.debug(f"{address} resolved to no usable addresses")
