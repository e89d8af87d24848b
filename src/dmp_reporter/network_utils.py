"""Local network helpers for the reporter CLI."""

import ipaddress
import logging
import socket

import psutil

logger = logging.getLogger(__name__)

# Interface name prefixes that are almost never reachable from the internet
_VIRTUAL_PREFIXES = (
    "bridge",
    "docker",
    "veth",
    "vmnet",
    "vboxnet",
    "virbr",
    "tun",
    "tap",
    "utun",
    "vnic",
    "ppp",
)


def get_local_ip_addresses(include_ipv6: bool = False) -> list[str]:
    """
    List addresses of physical interfaces, skipping loopback and link-local.

    Used to hint at a value for ``game_address`` when it is left empty.
    """
    families = {socket.AF_INET}
    if include_ipv6:
        families.add(socket.AF_INET6)

    addresses: list[str] = []
    try:
        for interface_name, interface_addresses in psutil.net_if_addrs().items():
            if interface_name.lower().startswith(_VIRTUAL_PREFIXES):
                continue
            for address in interface_addresses:
                if address.family not in families:
                    continue
                try:
                    ip = ipaddress.ip_address(address.address.split("%")[0])
                except ValueError:
                    continue
                if ip.is_loopback or ip.is_link_local:
                    continue
                addresses.append(str(ip))
    except Exception as e:
        logger.warning(f"Failed to get local IP addresses: {e}")

    return addresses


def has_public_address(addresses: list[str]) -> bool:
    """True if any address is globally routable."""
    return any(ipaddress.ip_address(a).is_global for a in addresses)
