"""Tests for local address discovery."""

import socket
from collections import namedtuple

from dmp_reporter import network_utils

Addr = namedtuple("Addr", "family address netmask broadcast ptp")


def _fake_interfaces():
    return {
        "lo": [Addr(socket.AF_INET, "127.0.0.1", None, None, None)],
        "eth0": [
            Addr(socket.AF_INET, "192.168.1.20", None, None, None),
            Addr(socket.AF_INET6, "fe80::1%eth0", None, None, None),
            Addr(socket.AF_INET6, "2001:4860::8888", None, None, None),
        ],
        "docker0": [Addr(socket.AF_INET, "172.17.0.1", None, None, None)],
        "wlan0": [Addr(socket.AF_INET, "169.254.3.3", None, None, None)],
    }


def test_ipv4_only_by_default(monkeypatch):
    monkeypatch.setattr(network_utils.psutil, "net_if_addrs", _fake_interfaces)
    assert network_utils.get_local_ip_addresses() == ["192.168.1.20"]


def test_include_ipv6(monkeypatch):
    monkeypatch.setattr(network_utils.psutil, "net_if_addrs", _fake_interfaces)
    assert network_utils.get_local_ip_addresses(include_ipv6=True) == [
        "192.168.1.20",
        "2001:4860::8888",
    ]


def test_psutil_failure_returns_empty(monkeypatch):
    def broken():
        raise OSError("no interfaces")

    monkeypatch.setattr(network_utils.psutil, "net_if_addrs", broken)
    assert network_utils.get_local_ip_addresses() == []


def test_has_public_address():
    assert network_utils.has_public_address(["192.168.1.20", "8.8.8.8"]) is True
    assert network_utils.has_public_address(["192.168.1.20", "10.0.0.1"]) is False
    assert network_utils.has_public_address([]) is False
