from collections import namedtuple

import netifaces
import pytest

from ssdp_discovery_protocol import IpVersion, get_network_interfaces, find_network_interface
from ssdp_discovery_protocol import util
from ssdp_discovery_protocol.util import interface_supports_multicast

IfStats = namedtuple("IfStats", ["isup", "duplex", "speed", "mtu", "flags"])

UP_MULTICAST = IfStats(True, 0, 1000, 1500, "up,broadcast,running,multicast")
UP_NO_MULTICAST = IfStats(True, 0, 0, 1500, "up,pointopoint,running,noarp")
DOWN = IfStats(False, 0, 0, 1500, "broadcast,multicast")
LOOPBACK_STATS = IfStats(True, 0, 0, 65536, "up,loopback,running")


@pytest.mark.parametrize("stats, expected", [
    (UP_MULTICAST, True),
    (UP_NO_MULTICAST, False),
    (DOWN, False),
    (IfStats(True, 0, 0, 1500, ""), True),
])
def test_interface_supports_multicast(stats, expected):
    assert interface_supports_multicast("eth0", {"eth0": stats}) == expected


def test_interface_unknown_to_psutil_is_assumed_capable():
    assert interface_supports_multicast("{5B0E1A52-GUID}", {"eth0": DOWN})


@pytest.fixture
def fake_host(monkeypatch):
    addresses = {
        "lo": {netifaces.AF_INET: [{"addr": "127.0.0.1"}], netifaces.AF_INET6: [{"addr": "::1"}]},
        "docker0": {netifaces.AF_INET: [{"addr": "172.17.0.1"}]},
        "tun0": {netifaces.AF_INET: [{"addr": "10.8.0.2"}]},
        "eth1": {netifaces.AF_INET: [{"addr": "192.168.2.5"}]},
        "eth0": {
            netifaces.AF_INET: [{"addr": "192.168.1.5"}],
            netifaces.AF_INET6: [{"addr": "fe80::1%eth0"}],
        },
        "eth2": {netifaces.AF_INET: [{"addr": "192.168.3.5"}]},
    }
    stats = {
        "lo": LOOPBACK_STATS,
        "docker0": UP_MULTICAST,
        "tun0": UP_NO_MULTICAST,
        "eth1": UP_MULTICAST,
        "eth0": UP_MULTICAST,
        "eth2": DOWN,
    }
    monkeypatch.setattr(util.netifaces, "interfaces", lambda: list(addresses))
    monkeypatch.setattr(util.netifaces, "ifaddresses", lambda name: addresses[name])
    monkeypatch.setattr(
        util.netifaces, "gateways",
        lambda: {"default": {netifaces.AF_INET: ("192.168.1.1", "eth0")}},
      )
    monkeypatch.setattr(util.psutil, "net_if_stats", lambda: stats)


def test_interfaces_are_ordered_gateway_first(fake_host):
    interfaces = get_network_interfaces(IpVersion.V4)
    assert [x.name for x in interfaces] == ["eth0", "tun0", "eth1", "docker0"]
    assert interfaces[0].addresses == ["192.168.1.5"]
    assert [x.supports_multicast for x in interfaces] == [True, False, True, True]


def test_interfaces_include_loopback_last(fake_host):
    interfaces = get_network_interfaces(include_loopback=True)
    assert interfaces[-1].name == "lo"
    assert interfaces[-1].is_loopback
    assert interfaces[0].addresses == ["192.168.1.5", "fe80::1%eth0"]


def test_find_network_interface(fake_host):
    assert find_network_interface("eth1").addresses == ["192.168.2.5"]
    assert find_network_interface("lo").is_loopback
    with pytest.raises(KeyError):
        find_network_interface("eth2")
