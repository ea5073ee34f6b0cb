#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
NetworkInterface -- A read-only description of a local network interface that sockets can be bound to.
"""

from __future__ import annotations

import socket
from ipaddress import ip_address

from .internal_types import *
from .protocol_version import IpVersion

class NetworkInterface:
    """A snapshot of one local network interface and its bound addresses.

    Instances are normally produced by util.get_network_interfaces(), but may be
    constructed directly by callers (and tests) that resolve interfaces themselves.
    """

    name: str
    """The OS name of the interface; e.g., "eth0"."""

    addresses: List[str]
    """All unicast addresses bound to the interface, IPv4 and IPv6 mixed, in preference order.
       IPv6 link-local addresses may carry a "%<scope>" suffix."""

    is_loopback: bool
    """True if this is a loopback interface."""

    supports_multicast: bool
    """True if the interface is able to send and receive multicast datagrams."""

    def __init__(
            self,
            name: str,
            addresses: Iterable[str],
            is_loopback: Optional[bool]=None,
            supports_multicast: bool=True,
          ) -> None:
        self.name = name
        self.addresses = list(addresses)
        if is_loopback is None:
            is_loopback = len(self.addresses) > 0 and all(_is_loopback_address(a) for a in self.addresses)
        self.is_loopback = is_loopback
        self.supports_multicast = supports_multicast

    def addresses_for(self, ip_version: IpVersion) -> List[str]:
        """Returns the addresses of the requested IP family, in preference order."""
        want_v6 = ip_version == IpVersion.V6
        return [a for a in self.addresses if (':' in a) == want_v6]

    def has_address_for(self, ip_version: IpVersion) -> bool:
        return len(self.addresses_for(ip_version)) > 0

    @property
    def index(self) -> int:
        """The OS interface index, or 0 if the OS does not know the name."""
        try:
            return socket.if_nametoindex(self.name)
        except OSError:
            return 0

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, NetworkInterface):
            return False
        return self.name == other.name and self.addresses == other.addresses

    def __hash__(self) -> int:
        return hash((self.name, tuple(self.addresses)))

    def __str__(self) -> str:
        return f"NetworkInterface({self.name!r}, addresses={self.addresses})"

    def __repr__(self) -> str:
        return str(self)

def _is_loopback_address(address: str) -> bool:
    try:
        return ip_address(address.split('%', 1)[0]).is_loopback
    except ValueError:
        return False
