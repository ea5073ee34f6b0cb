#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
UPnP protocol versions and IP versions, and the multicast groups they select.
"""

from __future__ import annotations

import socket
from enum import Enum, IntEnum

from .internal_types import *
from .constants import (
    SSDP_MULTICAST_ADDRESS,
    SSDP_MULTICAST_ADDRESS_V6_LINK_LOCAL,
    SSDP_MULTICAST_ADDRESS_V6_SITE_LOCAL,
    SSDP_PORT,
    DEFAULT_PACKET_TTL,
    DEFAULT_PACKET_TTL_V10,
  )

class ProtocolVersion(IntEnum):
    """The UPnP Device Architecture version. Ordered, so that "version >= V11" reads naturally."""
    V10 = 10
    V11 = 11
    V20 = 20

    @property
    def version_string(self) -> str:
        """The dotted form used in USER-AGENT/SERVER headers; e.g., "1.1"."""
        return f"{self.value // 10}.{self.value % 10}"

    @property
    def default_packet_ttl(self) -> int:
        return DEFAULT_PACKET_TTL_V10 if self == ProtocolVersion.V10 else DEFAULT_PACKET_TTL

    @classmethod
    def parse(cls, value: str) -> ProtocolVersion:
        """Parse "1.0", "1.1" or "2.0" (or the enum names "V10", etc.)."""
        s = value.strip()
        for v in cls:
            if s == v.version_string or s.upper() == v.name:
                return v
        raise ValueError(f"Unknown UPnP version: {value!r}")

    def __str__(self) -> str:
        return self.version_string

class IpVersion(Enum):
    V4 = 4
    V6 = 6

    @property
    def address_family(self) -> socket.AddressFamily:
        return socket.AF_INET6 if self == IpVersion.V6 else socket.AF_INET

    def __str__(self) -> str:
        return f"IPv{self.value}"

def multicast_groups(version: ProtocolVersion, ip_version: IpVersion) -> List[str]:
    """Returns the multicast groups that a listener must join. The first group is also the
       destination of multicast searches."""
    if ip_version == IpVersion.V4:
        return [ SSDP_MULTICAST_ADDRESS ]
    groups = [ SSDP_MULTICAST_ADDRESS_V6_LINK_LOCAL ]
    if version >= ProtocolVersion.V11:
        groups.append(SSDP_MULTICAST_ADDRESS_V6_SITE_LOCAL)
    return groups

def multicast_group(version: ProtocolVersion, ip_version: IpVersion) -> str:
    """Returns the multicast group that searches are sent to."""
    return multicast_groups(version, ip_version)[0]

def multicast_host_header(version: ProtocolVersion, ip_version: IpVersion) -> str:
    """Returns the HOST header value for multicast messages; e.g., "239.255.255.250:1900"."""
    group = multicast_group(version, ip_version)
    if ip_version == IpVersion.V6:
        return f"[{group.upper()}]:{SSDP_PORT}"
    return f"{group}:{SSDP_PORT}"
