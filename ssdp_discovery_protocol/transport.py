#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Creation of low-level UDP sockets for SSDP: binding to an interface, selecting the
outgoing multicast interface, and joining the protocol's multicast groups.

The multicast groups and port are fixed by the protocol; callers choose only the
interface and the IP version.
"""

from __future__ import annotations

import socket
import struct
import sys

from .internal_types import *
from .pkg_logging import logger
from .constants import SSDP_PORT
from .exceptions import InterfaceUnavailableError, BindFailedError, JoinFailedError
from .protocol_version import ProtocolVersion, IpVersion, multicast_groups
from .network_interface import NetworkInterface

# Linux values; older Python releases do not export these names.
IP_MULTICAST_ALL = getattr(socket, "IP_MULTICAST_ALL", 49)
IPV6_MULTICAST_ALL = getattr(socket, "IPV6_MULTICAST_ALL", 29)

def interface_address(interface: NetworkInterface, ip_version: IpVersion) -> str:
    """Returns the preferred address of the requested family on an interface.

    Raises InterfaceUnavailableError if there is none.
    """
    addresses = interface.addresses_for(ip_version)
    if len(addresses) == 0:
        raise InterfaceUnavailableError(interface.name, str(ip_version))
    return addresses[0]

def _resolve_bind_address(address: str, port: int, ip_version: IpVersion) -> Tuple[Any, ...]:
    if ip_version == IpVersion.V6:
        # getaddrinfo resolves a "%<scope>" suffix into the scope id
        return socket.getaddrinfo(address, port, socket.AF_INET6, socket.SOCK_DGRAM)[0][4]
    return (address, port)

def open_socket(
        interface: NetworkInterface,
        ip_version: IpVersion=IpVersion.V4,
        multicast_listener: bool=False,
      ) -> socket.socket:
    """Create and bind a UDP socket on an interface.

    A search socket is bound to the interface's address on an ephemeral port, so that unicast
    responses return to it. A listener socket (multicast_listener=True) is bound to the wildcard
    address on the SSDP port, since multicast listeners must bind to 0.0.0.0:<port> or [::]:<port>
    to receive multicast packets; address reuse lets several listeners share the port.

    Raises InterfaceUnavailableError, without creating a socket, if the interface has no address of
    the requested family, and BindFailedError if the OS refuses to create or bind the socket.
    """
    bind_address = interface_address(interface, ip_version)
    port = SSDP_PORT if multicast_listener else 0
    try:
        sock = socket.socket(ip_version.address_family, socket.SOCK_DGRAM)
    except OSError as e:
        raise BindFailedError(bind_address, port, e) from e
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if sys.platform not in ( 'win32', 'cygwin' ):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        if multicast_listener:
            # On Linux, disabling IP_MULTICAST_ALL ensures that each socket only receives
            # multicast packets for the groups joined on that socket.  Without doing this, every multicast
            # is received by all sockets bound to 0.0.0.0:<port>, and a listener on one interface would
            # see advertisements that arrived on another.
            if sys.platform in ('linux', 'linux2'):
                logger.debug(f"Disabling IP_MULTICAST_ALL on listener socket for {interface.name}")
                if ip_version == IpVersion.V6:
                    sock.setsockopt(socket.IPPROTO_IPV6, IPV6_MULTICAST_ALL, 0)
                else:
                    sock.setsockopt(socket.IPPROTO_IP, IP_MULTICAST_ALL, 0)
            sock.bind(_resolve_bind_address('::' if ip_version == IpVersion.V6 else '', port, ip_version))
        else:
            sock.bind(_resolve_bind_address(bind_address, port, ip_version))
    except OSError as e:
        sock.close()
        raise BindFailedError(bind_address, port, e) from e
    logger.debug(f"Opened {ip_version} socket on {interface.name}: {sock.getsockname()}")
    return sock

def set_multicast_options(
        sock: socket.socket,
        interface: NetworkInterface,
        ip_version: IpVersion=IpVersion.V4,
        ttl: int=2,
      ) -> None:
    """Select the interface that outgoing multicast leaves on, and the multicast TTL (hop limit).

    Raises BindFailedError if the OS rejects the options.
    """
    address = interface_address(interface, ip_version)
    try:
        if ip_version == IpVersion.V6:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, struct.pack('@I', interface.index))
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_HOPS, ttl)
        else:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(address))
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, ttl)
    except OSError as e:
        raise BindFailedError(address, 0, e) from e

def join_multicast_group(
        sock: socket.socket,
        version: ProtocolVersion,
        ip_version: IpVersion,
        interface: NetworkInterface,
      ) -> List[str]:
    """Join the SSDP multicast groups for a protocol version on an interface. IPv4 joins
       239.255.255.250. IPv6 joins the link-local group, plus the site-local group for UPnP 1.1+.

    Returns the list of groups joined. Raises JoinFailedError if the OS refuses a membership.
    """
    address = interface_address(interface, ip_version)
    groups = multicast_groups(version, ip_version)
    for group in groups:
        try:
            if ip_version == IpVersion.V6:
                mreq = socket.inet_pton(socket.AF_INET6, group) + struct.pack('@I', interface.index)
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, mreq)
            else:
                mreq = socket.inet_aton(group) + socket.inet_aton(address)
                logger.debug(f"Joining multicast group {group} on {address}; mreq={mreq!r}")
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        except OSError as e:
            raise JoinFailedError(group, e) from e
    return groups

def close_socket(sock: Optional[socket.socket]) -> None:
    if sock is not None:
        try:
            sock.close()
        except OSError as e:
            logger.error(f"Error closing socket {sock}: {e}")
