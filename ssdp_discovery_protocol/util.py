#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Simple utility functions used by this package
"""

from __future__ import annotations

from typing_extensions import SupportsIndex

import netifaces
import psutil
import socket
from ipaddress import IPv4Address, IPv6Address

from .internal_types import *
from .exceptions import MalformedHeaderError
from .protocol_version import IpVersion
from .network_interface import NetworkInterface

from requests.structures import CaseInsensitiveDict

def split_bytes_at_lf_or_crlf(data: bytes, maxsplit: SupportsIndex = -1) -> List[bytes]:
    """Split a byte string at LF or CRLF.

    If maxsplit is given, at most maxsplit splits are done.

    Returns a List[bytes] representing the delimiteds lines with the delimiters removed.
    """
    parts = data.split(b'\n', maxsplit)
    if len(parts) > 1:
        for i, part in enumerate(parts[:-1]):
            if part.endswith(b'\r'):
                parts[i] = part[:-1]
    return parts

def split_headers_and_body(data: bytes) -> Tuple[bytes, bytes]:
    """Spits a byte string with HTTP headers and an optional body into the headers and the body.

    A relaxed interpretation of '\n' as a line delimiter is accepted even though '\r\n' is required
    by the standard.

    Returns a Tuple[headers: bytes, body: bytes]. If there is no body, b'' is returned for the body.
    """
    delims = [b'\n\r\n', b'\n\n']
    first_i = -1
    first_nb = 0

    for delim in delims:
        i = data.find(delim)
        if i != -1:
            if first_i == -1 or i < first_i:
                first_i = i
                first_nb = len(delim)
    if first_i == -1:
        headers, body = data, b''
    else:
        headers, body = data[:first_i], data[first_i + first_nb:]
        if headers.endswith(b'\r'):
            headers = headers[:-1]

    return (headers, body)

def parse_http_header_line(line: str) -> Tuple[str, str]:
    """Split one "Name: value" header line on its first colon.

    Whitespace around the name and the value is removed. Raises MalformedHeaderError if
    there is no colon, or if the name is empty or contains whitespace.
    """
    name, sep, value = line.partition(':')
    name = name.strip()
    if sep == '' or name == '' or any(c.isspace() for c in name):
        raise MalformedHeaderError(line)
    return (name, value.strip())

def parse_http_headers(data: bytes) -> Tuple[CaseInsensitiveDict[str], bytes]:
    """Parse HTTP-style headers out of a byte string. Also returns the body of the message, if any.

    A relaxed interpretation of '\n' as a line delimiter is accepted even though '\r\n' is required
    by the standard.  The final line of the headers does not need to be terminated by a newline. If
    there is a body, it is separated from the headers with '\r\n\r\n', '\n\n', '\r\n\n', or '\r\n\n'.

    It is assumed that any preceding statement line (e.g., "HTTP/1.1 200 OK\r\n") has already been removed.

    Lines that begin with whitespace continue the value of the previous header (obsolete
    line folding). If a header is repeated, the last value wins. Header values are not decoded.

    Returns a tuple of (headers: CaseInsensitiveDict[str], body: bytes). The headers preserve
    the order in which they first appeared and the sender's spelling of each name.
    """
    headers_data, body = split_headers_and_body(data)
    headers: CaseInsensitiveDict[str] = CaseInsensitiveDict()
    prev_name: Optional[str] = None
    for raw_line in split_bytes_at_lf_or_crlf(headers_data):
        line = raw_line.decode('utf-8', errors='replace').rstrip()
        if line == '':
            continue
        if line[0] in ' \t':
            if prev_name is None:
                raise MalformedHeaderError(line)
            headers[prev_name] = f"{headers[prev_name]} {line.strip()}"
            continue
        name, value = parse_http_header_line(line)
        headers[name] = value
        prev_name = name
    return (headers, body)

def encode_http_header(name: str, value: str) -> bytes:
    """Encodes a raw HTTP header name/value pair into a byte string.

    The result is terminated with '\r\n'.
    """
    if '\r' in value or '\n' in value:
        raise ValueError(f"Header {name} value may not contain line breaks: {value!r}")
    return f"{name}: {value}\r\n".encode('utf-8')

def get_default_ip_gateway(address_family: socket.AddressFamily | int=socket.AF_INET) -> Tuple[Optional[str], Optional[str]]:
    """Returns the (gateway_ip_address: str, gateway_interface_name: str) for the default IP gateway in the
       requested family, if any.
       returns (None, None) if there is no default gateway in the requested family."""
    assert int(address_family) in (int(socket.AF_INET), int(socket.AF_INET6))
    netiface_family = netifaces.AF_INET if int(address_family) == int(socket.AF_INET) else netifaces.AF_INET6
    gws = netifaces.gateways()
    if "default" in gws:
        default_gateway_infos = gws["default"]
        if netiface_family in default_gateway_infos:
            gw_ip, gw_interface_name = default_gateway_infos[netiface_family][:2]
            return (gw_ip, gw_interface_name)
    return (None, None)

def interface_supports_multicast(ifname: str, if_stats: Optional[Mapping[str, Any]]=None) -> bool:
    """Returns True if the interface is up and the OS reports it as multicast capable.
       Where psutil cannot report interface flags (e.g., Windows), an interface that is up is
       assumed to be capable."""
    if if_stats is None:
        if_stats = psutil.net_if_stats()
    stats = if_stats.get(ifname)
    if stats is None:
        # netifaces and psutil name interfaces differently on Windows
        return True
    if not stats.isup:
        return False
    flags = getattr(stats, 'flags', '')
    if not flags:
        return True
    return 'multicast' in flags.split(',')

def get_network_interfaces(
        ip_version: Optional[IpVersion]=None,
        include_loopback: bool=False
      ) -> List[NetworkInterface]:
    """Returns a NetworkInterface for each local interface that has at least one address in
       the requested family (or in either family if ip_version is None). The result is sorted
       in a way that attempts to place the "preferred" interface first in the list:
           1. The default gateway interface precedes all other interfaces.
           2. Non-loopback interfaces precede loopback interfaces.
           3. Interfaces whose IPV4 addresses begin with 172. follow other interfaces. This is a hack to
              deprioritize local docker network interfaces.
    """
    _, default_gateway_ifname = get_default_ip_gateway(
        socket.AF_INET6 if ip_version == IpVersion.V6 else socket.AF_INET)
    if_stats = psutil.net_if_stats()
    families: List[int] = []
    if ip_version in (None, IpVersion.V4):
        families.append(netifaces.AF_INET)
    if ip_version in (None, IpVersion.V6):
        families.append(netifaces.AF_INET6)

    result_with_priority: List[Tuple[int, int, NetworkInterface]] = []
    for i, ifname in enumerate(netifaces.interfaces()):
        if ifname in if_stats and not if_stats[ifname].isup:
            continue
        ifinfo = netifaces.ifaddresses(ifname)
        addresses: List[str] = []
        is_loopback = False
        for netiface_family in families:
            for addrinfo in ifinfo.get(netiface_family, []):
                ip_str = addrinfo['addr']
                assert isinstance(ip_str, str)
                bare_ip = ip_str.split('%', 1)[0]
                if netiface_family == netifaces.AF_INET6:
                    is_loopback = is_loopback or IPv6Address(bare_ip).is_loopback
                else:
                    is_loopback = is_loopback or IPv4Address(bare_ip).is_loopback
                addresses.append(ip_str)
        if len(addresses) == 0:
            continue
        if is_loopback and not include_loopback:
            continue
        if ifname == default_gateway_ifname:
            priority = 0
        elif is_loopback:
            priority = 3
        elif any(a.startswith('172.') for a in addresses):
            priority = 2
        else:
            priority = 1
        interface = NetworkInterface(
            ifname,
            addresses,
            is_loopback=is_loopback,
            supports_multicast=interface_supports_multicast(ifname, if_stats),
          )
        result_with_priority.append((priority, i, interface))
    return [ interface for _, _, interface in sorted(result_with_priority, key=lambda x: (x[0], x[1])) ]

def find_network_interface(name: str, ip_version: Optional[IpVersion]=None) -> NetworkInterface:
    """Returns the named local interface. Raises KeyError if there is no interface with that name."""
    for interface in get_network_interfaces(ip_version=ip_version, include_loopback=True):
        if interface.name == name:
            return interface
    raise KeyError(f"No such network interface: {name}")
