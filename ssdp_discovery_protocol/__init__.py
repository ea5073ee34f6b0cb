#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package ssdp_discovery_protocol implements the discovery half of UPnP: the Simple Service Discovery Protocol (SSDP).

A control point multicasts an M-SEARCH request for devices or services to 239.255.255.250:1900 (or the
IPv6 groups FF02::C and FF05::C) and collects the unicast responses that arrive within the request's MX
window. Devices also multicast NOTIFY advertisements (ssdp:alive, ssdp:byebye, ssdp:update) announcing
their presence or departure, which a listener can overhear.

All messages are HTTP-style header blocks carried in UDP datagrams (HTTPU/HTTPMU). UPnP 1.0, 1.1 and 2.0
are supported; the version selects the extra headers sent and read, and the IPv6 multicast groups joined.

Fetching and parsing device description documents, and invoking device actions, are outside the
scope of this package.
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict, HostAndPort

from .exceptions import (
    SsdpError,
    SetupError,
    InterfaceUnavailableError,
    BindFailedError,
    JoinFailedError,
    NoUsableInterfaceError,
    ParseError,
    MalformedStartLineError,
    MalformedHeaderError,
    MissingRequiredHeaderError,
    UnsupportedNotificationTypeError,
    UnexpectedMessageError,
    SsdpIoError,
    TimedOut,
    UnsupportedVersionError,
  )

from .protocol_version import ProtocolVersion, IpVersion, multicast_group, multicast_groups
from .search_target import SearchTarget, SearchTargetKind
from .network_interface import NetworkInterface
from .ssdp_datagram import SsdpDatagram
from .messages import (
    SearchOptions,
    SearchResponse,
    Advertisement,
    AdvertisementKind,
    ControlPoint,
    ProductVersion,
    build_search_request,
    build_unicast_search_request,
    parse_search_response,
    parse_advertisement,
  )
from .transport import open_socket, join_multicast_group, set_multicast_options, close_socket
from .ssdp_socket import SsdpSocket, SsdpSocketBinding, SsdpDatagramSubscriber
from .client import SsdpClient, SsdpSearchRequest, search, search_sync, unicast_search
from .listener import SsdpListener, start_listener
from .util import CaseInsensitiveDict, get_network_interfaces, find_network_interface
from .constants import SSDP_MULTICAST_ADDRESS, SSDP_PORT, DEFAULT_MAX_WAIT_SECONDS

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict', 'HostAndPort',
    'SsdpError', 'SetupError', 'InterfaceUnavailableError', 'BindFailedError', 'JoinFailedError',
    'NoUsableInterfaceError',
    'ParseError', 'MalformedStartLineError', 'MalformedHeaderError', 'MissingRequiredHeaderError',
    'UnsupportedNotificationTypeError', 'UnexpectedMessageError',
    'SsdpIoError', 'TimedOut', 'UnsupportedVersionError',
    'ProtocolVersion', 'IpVersion', 'multicast_group', 'multicast_groups',
    'SearchTarget', 'SearchTargetKind',
    'NetworkInterface',
    'SsdpDatagram',
    'SearchOptions', 'SearchResponse', 'Advertisement', 'AdvertisementKind', 'ControlPoint', 'ProductVersion',
    'build_search_request', 'build_unicast_search_request', 'parse_search_response', 'parse_advertisement',
    'open_socket', 'join_multicast_group', 'set_multicast_options', 'close_socket',
    'SsdpSocket', 'SsdpSocketBinding', 'SsdpDatagramSubscriber',
    'SsdpClient', 'SsdpSearchRequest', 'search', 'search_sync', 'unicast_search',
    'SsdpListener', 'start_listener',
    'CaseInsensitiveDict', 'get_network_interfaces', 'find_network_interface',
    'SSDP_MULTICAST_ADDRESS', 'SSDP_PORT', 'DEFAULT_MAX_WAIT_SECONDS',
]
