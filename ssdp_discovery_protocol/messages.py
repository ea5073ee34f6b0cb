#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Construction of SSDP search requests and interpretation of search responses and NOTIFY
advertisements, parameterized by UPnP protocol version.
"""

from __future__ import annotations

import time
import datetime
import platform
from enum import Enum

from .internal_types import *
from .pkg_logging import logger
from .version import __version__ as pkg_version
from .constants import (
    MAN_DISCOVER,
    MAX_MX_SECONDS,
    MIN_MX_SECONDS,
    DEFAULT_MAX_WAIT_SECONDS,
    HEAD_CACHE_CONTROL,
    HEAD_CP_FN,
    HEAD_CP_UUID,
    HEAD_HOST,
    HEAD_LOCATION,
    HEAD_MAN,
    HEAD_MX,
    HEAD_ST,
    HEAD_TCP_PORT,
    HEAD_USER_AGENT,
    NTS_ALIVE,
    NTS_BYEBYE,
    NTS_UPDATE,
  )
from .exceptions import (
    MalformedHeaderError,
    MissingRequiredHeaderError,
    UnexpectedMessageError,
    UnsupportedNotificationTypeError,
    UnsupportedVersionError,
  )
from .protocol_version import ProtocolVersion, IpVersion, multicast_host_header
from .search_target import SearchTarget
from .network_interface import NetworkInterface
from .ssdp_datagram import SsdpDatagram, search_request_statement

DEFAULT_CONTROL_POINT_NAME = "ssdp-discovery-protocol"
"""The CPFN.UPNP.ORG value used when the caller does not name its control point."""

class ProductVersion:
    """A "<name>/<version>" product token as used in USER-AGENT and SERVER headers."""

    name: str
    version: str

    def __init__(self, name: str, version: str) -> None:
        self.name = name
        self.version = version

    def validate(self) -> None:
        """Raise ValueError unless the name has no "/" and the version is dotted digits."""
        if '/' in self.name or self.name == '':
            raise ValueError(f"Product name must be non-empty and may not contain '/': {self.name!r}")
        if self.version == '' or not all(c.isdigit() or c == '.' for c in self.version):
            raise ValueError(f"Product version must be dotted digits: {self.version!r}")

    def __str__(self) -> str:
        return f"{self.name}/{self.version}"

    def __repr__(self) -> str:
        return f"ProductVersion({self.name!r}, {self.version!r})"

DEFAULT_PRODUCT = ProductVersion("Python-ssdp-discovery-protocol", pkg_version)

class ControlPoint:
    """Identifies the searching control point in UPnP 1.1+ requests."""

    friendly_name: str
    """Rendered as CPFN.UPNP.ORG."""

    uuid: Optional[str]
    """Rendered as CPUUID.UPNP.ORG (UPnP 2.0 only)."""

    tcp_port: Optional[int]
    """Rendered as TCPPORT.UPNP.ORG (UPnP 2.0 only)."""

    def __init__(self, friendly_name: str, uuid: Optional[str]=None, tcp_port: Optional[int]=None) -> None:
        if friendly_name == '':
            raise ValueError("A control point friendly name is required")
        self.friendly_name = friendly_name
        self.uuid = uuid
        self.tcp_port = tcp_port

    def __repr__(self) -> str:
        return f"ControlPoint({self.friendly_name!r}, uuid={self.uuid!r}, tcp_port={self.tcp_port!r})"

def make_user_agent(version: ProtocolVersion, product: Optional[ProductVersion]=None) -> str:
    """Returns "<os>/<os-version> UPnP/<x.y> <product>/<version>"."""
    if product is None:
        product = DEFAULT_PRODUCT
    os_name = platform.system() or "Unknown"
    os_version = platform.release() or "0"
    return f"{os_name}/{os_version} UPnP/{version.version_string} {product}"

class SearchOptions:
    """The parameters of one search. Instances are immutable once constructed."""

    version: ProtocolVersion
    """The UPnP version; selects the extra headers and multicast groups."""

    target: SearchTarget
    """What to search for."""

    interface: Optional[NetworkInterface]
    """The interface to search on. If None, every eligible multicast-capable interface is used."""

    ip_version: IpVersion
    """Whether to search over IPv4 or IPv6."""

    max_wait_seconds: int
    """How long to collect responses, and the MX header value. Always in [1, 5]."""

    domain_override: Optional[str]
    """If not None, replaces the domain of device and service type search targets."""

    packet_ttl: int
    """The multicast TTL of the request."""

    product: Optional[ProductVersion]
    """The product token in USER-AGENT (UPnP 1.1+). Defaults to this package."""

    control_point: Optional[ControlPoint]
    """The control point identity (UPnP 1.1+). Defaults to DEFAULT_CONTROL_POINT_NAME."""

    _frozen: bool = False

    def __init__(
            self,
            version: ProtocolVersion=ProtocolVersion.V10,
            target: Optional[SearchTarget]=None,
            interface: Optional[NetworkInterface]=None,
            ip_version: IpVersion=IpVersion.V4,
            max_wait_seconds: int=DEFAULT_MAX_WAIT_SECONDS,
            domain_override: Optional[str]=None,
            packet_ttl: Optional[int]=None,
            product: Optional[ProductVersion]=None,
            control_point: Optional[ControlPoint]=None,
          ) -> None:
        if max_wait_seconds < MIN_MX_SECONDS:
            raise ValueError(f"max_wait_seconds must be at least {MIN_MX_SECONDS}: {max_wait_seconds}")
        if max_wait_seconds > MAX_MX_SECONDS:
            logger.warning(f"max_wait_seconds={max_wait_seconds} exceeds the protocol ceiling; clamping to {MAX_MX_SECONDS}")
            max_wait_seconds = MAX_MX_SECONDS
        if product is not None and version >= ProtocolVersion.V11:
            product.validate()
        self.version = version
        self.target = SearchTarget.root_devices() if target is None else target
        self.interface = interface
        self.ip_version = ip_version
        self.max_wait_seconds = int(max_wait_seconds)
        self.domain_override = domain_override
        self.packet_ttl = version.default_packet_ttl if packet_ttl is None else packet_ttl
        self.product = product
        self.control_point = control_point
        self._frozen = True

    def __setattr__(self, name: str, value: Any) -> None:
        if self._frozen:
            raise AttributeError(f"SearchOptions is immutable; cannot set {name}")
        super().__setattr__(name, value)

    @property
    def rendered_target(self) -> str:
        return self.target.render(self.domain_override)

    @property
    def control_point_name(self) -> str:
        return DEFAULT_CONTROL_POINT_NAME if self.control_point is None else self.control_point.friendly_name

    def __repr__(self) -> str:
        return (f"SearchOptions(version={self.version}, target={self.rendered_target!r}, "
                f"interface={self.interface}, ip_version={self.ip_version}, "
                f"max_wait_seconds={self.max_wait_seconds})")

def _add_control_point_headers(datagram: SsdpDatagram, options: SearchOptions) -> None:
    if options.version >= ProtocolVersion.V11:
        datagram[HEAD_USER_AGENT] = make_user_agent(options.version, options.product)
        datagram[HEAD_CP_FN] = options.control_point_name
    if options.version >= ProtocolVersion.V20 and options.control_point is not None:
        if options.control_point.uuid is not None:
            datagram[HEAD_CP_UUID] = options.control_point.uuid
        if options.control_point.tcp_port is not None:
            datagram[HEAD_TCP_PORT] = options.control_point.tcp_port

def build_search_request(options: SearchOptions) -> SsdpDatagram:
    """Build a multicast M-SEARCH for the given options."""
    datagram = SsdpDatagram(search_request_statement())
    datagram[HEAD_HOST] = multicast_host_header(options.version, options.ip_version)
    datagram[HEAD_MAN] = MAN_DISCOVER
    datagram[HEAD_MX] = min(options.max_wait_seconds, MAX_MX_SECONDS)
    datagram[HEAD_ST] = options.rendered_target
    _add_control_point_headers(datagram, options)
    return datagram

def build_unicast_search_request(options: SearchOptions, device_address: HostAndPort) -> SsdpDatagram:
    """Build an M-SEARCH addressed directly to one device. Unicast search is defined
       only by UPnP 1.1 and later, and carries no MX header."""
    if options.version < ProtocolVersion.V11:
        raise UnsupportedVersionError(options.version.version_string, "Unicast search")
    host, port = device_address[:2]
    datagram = SsdpDatagram(search_request_statement())
    datagram[HEAD_HOST] = f"[{host}]:{port}" if ':' in host else f"{host}:{port}"
    datagram[HEAD_MAN] = MAN_DISCOVER
    datagram[HEAD_ST] = options.rendered_target
    _add_control_point_headers(datagram, options)
    return datagram

class SearchResponse:
    """A decoded reply to an M-SEARCH."""

    status_line: str
    status_code: int
    cache_control_max_age: int
    location_uri: str
    server_string: Optional[str]
    search_target_echo: str
    unique_service_name: str

    boot_id: Optional[int] = None
    """BOOTID.UPNP.ORG; only read for UPnP 1.1+ and only when present."""

    config_id: Optional[int] = None
    """CONFIGID.UPNP.ORG; only read for UPnP 1.1+ and only when present."""

    search_port: Optional[int] = None
    """SEARCHPORT.UPNP.ORG; only read for UPnP 1.1+ and only when present."""

    raw_headers: Dict[str, str]
    """Every header of the response, including unrecognized ones, in received order."""

    src_addr: Optional[HostAndPort]
    """The address the response came from, if known."""

    monotonic_time: float
    """The local time (in seconds) since an arbitrary point in the past at which
       the response was received, as returned by time.monotonic(). This
       value is useful for calculating the age of the response and expiring
       it after max-age seconds."""

    utc_time: datetime.datetime
    """The UTC time at which the response was received."""

    def __init__(self, datagram: SsdpDatagram, version: ProtocolVersion, src_addr: Optional[HostAndPort]=None) -> None:
        cache_control = datagram.hdr_cache_control
        max_age = datagram.hdr_max_age
        if max_age is None:
            raise MalformedHeaderError(f"{HEAD_CACHE_CONTROL}: {cache_control}")
        self.status_line = datagram.statement_line
        self.status_code = datagram.status_code or 0
        self.cache_control_max_age = max_age
        self.location_uri = datagram.hdr_location or ''
        self.server_string = datagram.hdr_server
        self.search_target_echo = datagram.hdr_st or ''
        self.unique_service_name = datagram.hdr_usn or ''
        if version >= ProtocolVersion.V11:
            self.boot_id = datagram.hdr_boot_id
            self.config_id = datagram.hdr_config_id
            self.search_port = datagram.hdr_search_port
        self.raw_headers = dict(datagram.raw_headers.items())
        self.src_addr = src_addr
        self.monotonic_time = time.monotonic()
        self.utc_time = datetime.datetime.now(datetime.timezone.utc)

    def to_jsonable(self) -> JsonableDict:
        result: JsonableDict = {
            "status_line": self.status_line,
            "max_age": self.cache_control_max_age,
            "location": self.location_uri,
            "server": self.server_string,
            "st": self.search_target_echo,
            "usn": self.unique_service_name,
            "headers": dict(self.raw_headers),
            "utc_time": self.utc_time.isoformat(),
        }
        if self.src_addr is not None:
            result["src_addr"] = f"{self.src_addr[0]}:{self.src_addr[1]}"
        for name in ('boot_id', 'config_id', 'search_port'):
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        return result

    def __repr__(self) -> str:
        return f"SearchResponse(usn={self.unique_service_name!r}, st={self.search_target_echo!r}, location={self.location_uri!r})"

def parse_search_response(
        data: Union[bytes, SsdpDatagram],
        version: ProtocolVersion=ProtocolVersion.V10,
        src_addr: Optional[HostAndPort]=None
      ) -> SearchResponse:
    """Decode one search response. Raises a ParseError subclass if the datagram is not a
       well-formed "HTTP/1.1 200 OK" response with the required headers."""
    datagram = data if isinstance(data, SsdpDatagram) else SsdpDatagram(raw_data=data)
    datagram.check_start_line()
    if not datagram.is_response or datagram.status_code != 200:
        raise UnexpectedMessageError(datagram.statement_line)
    datagram.check_required_headers(version)
    return SearchResponse(datagram, version, src_addr=src_addr)

class AdvertisementKind(Enum):
    ALIVE = NTS_ALIVE
    BYEBYE = NTS_BYEBYE
    UPDATE = NTS_UPDATE

class Advertisement:
    """A decoded NOTIFY. Each instance is independent of any other."""

    kind: AdvertisementKind
    notification_type: str
    unique_service_name: str

    location_uri: Optional[str]
    """Always present for ALIVE and UPDATE; always None for BYEBYE."""

    cache_control_max_age: Optional[int]
    server_string: Optional[str]

    boot_id: Optional[int] = None
    config_id: Optional[int] = None

    next_boot_id: Optional[int] = None
    """NEXTBOOTID.UPNP.ORG; only carried by UPDATE."""

    raw_headers: Dict[str, str]
    src_addr: Optional[HostAndPort]
    monotonic_time: float
    utc_time: datetime.datetime

    def __init__(
            self,
            kind: AdvertisementKind,
            datagram: SsdpDatagram,
            version: ProtocolVersion,
            src_addr: Optional[HostAndPort]=None
          ) -> None:
        self.kind = kind
        self.notification_type = datagram.hdr_nt or ''
        self.unique_service_name = datagram.hdr_usn or ''
        self.location_uri = None if kind == AdvertisementKind.BYEBYE else datagram.hdr_location
        self.cache_control_max_age = datagram.hdr_max_age
        self.server_string = datagram.hdr_server
        if version >= ProtocolVersion.V11:
            self.boot_id = datagram.hdr_boot_id
            self.config_id = datagram.hdr_config_id
            if kind == AdvertisementKind.UPDATE:
                self.next_boot_id = datagram.hdr_next_boot_id
        self.raw_headers = dict(datagram.raw_headers.items())
        self.src_addr = src_addr
        self.monotonic_time = time.monotonic()
        self.utc_time = datetime.datetime.now(datetime.timezone.utc)

    def to_jsonable(self) -> JsonableDict:
        result: JsonableDict = {
            "kind": self.kind.value,
            "nt": self.notification_type,
            "usn": self.unique_service_name,
            "location": self.location_uri,
            "max_age": self.cache_control_max_age,
            "headers": dict(self.raw_headers),
            "utc_time": self.utc_time.isoformat(),
        }
        if self.src_addr is not None:
            result["src_addr"] = f"{self.src_addr[0]}:{self.src_addr[1]}"
        for name in ('boot_id', 'config_id', 'next_boot_id'):
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        return result

    def __repr__(self) -> str:
        return f"Advertisement({self.kind.name}, nt={self.notification_type!r}, usn={self.unique_service_name!r})"

def parse_advertisement(
        data: Union[bytes, SsdpDatagram],
        version: ProtocolVersion=ProtocolVersion.V10,
        src_addr: Optional[HostAndPort]=None
      ) -> Advertisement:
    """Decode one NOTIFY, dispatching on its NTS header. Raises a ParseError subclass if the
       datagram is not a well-formed NOTIFY, if LOCATION is missing from an alive or update,
       or if the NTS value is not recognized."""
    datagram = data if isinstance(data, SsdpDatagram) else SsdpDatagram(raw_data=data)
    datagram.check_start_line()
    if not datagram.is_notify:
        raise UnexpectedMessageError(datagram.statement_line)
    datagram.check_required_headers(version)
    nts = datagram.hdr_nts or ''
    normalized_nts = nts.strip().lower()
    if normalized_nts == NTS_BYEBYE:
        kind = AdvertisementKind.BYEBYE
    elif normalized_nts == NTS_ALIVE:
        kind = AdvertisementKind.ALIVE
    elif normalized_nts == NTS_UPDATE:
        kind = AdvertisementKind.UPDATE
    else:
        raise UnsupportedNotificationTypeError(nts)
    if kind != AdvertisementKind.BYEBYE and datagram.hdr_location is None:
        raise MissingRequiredHeaderError(HEAD_LOCATION)
    return Advertisement(kind, datagram, version, src_addr=src_addr)
