#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

SSDP_MULTICAST_ADDRESS = "239.255.255.250"
"""The IPv4 multicast group used by SSDP."""

SSDP_MULTICAST_ADDRESS_V6_LINK_LOCAL = "ff02::c"
"""The IPv6 link-local multicast group used by SSDP."""

SSDP_MULTICAST_ADDRESS_V6_SITE_LOCAL = "ff05::c"
"""The IPv6 site-local multicast group used by SSDP (UPnP 1.1 and later)."""

SSDP_PORT = 1900
"""The UDP port number used by SSDP for multicast."""

DEFAULT_DOMAIN = "schemas-upnp-org"
"""The domain used in device and service type URNs when no other domain is given."""

MAN_DISCOVER = '"ssdp:discover"'
"""The value of the MAN header in a search request, including the quotes."""

MAX_MX_SECONDS = 5
"""The protocol ceiling for the MX header of a multicast search."""

MIN_MX_SECONDS = 1
"""The protocol floor for the MX header of a multicast search."""

DEFAULT_MAX_WAIT_SECONDS = 2
"""The default number of seconds to wait for search responses."""

DEFAULT_PACKET_TTL_V10 = 4
"""The default multicast TTL for UPnP 1.0."""

DEFAULT_PACKET_TTL = 2
"""The default multicast TTL for UPnP 1.1 and later."""

MAX_DATAGRAM_SIZE = 65507
"""The largest UDP payload that can be received."""

METHOD_SEARCH = "M-SEARCH"
METHOD_NOTIFY = "NOTIFY"
HTTP_PROTOCOL = "HTTP/1.1"
REQUEST_URI = "*"

HEAD_BOOTID = "BOOTID.UPNP.ORG"
HEAD_CACHE_CONTROL = "CACHE-CONTROL"
HEAD_CONFIGID = "CONFIGID.UPNP.ORG"
HEAD_CP_FN = "CPFN.UPNP.ORG"
HEAD_CP_UUID = "CPUUID.UPNP.ORG"
HEAD_DATE = "DATE"
HEAD_EXT = "EXT"
HEAD_HOST = "HOST"
HEAD_LOCATION = "LOCATION"
HEAD_MAN = "MAN"
HEAD_MX = "MX"
HEAD_NEXT_BOOTID = "NEXTBOOTID.UPNP.ORG"
HEAD_NT = "NT"
HEAD_NTS = "NTS"
HEAD_SEARCH_PORT = "SEARCHPORT.UPNP.ORG"
HEAD_SERVER = "SERVER"
HEAD_ST = "ST"
HEAD_TCP_PORT = "TCPPORT.UPNP.ORG"
HEAD_USER_AGENT = "USER-AGENT"
HEAD_USN = "USN"

NTS_ALIVE = "ssdp:alive"
NTS_BYEBYE = "ssdp:byebye"
NTS_UPDATE = "ssdp:update"

ST_ALL = "ssdp:all"
ST_ROOT_DEVICE = "upnp:rootdevice"

REQUIRED_SEARCH_HEADERS = (HEAD_HOST, HEAD_MAN, HEAD_MX, HEAD_ST)
"""Headers that every M-SEARCH must carry. UPnP 1.1 and later also require CPFN.UPNP.ORG."""

REQUIRED_NOTIFY_HEADERS = (HEAD_NT, HEAD_NTS, HEAD_USN)
"""Headers that every NOTIFY must carry. LOCATION is checked per NTS value."""

REQUIRED_RESPONSE_HEADERS = (HEAD_CACHE_CONTROL, HEAD_LOCATION, HEAD_ST, HEAD_USN)
"""Headers that every search response must carry."""
