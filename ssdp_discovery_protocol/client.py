#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpClient -- An SSDP control point that can:

  1. Send an M-SEARCH request to the SSDP multicast group (239.255.255.250:1900 for IPv4) on one or more interfaces,
     or directly to one device (UPnP 1.1+)
  2. Receive and decode search responses from remote nodes
  3. Collect and return responses received within the search's max-wait window
"""

from __future__ import annotations


import asyncio
import time

from .internal_types import *
from .pkg_logging import logger
from .constants import SSDP_PORT
from .exceptions import SetupError, NoUsableInterfaceError, ParseError, TimedOut
from .protocol_version import multicast_group
from .messages import (
    SearchOptions,
    SearchResponse,
    build_search_request,
    build_unicast_search_request,
    parse_search_response,
  )
from .network_interface import NetworkInterface
from .ssdp_datagram import SsdpDatagram
from .ssdp_socket import SsdpSocket, SsdpSocketBinding, SsdpDatagramSubscriber
from .transport import open_socket, set_multicast_options, close_socket
from .util import get_network_interfaces

class SsdpSearchRequest(
        AsyncContextManager['SsdpSearchRequest'],
        AsyncIterable[SearchResponse]
      ):
    """An object that manages a single search request on an SsdpClient and all of the received responses
       within an AsyncContextManager/AsyncInterable interface."""

    ssdp_client: SsdpClient
    options: SearchOptions
    dg_subscriber: SsdpDatagramSubscriber
    max_responses: int
    unicast_destination: Optional[HostAndPort]
    start_time: float = 0.0
    end_time: float = 0.0

    def __init__(
            self,
            ssdp_client: SsdpClient,
            options: Optional[SearchOptions]=None,
            max_responses: int=0,
            unicast_destination: Optional[HostAndPort]=None,
          ):
        """Create an async context manager/iterable that sends a search request and returns the responses
        as they arrive.

        Parameters:
            ssdp_client:             The SsdpClient instance to use for sending the search request and receiving responses.
            options:                 The search options. Defaults to ssdp_client.options.
            max_responses:           The maximum number of responses to return. If 0 (the default), all responses received
                                        within options.max_wait_seconds will be returned.
            unicast_destination:     If not None, the request is sent directly to this device address instead of
                                        the multicast group. Requires UPnP 1.1 or later.

        Usage:
            async with SsdpSearchRequest(ssdp_client, ...) as search_request:
                async for response in search_request:
                    print(response.location_uri)
                    # It is possible to break out of the loop early if desired; e.g., if you got the response you were looking for..
        """
        self.ssdp_client = ssdp_client
        self.options = ssdp_client.options if options is None else options
        self.max_responses = max_responses
        self.unicast_destination = unicast_destination
        self.dg_subscriber = SsdpDatagramSubscriber(self.ssdp_client)

    def build_request(self) -> SsdpDatagram:
        if self.unicast_destination is None:
            return build_search_request(self.options)
        return build_unicast_search_request(self.options, self.unicast_destination)

    @property
    def destination(self) -> HostAndPort:
        if self.unicast_destination is not None:
            return self.unicast_destination
        return (multicast_group(self.options.version, self.options.ip_version), SSDP_PORT)

    async def __aenter__(self) -> SsdpSearchRequest:
        search_datagram = self.build_request()
        # It is important that we start the subscriber before we send the search request so that we don't miss any responses.
        await self.dg_subscriber.__aenter__()
        try:
            self.start_time = time.monotonic()
            self.end_time = self.start_time + self.options.max_wait_seconds
            destination = self.destination
            for socket_binding in self.ssdp_client.socket_bindings:
                socket_binding.sendto(search_datagram, destination)
        except BaseException as e:
            # A call to __aenter__ that raises an exception will not be paired with a call to __aexit__; since we successfully called __aenter__
            # on the dg_subscriber, we need to call __aexit__ on it to ensure that it is cleaned up properly.
            await self.dg_subscriber.__aexit__(type(e), e, e.__traceback__)
            raise
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        return await self.dg_subscriber.__aexit__(exc_type, exc, tb)

    async def iter_responses(self) -> AsyncIterator[SearchResponse]:
        """Yields decoded responses in arrival order until the deadline. Responses that fail to
           decode are logged and dropped."""
        n = 0
        while True:
            if self.max_responses > 0 and n >= self.max_responses:
                break
            try:
                resp_tuple = await self.dg_subscriber.receive_with_deadline(self.end_time)
            except TimedOut:
                break
            if resp_tuple is None:
                break
            socket_binding, addr, data = resp_tuple
            try:
                response = parse_search_response(data, self.options.version, src_addr=addr)
            except ParseError as e:
                logger.debug(f"Dropping undecodable search response from {addr} on {socket_binding}: {e}")
                continue
            logger.debug(f"Received search response from {addr} on {socket_binding}: {response}")
            n += 1
            yield response

    def __aiter__(self) -> AsyncIterator[SearchResponse]:
        return self.iter_responses()


class SsdpClient(SsdpSocket, AsyncContextManager['SsdpClient']):
    """
    An SSDP control point that can:

      1. Send a search request to the SSDP multicast group, or to a single device
      2. Receive and decode search responses from remote nodes
      3. Collect and return responses received within the search's max-wait window

    If options.interface is set, exactly one socket is opened on it and any setup failure is raised.
    Otherwise one socket is opened on each eligible multicast-capable interface that has an address
    of the requested IP family; interfaces that fail to open are logged and skipped, and SetupError
    is raised only if none open.
    """

    options: SearchOptions
    """The default search options, and the source of the interface selection and IP version."""

    interfaces: Optional[List[NetworkInterface]]
    """The candidate interfaces when options.interface is None. If None, local interfaces are enumerated."""

    def __init__(
            self,
            options: Optional[SearchOptions]=None,
            interfaces: Optional[Iterable[NetworkInterface]]=None,
          ) -> None:
        super().__init__()
        self.options = SearchOptions() if options is None else options
        self.interfaces = None if interfaces is None else list(interfaces)

    def eligible_interfaces(self) -> List[NetworkInterface]:
        ip_version = self.options.ip_version
        if self.options.interface is not None:
            return [ self.options.interface ]
        candidates = self.interfaces
        if candidates is None:
            candidates = get_network_interfaces(ip_version=ip_version)
        return [ x for x in candidates if x.supports_multicast and x.has_address_for(ip_version) ]

    #@override
    async def add_socket_bindings(self) -> None:
        """Creates and binds one socket per search interface, and adds them with self.add_socket_binding()."""
        explicit = self.options.interface is not None
        ip_version = self.options.ip_version
        interfaces = self.eligible_interfaces()
        logger.debug(f"Creating search socket bindings on {interfaces}")
        for interface in interfaces:
            try:
                sock = open_socket(interface, ip_version)
                try:
                    set_multicast_options(sock, interface, ip_version, self.options.packet_ttl)
                except SetupError:
                    close_socket(sock)
                    raise
            except SetupError as e:
                if explicit:
                    raise
                logger.warning(f"Skipping interface {interface.name} for search: {e}")
                continue
            socket_binding = SsdpSocketBinding(sock, interface=interface)
            await self.add_socket_binding(socket_binding)
        if len(self.socket_bindings) == 0:
            raise NoUsableInterfaceError(str(ip_version), "search")

    def search(
            self,
            options: Optional[SearchOptions]=None,
            max_responses: int=0,
          ) -> SsdpSearchRequest:
        """Create an async context manager/iterable that sends a multicast search request and returns the responses
           as they arrive.

        Usage:
            async with ssdp_client.search(...) as search_request:
                async for response in search_request:
                    print(response.location_uri)
        """
        return SsdpSearchRequest(self, options=options, max_responses=max_responses)

    def search_device(
            self,
            device_address: HostAndPort,
            options: Optional[SearchOptions]=None,
            max_responses: int=0,
          ) -> SsdpSearchRequest:
        """Like search(), but sends the request directly to one device (UPnP 1.1 or later)."""
        return SsdpSearchRequest(self, options=options, max_responses=max_responses, unicast_destination=device_address)

    async def simple_search(
            self,
            options: Optional[SearchOptions]=None,
            max_responses: int=0,
            device_address: Optional[HostAndPort]=None,
          ) -> List[SearchResponse]:
        """A simple search that creates a search request, waits for the full max-wait window for all responses
           to come in, and returns the responses in arrival order. Does not allow for early termination of the
           search when a desired response is received.

           Early out/incremental results can be obtained by using the search() method.
        """
        results: List[SearchResponse] = []
        async with SsdpSearchRequest(
                self,
                options=options,
                max_responses=max_responses,
                unicast_destination=device_address,
              ) as search_request:
            async for response in search_request:
                results.append(response)
        return results

    async def __aenter__(self) -> SsdpClient:
        await super().__aenter__()
        return self

async def search(
        options: SearchOptions,
        interfaces: Optional[Iterable[NetworkInterface]]=None,
        max_responses: int=0,
      ) -> List[SearchResponse]:
    """Multicast one search and collect every response that arrives within options.max_wait_seconds.

    Returns the responses in arrival order; an empty list means no device replied. Raises
    SetupError if no socket could be opened, and SsdpIoError if a socket fails mid-search.
    """
    async with SsdpClient(options, interfaces=interfaces) as client:
        return await client.simple_search(max_responses=max_responses)

async def unicast_search(
        options: SearchOptions,
        device_address: HostAndPort,
        interfaces: Optional[Iterable[NetworkInterface]]=None,
      ) -> List[SearchResponse]:
    """Send one search directly to a device and collect its responses (UPnP 1.1 or later)."""
    # validate the version before any socket is opened
    build_unicast_search_request(options, device_address)
    async with SsdpClient(options, interfaces=interfaces) as client:
        return await client.simple_search(device_address=device_address)

def search_sync(
        options: SearchOptions,
        interfaces: Optional[Iterable[NetworkInterface]]=None,
        max_responses: int=0,
      ) -> List[SearchResponse]:
    """Blocking form of search(), for callers that are not running an event loop."""
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        return loop.run_until_complete(search(options, interfaces=interfaces, max_responses=max_responses))
    finally:
        asyncio.set_event_loop(None)
        loop.close()
