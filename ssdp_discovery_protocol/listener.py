#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpListener -- An SSDP advertisement listener that can:

  1. Join the SSDP multicast group on one or more interfaces (typically 239.255.255.250:1900)
  2. Receive and decode NOTIFY advertisements (ssdp:alive, ssdp:byebye, ssdp:update) in a background task
  3. Deliver decoded advertisements through a bounded queue to a consumer calling next()

  Datagrams that are not valid advertisements (including M-SEARCH requests from other control
  points, which share the group) are dropped without disturbing the listener.
"""

from __future__ import annotations


import asyncio
import threading

from .internal_types import *
from .pkg_logging import logger
from .constants import SSDP_PORT
from .exceptions import SetupError, NoUsableInterfaceError, ParseError, SsdpIoError
from .protocol_version import ProtocolVersion, IpVersion
from .messages import Advertisement, parse_advertisement
from .network_interface import NetworkInterface
from .ssdp_socket import SsdpSocket, SsdpSocketBinding, SsdpDatagramSubscriber, MAX_QUEUE_SIZE
from .transport import open_socket, join_multicast_group, close_socket, interface_address
from .util import get_network_interfaces

class SsdpListener(SsdpSocket, AsyncIterable[Advertisement]):
    """
    A long-running listener for SSDP advertisements.

    stop() may be called from any task or thread, any number of times. It wakes a pending
    next() promptly, and once it has been called next() only ever returns None.
    """

    version: ProtocolVersion
    """The UPnP version; selects the multicast groups and the headers that are read."""

    interface: Optional[NetworkInterface]
    """The interface to listen on. If None, every eligible multicast-capable interface is used."""

    ip_version: IpVersion

    interfaces: Optional[List[NetworkInterface]]
    """The candidate interfaces when interface is None. If None, local interfaces are enumerated."""

    collector_task: Optional[asyncio.Task[None]] = None
    """The task that decodes received datagrams into advertisements."""

    advertisements: asyncio.Queue[Optional[Advertisement]]
    """Decoded advertisements waiting for next(). None marks end of stream."""

    _closed: bool = False
    _closed_lock: threading.Lock
    _ended: bool = False
    """Set once no further advertisements will be queued."""
    _error: Optional[BaseException] = None
    _error_reported: bool = False

    def __init__(
            self,
            version: ProtocolVersion=ProtocolVersion.V10,
            interface: Optional[NetworkInterface]=None,
            ip_version: IpVersion=IpVersion.V4,
            interfaces: Optional[Iterable[NetworkInterface]]=None,
            max_queue_size: int=MAX_QUEUE_SIZE,
          ) -> None:
        super().__init__()
        self.version = version
        self.interface = interface
        self.ip_version = ip_version
        self.interfaces = None if interfaces is None else list(interfaces)
        self.advertisements = asyncio.Queue(max_queue_size)
        self._closed_lock = threading.Lock()

    @property
    def is_closed(self) -> bool:
        with self._closed_lock:
            return self._closed

    def eligible_interfaces(self) -> List[NetworkInterface]:
        if self.interface is not None:
            return [ self.interface ]
        candidates = self.interfaces
        if candidates is None:
            candidates = get_network_interfaces(ip_version=self.ip_version)
        return [ x for x in candidates if x.supports_multicast and x.has_address_for(self.ip_version) ]

    #@override
    async def add_socket_bindings(self) -> None:
        """Creates one socket per listening interface, bound to the SSDP port and joined to the
           multicast groups, and adds them with self.add_socket_binding()."""
        explicit = self.interface is not None
        interfaces = self.eligible_interfaces()
        logger.debug(f"Creating listener socket bindings on {interfaces}")
        for interface in interfaces:
            try:
                sock = open_socket(interface, self.ip_version, multicast_listener=True)
                try:
                    join_multicast_group(sock, self.version, self.ip_version, interface)
                except SetupError:
                    close_socket(sock)
                    raise
            except SetupError as e:
                if explicit:
                    raise
                logger.warning(f"Skipping interface {interface.name} for listening: {e}")
                continue
            unicast_addr = (interface_address(interface, self.ip_version), SSDP_PORT)
            socket_binding = SsdpSocketBinding(sock, unicast_addr=unicast_addr, interface=interface)
            await self.add_socket_binding(socket_binding)
        if len(self.socket_bindings) == 0:
            raise NoUsableInterfaceError(str(self.ip_version), "listening")

    async def finish_start(self) -> None:
        self.collector_task = asyncio.create_task(self._run_collector_task())

    async def wait_for_dependents_done(self) -> None:
        try:
            if self.collector_task is not None:
                self.collector_task.cancel()
                try:
                    await self.collector_task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning(f"Exception while cancelling collector task: {e}")
                self.collector_task = None
        except asyncio.CancelledError:
            pass

    async def _run_collector_task(self) -> None:
        logger.debug("Advertisement collector task starting")
        try:
            async with SsdpDatagramSubscriber(self) as subscriber:
                async for socket_binding, addr, data in subscriber.iter_datagrams():
                    try:
                        advertisement = parse_advertisement(data, self.version, src_addr=addr)
                    except ParseError as e:
                        logger.debug(f"Dropping datagram from {addr} on {socket_binding}: {e}")
                        continue
                    logger.debug(f"Collector received advertisement from {addr} on {socket_binding}: {advertisement}")
                    self._offer(advertisement)
        except asyncio.CancelledError:
            logger.debug("Advertisement collector task cancelled; exiting")
            self._end_of_stream()
            raise
        except SsdpIoError as e:
            logger.info(f"Advertisement collector task exiting with transport error: {e}")
            self._error = e
        except Exception as e:
            logger.info(f"Advertisement collector task exiting with exception: {e}")
            self._error = SsdpIoError(e)
        self._end_of_stream()
        logger.debug("Advertisement collector task exiting")

    def _offer(self, advertisement: Advertisement) -> None:
        if self.is_closed:
            return
        try:
            self.advertisements.put_nowait(advertisement)
        except asyncio.QueueFull:
            logger.warning(f"Advertisement queue full, dropping {advertisement}")

    def _end_of_stream(self) -> None:
        """Wake every waiter in next(). Pending advertisements are discarded once the listener is closed."""
        self._ended = True
        if self.is_closed:
            while not self.advertisements.empty():
                self.advertisements.get_nowait()
        try:
            self.advertisements.put_nowait(None)
        except asyncio.QueueFull:
            # the consumer will reach the end of stream after draining the queue
            pass

    def _shutdown(self) -> None:
        self._end_of_stream()
        self.set_final_result()

    def stop(self) -> None:
        """Stop listening and release the sockets. Safe to call from any thread or task, any number of times."""
        with self._closed_lock:
            if self._closed:
                return
            self._closed = True
        try:
            running_loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is self.loop:
            self._shutdown()
        elif not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._shutdown)

    async def next(self) -> Optional[Advertisement]:
        """Wait for the next advertisement.

        Returns None at end of stream; after stop() this is always the result. Raises SsdpIoError
        once, after any queued advertisements, if the listener ended because of a transport error.
        """
        if self.is_closed:
            return None
        if self._ended and self.advertisements.empty():
            # the end marker may have been dropped on a full queue
            return self._end_result()
        result = await self.advertisements.get()
        if result is None:
            # leave the marker for any other waiters
            try:
                self.advertisements.put_nowait(None)
            except asyncio.QueueFull:
                pass
            return self._end_result()
        if self.is_closed:
            return None
        return result

    def _end_result(self) -> None:
        """Raises the transport error that ended the stream, once. Later calls return None."""
        if not self.is_closed and self._error is not None and not self._error_reported:
            self._error_reported = True
            raise self._error
        return None

    async def iter_advertisements(self) -> AsyncIterator[Advertisement]:
        while True:
            advertisement = await self.next()
            if advertisement is None:
                break
            yield advertisement

    def __aiter__(self) -> AsyncIterator[Advertisement]:
        return self.iter_advertisements()

    async def __aenter__(self) -> SsdpListener:
        await super().__aenter__()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.stop()
        return await super().__aexit__(exc_type, exc, tb)

async def start_listener(
        version: ProtocolVersion=ProtocolVersion.V10,
        interface: Optional[NetworkInterface]=None,
        ip_version: IpVersion=IpVersion.V4,
        interfaces: Optional[Iterable[NetworkInterface]]=None,
      ) -> SsdpListener:
    """Create and start a listener. Raises SetupError, and leaves nothing running, if the
       multicast group cannot be joined."""
    listener = SsdpListener(version=version, interface=interface, ip_version=ip_version, interfaces=interfaces)
    await listener.start()
    return listener
