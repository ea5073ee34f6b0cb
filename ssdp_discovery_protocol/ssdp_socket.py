#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpSocket -- An abstract base class for an SSDP socket that can:

  1. Listen on either a multicast or unicast address, on one or more interfaces
  2. Receive raw datagrams from remote nodes and deliver them to any number of async subscribers
  3. Send SsdpDatagrams to a remote multicast or unicast address

  The subscriber interface is a simple async iterator that returns a sequence of
  (SsdpSocketBinding, HostAndPort, bytes) tuples until the socket is closed. Decoding is left
  to the subscriber, so that a datagram that fails to parse affects only that datagram.

  Subclasses must implement the add_socket_bindings() method to create and bind the sockets that will be used to
  receive and send datagrams.

  Instances must be created while an asyncio event loop is running.
"""

from __future__ import annotations


import asyncio
from asyncio import Future
import socket
import time
from abc import ABC, abstractmethod

from .internal_types import *
from .pkg_logging import logger
from .exceptions import SsdpError, SsdpIoError, TimedOut
from .ssdp_datagram import SsdpDatagram
from .network_interface import NetworkInterface

MAX_QUEUE_SIZE = 1000

ReceivedDatagram = Tuple['SsdpSocketBinding', HostAndPort, bytes]
"""A (socket_binding, src_addr, raw_data) tuple delivered to subscribers."""

class SsdpSocketBinding:
    """
    An encapsulation of the binding of an SsdpSocket to a single low-level
    bound datagram socket. There is one instance of this class created for each
    low-level socket that is in use (typically one per network interface).

    Instances of this class are created prior to loop.create_datagram_endpoint,
    and are later bound to the _SsdpSocketProtocol instance that is created by
    loop.create_datagram_endpoint.
    """

    ssdp_socket: Optional[SsdpSocket] = None
    """The SsdpSocket that is bound to this low-level socket. """

    index: int = -1
    """The index of this socket binding within SsdpSocket. Set to -1 until this socket binding is added."""

    sock: Optional[socket.socket] = None
    """The low-level socket that is bound to this SsdpSocket."""

    interface: Optional[NetworkInterface] = None
    """The network interface the socket was opened on, if known."""

    _protocol: Optional[_SsdpSocketProtocol] = None
    """The adapter between the asyncio transport and this SsdpSocket.
       This is set when the _SsdpSocketProtocol instance is created by
       loop.create_datagram_endpoint()."""

    _transport: Optional[asyncio.DatagramTransport] = None
    """The asyncio transport that is bound to this SsdpSocket. This is set
       either when _SsdpSocketProtocol.connection_made() is called, or
       when the transport is returned to SsdpSocket by
       loop.create_datagram_endpoint()."""

    unicast_addr: HostAndPort
    """The unicast ip address and port associated with this binding. If
       the binding is unicast then this will be the same as the socket
       local IP address."""

    sockname: str
    """The name of the socket as it should be displayed in logs, etc"""

    def __init__(
            self,
            sock: socket.socket,
            unicast_addr: Optional[HostAndPort]=None,
            sockname: Optional[str]=None,
            interface: Optional[NetworkInterface]=None,
          ):
        self.sock = sock
        self.interface = interface
        if unicast_addr is None:
            unicast_addr = sock.getsockname()[:2]
            assert isinstance(unicast_addr, tuple)
        self.unicast_addr = unicast_addr
        if sockname is None:
            bound_addr = sock.getsockname()[:2]
            if bound_addr == unicast_addr:
                sockname = str(bound_addr)
            else:
                sockname = f"{bound_addr}@{unicast_addr}"
            if interface is not None:
                sockname = f"{interface.name}:{sockname}"
        self.sockname = sockname

    async def attach_to_ssdp_socket(self, ssdp_socket: SsdpSocket, index: int) -> None:
        if self.index >= 0:
            raise SsdpError(f"Attempt to reattach SsdpSocketBinding: {self}")
        assert self.ssdp_socket is None or self.ssdp_socket == ssdp_socket
        self.ssdp_socket = ssdp_socket
        self.index = index

    @property
    def transport(self) -> Optional[asyncio.DatagramTransport]:
        return self._transport

    @transport.setter
    def transport(self, transport: Optional[asyncio.DatagramTransport]) -> None:
        if transport != self._transport:
            assert self._transport is None or transport is None
        self._transport = transport

    @property
    def protocol(self) -> Optional[_SsdpSocketProtocol]:
        return self._protocol

    @protocol.setter
    def protocol(self, protocol: _SsdpSocketProtocol) -> None:
        if protocol != self._protocol:
            assert self._protocol is None
        self._protocol = protocol

    def sendto(self, datagram: Union[SsdpDatagram, bytes], addr: HostAndPort) -> None:
        """Send a datagram. Raises SsdpIoError if the socket has been closed."""
        logger.debug(f"Sending datagram via {self} to {addr}: {datagram}")
        if self.transport is None:
            raise SsdpIoError(OSError(f"Socket binding {self} is closed"))
        data = datagram.encode() if isinstance(datagram, SsdpDatagram) else datagram
        self.transport.sendto(data, addr)

    def __str__(self) -> str:
        return f"SsdpSocketBinding({self.index}: {self.sockname})"

    def __repr__(self) -> str:
        return str(self)

class _SsdpSocketProtocol(asyncio.DatagramProtocol, ABC):
    """An adapter between the asyncio transport and SsdpSocket. There is one instance of this class
       created for each low-level socket that is created (typically one per network interface).
       """
    socket_binding: SsdpSocketBinding

    def __init__(self, socket_binding: SsdpSocketBinding):
        self.socket_binding = socket_binding
        socket_binding.protocol = self

    @property
    def ssdp_socket(self) -> SsdpSocket:
        assert self.socket_binding.ssdp_socket is not None
        return self.socket_binding.ssdp_socket

    @property
    def transport(self) -> Optional[asyncio.DatagramTransport]:
        return self.socket_binding.transport

    @transport.setter
    def transport(self, transport: Optional[asyncio.DatagramTransport]) -> None:
        self.socket_binding.transport = transport

    def connection_made(self, transport: asyncio.BaseTransport):
        """Called when a connection is made."""

        # Note: asyncio datagram transports do not inherit from asyncio.DatagramTransport, though
        # they implement the same interface, so no isinstance check is made here.
        assert self.transport is None
        try:
            self.transport = transport # type: ignore[assignment]
            self.ssdp_socket.connection_made(self.socket_binding)
        except BaseException as e:
            self.ssdp_socket.set_final_exception(e)
            raise

    def datagram_received(self, data: bytes, addr: Tuple[str, int]):
        """Called when some datagram is received."""
        try:
            self.ssdp_socket.datagram_received(self.socket_binding, addr[:2], data)
        except BaseException as e:
            self.ssdp_socket.set_final_exception(e)
            raise

    def error_received(self, exc: Exception):
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        try:
            self.ssdp_socket.error_received(self.socket_binding, exc)
        except BaseException as e:
            self.ssdp_socket.set_final_exception(e)
            raise

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        try:
            self.ssdp_socket.connection_lost(self.socket_binding, exc)
        except BaseException as e:
            self.ssdp_socket.set_final_exception(e)
            raise
        self.transport = None


class SsdpDatagramSubscriber(
        AsyncContextManager['SsdpDatagramSubscriber'],
        AsyncIterable[ReceivedDatagram]
      ):
    """A bounded queue of datagrams received by an SsdpSocket, ending with an end-of-stream
       marker when the socket closes."""

    ssdp_socket: SsdpSocket
    queue: asyncio.Queue[Optional[ReceivedDatagram]]
    final_result: Future[None]
    eos: bool = False
    eos_exc: Optional[BaseException] = None

    def __init__(self, ssdp_socket: SsdpSocket, max_queue_size: int=MAX_QUEUE_SIZE):
        self.ssdp_socket = ssdp_socket
        self.queue = asyncio.Queue(max_queue_size)
        self.final_result = asyncio.get_running_loop().create_future()

    async def __aenter__(self) -> SsdpDatagramSubscriber:
        await self.ssdp_socket.add_subscriber(self)
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.ssdp_socket.remove_subscriber(self)
        self.set_final_result()
        try:
            # ensure that final_result has been awaited
            await self.final_result
        except Exception:
            pass
        return False

    async def iter_datagrams(self) -> AsyncIterator[ReceivedDatagram]:
        while True:
            result = await self.receive()
            if result is None:
                break
            yield result

    def __aiter__(self) -> AsyncIterator[ReceivedDatagram]:
        return self.iter_datagrams()

    def _wake_waiters(self) -> None:
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            # queue is full so waiters will wake up soon
            pass

    def set_final_result(self) -> None:
        if not self.final_result.done():
            self.final_result.set_result(None)
            self._wake_waiters()
            self.eos = True
            self.eos_exc = None

    def set_final_exception(self, e: BaseException) -> None:
        if not self.final_result.done():
            self.final_result.set_exception(e)
            self._wake_waiters()
            self.eos = True
            self.eos_exc = None

    async def receive(self) -> Optional[ReceivedDatagram]:
        """Wait for the next datagram. Returns None at end of stream, or raises the
           exception that ended the stream."""
        if self.final_result.done():
            await self.final_result
            return None
        if self.eos and self.queue.empty():
            if self.eos_exc is None:
                self.set_final_result()
            else:
                self.set_final_exception(self.eos_exc)
            await self.final_result
            return None
        try:
            result = await self.queue.get()
            self.queue.task_done()
            if result is None:
                if not self.final_result.done():
                    assert self.eos
                    if self.eos_exc is None:
                        self.set_final_result()
                    else:
                        self.set_final_exception(self.eos_exc)
                await self.final_result
                return None
        except asyncio.CancelledError:
            # a cancelled wait (e.g., a deadline) leaves the stream intact
            raise
        except BaseException as e:
            self.set_final_exception(e)
            raise
        return result

    async def receive_with_deadline(self, deadline: float) -> Optional[ReceivedDatagram]:
        """Wait for the next datagram until a time.monotonic() deadline.

        Returns None at end of stream. Raises TimedOut when the deadline passes first.
        """
        remaining_time = deadline - time.monotonic()
        if remaining_time <= 0.0:
            raise TimedOut()
        try:
            return await asyncio.wait_for(self.receive(), remaining_time)
        except asyncio.TimeoutError:
            raise TimedOut() from None

    def on_datagram(self, socket_binding: SsdpSocketBinding, addr: HostAndPort, data: bytes) -> None:
        if not self.eos and not self.final_result.done():
            try:
                self.queue.put_nowait((socket_binding, addr, data))
            except asyncio.QueueFull:
                logger.warning(f"Queue full, dropping datagram from {socket_binding} {addr}: {data!r}")

    def on_end_of_stream(self, exc: Optional[BaseException]=None) -> None:
        if not self.eos and not self.final_result.done():
            self.eos = True
            self.eos_exc = exc
            self._wake_waiters()

class SsdpSocket(AsyncContextManager['SsdpSocket']):
    """
    An abstract async SSDP socket that can:

      1. Listen on either a multicast or unicast address
      2. Receive raw datagrams from remote nodes and deliver them to any number of async subscribers
      3. Send SsdpDatagrams to a remote multicast or unicast address

      Subclasses must implement the add_socket_bindings() method to create and bind the sockets that will be used to
      receive and send datagrams.
    """

    socket_bindings: List[SsdpSocketBinding]
    """A list of SsdpSocketBinding instances, one for each low-level socket that is in use."""

    final_result: Future[None]
    """A future that is set when the ssdp_socket is stopped."""

    datagram_subscribers: Set[SsdpDatagramSubscriber]
    """A set of subscribers that wish to receive datagrams."""

    loop: asyncio.AbstractEventLoop
    """The event loop that this socket runs on."""

    def __init__(self):
        self.loop = asyncio.get_running_loop()
        self.final_result = self.loop.create_future()
        self.socket_bindings = []
        self.datagram_subscribers = set()

    async def add_subscriber(self, subscriber: SsdpDatagramSubscriber) -> None:
        self.datagram_subscribers.add(subscriber)
        if self.final_result.done():
            subscriber.on_end_of_stream(self.final_result.exception() if not self.final_result.cancelled() else None)

    async def remove_subscriber(self, subscriber: SsdpDatagramSubscriber) -> None:
        self.datagram_subscribers.discard(subscriber)

    async def add_socket_binding(self, socket_binding: SsdpSocketBinding) -> None:
        if socket_binding.index >= 0:
            raise SsdpError(f"Attempt to reattach SsdpSocketBinding: {socket_binding}")
        i = len(self.socket_bindings)
        self.socket_bindings.append(socket_binding)
        await socket_binding.attach_to_ssdp_socket(self, i)
        logger.debug(f"Added socket binding {i}: {socket_binding}")

    @abstractmethod
    async def add_socket_bindings(self) -> None:
        """Abstract method that creates and binds the sockets that will be used to receive
           and send datagrams (typically one per interface), and adds them with self.add_socket_binding().
           Must be overridden by subclasses."""
        raise NotImplementedError()

    async def finish_start(self) -> None:
        """Called after the socket is up and running.  Subclasses can override to do additional
           initialization."""
        pass

    async def start(self) -> None:
        try:
            await self.add_socket_bindings()
            if len(self.socket_bindings) == 0:
                raise SsdpError("No datagram sockets were added to SsdpSocket")

            for socket_binding in self.socket_bindings:
                untyped_transport, protocol = await self.loop.create_datagram_endpoint(
                    lambda: _SsdpSocketProtocol(socket_binding),
                    sock=socket_binding.sock
                  )
                # asyncio datagram transports do not inherit from asyncio.DatagramTransport; see
                # _SsdpSocketProtocol.connection_made.
                transport: asyncio.DatagramTransport = untyped_transport # type: ignore[assignment]
                assert isinstance(protocol, _SsdpSocketProtocol)
                logger.debug(f"Created datagram endpoint for {socket_binding}. transport={transport}, protocol={protocol}")
                socket_binding.protocol = protocol
                socket_binding.transport = transport

            await self.finish_start()

        except BaseException as e:
            self.set_final_exception(e)
            try:
                await self.wait_for_done()
            except BaseException:
                pass
            raise

    def stop(self) -> None:
        """Stops the SsdpSocket. Must be called on the event loop thread."""
        self.set_final_result()

    async def wait_for_dependents_done(self) -> None:
        """Called after final_result has been awaited.  Subclasses can override to do additional
           cleanup."""
        pass

    async def wait_for_done(self) -> None:
        try:
            await self.final_result
        finally:
            await self.wait_for_dependents_done()

    async def stop_and_wait(self) -> None:
        self.stop()
        await self.wait_for_done()

    def connection_made(self, socket_binding: SsdpSocketBinding) -> None:
        """Called when a connection is made."""
        logger.debug(f"Connection made: {socket_binding}")

    def datagram_received(self, socket_binding: SsdpSocketBinding, addr: HostAndPort, data: bytes):
        """Called when some datagram is received."""
        logger.debug(f"Received datagram from {addr} on {socket_binding}: {data!r}")
        subscribers = list(self.datagram_subscribers)
        for subscriber in subscribers:
            try:
                subscriber.on_datagram(socket_binding, addr, data)
            except Exception as e:
                logger.warning(f"Subscriber raised exception processing datagram from {addr}: {e}")

    def _end_subscribers(self, exc: Optional[BaseException]) -> None:
        subscribers = list(self.datagram_subscribers)
        for subscriber in subscribers:
            try:
                subscriber.on_end_of_stream(exc)
            except Exception as e:
                logger.warning(f"Subscriber raised exception processing end of stream: {e}")

    def error_received(self, socket_binding: SsdpSocketBinding, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        logger.info(f"Error received from transport {socket_binding}: {exc}")
        io_error = SsdpIoError(exc)
        self._end_subscribers(io_error)
        self.set_final_exception(io_error)

    def connection_lost(self, socket_binding: SsdpSocketBinding, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        logger.debug(f"Connection to transport lost on {socket_binding}, exc={exc}")
        io_error = None if exc is None else SsdpIoError(exc)
        self._end_subscribers(io_error)
        if io_error is None:
            self.set_final_result()
        else:
            self.set_final_exception(io_error)

    def _close_all_transports(self) -> None:
        for socket_binding in self.socket_bindings:
            if not socket_binding.transport is None:
                try:
                    socket_binding.transport.close()
                except Exception as e:
                    logger.error(f"Error closing transport on {socket_binding}: {e}")
                socket_binding.transport = None

    def _close_all_socks(self) -> None:
        for socket_binding in self.socket_bindings:
            if not socket_binding.sock is None:
                try:
                    socket_binding.sock.close()
                    socket_binding.sock = None
                except OSError as e:
                    logger.error(f"Error closing socket on {socket_binding}: {e}")

    def set_final_exception(self, exc: BaseException) -> None:
        assert not exc is None
        if not self.final_result.done():
            logger.debug(f"SsdpSocket: Setting final exception: {exc}")
            self.final_result.set_exception(exc)
            self._end_subscribers(exc)
            self._close_all_transports()
            self._close_all_socks()

    def set_final_result(self) -> None:
        if not self.final_result.done():
            logger.debug(f"SsdpSocket: Setting final result to success")
            self.final_result.set_result(None)
            self._end_subscribers(None)
            self._close_all_transports()
            self._close_all_socks()

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        if exc is None:
            self.set_final_result()
        else:
            self.set_final_exception(exc)
        try:
            # ensure that final_result has been awaited
            await self.wait_for_done()
        except Exception:
            pass
        return False
