import asyncio
import socket
import threading

import pytest

from ssdp_discovery_protocol import (
    NetworkInterface,
    ProtocolVersion,
    AdvertisementKind,
    SsdpListener,
    JoinFailedError,
    NoUsableInterfaceError,
    SetupError,
    SsdpIoError,
    start_listener,
)
from ssdp_discovery_protocol import listener as listener_module

LOOPBACK = NetworkInterface("lo", ["127.0.0.1"])

ALIVE = (
    b"NOTIFY * HTTP/1.1\r\n"
    b"HOST: 239.255.255.250:1900\r\n"
    b"CACHE-CONTROL: max-age=1800\r\n"
    b"LOCATION: http://127.0.0.1:49152/desc.xml\r\n"
    b"NT: upnp:rootdevice\r\n"
    b"NTS: ssdp:alive\r\n"
    b"SERVER: Linux/6.1 UPnP/1.0 Harness/1.0\r\n"
    b"USN: uuid:harness::upnp:rootdevice\r\n"
    b"\r\n"
)

BYEBYE = (
    b"NOTIFY * HTTP/1.1\r\n"
    b"HOST: 239.255.255.250:1900\r\n"
    b"NT: upnp:rootdevice\r\n"
    b"NTS: ssdp:byebye\r\n"
    b"USN: uuid:harness::upnp:rootdevice\r\n"
    b"\r\n"
)

M_SEARCH = (
    b"M-SEARCH * HTTP/1.1\r\n"
    b"HOST: 239.255.255.250:1900\r\n"
    b"MAN: \"ssdp:discover\"\r\n"
    b"MX: 2\r\n"
    b"ST: ssdp:all\r\n"
    b"\r\n"
)


@pytest.fixture
def opened(monkeypatch):
    """Replaces the multicast listener socket with a unicast loopback socket on an ephemeral port,
       so that advertisements can be delivered without joining a group."""
    sockets = []

    def open_socket(interface, ip_version, multicast_listener=False):
        assert multicast_listener
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind(("127.0.0.1", 0))
        sockets.append(sock)
        return sock

    def join_multicast_group(sock, version, ip_version, interface):
        return []

    monkeypatch.setattr(listener_module, "open_socket", open_socket)
    monkeypatch.setattr(listener_module, "join_multicast_group", join_multicast_group)
    return sockets


@pytest.fixture
def sender():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    yield sock
    sock.close()


def listening_addr(listener):
    return listener.socket_bindings[0].sock.getsockname()


@pytest.mark.asyncio
async def test_next_returns_advertisements_and_drops_other_datagrams(opened, sender):
    async with SsdpListener(interface=LOOPBACK) as listener:
        addr = listening_addr(listener)
        sender.sendto(b"garbage\r\n\r\n", addr)
        sender.sendto(M_SEARCH, addr)
        sender.sendto(ALIVE, addr)
        sender.sendto(BYEBYE, addr)

        advertisement = await asyncio.wait_for(listener.next(), 2.0)
        assert advertisement.kind == AdvertisementKind.ALIVE
        assert advertisement.unique_service_name == "uuid:harness::upnp:rootdevice"
        assert advertisement.location_uri == "http://127.0.0.1:49152/desc.xml"
        assert advertisement.src_addr == sender.getsockname()

        advertisement = await asyncio.wait_for(listener.next(), 2.0)
        assert advertisement.kind == AdvertisementKind.BYEBYE
        assert advertisement.location_uri is None


@pytest.mark.asyncio
async def test_async_iteration_ends_at_stop(opened, sender):
    async with SsdpListener(interface=LOOPBACK) as listener:
        addr = listening_addr(listener)
        sender.sendto(ALIVE, addr)
        sender.sendto(BYEBYE, addr)
        kinds = []
        async for advertisement in listener:
            kinds.append(advertisement.kind)
            if len(kinds) == 2:
                listener.stop()
        assert kinds == [AdvertisementKind.ALIVE, AdvertisementKind.BYEBYE]


@pytest.mark.asyncio
async def test_stop_wakes_pending_next(opened):
    async with SsdpListener(interface=LOOPBACK) as listener:
        pending = asyncio.create_task(listener.next())
        await asyncio.sleep(0.1)
        assert not pending.done()
        listener.stop()
        assert await asyncio.wait_for(pending, 1.0) is None
        assert await listener.next() is None
        assert listener.is_closed
    assert opened[0].fileno() == -1


@pytest.mark.asyncio
async def test_stop_from_another_thread(opened):
    async with SsdpListener(interface=LOOPBACK) as listener:
        pending = asyncio.create_task(listener.next())
        await asyncio.sleep(0.05)
        stopper = threading.Thread(target=listener.stop)
        stopper.start()
        try:
            assert await asyncio.wait_for(pending, 1.0) is None
        finally:
            stopper.join()
        # a second stop is harmless
        listener.stop()
        assert await listener.next() is None


@pytest.mark.asyncio
async def test_queued_advertisements_are_discarded_after_stop(opened, sender):
    async with SsdpListener(interface=LOOPBACK) as listener:
        sender.sendto(ALIVE, listening_addr(listener))
        for _ in range(100):
            if not listener.advertisements.empty():
                break
            await asyncio.sleep(0.01)
        assert not listener.advertisements.empty()
        listener.stop()
        assert await listener.next() is None


@pytest.mark.asyncio
async def test_full_queue_drops_advertisements(opened, sender):
    async with SsdpListener(interface=LOOPBACK, max_queue_size=1) as listener:
        addr = listening_addr(listener)
        sender.sendto(ALIVE, addr)
        sender.sendto(BYEBYE, addr)
        await asyncio.sleep(0.2)
        first = await asyncio.wait_for(listener.next(), 1.0)
        assert first.kind == AdvertisementKind.ALIVE
        assert listener.advertisements.empty()


@pytest.mark.asyncio
async def test_transport_error_ends_stream_with_error(opened):
    async with SsdpListener(interface=LOOPBACK) as listener:
        listener.error_received(listener.socket_bindings[0], OSError(100, "Network is down"))
        with pytest.raises(SsdpIoError):
            await asyncio.wait_for(listener.next(), 1.0)
        assert await asyncio.wait_for(listener.next(), 1.0) is None


@pytest.mark.asyncio
async def test_join_failure_is_a_setup_error_and_closes_socket(opened, monkeypatch):
    def join_multicast_group(sock, version, ip_version, interface):
        raise JoinFailedError("239.255.255.250", OSError(19, "No such device"))

    monkeypatch.setattr(listener_module, "join_multicast_group", join_multicast_group)
    with pytest.raises(JoinFailedError):
        await start_listener(interface=LOOPBACK)
    assert opened[0].fileno() == -1


@pytest.mark.asyncio
async def test_no_joinable_interface_is_a_setup_error(opened, monkeypatch):
    def join_multicast_group(sock, version, ip_version, interface):
        raise JoinFailedError("239.255.255.250", OSError(19, "No such device"))

    monkeypatch.setattr(listener_module, "join_multicast_group", join_multicast_group)
    with pytest.raises(NoUsableInterfaceError) as excinfo:
        await start_listener(interfaces=[LOOPBACK, NetworkInterface("eth9", ["192.0.2.10"])])
    assert isinstance(excinfo.value, SetupError)
    assert excinfo.value.ip_version == "IPv4"
    assert len(opened) == 2
    assert all(sock.fileno() == -1 for sock in opened)


@pytest.mark.asyncio
async def test_start_listener(opened, sender):
    listener = await start_listener(version=ProtocolVersion.V11, interface=LOOPBACK)
    try:
        sender.sendto(
            ALIVE.replace(b"\r\n\r\n", b"\r\nBOOTID.UPNP.ORG: 9\r\n\r\n"),
            listening_addr(listener),
        )
        advertisement = await asyncio.wait_for(listener.next(), 2.0)
        assert advertisement.boot_id == 9
    finally:
        listener.stop()
        await listener.wait_for_done()


@pytest.mark.asyncio
async def test_transport_error_with_full_queue_is_surfaced_after_draining(opened, sender):
    async with SsdpListener(interface=LOOPBACK, max_queue_size=1) as listener:
        sender.sendto(ALIVE, listening_addr(listener))
        for _ in range(100):
            if listener.advertisements.full():
                break
            await asyncio.sleep(0.01)
        assert listener.advertisements.full()
        listener.error_received(listener.socket_bindings[0], OSError(100, "Network is down"))
        await asyncio.sleep(0.1)

        advertisement = await asyncio.wait_for(listener.next(), 1.0)
        assert advertisement.kind == AdvertisementKind.ALIVE
        with pytest.raises(SsdpIoError):
            await asyncio.wait_for(listener.next(), 1.0)
        assert await asyncio.wait_for(listener.next(), 1.0) is None
