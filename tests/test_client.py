import asyncio
import socket
import time

import pytest

from ssdp_discovery_protocol import (
    NetworkInterface,
    ProtocolVersion,
    SearchTarget,
    SearchOptions,
    SsdpClient,
    SsdpSocketBinding,
    BindFailedError,
    NoUsableInterfaceError,
    SetupError,
    SsdpIoError,
    UnsupportedVersionError,
    search,
    search_sync,
    unicast_search,
)
from ssdp_discovery_protocol import client as client_module

LOOPBACK = NetworkInterface("lo", ["127.0.0.1"])


def make_response(usn):
    return (
        "HTTP/1.1 200 OK\r\n"
        "CACHE-CONTROL: max-age=1800\r\n"
        "EXT:\r\n"
        f"LOCATION: http://127.0.0.1:8080/{usn}.xml\r\n"
        "SERVER: Linux/6.1 UPnP/1.0 Harness/1.0\r\n"
        "ST: ssdp:all\r\n"
        f"USN: {usn}\r\n"
        "\r\n"
    ).encode()


@pytest.fixture
def sent(monkeypatch):
    """Records outgoing search requests instead of multicasting them."""
    requests = []

    def record_sendto(self, datagram, addr):
        requests.append((self, datagram, addr))

    monkeypatch.setattr(SsdpSocketBinding, "sendto", record_sendto)
    return requests


async def respond_after_request(sent, schedule):
    """Waits for the search request, then sends each (delay, data) datagram to the searching
       socket at the given time after the request."""
    harness = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    harness.bind(("127.0.0.1", 0))
    try:
        while len(sent) == 0:
            await asyncio.sleep(0.005)
        socket_binding = sent[0][0]
        t0 = time.monotonic()
        for delay, data in schedule:
            await asyncio.sleep(max(0.0, t0 + delay - time.monotonic()))
            harness.sendto(data, socket_binding.unicast_addr)
    finally:
        harness.close()


@pytest.mark.asyncio
async def test_search_collects_responses_in_arrival_order(sent):
    schedule = [
        (0.2, make_response("uuid:first")),
        (0.5, make_response("uuid:second")),
        (1.0, b"this is not an SSDP message\r\n\r\n"),
        (1.9, make_response("uuid:third")),
    ]
    options = SearchOptions(interface=LOOPBACK, target=SearchTarget.all(), max_wait_seconds=2)
    responder = asyncio.create_task(respond_after_request(sent, schedule))
    start = time.monotonic()
    responses = await search(options)
    elapsed = time.monotonic() - start
    await responder

    assert [r.unique_service_name for r in responses] == ["uuid:first", "uuid:second", "uuid:third"]
    assert responses[0].location_uri == "http://127.0.0.1:8080/uuid:first.xml"
    assert responses[0].src_addr[0] == "127.0.0.1"
    assert 1.9 <= elapsed < 2.75

    assert len(sent) == 1
    _, request, destination = sent[0]
    assert destination == ("239.255.255.250", 1900)
    assert request.is_search
    assert request.hdr_st == "ssdp:all"
    assert request.hdr_mx == 2


@pytest.mark.asyncio
async def test_search_without_replies_is_an_empty_success(sent):
    start = time.monotonic()
    responses = await search(SearchOptions(interface=LOOPBACK, max_wait_seconds=1))
    assert responses == []
    assert time.monotonic() - start >= 0.95
    assert len(sent) == 1


@pytest.mark.asyncio
async def test_non_ok_and_incomplete_responses_are_dropped(sent):
    schedule = [
        (0.05, make_response("uuid:one").replace(b"200 OK", b"500 Internal Server Error")),
        (0.1, make_response("uuid:two").replace(b"USN: uuid:two\r\n", b"")),
        (0.15, make_response("uuid:three")),
    ]
    responder = asyncio.create_task(respond_after_request(sent, schedule))
    responses = await search(SearchOptions(interface=LOOPBACK, max_wait_seconds=1))
    await responder
    assert [r.unique_service_name for r in responses] == ["uuid:three"]


@pytest.mark.asyncio
async def test_max_responses_ends_search_early(sent):
    schedule = [
        (0.05, make_response("uuid:one")),
        (0.1, make_response("uuid:two")),
    ]
    options = SearchOptions(interface=LOOPBACK, max_wait_seconds=3)
    responder = asyncio.create_task(respond_after_request(sent, schedule))
    start = time.monotonic()
    async with SsdpClient(options) as client:
        async with client.search(max_responses=1) as search_request:
            responses = [r async for r in search_request]
    await responder
    assert [r.unique_service_name for r in responses] == ["uuid:one"]
    assert time.monotonic() - start < 2.0


@pytest.mark.asyncio
async def test_failing_interfaces_are_skipped_when_searching_all(sent, monkeypatch):
    broken = NetworkInterface("broken0", ["192.0.2.99"])
    no_ipv4 = NetworkInterface("v6only0", ["fe80::5%v6only0"])
    real_open_socket = client_module.open_socket

    def open_socket(interface, ip_version):
        if interface is broken:
            raise BindFailedError("192.0.2.99", 0, OSError(99, "Cannot assign requested address"))
        return real_open_socket(interface, ip_version)

    monkeypatch.setattr(client_module, "open_socket", open_socket)
    async with SsdpClient(SearchOptions(max_wait_seconds=1), interfaces=[broken, no_ipv4, LOOPBACK]) as client:
        assert [b.interface for b in client.socket_bindings] == [LOOPBACK]


@pytest.mark.asyncio
async def test_no_usable_interface_is_a_setup_error(sent):
    no_ipv4 = NetworkInterface("v6only0", ["fe80::5%v6only0"])
    with pytest.raises(NoUsableInterfaceError) as excinfo:
        await search(SearchOptions(max_wait_seconds=1), interfaces=[no_ipv4])
    assert isinstance(excinfo.value, SetupError)
    assert excinfo.value.ip_version == "IPv4"
    assert excinfo.value.operation == "search"
    assert sent == []


@pytest.mark.asyncio
async def test_transport_error_is_surfaced(sent):
    options = SearchOptions(interface=LOOPBACK, max_wait_seconds=3)
    with pytest.raises(SsdpIoError):
        async with SsdpClient(options) as client:
            async with client.search() as search_request:
                loop = asyncio.get_running_loop()
                loop.call_later(0.1, client.error_received, client.socket_bindings[0], OSError(111, "Connection refused"))
                async for _ in search_request:
                    pass


@pytest.mark.asyncio
async def test_unicast_search_requires_version_1_1(sent):
    with pytest.raises(UnsupportedVersionError) as excinfo:
        await unicast_search(SearchOptions(interface=LOOPBACK), ("127.0.0.1", 1900))
    assert excinfo.value.version == "1.0"
    assert excinfo.value.operation == "Unicast search"
    assert sent == []


@pytest.mark.asyncio
async def test_unicast_search_sends_to_device(sent):
    options = SearchOptions(version=ProtocolVersion.V11, interface=LOOPBACK, max_wait_seconds=1)
    await unicast_search(options, ("127.0.0.1", 1900))
    _, request, destination = sent[0]
    assert destination == ("127.0.0.1", 1900)
    assert request.hdr_host == "127.0.0.1:1900"
    assert request.hdr_cp_fn is not None


def test_search_sync(sent):
    assert search_sync(SearchOptions(interface=LOOPBACK, max_wait_seconds=1)) == []
    assert len(sent) == 1
