import logging

import pytest

from ssdp_discovery_protocol import (
    SsdpDatagram,
    ProtocolVersion,
    IpVersion,
    SearchTarget,
    SearchOptions,
    ControlPoint,
    ProductVersion,
    AdvertisementKind,
    build_search_request,
    build_unicast_search_request,
    parse_search_response,
    parse_advertisement,
    MalformedHeaderError,
    MissingRequiredHeaderError,
    UnsupportedNotificationTypeError,
    UnexpectedMessageError,
    UnsupportedVersionError,
)


def make_notify(nts, location=True, extra=b""):
    data = (
        b"NOTIFY * HTTP/1.1\r\n"
        b"HOST: 239.255.255.250:1900\r\n"
        b"CACHE-CONTROL: max-age=1800\r\n"
    )
    if location:
        data += b"LOCATION: http://192.168.1.20:49152/desc.xml\r\n"
    data += (
        b"NT: urn:schemas-upnp-org:device:MediaServer:1\r\n"
        b"NTS: " + nts + b"\r\n"
        b"USN: uuid:abcd::urn:schemas-upnp-org:device:MediaServer:1\r\n"
    )
    return data + extra + b"\r\n"


RESPONSE_V11 = (
    b"HTTP/1.1 200 OK\r\n"
    b"CACHE-CONTROL: max-age=120\r\n"
    b"DATE: Mon, 19 Oct 2026 10:00:00 GMT\r\n"
    b"EXT:\r\n"
    b"LOCATION: http://192.168.1.20:49152/desc.xml\r\n"
    b"SERVER: Linux/5.10 UPnP/1.1 Acme/2.0\r\n"
    b"ST: upnp:rootdevice\r\n"
    b"USN: uuid:abcd::upnp:rootdevice\r\n"
    b"BOOTID.UPNP.ORG: 7\r\n"
    b"CONFIGID.UPNP.ORG: 42\r\n"
    b"X-ACME-MODE: eco\r\n"
    b"\r\n"
)


def test_search_request_v10_headers_in_order():
    options = SearchOptions(target=SearchTarget.all(), max_wait_seconds=3)
    request = build_search_request(options)
    assert request.encode() == (
        b"M-SEARCH * HTTP/1.1\r\n"
        b"HOST: 239.255.255.250:1900\r\n"
        b"MAN: \"ssdp:discover\"\r\n"
        b"MX: 3\r\n"
        b"ST: ssdp:all\r\n"
        b"\r\n"
    )


def test_search_request_v11_adds_user_agent_and_cpfn():
    options = SearchOptions(
        version=ProtocolVersion.V11,
        control_point=ControlPoint("Living Room Remote"),
        product=ProductVersion("Remote", "1.0"),
    )
    request = build_search_request(options)
    assert request["CPFN.UPNP.ORG"] == "Living Room Remote"
    assert " UPnP/1.1 Remote/1.0" in request.hdr_user_agent
    assert request.hdr_st == "upnp:rootdevice"
    assert "CPUUID.UPNP.ORG" not in request


def test_search_request_v20_adds_control_point_details():
    options = SearchOptions(
        version=ProtocolVersion.V20,
        control_point=ControlPoint("cp", uuid="uuid:cp-1", tcp_port=5000),
    )
    request = build_search_request(options)
    assert request["CPUUID.UPNP.ORG"] == "uuid:cp-1"
    assert request["TCPPORT.UPNP.ORG"] == "5000"
    assert "UPnP/2.0" in request["USER-AGENT"]


def test_search_request_ipv6_host():
    request = build_search_request(SearchOptions(ip_version=IpVersion.V6))
    assert request.hdr_host == "[FF02::C]:1900"


def test_domain_override_is_applied_to_st():
    options = SearchOptions(
        target=SearchTarget.device_by_type("MediaServer", "1"),
        domain_override="schemas-example-com",
    )
    assert build_search_request(options).hdr_st == "urn:schemas-example-com:device:MediaServer:1"


@pytest.mark.parametrize("version", list(ProtocolVersion))
def test_search_request_round_trip(version):
    options = SearchOptions(
        version=version,
        target=SearchTarget.service_by_type("ContentDirectory", "1"),
        max_wait_seconds=4,
    )
    decoded = SsdpDatagram.decode(build_search_request(options).encode(), version)
    assert decoded.is_search
    assert decoded.hdr_st == "urn:schemas-upnp-org:service:ContentDirectory:1"
    assert decoded.hdr_mx == 4
    assert decoded.hdr_man == '"ssdp:discover"'
    assert decoded.hdr_host == "239.255.255.250:1900"
    assert ("CPFN.UPNP.ORG" in decoded) == (version >= ProtocolVersion.V11)


def test_max_wait_above_ceiling_is_clamped_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="ssdp_discovery_protocol"):
        options = SearchOptions(max_wait_seconds=10)
    assert options.max_wait_seconds == 5
    assert build_search_request(options).hdr_mx == 5
    assert any("clamping" in r.getMessage() for r in caplog.records)


def test_max_wait_below_floor_is_rejected():
    with pytest.raises(ValueError):
        SearchOptions(max_wait_seconds=0)


def test_search_options_are_immutable():
    options = SearchOptions()
    with pytest.raises(AttributeError):
        options.max_wait_seconds = 4


def test_packet_ttl_defaults_by_version():
    assert SearchOptions(version=ProtocolVersion.V10).packet_ttl == 4
    assert SearchOptions(version=ProtocolVersion.V11).packet_ttl == 2


def test_invalid_product_is_rejected_for_v11():
    with pytest.raises(ValueError):
        SearchOptions(version=ProtocolVersion.V11, product=ProductVersion("Bad/Name", "1.0"))
    with pytest.raises(ValueError):
        SearchOptions(version=ProtocolVersion.V11, product=ProductVersion("Name", "one"))


def test_unicast_search_request():
    options = SearchOptions(version=ProtocolVersion.V11)
    request = build_unicast_search_request(options, ("192.168.1.20", 1900))
    assert request.hdr_host == "192.168.1.20:1900"
    assert "MX" not in request
    with pytest.raises(UnsupportedVersionError):
        build_unicast_search_request(SearchOptions(version=ProtocolVersion.V10), ("192.168.1.20", 1900))


def test_parse_search_response_v11():
    response = parse_search_response(RESPONSE_V11, ProtocolVersion.V11, src_addr=("192.168.1.20", 1900))
    assert response.cache_control_max_age == 120
    assert response.location_uri == "http://192.168.1.20:49152/desc.xml"
    assert response.server_string == "Linux/5.10 UPnP/1.1 Acme/2.0"
    assert response.search_target_echo == "upnp:rootdevice"
    assert response.unique_service_name == "uuid:abcd::upnp:rootdevice"
    assert response.boot_id == 7
    assert response.config_id == 42
    assert response.search_port is None
    assert response.raw_headers["X-ACME-MODE"] == "eco"
    assert response.src_addr == ("192.168.1.20", 1900)


def test_parse_search_response_v10_ignores_boot_id():
    response = parse_search_response(RESPONSE_V11, ProtocolVersion.V10)
    assert response.boot_id is None
    assert response.config_id is None


def test_unknown_headers_survive_re_encoding():
    response = parse_search_response(RESPONSE_V11)
    reencoded = SsdpDatagram(response.status_line, headers=response.raw_headers).encode()
    assert SsdpDatagram.decode(reencoded).raw_headers == SsdpDatagram.decode(RESPONSE_V11).raw_headers
    assert b"X-ACME-MODE: eco\r\n" in reencoded


def test_parse_search_response_bad_max_age():
    data = RESPONSE_V11.replace(b"max-age=120", b"max-age=later")
    with pytest.raises(MalformedHeaderError):
        parse_search_response(data)


def test_parse_search_response_rejects_requests_and_errors():
    with pytest.raises(UnexpectedMessageError):
        parse_search_response(make_notify(b"ssdp:alive"))
    with pytest.raises(UnexpectedMessageError):
        parse_search_response(RESPONSE_V11.replace(b"200 OK", b"404 Not Found"))


def test_byebye_without_location_parses():
    advertisement = parse_advertisement(make_notify(b"ssdp:byebye", location=False))
    assert advertisement.kind == AdvertisementKind.BYEBYE
    assert advertisement.location_uri is None
    assert advertisement.unique_service_name == "uuid:abcd::urn:schemas-upnp-org:device:MediaServer:1"


def test_byebye_ignores_location():
    advertisement = parse_advertisement(make_notify(b"ssdp:byebye"))
    assert advertisement.location_uri is None


def test_alive_without_location_is_missing_header():
    with pytest.raises(MissingRequiredHeaderError) as excinfo:
        parse_advertisement(make_notify(b"ssdp:alive", location=False))
    assert excinfo.value.name == "LOCATION"


def test_alive():
    advertisement = parse_advertisement(make_notify(b"ssdp:alive"), src_addr=("192.168.1.20", 1900))
    assert advertisement.kind == AdvertisementKind.ALIVE
    assert advertisement.notification_type == "urn:schemas-upnp-org:device:MediaServer:1"
    assert advertisement.location_uri == "http://192.168.1.20:49152/desc.xml"
    assert advertisement.cache_control_max_age == 1800
    assert advertisement.to_jsonable()["src_addr"] == "192.168.1.20:1900"


def test_update_reads_next_boot_id_from_v11():
    data = make_notify(b"ssdp:update", extra=b"BOOTID.UPNP.ORG: 3\r\nNEXTBOOTID.UPNP.ORG: 4\r\n")
    advertisement = parse_advertisement(data, ProtocolVersion.V11)
    assert advertisement.kind == AdvertisementKind.UPDATE
    assert advertisement.boot_id == 3
    assert advertisement.next_boot_id == 4
    assert parse_advertisement(data, ProtocolVersion.V10).next_boot_id is None


def test_update_without_location_is_missing_header():
    with pytest.raises(MissingRequiredHeaderError):
        parse_advertisement(make_notify(b"ssdp:update", location=False))


def test_unknown_nts():
    with pytest.raises(UnsupportedNotificationTypeError) as excinfo:
        parse_advertisement(make_notify(b"ssdp:propchange"))
    assert excinfo.value.nts == "ssdp:propchange"


def test_search_request_is_not_an_advertisement():
    request = build_search_request(SearchOptions()).encode()
    with pytest.raises(UnexpectedMessageError):
        parse_advertisement(request)


def test_parse_search_response_without_reason_phrase():
    response = parse_search_response(RESPONSE_V11.replace(b"200 OK", b"200"), ProtocolVersion.V11)
    assert response.status_code == 200
    assert response.unique_service_name == "uuid:abcd::upnp:rootdevice"
