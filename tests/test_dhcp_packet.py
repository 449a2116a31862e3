from ipaddress import IPv4Address

import pytest

from edgenet.dhcp_options import (
    DataUnderflowError,
    DomainNameServer,
    InvalidHlenError,
    IpAddressLeaseTime,
    MessageType,
    MessageTypeOption,
    MissingCookieError,
    Options,
    Router,
    ServerIdentifier,
    SubnetMask,
    CaptiveUrl,
)
from edgenet.dhcp_packet import COOKIE, Packet, Settings

MAC = bytes((0x02, 0, 0, 0, 0, 0x01))


def _request(options=None, our_ip=None, broadcast=True):
    return Packet.new_request(
        MAC, 0xDEADBEEF, 3, our_ip, broadcast, options or Options.discover()
    )


def test_new_request_fields():
    packet = _request(our_ip="10.0.0.5")
    assert packet.reply is False
    assert packet.chaddr == MAC + bytes(10)
    assert packet.ciaddr == IPv4Address("10.0.0.5")
    assert packet.yiaddr == IPv4Address("10.0.0.5")
    assert packet.siaddr == IPv4Address(0)


def test_new_request_without_ip_is_unspecified():
    packet = _request()
    assert packet.ciaddr == IPv4Address("0.0.0.0")
    assert packet.yiaddr == IPv4Address("0.0.0.0")


def test_encode_is_padded_to_minimum_size():
    assert len(_request().encode()) == 272


def test_encode_header_bytes():
    wire = _request().encode()
    assert wire[:3] == bytes((1, 1, 6))
    assert COOKIE in wire
    assert wire[wire.index(COOKIE) - 1] == 0


def test_round_trip_request():
    packet = _request(Options.request("192.168.1.50"), our_ip="192.168.1.50")
    assert Packet.decode(packet.encode()) == packet


def test_round_trip_reply_with_options():
    request = _request(Options.request("192.168.1.50"))
    options = request.options.reply(
        MessageType.ACK,
        "192.168.1.1",
        7200,
        gateways=["192.168.1.1"],
        subnet="255.255.255.0",
        dns=["8.8.8.8", "8.8.4.4"],
    )
    reply = request.new_reply("192.168.1.50", options)
    decoded = Packet.decode(reply.encode())
    assert decoded == reply
    assert decoded.reply is True


def test_broadcast_flag_round_trip():
    for flag in (True, False):
        assert Packet.decode(_request(broadcast=flag).encode()).broadcast is flag


def test_decode_rejects_bad_hlen():
    wire = bytearray(_request().encode())
    wire[2] = 7
    with pytest.raises(InvalidHlenError):
        Packet.decode(bytes(wire))


def test_decode_rejects_missing_cookie():
    wire = bytearray(_request().encode())
    index = wire.index(COOKIE)
    wire[index] = 0
    with pytest.raises(MissingCookieError):
        Packet.decode(bytes(wire))


@pytest.mark.parametrize("size", [0, 2, 10, 100])
def test_decode_rejects_truncated(size):
    wire = _request().encode()[:size]
    with pytest.raises(DataUnderflowError):
        Packet.decode(wire)


def test_decode_requires_end_marker():
    wire = _request().encode()
    index = wire.index(COOKIE) + len(COOKIE)
    with pytest.raises(DataUnderflowError):
        Packet.decode(wire[: index + len(Options.discover().encode())])


def test_new_reply_copies_ciaddr_for_request():
    request = _request(Options.request("10.0.0.9"), our_ip="10.0.0.9")
    reply = request.new_reply("10.0.0.9", Options())
    assert reply.ciaddr == IPv4Address("10.0.0.9")
    assert reply.yiaddr == IPv4Address("10.0.0.9")
    assert reply.xid == request.xid
    assert reply.secs == 0


def test_new_reply_zero_ciaddr_for_discover():
    request = _request(Options.discover(), our_ip="10.0.0.9")
    reply = request.new_reply("10.0.0.9", Options())
    assert reply.ciaddr == IPv4Address(0)


def test_new_reply_without_ip():
    request = _request(Options.request("10.0.0.9"), our_ip="10.0.0.9")
    reply = request.new_reply(None, Options())
    assert reply.ciaddr == IPv4Address(0)
    assert reply.yiaddr == IPv4Address(0)


def test_is_for_us():
    request = _request()
    reply = request.new_reply("10.0.0.2", Options())
    assert reply.is_for_us(MAC, request.xid)
    assert not reply.is_for_us(MAC, request.xid + 1)
    assert not reply.is_for_us(bytes(6), request.xid)
    assert not request.is_for_us(MAC, request.xid)


def test_settings_from_packet():
    options = Options(
        [
            MessageTypeOption(MessageType.ACK),
            ServerIdentifier("10.0.0.1"),
            IpAddressLeaseTime(3600),
            Router([]),
            Router(["10.0.0.254"]),
            SubnetMask("255.255.0.0"),
            DomainNameServer(["1.1.1.1"]),
            DomainNameServer(["9.9.9.9", "8.8.8.8"]),
            CaptiveUrl("http://portal.example.com/"),
        ]
    )
    packet = _request().new_reply("10.0.0.7", options)
    settings = Settings.from_packet(Packet.decode(packet.encode()))
    assert settings.ip == IPv4Address("10.0.0.7")
    assert settings.server_ip == IPv4Address("10.0.0.1")
    assert settings.lease_time_secs == 3600
    assert settings.gateway == IPv4Address("10.0.0.254")
    assert settings.subnet == IPv4Address("255.255.0.0")
    assert settings.dns1 == IPv4Address("1.1.1.1")
    assert settings.dns2 == IPv4Address("8.8.8.8")
    assert settings.captive_url == "http://portal.example.com/"


def test_settings_defaults_when_absent():
    settings = Settings.from_packet(_request().new_reply("10.0.0.7", Options()))
    assert settings.server_ip is None
    assert settings.lease_time_secs is None
    assert settings.gateway is None
    assert settings.dns2 is None


def test_invalid_mac_rejected():
    with pytest.raises(ValueError):
        Packet.new_request(bytes(5), 1, 0, None, False, Options())