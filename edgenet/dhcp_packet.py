"""BOOTP/DHCP packets and the settings a client takes from a server reply."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from ipaddress import IPv4Address
from typing import Any

from edgenet.dhcp_options import (
    END,
    PAD,
    CaptiveUrl,
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
)

COOKIE = bytes((99, 130, 83, 99))

BOOT_REQUEST = 1
BOOT_REPLY = 2

SERVER_NAME_AND_FILE_NAME = 64 + 128
MIN_PACKET_SIZE = 272

_HTYPE_ETHERNET = 1
_HLEN = 6
_BROADCAST_FLAG = 128

_FIXED = struct.Struct("!BBBBIHH4s4s4s4s16s")
_COOKIE_OFFSET = _FIXED.size + SERVER_NAME_AND_FILE_NAME
_OPTIONS_OFFSET = _COOKIE_OFFSET + len(COOKIE)

_UNSPECIFIED = IPv4Address(0)


def _mac_bytes(mac: Any) -> bytes:
    mac = bytes(mac)
    if len(mac) != 6:
        raise ValueError("a MAC address has 6 bytes")
    return mac


@dataclass(frozen=True)
class Packet:
    """A DHCP packet."""

    reply: bool
    hops: int
    xid: int
    secs: int
    broadcast: bool
    ciaddr: IPv4Address
    yiaddr: IPv4Address
    siaddr: IPv4Address
    giaddr: IPv4Address
    chaddr: bytes
    options: Options = field(default_factory=Options)

    def __post_init__(self) -> None:
        for name in ("ciaddr", "yiaddr", "siaddr", "giaddr"):
            object.__setattr__(self, name, IPv4Address(getattr(self, name)))
        chaddr = bytes(self.chaddr)
        if len(chaddr) != 16:
            raise ValueError("chaddr must have 16 bytes")
        object.__setattr__(self, "chaddr", chaddr)
        if not 0 <= self.hops <= 0xFF:
            raise ValueError("hops out of range")
        if not 0 <= self.xid <= 0xFFFFFFFF:
            raise ValueError("xid out of range")
        if not 0 <= self.secs <= 0xFFFF:
            raise ValueError("secs out of range")

    @classmethod
    def new_request(
        cls,
        mac: Any,
        xid: int,
        secs: int,
        our_ip: Any = None,
        broadcast: bool = False,
        options: Options | None = None,
    ) -> "Packet":
        """A client request from ``mac``; ``our_ip`` fills ciaddr and yiaddr."""
        ip = IPv4Address(our_ip) if our_ip is not None else _UNSPECIFIED
        return cls(
            reply=False,
            hops=0,
            xid=xid,
            secs=secs,
            broadcast=broadcast,
            ciaddr=ip,
            yiaddr=ip,
            siaddr=_UNSPECIFIED,
            giaddr=_UNSPECIFIED,
            chaddr=_mac_bytes(mac) + bytes(10),
            options=options if options is not None else Options(),
        )

    def new_reply(self, ip: Any, options: Options) -> "Packet":
        """A server reply to this request, offering or confirming ``ip`` (None for none)."""
        ciaddr = _UNSPECIFIED
        if ip is not None and any(
            isinstance(option, MessageTypeOption)
            and option.message_type == MessageType.REQUEST
            for option in self.options
        ):
            ciaddr = self.ciaddr
        return Packet(
            reply=True,
            hops=0,
            xid=self.xid,
            secs=0,
            broadcast=self.broadcast,
            ciaddr=ciaddr,
            yiaddr=IPv4Address(ip) if ip is not None else _UNSPECIFIED,
            siaddr=_UNSPECIFIED,
            giaddr=self.giaddr,
            chaddr=self.chaddr,
            options=options,
        )

    def is_for_us(self, mac: Any, xid: int) -> bool:
        """Whether this is a reply addressed to ``mac`` for transaction ``xid``."""
        return (
            self.chaddr[:6] == _mac_bytes(mac)
            and self.chaddr[6:] == bytes(10)
            and self.xid == xid
            and self.reply
        )

    @classmethod
    def decode(cls, data: bytes) -> "Packet":
        """Parse a packet from bytes."""
        data = bytes(data)
        if len(data) < 3:
            raise DataUnderflowError()
        if data[2] != _HLEN:
            raise InvalidHlenError()
        if len(data) < _OPTIONS_OFFSET:
            raise DataUnderflowError()
        (
            op,
            _htype,
            _hlen,
            hops,
            xid,
            secs,
            flags,
            ciaddr,
            yiaddr,
            siaddr,
            giaddr,
            chaddr,
        ) = _FIXED.unpack_from(data)
        if data[_COOKIE_OFFSET:_OPTIONS_OFFSET] != COOKIE:
            raise MissingCookieError()
        return cls(
            reply=op == BOOT_REPLY,
            hops=hops,
            xid=xid,
            secs=secs,
            broadcast=bool(flags & _BROADCAST_FLAG),
            ciaddr=IPv4Address(ciaddr),
            yiaddr=IPv4Address(yiaddr),
            siaddr=IPv4Address(siaddr),
            giaddr=IPv4Address(giaddr),
            chaddr=chaddr,
            options=Options.decode(data[_OPTIONS_OFFSET:]),
        )

    def encode(self) -> bytes:
        """Encode the packet, padded to the minimum BOOTP size."""
        fixed = _FIXED.pack(
            BOOT_REPLY if self.reply else BOOT_REQUEST,
            _HTYPE_ETHERNET,
            _HLEN,
            self.hops,
            self.xid,
            self.secs,
            _BROADCAST_FLAG if self.broadcast else 0,
            self.ciaddr.packed,
            self.yiaddr.packed,
            self.siaddr.packed,
            self.giaddr.packed,
            self.chaddr,
        )
        packet = (
            fixed
            + bytes(SERVER_NAME_AND_FILE_NAME)
            + COOKIE
            + self.options.encode()
            + bytes((END,))
        )
        return packet.ljust(MIN_PACKET_SIZE, bytes((PAD,)))


@dataclass(frozen=True)
class Settings:
    """Network settings carried by a server reply."""

    ip: IPv4Address
    server_ip: IPv4Address | None = None
    lease_time_secs: int | None = None
    gateway: IPv4Address | None = None
    subnet: IPv4Address | None = None
    dns1: IPv4Address | None = None
    dns2: IPv4Address | None = None
    captive_url: str | None = None

    @classmethod
    def from_packet(cls, packet: Packet) -> "Settings":
        """Collect the settings from the options of ``packet``."""
        options = list(packet.options)

        def first(kind: type, pick: Any) -> Any:
            for option in options:
                if isinstance(option, kind):
                    value = pick(option)
                    if value is not None:
                        return value
            return None

        def nth_address(n: int) -> Any:
            return lambda o: o.addresses[n] if len(o.addresses) > n else None

        return cls(
            ip=packet.yiaddr,
            server_ip=first(ServerIdentifier, lambda o: o.address),
            lease_time_secs=first(IpAddressLeaseTime, lambda o: o.secs),
            gateway=first(Router, nth_address(0)),
            subnet=first(SubnetMask, lambda o: o.address),
            dns1=first(DomainNameServer, nth_address(0)),
            dns2=first(DomainNameServer, nth_address(1)),
            captive_url=first(CaptiveUrl, lambda o: o.text),
        )