"""A transport-agnostic DHCP client that builds requests and checks replies."""

from __future__ import annotations

import random
from ipaddress import IPv4Address
from typing import Any, Iterable

from edgenet.dhcp_options import MessageType, Options
from edgenet.dhcp_packet import Packet, _mac_bytes


class Client:
    """Builds BOOTP requests for one MAC address and recognises replies to them.

    ``rng`` is any object with a ``getrandbits`` method, used for transaction ids.
    """

    def __init__(self, mac: Any, rng: Any = None) -> None:
        self.mac = _mac_bytes(mac)
        self.rng = rng if rng is not None else random.SystemRandom()

    def discover(self, secs: int = 0, ip: Any = None) -> tuple[Packet, int]:
        """A broadcast DHCPDISCOVER, optionally asking for ``ip``; returns it and its xid."""
        return self.bootp_request(secs, None, True, Options.discover(ip))

    def request(self, secs: int, ip: Any, broadcast: bool) -> tuple[Packet, int]:
        """A DHCPREQUEST for ``ip``; returns it and its xid."""
        return self.bootp_request(secs, None, broadcast, Options.request(ip))

    def release(self, secs: int, ip: Any) -> Packet:
        """A DHCPRELEASE of ``ip``."""
        return self.bootp_request(secs, ip, False, Options.release())[0]

    def decline(self, secs: int, ip: Any) -> Packet:
        """A DHCPDECLINE of ``ip``."""
        return self.bootp_request(secs, ip, False, Options.decline())[0]

    def is_offer(self, reply: Packet, xid: int) -> bool:
        return self.is_bootp_reply_for_us(reply, xid, (MessageType.OFFER,))

    def is_ack(self, reply: Packet, xid: int) -> bool:
        return self.is_bootp_reply_for_us(reply, xid, (MessageType.ACK,))

    def is_nak(self, reply: Packet, xid: int) -> bool:
        return self.is_bootp_reply_for_us(reply, xid, (MessageType.NAK,))

    def bootp_request(
        self, secs: int, ip: Any, broadcast: bool, options: Options
    ) -> tuple[Packet, int]:
        """A request with a fresh transaction id; returns it and the id."""
        xid = self.rng.getrandbits(32)
        our_ip = IPv4Address(ip) if ip is not None else None
        return Packet.new_request(self.mac, xid, secs, our_ip, broadcast, options), xid

    def is_bootp_reply_for_us(
        self,
        reply: Packet,
        xid: int,
        expected_message_types: Iterable[MessageType] | None = None,
    ) -> bool:
        """Whether ``reply`` answers transaction ``xid`` with one of the expected types."""
        if not (reply.reply and reply.is_for_us(self.mac, xid)):
            return False
        if expected_message_types is None:
            return True
        mt = reply.options.message_type()
        return any(mt == expected for expected in expected_message_types)