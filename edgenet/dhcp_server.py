"""A transport-agnostic DHCP server with a small in-memory lease table."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from ipaddress import IPv4Address
from typing import Any, Callable, Iterable

from edgenet.dhcp_options import MessageType, Options, ServerIdentifier
from edgenet.dhcp_packet import Packet

logger = logging.getLogger(__name__)

DEFAULT_LEASE_DURATION_SECS = 7200
DEFAULT_SUBNET = IPv4Address("255.255.255.0")

_UNSPECIFIED = IPv4Address(0)


@dataclass
class Lease:
    """An address lease held by one client hardware address."""

    mac: bytes
    expires: int


class ActionKind(Enum):
    """What a client request asks the server to do."""

    DISCOVER = "discover"
    REQUEST = "request"
    RELEASE = "release"
    DECLINE = "decline"


@dataclass(frozen=True)
class Action:
    """A processed client request: its kind, the address involved and the client's chaddr."""

    kind: ActionKind
    ip: IPv4Address | None
    mac: bytes


def _server_identifier(options: Options) -> IPv4Address | None:
    return next(
        (option.address for option in options if isinstance(option, ServerIdentifier)),
        None,
    )


@dataclass
class ServerOptions:
    """The configuration a server hands out in its replies."""

    ip: IPv4Address
    gateways: tuple[IPv4Address, ...] = ()
    subnet: IPv4Address | None = DEFAULT_SUBNET
    dns: tuple[IPv4Address, ...] = ()
    captive_url: str | None = None
    lease_duration_secs: int = DEFAULT_LEASE_DURATION_SECS

    def __post_init__(self) -> None:
        self.ip = IPv4Address(self.ip)
        self.gateways = tuple(IPv4Address(a) for a in self.gateways)
        self.dns = tuple(IPv4Address(a) for a in self.dns)
        if self.subnet is not None:
            self.subnet = IPv4Address(self.subnet)

    @classmethod
    def create(cls, ip: Any, gateway: bool = False) -> "ServerOptions":
        """Options for a server at ``ip``; with ``gateway`` it also advertises itself as router."""
        ip = IPv4Address(ip)
        return cls(ip=ip, gateways=(ip,) if gateway else ())

    def process(self, request: Packet) -> Action | None:
        """Classify ``request``; None when the server should ignore it."""
        if request.reply:
            return None

        message_type = request.options.message_type()
        if message_type is None:
            logger.warning("Ignoring DHCP request, no message type found: %r", request)
            return None

        server_identifier = _server_identifier(request.options)
        if server_identifier is not None and server_identifier != self.ip:
            logger.warning(
                "Ignoring %s request, not addressed to this server: %r", message_type, request
            )
            return None

        logger.debug("Received %s request: %r", message_type, request)

        if message_type == MessageType.DISCOVER:
            return Action(ActionKind.DISCOVER, request.options.requested_ip(), request.chaddr)
        if message_type == MessageType.REQUEST:
            requested = request.options.requested_ip()
            if requested is None and request.ciaddr != _UNSPECIFIED:
                requested = request.ciaddr
            if requested is None:
                return None
            return Action(ActionKind.REQUEST, requested, request.chaddr)
        if server_identifier == self.ip:
            if message_type == MessageType.RELEASE:
                return Action(ActionKind.RELEASE, request.yiaddr, request.chaddr)
            if message_type == MessageType.DECLINE:
                return Action(ActionKind.DECLINE, request.yiaddr, request.chaddr)
        return None

    def offer(self, request: Packet, yiaddr: Any) -> Packet:
        """A DHCPOFFER of ``yiaddr`` answering ``request``."""
        return self._reply(request, MessageType.OFFER, IPv4Address(yiaddr))

    def ack_nak(self, request: Packet, ip: Any) -> Packet:
        """A DHCPACK of ``ip``, or a DHCPNAK when ``ip`` is None."""
        if ip is None:
            return self._reply(request, MessageType.NAK, None)
        return self._reply(request, MessageType.ACK, IPv4Address(ip))

    def _reply(
        self, request: Packet, message_type: MessageType, ip: IPv4Address | None
    ) -> Packet:
        reply = request.new_reply(
            ip,
            request.options.reply(
                message_type,
                self.ip,
                self.lease_duration_secs,
                self.gateways,
                self.subnet,
                self.dns,
                self.captive_url,
            ),
        )
        logger.debug("Sending %s reply: %r", message_type, reply)
        return reply


def _monotonic_secs() -> int:
    return int(time.monotonic())


@dataclass
class Server:
    """A DHCP server handing out addresses .50 to .200 of its own /24.

    ``now`` returns the current time in seconds since some epoch; ``capacity``
    bounds the number of leases held at once.
    """

    now: Callable[[], int] | None
    ip: Any
    capacity: int
    range_start: IPv4Address = field(init=False)
    range_end: IPv4Address = field(init=False)
    leases: dict[IPv4Address, Lease] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        if self.now is None:
            self.now = _monotonic_secs
        if self.capacity < 0:
            raise ValueError("capacity must not be negative")
        self.ip = IPv4Address(self.ip)
        prefix = self.ip.packed[:3]
        self.range_start = IPv4Address(prefix + bytes((50,)))
        self.range_end = IPv4Address(prefix + bytes((200,)))

    def handle_request(self, server_options: ServerOptions, request: Packet) -> Packet | None:
        """Update the lease table for ``request`` and return the reply to send, if any."""
        action = server_options.process(request)
        if action is None:
            return None

        if action.kind is ActionKind.DISCOVER:
            ip = None
            if action.ip is not None and self._is_available(action.mac, action.ip):
                ip = action.ip
            if ip is None:
                ip = self._current_lease(action.mac)
            if ip is None:
                ip = self._available()
            return server_options.offer(request, ip) if ip is not None else None

        if action.kind is ActionKind.REQUEST:
            now = self.now()
            granted = self._is_available(action.mac, action.ip) and self._add_lease(
                action.ip, request.chaddr, now + server_options.lease_duration_secs
            )
            return server_options.ack_nak(request, action.ip if granted else None)

        self._remove_lease(action.mac)
        return None

    def _in_range(self, addr: IPv4Address) -> bool:
        return self.range_start <= addr <= self.range_end

    def _is_available(self, mac: bytes, addr: IPv4Address) -> bool:
        if not self._in_range(addr):
            return False
        lease = self.leases.get(addr)
        return lease is None or lease.mac == mac or self.now() > lease.expires

    def _addresses(self) -> Iterable[IPv4Address]:
        return (
            IPv4Address(pos) for pos in range(int(self.range_start), int(self.range_end) + 1)
        )

    def _available(self) -> IPv4Address | None:
        free = next((addr for addr in self._addresses() if addr not in self.leases), None)
        if free is not None:
            return free
        expired = next(
            (addr for addr, lease in self.leases.items() if self.now() > lease.expires), None
        )
        if expired is not None:
            del self.leases[expired]
        return expired

    def _current_lease(self, mac: bytes) -> IPv4Address | None:
        return next((addr for addr, lease in self.leases.items() if lease.mac == mac), None)

    def _add_lease(self, addr: IPv4Address, mac: bytes, expires: int) -> bool:
        self._remove_lease(mac)
        if addr not in self.leases and len(self.leases) >= self.capacity:
            return False
        self.leases[addr] = Lease(mac=bytes(mac), expires=expires)
        return True

    def _remove_lease(self, mac: bytes) -> bool:
        addr = self._current_lease(mac)
        if addr is None:
            return False
        del self.leases[addr]
        return True