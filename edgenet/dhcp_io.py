"""Running the DHCP client and server over an asynchronous UDP socket.

A socket is any object with coroutine methods ``send(remote, data)`` and
``receive(size)`` that returns ``(data, remote)``, such as :class:`edgenet.udp.UdpSocket`.
I/O errors raised by the socket propagate unchanged; malformed replies raise
:class:`edgenet.dhcp_options.DhcpError`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Any

from edgenet.dhcp_client import Client
from edgenet.dhcp_options import DhcpError, InvalidPacketError
from edgenet.dhcp_packet import Packet, Settings
from edgenet.dhcp_server import Server, ServerOptions

logger = logging.getLogger(__name__)

DEFAULT_SERVER_PORT = 67
DEFAULT_CLIENT_PORT = 68

BROADCAST = "255.255.255.255"
_UNSPECIFIED = IPv4Address(0)
_MAX_SECS = 0xFFFF


@dataclass(frozen=True)
class NetworkInfo:
    """Additional network settings a DHCP server may hand out with a lease."""

    gateway: IPv4Address | None = None
    subnet: IPv4Address | None = None
    dns1: IPv4Address | None = None
    dns2: IPv4Address | None = None
    captive_url: str | None = None


def _elapsed_secs(start: float) -> int:
    return min(int(time.monotonic() - start), _MAX_SECS)


@dataclass
class ClientLease:
    """An IP address leased from a DHCP server.

    ``duration`` is in seconds; ``acquired`` is a ``time.monotonic()`` timestamp.
    """

    REPLY_TIMEOUT = 3.0
    REQUEST_RETRIES = 3
    KEEP_POLL_INTERVAL = 60.0
    DEFAULT_LEASE_SECS = 7200
    BUFFER_SIZE = 1500

    ip: IPv4Address
    server_ip: IPv4Address
    duration: float
    acquired: float

    @classmethod
    async def create(cls, client: Client, socket: Any) -> tuple["ClientLease", NetworkInfo]:
        """Discover a server and lease an address from it, retrying until one is granted.

        The socket must be able to send and receive broadcast packets.
        """
        while True:
            offer = await cls._discover(client, socket)
            if offer.server_ip is None:
                raise InvalidPacketError("offer carries no server identifier")
            now = time.monotonic()
            settings = await cls._request(client, socket, offer.server_ip, offer.ip, True)
            if settings is None:
                continue
            if settings.server_ip is None:
                raise InvalidPacketError("acknowledgement carries no server identifier")
            lease_secs = (
                settings.lease_time_secs
                if settings.lease_time_secs is not None
                else cls.DEFAULT_LEASE_SECS
            )
            lease = cls(
                ip=settings.ip,
                server_ip=settings.server_ip,
                duration=float(lease_secs),
                acquired=now,
            )
            info = NetworkInfo(
                gateway=settings.gateway,
                subnet=settings.subnet,
                dns1=settings.dns1,
                dns2=settings.dns2,
                captive_url=settings.captive_url,
            )
            return lease, info

    async def keep(self, client: Client, socket: Any) -> None:
        """Renew the lease whenever a third of it has passed; return once a renewal fails."""
        while True:
            if time.monotonic() - self.acquired >= self.duration / 3:
                if not await self.renew(client, socket):
                    return
            else:
                await asyncio.sleep(self.KEEP_POLL_INTERVAL)

    async def renew(self, client: Client, socket: Any) -> bool:
        """Ask the server to extend the lease; return whether it did."""
        logger.info("Renewing DHCP lease...")
        now = time.monotonic()
        settings = await self._request(client, socket, self.server_ip, self.ip, False)
        if settings is None:
            return False
        if settings.lease_time_secs is not None:
            self.duration = float(settings.lease_time_secs)
        self.acquired = now
        return True

    async def release(self, client: Client, socket: Any) -> None:
        """Tell the server the address is no longer in use."""
        request = client.release(0, self.ip)
        await socket.send((str(self.server_ip), DEFAULT_SERVER_PORT), request.encode())

    @classmethod
    async def _receive(cls, socket: Any) -> Packet | None:
        try:
            data, _remote = await asyncio.wait_for(
                socket.receive(cls.BUFFER_SIZE), cls.REPLY_TIMEOUT
            )
        except asyncio.TimeoutError:
            return None
        return Packet.decode(data)

    @classmethod
    async def _discover(cls, client: Client, socket: Any) -> Settings:
        logger.info("Discovering DHCP servers...")
        start = time.monotonic()
        while True:
            request, xid = client.discover(_elapsed_secs(start), None)
            await socket.send((BROADCAST, DEFAULT_SERVER_PORT), request.encode())
            reply = await cls._receive(socket)
            if reply is not None and client.is_offer(reply, xid):
                settings = Settings.from_packet(reply)
                logger.info(
                    "IP %s offered by DHCP server %s", settings.ip, settings.server_ip
                )
                return settings
            logger.info("No DHCP offers received, retrying...")

    @classmethod
    async def _request(
        cls,
        client: Client,
        socket: Any,
        server_ip: IPv4Address,
        ip: IPv4Address,
        broadcast: bool,
    ) -> Settings | None:
        destination = BROADCAST if broadcast else str(server_ip)
        for _ in range(cls.REQUEST_RETRIES):
            logger.info("Requesting IP %s from DHCP server %s", ip, server_ip)
            request, xid = client.request(0, ip, broadcast)
            await socket.send((destination, DEFAULT_SERVER_PORT), request.encode())
            reply = await cls._receive(socket)
            if reply is None:
                continue
            if client.is_ack(reply, xid):
                logger.info("IP %s leased successfully", ip)
                return Settings.from_packet(reply)
            if client.is_nak(reply, xid):
                logger.info("IP %s not acknowledged", ip)
                return None
        logger.warning("IP request was not replied")
        return None


def _ipv4_host(remote: Any) -> IPv4Address | None:
    try:
        return IPv4Address(remote[0])
    except (ValueError, TypeError, IndexError):
        return None


async def run_server(
    server: Server,
    server_options: ServerOptions,
    socket: Any,
    buffer_size: int = 1500,
) -> None:
    """Serve DHCP requests arriving on ``socket`` forever.

    Packets that cannot be decoded are skipped. Replies to broadcast requests,
    or to clients without an address yet, are broadcast.
    """
    logger.info(
        "Running DHCP server for addresses %s-%s with configuration %r",
        server.range_start,
        server.range_end,
        server_options,
    )
    while True:
        data, remote = await socket.receive(buffer_size)
        try:
            request = Packet.decode(data)
        except DhcpError as exc:
            logger.warning("Decoding packet returned error: %r", exc)
            continue

        reply = server.handle_request(server_options, request)
        if reply is None:
            continue

        host = _ipv4_host(remote)
        if host is not None and (request.broadcast or host == _UNSPECIFIED):
            remote = (BROADCAST, remote[1])
        await socket.send(remote, reply.encode())