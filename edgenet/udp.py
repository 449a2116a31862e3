"""A small asyncio UDP socket with an awaitable receive."""

from __future__ import annotations

import asyncio
from typing import Any

Address = tuple[Any, ...]


class _DatagramQueue(asyncio.DatagramProtocol):
    """Collects incoming datagrams and errors into a queue."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[tuple[bytes, Address] | BaseException] = asyncio.Queue()

    def datagram_received(self, data: bytes, addr: Address) -> None:
        self.queue.put_nowait((data, addr))

    def error_received(self, exc: Exception) -> None:
        self.queue.put_nowait(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        self.queue.put_nowait(exc or ConnectionError("socket closed"))


class UdpSocket:
    """A bound UDP socket whose send and receive are coroutines."""

    def __init__(self, transport: asyncio.DatagramTransport, protocol: _DatagramQueue) -> None:
        self._transport = transport
        self._protocol = protocol
        self._closed = False

    @classmethod
    async def bind(cls, local_addr: Address, broadcast: bool = False) -> "UdpSocket":
        """Bind a socket to ``local_addr``, optionally allowing broadcast."""
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.create_datagram_endpoint(
            _DatagramQueue,
            local_addr=tuple(local_addr),
            allow_broadcast=broadcast,
        )
        return cls(transport, protocol)

    async def send(self, remote: Address, data: bytes) -> None:
        """Send one datagram to ``remote``."""
        if self._closed:
            raise ConnectionError("socket is closed")
        self._transport.sendto(bytes(data), tuple(remote))

    async def receive(self, size: int = 65535) -> tuple[bytes, Address]:
        """Wait for one datagram; return at most ``size`` bytes of it and the sender."""
        if self._closed:
            raise ConnectionError("socket is closed")
        item = await self._protocol.queue.get()
        if isinstance(item, BaseException):
            if isinstance(item, ConnectionError):
                self._protocol.queue.put_nowait(item)
            raise item
        data, remote = item
        return data[:size], remote

    def local_address(self) -> Address:
        """The address the socket is bound to."""
        sockname = self._transport.get_extra_info("sockname")
        return tuple(sockname[:2])

    def close(self) -> None:
        """Close the socket."""
        if not self._closed:
            self._closed = True
            self._transport.close()

    async def __aenter__(self) -> "UdpSocket":
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.close()