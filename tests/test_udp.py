import asyncio

import pytest

from edgenet.udp import UdpSocket


@pytest.mark.asyncio
async def test_send_and_receive_roundtrip():
    async with await UdpSocket.bind(("127.0.0.1", 0)) as a:
        async with await UdpSocket.bind(("127.0.0.1", 0)) as b:
            await a.send(b.local_address(), b"hello")
            data, remote = await asyncio.wait_for(b.receive(), 5)
            assert data == b"hello"
            assert remote == a.local_address()


@pytest.mark.asyncio
async def test_receive_truncates_to_size():
    async with await UdpSocket.bind(("127.0.0.1", 0)) as a:
        async with await UdpSocket.bind(("127.0.0.1", 0)) as b:
            await a.send(b.local_address(), b"hello")
            data, _ = await asyncio.wait_for(b.receive(3), 5)
            assert data == b"hel"


@pytest.mark.asyncio
async def test_local_address_has_assigned_port():
    async with await UdpSocket.bind(("127.0.0.1", 0)) as sock:
        host, port = sock.local_address()
        assert host == "127.0.0.1"
        assert port > 0


@pytest.mark.asyncio
async def test_send_after_close_raises():
    async with await UdpSocket.bind(("127.0.0.1", 0)) as sock:
        address = sock.local_address()
    with pytest.raises(ConnectionError):
        await sock.send(address, b"x")


@pytest.mark.asyncio
async def test_receive_after_close_raises():
    sock = await UdpSocket.bind(("127.0.0.1", 0))
    sock.close()
    with pytest.raises(ConnectionError):
        await sock.receive()