import struct
from datetime import timedelta

import pytest

from edgenet.captive import (
    DnsError,
    InvalidMessageError,
    ShortBufError,
    reply,
    run,
)

NAME = b"\x07example\x03com\x00"
IP = "10.0.0.1"


def _query(ident=0x1234, flags=0x0100, questions=((NAME, 1, 1),), qdcount=None):
    count = len(questions) if qdcount is None else qdcount
    header = struct.pack("!HHHHHH", ident, flags, count, 0, 0, 0)
    body = b"".join(name + struct.pack("!HH", qtype, qclass) for name, qtype, qclass in questions)
    return header + body


def _header(response):
    return struct.unpack("!HHHHHH", response[:12])


def test_answers_a_question():
    response = reply(_query(), IP, 300)
    ident, flags, qd, an, ns, ar = _header(response)
    assert ident == 0x1234
    assert flags & 0x8000
    assert flags & 0x0100
    assert flags & 0xF == 0
    assert (qd, an, ns, ar) == (1, 1, 0, 0)
    question = NAME + struct.pack("!HH", 1, 1)
    assert response[12 : 12 + len(question)] == question
    answer = response[12 + len(question) :]
    assert answer[: len(NAME)] == NAME
    assert struct.unpack("!HHIH", answer[len(NAME) : len(NAME) + 10]) == (1, 1, 300, 4)
    assert answer[len(NAME) + 10 :] == bytes([10, 0, 0, 1])


def test_non_a_question_is_not_answered():
    response = reply(_query(questions=((NAME, 28, 1),)), IP, 60)
    _, _, qd, an, _, _ = _header(response)
    assert (qd, an) == (1, 0)


def test_non_query_gets_notimp():
    request = _query(flags=(2 << 11) | 0x0100)
    response = reply(request, IP, 60)
    assert len(response) == 12
    ident, flags, qd, an, ns, ar = _header(response)
    assert ident == 0x1234
    assert not flags & 0x8000
    assert (flags >> 11) & 0xF == 2
    assert flags & 0x0100
    assert flags & 0xF == 4
    assert (qd, an, ns, ar) == (0, 0, 0, 0)


def test_compressed_name_is_expanded():
    request = _query(questions=((NAME, 1, 1), (b"\xc0\x0c", 1, 1)))
    response = reply(request, IP, 60)
    _, _, qd, an, _, _ = _header(response)
    assert (qd, an) == (2, 2)
    assert b"\xc0" not in response
    assert response.count(NAME) == 4


def test_pointer_loop_is_invalid():
    request = _query(questions=((b"\xc0\x0c", 1, 1),))
    with pytest.raises(InvalidMessageError):
        reply(request, IP, 60)


def test_short_request_is_invalid():
    with pytest.raises(InvalidMessageError):
        reply(b"\x00" * 5, IP, 60)


def test_missing_question_is_invalid():
    with pytest.raises(InvalidMessageError):
        reply(_query(questions=(), qdcount=1), IP, 60)


def test_reply_too_large_raises_short_buf():
    request = _query()
    full = reply(request, IP, 60)
    with pytest.raises(ShortBufError):
        reply(request, IP, 60, max_size=len(full) - 1)
    assert reply(request, IP, 60, max_size=len(full)) == full


def test_tiny_buffer_raises_short_buf():
    with pytest.raises(ShortBufError):
        reply(_query(), IP, 60, max_size=11)


def test_ttl_is_clamped():
    response = reply(_query(), IP, timedelta(days=100000))
    ttl = struct.unpack("!I", response[-10:-6])[0]
    assert ttl == 0xFFFFFFFF


def test_error_messages():
    assert str(ShortBufError()) == "ShortBuf"
    assert str(InvalidMessageError()) == "InvalidMessage"
    assert issubclass(ShortBufError, DnsError)


class _Done(Exception):
    pass


class _FakeSocket:
    def __init__(self, incoming):
        self.incoming = list(incoming)
        self.sent = []

    async def receive(self, size):
        if not self.incoming:
            raise _Done()
        data, remote = self.incoming.pop(0)
        return data[:size], remote

    async def send(self, remote, data):
        self.sent.append((remote, data))


@pytest.mark.asyncio
async def test_run_skips_invalid_and_answers_valid():
    remote = ("192.0.2.5", 5353)
    query = _query()
    sock = _FakeSocket([(b"bad", remote), (query, remote)])
    with pytest.raises(_Done):
        await run(sock, IP, 60, 1500)
    assert sock.sent == [(remote, reply(query, IP, 60, 1500))]


@pytest.mark.asyncio
async def test_run_propagates_short_buf():
    sock = _FakeSocket([(_query(), ("192.0.2.5", 5353))])
    with pytest.raises(ShortBufError):
        await run(sock, IP, 60, 40)
    assert sock.sent == []