"""A captive-portal DNS responder that answers every A query with one address."""

from __future__ import annotations

import ipaddress
import logging
import struct
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

logger = logging.getLogger(__name__)

PORT = 53
DEFAULT_SOCKET = ("::", PORT)

_HEADER = struct.Struct("!HHHHHH")
_HEADER_SIZE = _HEADER.size

_OPCODE_QUERY = 0
_RCODE_NOERROR = 0
_RCODE_NOTIMP = 4
_FLAG_QR = 0x8000
_FLAG_RD = 0x0100

_TYPE_A = 1
_CLASS_IN = 1

_MAX_NAME_LENGTH = 255
_MAX_POINTERS = 127
_MAX_TTL = 0xFFFFFFFF


class DnsError(Exception):
    """Base class of DNS processing errors."""

    message = "DnsError"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class ShortBufError(DnsError):
    """The reply does not fit into the available space."""

    message = "ShortBuf"


class InvalidMessageError(DnsError):
    """The request is not a well-formed DNS message."""

    message = "InvalidMessage"


@dataclass(frozen=True)
class _Question:
    labels: tuple[bytes, ...]
    qtype: int
    qclass: int

    def encoded_name(self) -> bytes:
        return b"".join(bytes((len(label),)) + label for label in self.labels) + b"\x00"

    def encode(self) -> bytes:
        return self.encoded_name() + struct.pack("!HH", self.qtype, self.qclass)


def _parse_name(message: bytes, offset: int) -> tuple[tuple[bytes, ...], int]:
    """Parse a possibly compressed name; return its labels and the offset after it."""
    labels: list[bytes] = []
    end: int | None = None
    length = 1
    pointers = 0
    pos = offset
    while True:
        if pos >= len(message):
            raise InvalidMessageError()
        head = message[pos]
        kind = head & 0xC0
        if kind == 0xC0:
            if pos + 1 >= len(message):
                raise InvalidMessageError()
            if end is None:
                end = pos + 2
            pointers += 1
            if pointers > _MAX_POINTERS:
                raise InvalidMessageError()
            pos = ((head & 0x3F) << 8) | message[pos + 1]
            continue
        if kind:
            raise InvalidMessageError()
        if head == 0:
            return tuple(labels), end if end is not None else pos + 1
        label = message[pos + 1 : pos + 1 + head]
        if len(label) < head:
            raise InvalidMessageError()
        length += head + 1
        if length > _MAX_NAME_LENGTH:
            raise InvalidMessageError()
        labels.append(bytes(label))
        pos += head + 1


def _read_questions(message: bytes, count: int) -> tuple[list[_Question], bool]:
    """Read up to ``count`` questions; report whether a malformed one stopped the read."""
    questions: list[_Question] = []
    offset = _HEADER_SIZE
    for _ in range(count):
        try:
            labels, offset = _parse_name(message, offset)
        except InvalidMessageError:
            return questions, True
        if offset + 4 > len(message):
            return questions, True
        qtype, qclass = struct.unpack_from("!HH", message, offset)
        offset += 4
        questions.append(_Question(labels, qtype, qclass))
    return questions, False


def _ttl_seconds(ttl: float | timedelta) -> int:
    seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else ttl
    if seconds < 0:
        raise ValueError("ttl must not be negative")
    return min(int(seconds), _MAX_TTL)


def reply(request: bytes, ip: Any, ttl: float | timedelta, max_size: int = 512) -> bytes:
    """Build the reply to a DNS ``request``, answering every A/IN question with ``ip``.

    ``ttl`` is in seconds or a timedelta. The reply may not exceed ``max_size`` bytes.
    Non-query requests get an empty NOTIMP reply.
    """
    if len(request) < _HEADER_SIZE:
        raise InvalidMessageError()
    if max_size < _HEADER_SIZE:
        raise ShortBufError()

    octets = ipaddress.IPv4Address(ip).packed
    ttl_secs = _ttl_seconds(ttl)

    ident, flags, qdcount = struct.unpack_from("!HHH", request)
    opcode = (flags >> 11) & 0xF
    rd = flags & _FLAG_RD

    if opcode != _OPCODE_QUERY:
        logger.debug("Message is not of type Query, replying with NotImp")
        return _HEADER.pack(ident, (opcode << 11) | rd | _RCODE_NOTIMP, 0, 0, 0, 0)

    logger.debug("Message is of type Query, processing all questions")
    questions, malformed = _read_questions(request, qdcount)

    question_section = b"".join(question.encode() for question in questions)
    size = _HEADER_SIZE + len(question_section)
    if size > max_size:
        raise ShortBufError()

    answers: list[bytes] = []
    for question in questions:
        if question.qtype == _TYPE_A and question.qclass == _CLASS_IN:
            record = (
                question.encoded_name()
                + struct.pack("!HHIH", _TYPE_A, _CLASS_IN, ttl_secs, len(octets))
                + octets
            )
            size += len(record)
            if size > max_size:
                raise ShortBufError()
            logger.debug("Answering %r with %s", question, ipaddress.IPv4Address(octets))
            answers.append(record)
        else:
            logger.debug("Question %r is not of type A, not answering", question)
    if malformed:
        raise InvalidMessageError()

    header = _HEADER.pack(
        ident,
        _FLAG_QR | (opcode << 11) | rd | _RCODE_NOERROR,
        len(questions),
        len(answers),
        0,
        0,
    )
    return header + question_section + b"".join(answers)


async def run(socket: Any, ip: Any, ttl: float | timedelta, buffer_size: int = 1500) -> None:
    """Answer DNS requests arriving on ``socket`` forever.

    Malformed requests are skipped; any other error ends the loop.
    """
    while True:
        logger.debug("Waiting for data")
        request, remote = await socket.receive(buffer_size)
        logger.debug("Received %d bytes from %s", len(request), remote)
        try:
            response = reply(request, ip, ttl, buffer_size)
        except InvalidMessageError:
            logger.warning("Got invalid message from %s, skipping", remote)
            continue
        await socket.send(remote, response)
        logger.debug("Sent %d bytes to %s", len(response), remote)