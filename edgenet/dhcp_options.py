"""DHCP message types, options and option lists."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from ipaddress import IPv4Address
from typing import Any, ClassVar, Iterable, Iterator, TypeVar

END = 255
PAD = 0

_T = TypeVar("_T", bound="DhcpOption")


class DhcpError(Exception):
    """Base class of DHCP format errors."""

    message = "DHCP error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class DataUnderflowError(DhcpError):
    message = "Data underflow"


class BufferOverflowError(DhcpError):
    message = "Buffer overflow"


class InvalidPacketError(DhcpError):
    message = "Invalid packet"


class InvalidUtf8Error(DhcpError):
    message = "Invalid Utf8 string"


class InvalidMessageTypeError(DhcpError):
    message = "Invalid message type"


class MissingCookieError(DhcpError):
    message = "Missing cookie"


class InvalidHlenError(DhcpError):
    message = "Invalid hlen"


class MessageType(IntEnum):
    """DHCP message type (RFC 2132, section 9.6)."""

    DISCOVER = 1
    OFFER = 2
    REQUEST = 3
    DECLINE = 4
    ACK = 5
    NAK = 6
    RELEASE = 7
    INFORM = 8

    def __str__(self) -> str:
        return f"DHCP{self.name}"


def _exact(payload: bytes, size: int) -> bytes:
    if len(payload) < size:
        raise DataUnderflowError()
    if len(payload) > size:
        raise InvalidPacketError()
    return payload


def _text(payload: bytes) -> str:
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidUtf8Error() from exc


class DhcpOption(ABC):
    """A single DHCP option."""

    CODE: ClassVar[int]
    CODE_SUBNET: ClassVar[int] = 1
    CODE_ROUTER: ClassVar[int] = 3
    CODE_DNS: ClassVar[int] = 6
    CODE_CAPTIVE_URL: ClassVar[int] = 114

    def code(self) -> int:
        """The option code."""
        return self.CODE

    @abstractmethod
    def data(self) -> bytes:
        """The option payload."""

    @classmethod
    @abstractmethod
    def _from_payload(cls: type[_T], payload: bytes) -> _T:
        """Build the option from its payload."""

    def encode(self) -> bytes:
        """The option as code, length and payload."""
        payload = self.data()
        if len(payload) > 255:
            raise BufferOverflowError()
        return bytes((self.code(), len(payload))) + payload

    @classmethod
    def decode(cls, data: bytes, offset: int = 0) -> tuple["DhcpOption | None", int]:
        """Decode the option at ``offset``; return it (None at the end marker) and the next offset."""
        if offset >= len(data):
            raise DataUnderflowError()
        code = data[offset]
        if code == END:
            return None, offset + 1
        if offset + 1 >= len(data):
            raise DataUnderflowError()
        start = offset + 2
        end = start + data[offset + 1]
        if end > len(data):
            raise DataUnderflowError()
        payload = bytes(data[start:end])
        option_cls = _REGISTRY.get(code)
        if option_cls is None:
            return Unrecognized(code, payload), end
        return option_cls._from_payload(payload), end


@dataclass(frozen=True)
class MessageTypeOption(DhcpOption):
    """53: DHCP message type."""

    CODE: ClassVar[int] = 53
    message_type: MessageType

    def __post_init__(self) -> None:
        object.__setattr__(self, "message_type", MessageType(self.message_type))

    def data(self) -> bytes:
        return bytes((self.message_type,))

    @classmethod
    def _from_payload(cls, payload: bytes) -> "MessageTypeOption":
        value = _exact(payload, 1)[0]
        try:
            return cls(MessageType(value))
        except ValueError as exc:
            raise InvalidMessageTypeError() from exc


@dataclass(frozen=True)
class _AddressOption(DhcpOption):
    address: IPv4Address

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", IPv4Address(self.address))

    def data(self) -> bytes:
        return self.address.packed

    @classmethod
    def _from_payload(cls, payload: bytes) -> Any:
        return cls(IPv4Address(_exact(payload, 4)))


class ServerIdentifier(_AddressOption):
    """54: server identifier."""

    CODE: ClassVar[int] = 54


class RequestedIpAddress(_AddressOption):
    """50: requested IP address."""

    CODE: ClassVar[int] = 50


class SubnetMask(_AddressOption):
    """1: subnet mask."""

    CODE: ClassVar[int] = 1


@dataclass(frozen=True)
class _AddressListOption(DhcpOption):
    addresses: tuple[IPv4Address, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "addresses", tuple(IPv4Address(a) for a in self.addresses))

    def data(self) -> bytes:
        return b"".join(address.packed for address in self.addresses)

    @classmethod
    def _from_payload(cls, payload: bytes) -> Any:
        if len(payload) % 4:
            raise InvalidPacketError()
        return cls(tuple(IPv4Address(payload[i : i + 4]) for i in range(0, len(payload), 4)))


class Router(_AddressListOption):
    """3: routers."""

    CODE: ClassVar[int] = 3


class DomainNameServer(_AddressListOption):
    """6: domain name servers."""

    CODE: ClassVar[int] = 6


@dataclass(frozen=True)
class _TextOption(DhcpOption):
    text: str

    def data(self) -> bytes:
        return self.text.encode("utf-8")

    @classmethod
    def _from_payload(cls, payload: bytes) -> Any:
        return cls(_text(payload))


class HostName(_TextOption):
    """12: host name."""

    CODE: ClassVar[int] = 12


class Message(_TextOption):
    """56: message."""

    CODE: ClassVar[int] = 56


class CaptiveUrl(_TextOption):
    """114: captive-portal URL."""

    CODE: ClassVar[int] = 114


@dataclass(frozen=True)
class ParameterRequestList(DhcpOption):
    """55: parameter request list."""

    CODE: ClassVar[int] = 55
    codes: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "codes", bytes(self.codes))

    def data(self) -> bytes:
        return self.codes

    @classmethod
    def _from_payload(cls, payload: bytes) -> "ParameterRequestList":
        return cls(payload)


@dataclass(frozen=True)
class ClientIdentifier(DhcpOption):
    """61: client identifier."""

    CODE: ClassVar[int] = 61
    identifier: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "identifier", bytes(self.identifier))

    def data(self) -> bytes:
        return self.identifier

    @classmethod
    def _from_payload(cls, payload: bytes) -> "ClientIdentifier":
        if len(payload) < 2:
            raise DataUnderflowError()
        return cls(payload)


@dataclass(frozen=True)
class IpAddressLeaseTime(DhcpOption):
    """51: lease time in seconds."""

    CODE: ClassVar[int] = 51
    secs: int

    def data(self) -> bytes:
        return self.secs.to_bytes(4, "big")

    @classmethod
    def _from_payload(cls, payload: bytes) -> "IpAddressLeaseTime":
        return cls(int.from_bytes(_exact(payload, 4), "big"))


@dataclass(frozen=True)
class MaximumMessageSize(DhcpOption):
    """57: maximum DHCP message size."""

    CODE: ClassVar[int] = 57
    size: int

    def data(self) -> bytes:
        return self.size.to_bytes(2, "big")

    @classmethod
    def _from_payload(cls, payload: bytes) -> "MaximumMessageSize":
        return cls(int.from_bytes(_exact(payload, 2), "big"))


@dataclass(frozen=True)
class Unrecognized(DhcpOption):
    """An option with a code this module does not interpret."""

    option_code: int
    payload: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", bytes(self.payload))

    def code(self) -> int:
        return self.option_code

    def data(self) -> bytes:
        return self.payload

    @classmethod
    def _from_payload(cls, payload: bytes) -> "Unrecognized":
        raise InvalidPacketError("unrecognized options carry their own code")


_REGISTRY: dict[int, type[DhcpOption]] = {
    option.CODE: option
    for option in (
        MessageTypeOption,
        ServerIdentifier,
        ParameterRequestList,
        RequestedIpAddress,
        HostName,
        Router,
        DomainNameServer,
        IpAddressLeaseTime,
        SubnetMask,
        Message,
        MaximumMessageSize,
        ClientIdentifier,
        CaptiveUrl,
    )
}


class Options:
    """An ordered, immutable list of DHCP options."""

    MAX_REPLY_OPTIONS = 8
    REQUEST_PARAMS = bytes(
        (DhcpOption.CODE_ROUTER, DhcpOption.CODE_SUBNET, DhcpOption.CODE_DNS)
    )

    __slots__ = ("_options",)

    def __init__(self, options: Iterable[DhcpOption] = ()) -> None:
        self._options = tuple(options)

    def __iter__(self) -> Iterator[DhcpOption]:
        return iter(self._options)

    def __len__(self) -> int:
        return len(self._options)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Options):
            return NotImplemented
        return self._options == other._options

    def __hash__(self) -> int:
        return hash(self._options)

    def __repr__(self) -> str:
        return f"Options({list(self._options)!r})"

    @classmethod
    def decode(cls, data: bytes) -> "Options":
        """Decode options up to the end marker; anything after it is ignored."""
        options = []
        offset = 0
        while True:
            option, offset = DhcpOption.decode(data, offset)
            if option is None:
                return cls(options)
            options.append(option)

    def encode(self) -> bytes:
        """Encode all options, without the end marker."""
        return b"".join(option.encode() for option in self._options)

    @classmethod
    def discover(cls, requested_ip: Any = None) -> "Options":
        options: list[DhcpOption] = [MessageTypeOption(MessageType.DISCOVER)]
        if requested_ip is not None:
            options.append(RequestedIpAddress(requested_ip))
        return cls(options)

    @classmethod
    def request(cls, ip: Any) -> "Options":
        return cls(
            (
                MessageTypeOption(MessageType.REQUEST),
                RequestedIpAddress(ip),
                ParameterRequestList(cls.REQUEST_PARAMS),
            )
        )

    @classmethod
    def release(cls) -> "Options":
        return cls((MessageTypeOption(MessageType.RELEASE),))

    @classmethod
    def decline(cls) -> "Options":
        return cls((MessageTypeOption(MessageType.DECLINE),))

    def reply(
        self,
        mt: MessageType,
        server_ip: Any,
        lease_duration_secs: int,
        gateways: Iterable[Any] = (),
        subnet: Any = None,
        dns: Iterable[Any] = (),
        captive_url: str | None = None,
    ) -> "Options":
        """Options of a server reply, adding the parameters this request asked for."""
        gateways = tuple(gateways)
        dns = tuple(dns)
        requested = self._first(ParameterRequestList)
        options: list[DhcpOption] = [
            MessageTypeOption(mt),
            ServerIdentifier(server_ip),
            IpAddressLeaseTime(lease_duration_secs),
        ]
        if mt != MessageType.NAK and requested is not None:
            for code in requested.codes:
                if not any(option.code() == code for option in options):
                    option: DhcpOption | None = None
                    if code == DhcpOption.CODE_ROUTER and gateways:
                        option = Router(gateways)
                    elif code == DhcpOption.CODE_DNS and dns:
                        option = DomainNameServer(dns)
                    elif code == DhcpOption.CODE_SUBNET and subnet is not None:
                        option = SubnetMask(subnet)
                    elif code == DhcpOption.CODE_CAPTIVE_URL and captive_url is not None:
                        option = CaptiveUrl(captive_url)
                    if option is not None:
                        options.append(option)
                if len(options) == self.MAX_REPLY_OPTIONS:
                    break
        return Options(options)

    def _first(self, option_type: type[_T]) -> _T | None:
        return next((o for o in self._options if isinstance(o, option_type)), None)

    def requested_ip(self) -> IPv4Address | None:
        option = self._first(RequestedIpAddress)
        return option.address if option else None

    def message_type(self) -> MessageType | None:
        option = self._first(MessageTypeOption)
        return option.message_type if option else None