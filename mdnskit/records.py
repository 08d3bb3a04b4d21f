"""DNS questions, resource records and messages, with wire encoding."""

from __future__ import annotations

import io
import ipaddress
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar

import dns.exception
import dns.name

CLASS_INET = 1
UNICAST_RESPONSE_BIT = 1 << 15

_HEADER = struct.Struct("!6H")
_QUESTION_FIXED = struct.Struct("!HH")
_RECORD_FIXED = struct.Struct("!HHIH")
_SRV_FIXED = struct.Struct("!HHH")
_LENGTH = struct.Struct("!H")


class RecordType(IntEnum):
    """DNS record types used by multicast DNS service discovery."""

    A = 1
    PTR = 12
    TXT = 16
    AAAA = 28
    SRV = 33
    ANY = 255


def _as_type(value: int) -> int:
    try:
        return RecordType(value)
    except ValueError:
        return value


def _encode_name(name: str) -> dns.name.Name:
    if not name.endswith("."):
        raise ValueError(f"domain name must be fully qualified: {name!r}")
    stripped = name[:-1]
    labels = [label.encode("utf-8") for label in stripped.split(".")] if stripped else []
    try:
        return dns.name.Name([*labels, b""])
    except dns.exception.DNSException as err:
        raise ValueError(f"invalid domain name {name!r}: {err}") from err


def _write_name(out: io.BytesIO, name: str, compress: dict | None) -> None:
    _encode_name(name).to_wire(out, compress)


def _read_name(data: bytes, offset: int) -> tuple[str, int]:
    """Read a possibly compressed name; return its text and the offset after it."""
    try:
        parsed, used = dns.name.from_wire(data, offset)
    except (dns.exception.DNSException, IndexError, ValueError) as err:
        raise ValueError(f"malformed domain name at offset {offset}") from err
    labels = [label.decode("utf-8", "replace") for label in parsed.labels if label]
    return ".".join(labels) + ".", offset + used


def _unpack_from(layout: struct.Struct, data: bytes, offset: int) -> tuple:
    try:
        return layout.unpack_from(data, offset)
    except struct.error as err:
        raise ValueError(f"message truncated at offset {offset}") from err


@dataclass(frozen=True)
class Question:
    """A question: a name, a record type and a class."""

    name: str
    qtype: int
    qclass: int = CLASS_INET

    @property
    def unicast_response(self) -> bool:
        """Whether the querier prefers a unicast reply (top bit of the class)."""
        return bool(self.qclass & UNICAST_RESPONSE_BIT)


@dataclass(frozen=True)
class ResourceRecord(ABC):
    """Common header of every resource record."""

    rtype: ClassVar[RecordType]

    name: str
    ttl: int = field(default=0, kw_only=True)
    rclass: int = field(default=CLASS_INET, kw_only=True)

    @abstractmethod
    def _write_rdata(self, out: io.BytesIO, compress: dict) -> None:
        """Write the record data to the output stream."""

    @classmethod
    @abstractmethod
    def _read_rdata(cls, data: bytes, start: int, end: int, name: str, ttl: int, rclass: int):
        """Build a record from its data between start and end."""


@dataclass(frozen=True)
class PTR(ResourceRecord):
    """Pointer to another domain name."""

    rtype: ClassVar[RecordType] = RecordType.PTR

    target: str

    def _write_rdata(self, out, compress):
        _write_name(out, self.target, compress)

    @classmethod
    def _read_rdata(cls, data, start, end, name, ttl, rclass):
        target, _ = _read_name(data, start)
        return cls(name, target, ttl=ttl, rclass=rclass)


@dataclass(frozen=True)
class SRV(ResourceRecord):
    """Service location: priority, weight, port and target host."""

    rtype: ClassVar[RecordType] = RecordType.SRV

    priority: int
    weight: int
    port: int
    target: str

    def _write_rdata(self, out, compress):
        out.write(_SRV_FIXED.pack(self.priority, self.weight, self.port))
        _write_name(out, self.target, None)

    @classmethod
    def _read_rdata(cls, data, start, end, name, ttl, rclass):
        if end - start < _SRV_FIXED.size:
            raise ValueError("SRV record data too short")
        priority, weight, port = _SRV_FIXED.unpack_from(data, start)
        target, _ = _read_name(data, start + _SRV_FIXED.size)
        return cls(
            name,
            priority=priority,
            weight=weight,
            port=port,
            target=target,
            ttl=ttl,
            rclass=rclass,
        )


@dataclass(frozen=True)
class TXT(ResourceRecord):
    """A list of text strings."""

    rtype: ClassVar[RecordType] = RecordType.TXT

    strings: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "strings", tuple(self.strings))

    def _write_rdata(self, out, compress):
        for text in self.strings:
            encoded = text.encode("utf-8")
            if len(encoded) > 255:
                raise ValueError(f"TXT string longer than 255 bytes: {text[:32]!r}...")
            out.write(bytes([len(encoded)]) + encoded)

    @classmethod
    def _read_rdata(cls, data, start, end, name, ttl, rclass):
        strings = []
        pos = start
        while pos < end:
            length = data[pos]
            chunk_end = pos + 1 + length
            if chunk_end > end:
                raise ValueError("TXT string overruns record data")
            strings.append(data[pos + 1 : chunk_end].decode("utf-8", "replace"))
            pos = chunk_end
        return cls(name, tuple(strings), ttl=ttl, rclass=rclass)


@dataclass(frozen=True)
class A(ResourceRecord):
    """An IPv4 host address."""

    rtype: ClassVar[RecordType] = RecordType.A

    address: ipaddress.IPv4Address

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", ipaddress.IPv4Address(self.address))

    def _write_rdata(self, out, compress):
        out.write(self.address.packed)

    @classmethod
    def _read_rdata(cls, data, start, end, name, ttl, rclass):
        if end - start != 4:
            raise ValueError("A record data must be 4 bytes")
        return cls(name, data[start:end], ttl=ttl, rclass=rclass)


@dataclass(frozen=True)
class AAAA(ResourceRecord):
    """An IPv6 host address."""

    rtype: ClassVar[RecordType] = RecordType.AAAA

    address: ipaddress.IPv6Address

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", ipaddress.IPv6Address(self.address))

    def _write_rdata(self, out, compress):
        out.write(self.address.packed)

    @classmethod
    def _read_rdata(cls, data, start, end, name, ttl, rclass):
        if end - start != 16:
            raise ValueError("AAAA record data must be 16 bytes")
        return cls(name, data[start:end], ttl=ttl, rclass=rclass)


_RECORD_CLASSES: dict[int, type[ResourceRecord]] = {
    record_class.rtype: record_class for record_class in (PTR, SRV, TXT, A, AAAA)
}


def _write_record(out: io.BytesIO, record: ResourceRecord, compress: dict) -> None:
    _write_name(out, record.name, compress)
    out.write(_RECORD_FIXED.pack(record.rtype, record.rclass, record.ttl, 0))
    start = out.tell()
    record._write_rdata(out, compress)
    end = out.tell()
    length = end - start
    if length > 0xFFFF:
        raise ValueError(f"record data too long for {record.name}")
    out.seek(start - _LENGTH.size)
    out.write(_LENGTH.pack(length))
    out.seek(end)


def _read_records(data: bytes, offset: int, count: int) -> tuple[list[ResourceRecord], int]:
    """Read count records; records of types not modelled here are skipped."""
    records = []
    for _ in range(count):
        name, offset = _read_name(data, offset)
        rtype, rclass, ttl, length = _unpack_from(_RECORD_FIXED, data, offset)
        start = offset + _RECORD_FIXED.size
        end = start + length
        if end > len(data):
            raise ValueError(f"record data for {name} overruns message")
        record_class = _RECORD_CLASSES.get(rtype)
        if record_class is not None:
            records.append(record_class._read_rdata(data, start, end, name, ttl, rclass))
        offset = end
    return records, offset


@dataclass
class Message:
    """A DNS message: header flags, questions and record sections."""

    id: int = 0
    response: bool = False
    opcode: int = 0
    authoritative: bool = False
    truncated: bool = False
    recursion_desired: bool = False
    recursion_available: bool = False
    rcode: int = 0
    questions: list[Question] = field(default_factory=list)
    answers: list[ResourceRecord] = field(default_factory=list)
    authorities: list[ResourceRecord] = field(default_factory=list)
    additionals: list[ResourceRecord] = field(default_factory=list)

    def _flags(self) -> int:
        if not 0 <= self.opcode <= 0xF:
            raise ValueError(f"opcode out of range: {self.opcode}")
        if not 0 <= self.rcode <= 0xF:
            raise ValueError(f"rcode out of range: {self.rcode}")
        return (
            (int(self.response) << 15)
            | (self.opcode << 11)
            | (int(self.authoritative) << 10)
            | (int(self.truncated) << 9)
            | (int(self.recursion_desired) << 8)
            | (int(self.recursion_available) << 7)
            | self.rcode
        )

    def pack(self) -> bytes:
        """Encode the message in wire format, compressing names."""
        out = io.BytesIO()
        compress: dict = {}
        try:
            out.write(
                _HEADER.pack(
                    self.id,
                    self._flags(),
                    len(self.questions),
                    len(self.answers),
                    len(self.authorities),
                    len(self.additionals),
                )
            )
            for question in self.questions:
                _write_name(out, question.name, compress)
                out.write(_QUESTION_FIXED.pack(question.qtype, question.qclass))
            for section in (self.answers, self.authorities, self.additionals):
                for record in section:
                    _write_record(out, record, compress)
        except struct.error as err:
            raise ValueError(f"value out of range while packing message: {err}") from err
        return out.getvalue()

    @classmethod
    def unpack(cls, data) -> Message:
        """Decode a wire-format message; raise ValueError if it is malformed."""
        data = bytes(data)
        if len(data) < _HEADER.size:
            raise ValueError("message shorter than a DNS header")
        ident, flags, qdcount, ancount, nscount, arcount = _HEADER.unpack_from(data)
        offset = _HEADER.size
        questions = []
        for _ in range(qdcount):
            name, offset = _read_name(data, offset)
            qtype, qclass = _unpack_from(_QUESTION_FIXED, data, offset)
            offset += _QUESTION_FIXED.size
            questions.append(Question(name, _as_type(qtype), qclass))
        answers, offset = _read_records(data, offset, ancount)
        authorities, offset = _read_records(data, offset, nscount)
        additionals, offset = _read_records(data, offset, arcount)
        return cls(
            id=ident,
            response=bool(flags & 0x8000),
            opcode=(flags >> 11) & 0xF,
            authoritative=bool(flags & 0x0400),
            truncated=bool(flags & 0x0200),
            recursion_desired=bool(flags & 0x0100),
            recursion_available=bool(flags & 0x0080),
            rcode=flags & 0xF,
            questions=questions,
            answers=answers,
            authorities=authorities,
            additionals=additionals,
        )