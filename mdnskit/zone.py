"""Zones that answer mDNS questions, and a zone exporting one named service."""

from __future__ import annotations

import ipaddress
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from .records import AAAA, PTR, SRV, TXT, A, Question, RecordType, ResourceRecord

DEFAULT_TTL = 120

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class Zone(ABC):
    """Something that can answer DNS questions with records."""

    @abstractmethod
    def records(self, question: Question) -> list[ResourceRecord]:
        """Return the records answering the question, possibly none."""


def trim_dot(s: str) -> str:
    """Strip dots from both ends of a string."""
    return s.strip(".")


def validate_fqdn(name: str) -> None:
    """Raise ValueError unless the name is a fully qualified domain name."""
    if not name:
        raise ValueError("FQDN must not be blank")
    if not name.endswith("."):
        raise ValueError(f"FQDN must end in period: {name}")


def _to_ip(value) -> IPAddress:
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    try:
        return ipaddress.ip_address(value)
    except ValueError as err:
        raise ValueError(f"invalid IP address in IPs list: {value!r}") from err


def _ipv4_of(ip: IPAddress) -> ipaddress.IPv4Address | None:
    if isinstance(ip, ipaddress.IPv4Address):
        return ip
    return ip.ipv4_mapped


@dataclass
class MDNSService(Zone):
    """A named service exported over mDNS."""

    instance: str
    service: str
    domain: str
    host_name: str
    port: int
    ips: tuple[IPAddress, ...] = ()
    txt: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        self.ips = tuple(_to_ip(ip) for ip in self.ips)
        self.txt = tuple(self.txt)

    @property
    def service_addr(self) -> str:
        """Fully qualified service address."""
        return f"{trim_dot(self.service)}.{trim_dot(self.domain)}."

    @property
    def instance_addr(self) -> str:
        """Fully qualified instance address."""
        return f"{self.instance}.{trim_dot(self.service)}.{trim_dot(self.domain)}."

    @property
    def enum_addr(self) -> str:
        """Service enumeration address for the domain."""
        return f"_services._dns-sd._udp.{trim_dot(self.domain)}."

    def records(self, question: Question) -> list[ResourceRecord]:
        name = question.name
        if name == self.enum_addr:
            return self._service_enum(question)
        if name == self.service_addr:
            return self._service_records(question)
        if name == self.instance_addr:
            return self._instance_records(name, question.qtype)
        if name == self.host_name and question.qtype in (RecordType.A, RecordType.AAAA):
            return self._instance_records(name, question.qtype)
        return []

    def _service_enum(self, question: Question) -> list[ResourceRecord]:
        if question.qtype not in (RecordType.ANY, RecordType.PTR):
            return []
        return [PTR(question.name, self.service_addr, ttl=DEFAULT_TTL)]

    def _service_records(self, question: Question) -> list[ResourceRecord]:
        if question.qtype not in (RecordType.ANY, RecordType.PTR):
            return []
        pointer = PTR(question.name, self.instance_addr, ttl=DEFAULT_TTL)
        return [pointer, *self._instance_records(self.instance_addr, RecordType.ANY)]

    def _instance_records(self, name: str, qtype: int) -> list[ResourceRecord]:
        if qtype == RecordType.ANY:
            return [
                *self._instance_records(self.instance_addr, RecordType.SRV),
                *self._instance_records(self.instance_addr, RecordType.TXT),
            ]
        if qtype == RecordType.A:
            return [
                A(self.host_name, v4, ttl=DEFAULT_TTL)
                for v4 in map(_ipv4_of, self.ips)
                if v4 is not None
            ]
        if qtype == RecordType.AAAA:
            return [
                AAAA(self.host_name, ip, ttl=DEFAULT_TTL)
                for ip in self.ips
                if _ipv4_of(ip) is None
            ]
        if qtype == RecordType.SRV:
            srv = SRV(
                name,
                priority=10,
                weight=1,
                port=self.port,
                target=self.host_name,
                ttl=DEFAULT_TTL,
            )
            return [
                srv,
                *self._instance_records(self.instance_addr, RecordType.A),
                *self._instance_records(self.instance_addr, RecordType.AAAA),
            ]
        if qtype == RecordType.TXT:
            return [TXT(name, self.txt, ttl=DEFAULT_TTL)]
        return []


def _lookup_ips(host: str) -> list[IPAddress] | None:
    try:
        infos = socket.getaddrinfo(host, None)
    except (OSError, UnicodeError):
        return None
    addresses = dict.fromkeys(info[4][0] for info in infos)
    return [ipaddress.ip_address(address.split("%", 1)[0]) for address in addresses]


def create_service(instance, service, domain, host_name, port, ips, txt) -> MDNSService:
    """Validate the inputs and build an MDNSService.

    An empty domain becomes "local."; an empty host name and empty IP list are
    taken from the operating system.
    """
    if not instance:
        raise ValueError("missing service instance name")
    if not service:
        raise ValueError("missing service name")
    if not port:
        raise ValueError("missing service port")
    if not 0 < port <= 0xFFFF:
        raise ValueError(f"service port out of range: {port}")

    domain = domain or "local."
    try:
        validate_fqdn(domain)
    except ValueError as err:
        raise ValueError(f"domain {domain!r} is not a fully-qualified domain name: {err}") from err

    if not host_name:
        try:
            host_name = f"{socket.gethostname()}."
        except OSError as err:
            raise ValueError(f"could not determine host: {err}") from err
    try:
        validate_fqdn(host_name)
    except ValueError as err:
        raise ValueError(
            f"hostName {host_name!r} is not a fully-qualified domain name: {err}"
        ) from err

    if not ips:
        ips = _lookup_ips(host_name)
        if ips is None:
            ips = _lookup_ips(f"{host_name}{domain}")
        if ips is None:
            raise ValueError(f"could not determine host IP addresses for {host_name}")

    return MDNSService(
        instance=instance,
        service=service,
        domain=domain,
        host_name=host_name,
        port=port,
        ips=tuple(ips),
        txt=tuple(txt or ()),
    )