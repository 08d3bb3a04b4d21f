"""An mDNS client that sends service queries and gathers the answers."""

from __future__ import annotations

import dataclasses
import ipaddress
import logging
import queue
import random
import socket
import struct
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from .records import (
    AAAA,
    CLASS_INET,
    PTR,
    SRV,
    TXT,
    UNICAST_RESPONSE_BIT,
    A,
    Message,
    Question,
    RecordType,
)
from .server import IPV4_ADDR, IPV4_MDNS, IPV6_ADDR, MDNS_PORT, _listen_multicast
from .zone import trim_dot

LISTEN_WINDOW = 2.0

_BUFFER_SIZE = 65536
_POLL_INTERVAL = 0.25
_JOIN_TIMEOUT = 1.0
_MESSAGE_BACKLOG = 32

_LOG = logging.getLogger(__name__)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


@dataclass(eq=False)
class ServiceEntry:
    """What has been learnt about one service instance from responses."""

    name: str
    host: str = ""
    addr_v4: ipaddress.IPv4Address | None = None
    addr_v6: ipaddress.IPv6Address | None = None
    addr_v6_zone: str | None = None
    port: int = 0
    info: str = ""
    info_fields: list[str] = field(default_factory=list)
    src_ip: IPAddress | None = None
    addr: IPAddress | None = None
    has_txt: bool = field(default=False, repr=False)
    sent: bool = field(default=False, repr=False)

    def complete(self) -> bool:
        """Whether the entry is ready to be reported; any touched entry is."""
        return True


@dataclass
class QueryParam:
    """How one service lookup is performed."""

    service: str
    domain: str = "local"
    timeout: float = 1.0
    interface: str | None = None
    entries: queue.Queue | None = None
    want_unicast_response: bool = False
    disable_ipv4: bool = False
    disable_ipv6: bool = False
    logger: logging.Logger | None = None


def default_params(service: str) -> QueryParam:
    """Return query parameters for a service with every default filled in."""
    return QueryParam(
        service=service,
        domain="local",
        timeout=1.0,
        entries=queue.Queue(),
        want_unicast_response=False,
        disable_ipv4=False,
        disable_ipv6=False,
    )


def _random_id() -> int:
    return random.getrandbits(16)


def build_query(param: QueryParam) -> Message:
    """Build the PTR query message for the service a parameter set names."""
    service_addr = f"{trim_dot(param.service)}.{trim_dot(param.domain)}."
    qclass = CLASS_INET
    if param.want_unicast_response:
        qclass |= UNICAST_RESPONSE_BIT
    return Message(
        id=_random_id(),
        recursion_desired=False,
        questions=[Question(service_addr, RecordType.PTR, qclass)],
    )


def _source_ip(source) -> tuple[IPAddress, str | None]:
    """Split a socket source address into its IP and interface zone."""
    host, _, zone = str(source[0]).partition("%")
    ip = ipaddress.ip_address(host)
    if zone:
        return ip, zone
    if len(source) >= 4 and source[3]:
        try:
            return ip, socket.if_indextoname(source[3])
        except OSError:
            return ip, str(source[3])
    return ip, None


def _is_link_local(ip: ipaddress.IPv6Address) -> bool:
    packed = ip.packed
    link_local_multicast = packed[0] == 0xFF and packed[1] & 0x0F == 0x02
    return ip.is_link_local or link_local_multicast


class ResponseCollector:
    """Merges response records into service entries, keyed by name.

    ``request_instance`` is called with an entry's name when a response leaves
    that entry incomplete, so that a query for it can be sent.
    """

    def __init__(self, request_instance: Callable[[str], None] | None = None) -> None:
        self.in_progress: dict[str, ServiceEntry] = {}
        self._request_instance = request_instance

    def _ensure(self, name: str) -> ServiceEntry:
        entry = self.in_progress.get(name)
        if entry is None:
            entry = self.in_progress[name] = ServiceEntry(name=name)
        return entry

    def _alias(self, src: str, dst: str) -> None:
        self.in_progress[dst] = self._ensure(src)

    def process(self, message: Message, source) -> ServiceEntry | None:
        """Take in one response; return the entry it completes, if reported for the first time."""
        entry: ServiceEntry | None = None
        zone: str | None = None
        src_ip: IPAddress | None = None
        if source is not None:
            src_ip, zone = _source_ip(source)

        for record in [*message.answers, *message.additionals]:
            if isinstance(record, PTR):
                entry = self._ensure(record.target)
            elif isinstance(record, SRV):
                if record.target != record.name:
                    self._alias(record.name, record.target)
                entry = self._ensure(record.name)
                entry.host = record.target
                entry.port = record.port
            elif isinstance(record, TXT):
                entry = self._ensure(record.name)
                entry.info = "|".join(record.strings)
                entry.info_fields = list(record.strings)
                entry.has_txt = True
            elif isinstance(record, A):
                entry = self._ensure(record.name)
                entry.addr = record.address
                entry.addr_v4 = record.address
            elif isinstance(record, AAAA):
                entry = self._ensure(record.name)
                entry.addr = record.address
                entry.addr_v6 = record.address
                # Link-local addresses need the zone of the interface they arrived on.
                entry.addr_v6_zone = zone if _is_link_local(record.address) else None

        if entry is None:
            return None
        entry.src_ip = src_ip

        if entry.complete():
            if entry.sent:
                return None
            entry.sent = True
            return entry
        if self._request_instance is not None:
            self._request_instance(entry.name)
        return None


def _interface_index(interface: str | None) -> int:
    if interface is None:
        return 0
    return socket.if_nametoindex(interface)


def _listen_unicast(family: int) -> socket.socket:
    sock = socket.socket(family, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        if family == socket.AF_INET:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except OSError:
                    pass
            sock.bind((IPV4_MDNS, MDNS_PORT))
        else:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
            sock.bind(("::", 0))
        sock.settimeout(_POLL_INTERVAL)
    except OSError:
        sock.close()
        raise
    return sock


class Client:
    """Queries the local network for service providers over mDNS."""

    def __init__(
        self,
        use_ipv4: bool,
        use_ipv6: bool,
        logger: logging.Logger | None = None,
        interface: str | None = None,
    ) -> None:
        if not use_ipv4 and not use_ipv6:
            raise ValueError("Must enable at least one of IPv4 and IPv6 querying")
        self.log = logger if logger is not None else _LOG
        self.listen_window = LISTEN_WINDOW
        self.messages: queue.Queue[tuple[Message, tuple]] = queue.Queue(_MESSAGE_BACKLOG)
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []

        self._ipv4_unicast = self._open(use_ipv4, _listen_unicast, socket.AF_INET)
        self._ipv6_unicast = self._open(use_ipv6, _listen_unicast, socket.AF_INET6)
        if self._ipv4_unicast is None and self._ipv6_unicast is None:
            raise OSError("failed to bind to any unicast udp port")

        self._ipv4_multicast = self._open(use_ipv4, self._multicast, socket.AF_INET)
        self._ipv6_multicast = self._open(use_ipv6, self._multicast, socket.AF_INET6)
        if self._ipv4_multicast is None and self._ipv6_multicast is None:
            self._close_sockets()
            raise OSError("failed to bind to any multicast udp port")

        if self._ipv4_unicast is None or self._ipv4_multicast is None:
            self.log.info("[INFO] mdns: Failed to listen to both unicast and multicast on IPv4")
            for sock in (self._ipv4_unicast, self._ipv4_multicast):
                if sock is not None:
                    sock.close()
            self._ipv4_unicast = None
            self._ipv4_multicast = None
            use_ipv4 = False
        if not use_ipv4 and not use_ipv6:
            self._close_sockets()
            raise OSError("at least one of IPv4 and IPv6 must be enabled for querying")

        self.use_ipv4 = use_ipv4
        self.use_ipv6 = use_ipv6

        try:
            self.set_interface(interface)
        except OSError:
            self._closed.set()
            self._close_sockets()
            raise

        for sock in (self._ipv4_unicast, self._ipv4_multicast):
            if sock is not None:
                thread = threading.Thread(target=self._recv, args=(sock,), daemon=True)
                self._threads.append(thread)
                thread.start()

    @staticmethod
    def _multicast(family: int) -> socket.socket:
        return _listen_multicast(family, 0)

    def _open(self, wanted: bool, opener, family: int) -> socket.socket | None:
        if not wanted:
            return None
        try:
            return opener(family)
        except OSError as err:
            label = "udp4" if family == socket.AF_INET else "udp6"
            self.log.error("[ERR] mdns: Failed to bind to %s port: %s", label, err)
            return None

    def _sockets(self) -> tuple[socket.socket | None, ...]:
        return (
            self._ipv4_unicast,
            self._ipv6_unicast,
            self._ipv4_multicast,
            self._ipv6_multicast,
        )

    def _close_sockets(self) -> None:
        for sock in self._sockets():
            if sock is not None:
                sock.close()

    @property
    def closed(self) -> bool:
        """Whether the client has been closed."""
        return self._closed.is_set()

    def close(self) -> None:
        """Close the sockets and stop receiving; later calls do nothing."""
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
        self.log.info("[INFO] mdns: Closing Client %r", self)
        self._close_sockets()
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join(_JOIN_TIMEOUT)

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def set_interface(self, interface: str | None) -> None:
        """Send multicast through the named interface, or the system default if None."""
        index = _interface_index(interface)
        if self.use_ipv4:
            if index:
                any_address = socket.inet_aton("0.0.0.0")
                value = struct.pack("=4s4si", any_address, any_address, index)
            else:
                value = socket.inet_aton("0.0.0.0")
            for sock in (self._ipv4_unicast, self._ipv4_multicast):
                if sock is not None:
                    sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, value)
        if self.use_ipv6:
            value = struct.pack("@I", index)
            for sock in (self._ipv6_unicast, self._ipv6_multicast):
                if sock is not None:
                    sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, value)

    def _send_query(self, message: Message) -> None:
        data = message.pack()
        if self._ipv4_unicast is not None:
            self._ipv4_unicast.sendto(data, IPV4_ADDR)
        if self._ipv6_unicast is not None:
            self._ipv6_unicast.sendto(data, IPV6_ADDR)

    def _request_instance(self, name: str) -> None:
        message = Message(
            id=_random_id(),
            recursion_desired=False,
            questions=[Question(name, RecordType.PTR)],
        )
        try:
            self._send_query(message)
        except (OSError, ValueError) as err:
            self.log.error("[ERR] mdns: Failed to query instance %s: %s", name, err)

    def query(self, params: Iterable[QueryParam], entries: queue.Queue) -> None:
        """Send a query per parameter set and report entries until the window ends.

        Entries are put without blocking; ones that do not fit are dropped.
        """
        for param in params:
            self._send_query(build_query(param))

        collector = ResponseCollector(self._request_instance)
        deadline = time.monotonic() + self.listen_window
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            try:
                message, source = self.messages.get(timeout=remaining)
            except queue.Empty:
                return
            entry = collector.process(message, source)
            if entry is not None:
                try:
                    entries.put_nowait(entry)
                except queue.Full:
                    pass

    def _recv(self, sock: socket.socket) -> None:
        while not self._closed.is_set():
            try:
                packet, source = sock.recvfrom(_BUFFER_SIZE)
            except socket.timeout:
                continue
            except OSError as err:
                if self._closed.is_set():
                    return
                self.log.error("[ERR] mdns: Failed to read packet: %s", err)
                continue
            if self._closed.is_set():
                return
            try:
                message = Message.unpack(packet)
            except ValueError as err:
                self.log.error("[ERR] mdns: Failed to unpack packet: %s", err)
                continue
            while not self._closed.is_set():
                try:
                    self.messages.put((message, source), timeout=_POLL_INTERVAL)
                    break
                except queue.Full:
                    continue


def query(params: Iterable[QueryParam], entries: queue.Queue, client: Client) -> None:
    """Look up services through a client, filling in default domain and timeout."""
    prepared = []
    for param in params:
        changes = {}
        if not param.domain:
            changes["domain"] = "local"
        if not param.timeout:
            changes["timeout"] = 1.0
        prepared.append(dataclasses.replace(param, **changes))
    client.query(prepared, entries)