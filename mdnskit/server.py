"""An mDNS responder that answers multicast queries from a zone."""

from __future__ import annotations

import ipaddress
import logging
import socket
import struct
import threading
from dataclasses import dataclass

from .records import UNICAST_RESPONSE_BIT, Message, Question, ResourceRecord
from .zone import Zone

IPV4_MDNS = "224.0.0.251"
IPV6_MDNS = "ff02::fb"
MDNS_PORT = 5353
IPV4_ADDR = (IPV4_MDNS, MDNS_PORT)
IPV6_ADDR = (IPV6_MDNS, MDNS_PORT)
FORCE_UNICAST_RESPONSES = False

_BUFFER_SIZE = 65536
_POLL_INTERVAL = 0.25
_JOIN_TIMEOUT = 1.0

_LOG = logging.getLogger(__name__)


@dataclass
class Config:
    """Settings for an mDNS server.

    ``zone`` answers the questions. ``iface`` names the network interface the
    multicast listeners join on; the system default is used when it is None.
    """

    zone: Zone
    iface: str | None = None
    log_empty_responses: bool = False
    logger: logging.Logger | None = None


def _interface_index(iface: str | None) -> int:
    if iface is None:
        return 0
    return socket.if_nametoindex(iface)


def _listen_multicast(family: int, iface_index: int) -> socket.socket:
    """Open a UDP socket bound to the mDNS port and joined to the mDNS group."""
    sock = socket.socket(family, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            except OSError:
                pass
        if family == socket.AF_INET:
            sock.bind(("", MDNS_PORT))
            group = socket.inet_aton(IPV4_MDNS)
            any_address = socket.inet_aton("0.0.0.0")
            if iface_index:
                membership = struct.pack("=4s4si", group, any_address, iface_index)
            else:
                membership = group + any_address
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 0)
        else:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
            sock.bind(("::", MDNS_PORT))
            join = getattr(socket, "IPV6_JOIN_GROUP", None)
            if join is None:
                join = socket.IPV6_ADD_MEMBERSHIP
            membership = socket.inet_pton(socket.AF_INET6, IPV6_MDNS) + struct.pack(
                "@I", iface_index
            )
            sock.setsockopt(socket.IPPROTO_IPV6, join, membership)
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_LOOP, 0)
        sock.settimeout(_POLL_INTERVAL)
    except OSError:
        sock.close()
        raise
    return sock


def _is_ipv4_source(source) -> bool:
    host = str(source[0]).split("%", 1)[0]
    address = ipaddress.ip_address(host)
    if isinstance(address, ipaddress.IPv4Address):
        return True
    return address.ipv4_mapped is not None


class Server:
    """Listens for mDNS queries and answers those its zone has records for."""

    def __init__(self, config: Config) -> None:
        if config.logger is None:
            config.logger = _LOG
        self.config = config
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []

        iface_index = _interface_index(config.iface)
        self._ipv4 = self._try_listen(socket.AF_INET, iface_index)
        self._ipv6 = self._try_listen(socket.AF_INET6, iface_index)
        if self._ipv4 is None and self._ipv6 is None:
            raise OSError("no multicast listeners could be started")

        for sock in (self._ipv4, self._ipv6):
            if sock is not None:
                thread = threading.Thread(target=self._recv, args=(sock,), daemon=True)
                self._threads.append(thread)
                thread.start()

    @staticmethod
    def _try_listen(family: int, iface_index: int) -> socket.socket | None:
        try:
            return _listen_multicast(family, iface_index)
        except OSError:
            return None

    @property
    def closed(self) -> bool:
        """Whether the server has been shut down."""
        return self._closed.is_set()

    def shutdown(self) -> None:
        """Stop listening and close the sockets; later calls do nothing."""
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
        for sock in (self._ipv4, self._ipv6):
            if sock is not None:
                sock.close()
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join(_JOIN_TIMEOUT)

    def __enter__(self) -> Server:
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()

    def _recv(self, sock: socket.socket) -> None:
        while not self._closed.is_set():
            try:
                packet, source = sock.recvfrom(_BUFFER_SIZE)
            except socket.timeout:
                continue
            except OSError:
                if self._closed.is_set():
                    return
                continue
            try:
                self.handle_packet(packet, source)
            except (ValueError, OSError) as err:
                self.config.logger.error("[ERR] mdns: Failed to handle query: %s", err)

    def handle_question(
        self, question: Question
    ) -> tuple[list[ResourceRecord], list[ResourceRecord]]:
        """Return the (multicast, unicast) records answering one question."""
        records = list(self.config.zone.records(question))
        if not records:
            return [], []
        if question.qclass & UNICAST_RESPONSE_BIT or FORCE_UNICAST_RESPONSES:
            return [], records
        return records, []

    def build_responses(self, query: Message) -> tuple[Message | None, Message | None]:
        """Build the (multicast, unicast) responses to a query.

        Either is None when it would carry no answers. Raises ValueError for
        queries that multicast DNS requires to be ignored.
        """
        if query.opcode != 0:
            raise ValueError(f"mdns: received query with non-zero Opcode {query.opcode}: {query}")
        if query.rcode != 0:
            raise ValueError(f"mdns: received query with non-zero Rcode {query.rcode}: {query}")
        if query.truncated:
            raise ValueError(
                f"mdns: support for DNS requests with high truncated bit not implemented: {query}"
            )

        multicast_answer: list[ResourceRecord] = []
        unicast_answer: list[ResourceRecord] = []
        for question in query.questions:
            multicast, unicast = self.handle_question(question)
            multicast_answer.extend(multicast)
            unicast_answer.extend(unicast)

        if self.config.log_empty_responses and not multicast_answer and not unicast_answer:
            names = ", ".join(question.name for question in query.questions)
            self.config.logger.info("no responses for query with questions: %s", names)

        def response(answers: list[ResourceRecord], ident: int) -> Message | None:
            if not answers:
                return None
            return Message(
                id=ident,
                response=True,
                opcode=0,
                authoritative=True,
                answers=answers,
            )

        return response(multicast_answer, 0), response(unicast_answer, query.id)

    def handle_query(self, query: Message, source) -> None:
        """Answer a decoded query, replying to the source address."""
        multicast, unicast = self.build_responses(query)
        if multicast is not None:
            try:
                self._send_response(multicast, source)
            except (OSError, ValueError) as err:
                raise OSError(f"mdns: error sending multicast response: {err}") from err
        if unicast is not None:
            try:
                self._send_response(unicast, source)
            except (OSError, ValueError) as err:
                raise OSError(f"mdns: error sending unicast response: {err}") from err

    def handle_packet(self, packet: bytes, source) -> None:
        """Decode a received packet and answer it."""
        try:
            query = Message.unpack(packet)
        except ValueError as err:
            self.config.logger.error("[ERR] mdns: Failed to unpack packet: %s", err)
            raise
        self.handle_query(query, source)

    def _send_response(self, response: Message, source) -> None:
        data = response.pack()
        if _is_ipv4_source(source):
            sock, family = self._ipv4, "IPv4"
        else:
            sock, family = self._ipv6, "IPv6"
        if sock is None:
            raise OSError(f"no {family} listener to send from")
        sock.sendto(data, source)