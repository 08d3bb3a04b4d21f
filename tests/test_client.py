import ipaddress
import queue

import pytest

from mdnskit.client import (
    Client,
    QueryParam,
    ResponseCollector,
    ServiceEntry,
    build_query,
    default_params,
    query,
)
from mdnskit.records import PTR, SRV, TXT, A, Message, Question, RecordType
from mdnskit.zone import create_service

IPV4 = "192.168.0.42"
IPV6 = "2620:0:1000:1900:b0c2:d0b2:c411:18bc"


def make_service():
    return create_service(
        "hostname",
        "_http._tcp",
        "local.",
        "testhost.",
        80,
        [IPV4, IPV6],
        ["Local web server"],
    )


def service_response():
    service = make_service()
    answers = service.records(Question("_http._tcp.local.", RecordType.PTR))
    return Message(response=True, authoritative=True, answers=answers)


class RecordingClient:
    def __init__(self):
        self.calls = []

    def query(self, params, entries):
        self.calls.append((list(params), entries))


def test_default_params_fill_defaults():
    params = default_params("_http._tcp")
    assert params.service == "_http._tcp"
    assert params.domain == "local"
    assert params.timeout == 1.0
    assert params.want_unicast_response is False
    assert params.disable_ipv4 is False
    assert params.disable_ipv6 is False
    assert isinstance(params.entries, queue.Queue)


def test_build_query_asks_for_service_ptr():
    message = build_query(QueryParam(service="_foobar._tcp", domain="local"))
    assert message.recursion_desired is False
    assert len(message.questions) == 1
    question = message.questions[0]
    assert question.name == "_foobar._tcp.local."
    assert question.qtype == RecordType.PTR
    assert question.unicast_response is False
    assert 0 <= message.id <= 0xFFFF


def test_build_query_trims_dots():
    message = build_query(QueryParam(service="._http._tcp.", domain="local."))
    assert message.questions[0].name == "_http._tcp.local."


def test_build_query_unicast_bit():
    message = build_query(QueryParam(service="_http._tcp", want_unicast_response=True))
    question = message.questions[0]
    assert question.unicast_response is True
    assert question.qclass & 0x7FFF == 1


def test_build_query_round_trips_through_wire():
    message = build_query(QueryParam(service="_http._tcp", want_unicast_response=True))
    decoded = Message.unpack(message.pack())
    assert decoded.questions == message.questions
    assert decoded.id == message.id
    assert decoded.recursion_desired is False


def test_entry_is_complete():
    assert ServiceEntry(name="x.local.").complete() is True


def test_collector_builds_entry_from_service_records():
    collector = ResponseCollector()
    entry = collector.process(service_response(), ("192.168.0.7", 5353))
    assert entry is not None
    assert entry.name == "hostname._http._tcp.local."
    assert entry.port == 80
    assert entry.info == "Local web server"
    assert entry.info_fields == ["Local web server"]
    assert entry.host == "testhost."
    assert entry.addr_v4 == ipaddress.IPv4Address(IPV4)
    assert entry.addr_v6 == ipaddress.IPv6Address(IPV6)
    assert entry.src_ip == ipaddress.ip_address("192.168.0.7")
    assert entry.has_txt is True


def test_collector_reports_entry_once():
    collector = ResponseCollector()
    first = collector.process(service_response(), ("192.168.0.7", 5353))
    second = collector.process(service_response(), ("192.168.0.7", 5353))
    assert first is not None and first.sent is True
    assert second is None


def test_collector_aliases_srv_target():
    collector = ResponseCollector()
    collector.process(service_response(), ("192.168.0.7", 5353))
    assert collector.in_progress["testhost."] is collector.in_progress["hostname._http._tcp.local."]


def test_collector_ignores_message_without_records():
    collector = ResponseCollector()
    assert collector.process(Message(response=True), ("192.168.0.7", 5353)) is None
    assert collector.in_progress == {}


def test_collector_after_wire_round_trip():
    data = service_response().pack()
    entry = ResponseCollector().process(Message.unpack(data), ("10.0.0.1", 5353))
    assert entry.name == "hostname._http._tcp.local."
    assert entry.port == 80
    assert entry.info == "Local web server"


def test_collector_srv_with_same_target_keeps_one_name():
    record = SRV("box.local.", priority=10, weight=1, port=8080, target="box.local.")
    collector = ResponseCollector()
    entry = collector.process(Message(answers=[record]), ("10.0.0.1", 5353))
    assert entry.port == 8080
    assert entry.host == "box.local."
    assert list(collector.in_progress) == ["box.local."]


def test_collector_txt_fields_joined():
    record = TXT("box.local.", ("path=/", "version=1"))
    entry = ResponseCollector().process(Message(answers=[record]), ("10.0.0.1", 5353))
    assert entry.info_fields == ["path=/", "version=1"]
    assert entry.info == "path=/|version=1"


def test_collector_link_local_aaaa_takes_source_zone():
    from mdnskit.records import AAAA

    record = AAAA("box.local.", "fe80::1")
    entry = ResponseCollector().process(
        Message(answers=[record]), ("fe80::2%eth0", 5353, 0, 0)
    )
    assert entry.addr_v6 == ipaddress.IPv6Address("fe80::1")
    assert entry.addr_v6_zone == "eth0"
    assert entry.src_ip == ipaddress.IPv6Address("fe80::2")


def test_collector_global_aaaa_has_no_zone():
    from mdnskit.records import AAAA

    record = AAAA("box.local.", IPV6)
    entry = ResponseCollector().process(
        Message(answers=[record]), ("fe80::2%eth0", 5353, 0, 0)
    )
    assert entry.addr_v6_zone is None
    assert entry.addr == ipaddress.IPv6Address(IPV6)


def test_collector_reads_additional_section():
    message = Message(
        answers=[PTR("_http._tcp.local.", "box._http._tcp.local.")],
        additionals=[A("box._http._tcp.local.", IPV4)],
    )
    entry = ResponseCollector().process(message, ("10.0.0.1", 5353))
    assert entry.name == "box._http._tcp.local."
    assert entry.addr_v4 == ipaddress.IPv4Address(IPV4)


def test_client_needs_a_protocol():
    with pytest.raises(ValueError):
        Client(False, False, None, None)


def test_query_fills_defaults_without_mutating():
    client = RecordingClient()
    entries = queue.Queue()
    original = QueryParam(service="_http._tcp", domain="", timeout=0)
    query([original], entries, client)
    (params, passed_entries), = client.calls
    assert passed_entries is entries
    assert params[0].domain == "local"
    assert params[0].timeout == 1.0
    assert original.domain == ""


def test_query_keeps_given_values():
    client = RecordingClient()
    query([QueryParam(service="_x._tcp", domain="example.", timeout=0.5)], queue.Queue(), client)
    params = client.calls[0][0]
    assert params[0].domain == "example."
    assert params[0].timeout == 0.5