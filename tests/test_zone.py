import ipaddress

import pytest

from mdnskit.records import AAAA, PTR, SRV, TXT, A, Question, RecordType
from mdnskit.zone import create_service, trim_dot, validate_fqdn

IPV4_BYTES = bytes([192, 168, 0, 42])
IPV6 = "2620:0:1000:1900:b0c2:d0b2:c411:18bc"


def make_service(service="_http._tcp"):
    return create_service(
        "hostname",
        service,
        "local.",
        "testhost.",
        80,
        [IPV4_BYTES, IPV6],
        ["Local web server"],
    )


@pytest.mark.parametrize(
    ("host_name", "domain"),
    [
        ("hostname", "local."),
        ("hostname.", "local"),
    ],
)
def test_new_service_bad_params(host_name, domain):
    with pytest.raises(ValueError):
        create_service(
            "instance name",
            "_http._tcp",
            domain,
            host_name,
            80,
            [IPV4_BYTES],
            ["Local web server"],
        )


@pytest.mark.parametrize(
    ("instance", "service", "port"),
    [("", "_http._tcp", 80), ("inst", "", 80), ("inst", "_http._tcp", 0)],
)
def test_new_service_missing_fields(instance, service, port):
    with pytest.raises(ValueError):
        create_service(instance, service, "local.", "testhost.", port, [IPV4_BYTES], [])


def test_new_service_invalid_ip():
    with pytest.raises(ValueError):
        create_service("inst", "_http._tcp", "local.", "testhost.", 80, [b"\x01\x02"], [])


def test_default_domain():
    service = create_service("inst", "_http._tcp", "", "testhost.", 80, [IPV4_BYTES], [])
    assert service.domain == "local."
    assert service.service_addr == "_http._tcp.local."


def test_derived_addresses():
    service = make_service()
    assert service.service_addr == "_http._tcp.local."
    assert service.instance_addr == "hostname._http._tcp.local."
    assert service.enum_addr == "_services._dns-sd._udp.local."


def test_bad_addr():
    service = make_service()
    assert service.records(Question("random", RecordType.ANY)) == []


def test_service_addr():
    service = make_service()
    recs = service.records(Question("_http._tcp.local.", RecordType.ANY))
    assert len(recs) == 5
    assert isinstance(recs[0], PTR)
    assert recs[0].target == "hostname._http._tcp.local."
    assert isinstance(recs[1], SRV)
    assert isinstance(recs[2], A)
    assert isinstance(recs[3], AAAA)
    assert isinstance(recs[4], TXT)

    assert service.records(Question("_http._tcp.local.", RecordType.PTR)) == recs


def test_instance_addr_any():
    service = make_service()
    recs = service.records(Question("hostname._http._tcp.local.", RecordType.ANY))
    assert [type(r) for r in recs] == [SRV, A, AAAA, TXT]


def test_instance_addr_srv():
    service = make_service()
    recs = service.records(Question("hostname._http._tcp.local.", RecordType.SRV))
    assert [type(r) for r in recs] == [SRV, A, AAAA]
    assert recs[0].port == service.port
    assert recs[0].target == "testhost."


def test_instance_addr_a():
    service = make_service()
    recs = service.records(Question("hostname._http._tcp.local.", RecordType.A))
    assert len(recs) == 1
    assert isinstance(recs[0], A)
    assert recs[0].address.packed == IPV4_BYTES


def test_instance_addr_aaaa():
    service = make_service()
    recs = service.records(Question("hostname._http._tcp.local.", RecordType.AAAA))
    assert len(recs) == 1
    assert isinstance(recs[0], AAAA)
    assert recs[0].address == ipaddress.IPv6Address(IPV6)


def test_instance_addr_txt():
    service = make_service()
    recs = service.records(Question("hostname._http._tcp.local.", RecordType.TXT))
    assert len(recs) == 1
    assert isinstance(recs[0], TXT)
    assert recs[0].strings == service.txt
    assert recs[0].strings == ("Local web server",)


@pytest.mark.parametrize(
    ("question", "expected"),
    [
        (
            Question("testhost.", RecordType.A),
            [A("testhost.", IPV4_BYTES, ttl=120)],
        ),
        (
            Question("testhost.", RecordType.AAAA),
            [AAAA("testhost.", IPV6, ttl=120)],
        ),
    ],
)
def test_host_name_query(question, expected):
    assert make_service().records(question) == expected


def test_host_name_other_type_has_no_records():
    assert make_service().records(Question("testhost.", RecordType.TXT)) == []


def test_service_enum_ptr():
    service = make_service()
    recs = service.records(Question("_services._dns-sd._udp.local.", RecordType.PTR))
    assert len(recs) == 1
    assert isinstance(recs[0], PTR)
    assert recs[0].target == "_http._tcp.local."


def test_ipv4_mapped_address_goes_to_a_record():
    service = create_service(
        "inst", "_http._tcp", "local.", "testhost.", 80, ["::ffff:192.168.0.42"], []
    )
    a_recs = service.records(Question("testhost.", RecordType.A))
    aaaa_recs = service.records(Question("testhost.", RecordType.AAAA))
    assert [r.address for r in a_recs] == [ipaddress.IPv4Address(IPV4_BYTES)]
    assert aaaa_recs == []


def test_trim_dot():
    assert trim_dot("..local.") == "local"
    assert trim_dot("_http._tcp") == "_http._tcp"


def test_validate_fqdn():
    validate_fqdn("local.")
    with pytest.raises(ValueError):
        validate_fqdn("")
    with pytest.raises(ValueError):
        validate_fqdn("local")