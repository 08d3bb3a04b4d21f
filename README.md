# mdnskit

Multicast DNS (mDNS) service advertisement and discovery.

`mdnskit` lets a program announce a named service on the local network and
answer mDNS questions about it. It also lets another program send PTR queries
and collect the service entries that come back.

The package is made of four modules:

- `mdnskit.records`: DNS questions, the record types `PTR`, `SRV`, `TXT`, `A`
  and `AAAA`, and `Message`, which has `pack()` and `Message.unpack(data)` for
  the wire format.
- `mdnskit.zone`: the `Zone` interface and `MDNSService`, a zone for one
  named service.
- `mdnskit.server`: `Config` and `Server`, which answer queries from a zone.
- `mdnskit.client`: `Client`, `QueryParam`, `ServiceEntry` and
  `ResponseCollector`, which send queries and gather the answers.

## Installation

```
pip install mdnskit
```

## Describing a service

`create_service` checks its inputs and builds an `MDNSService`:

```python
from mdnskit.zone import create_service

service = create_service(
    "hostname",            # instance name
    "_http._tcp",          # service type
    "local.",              # domain, must end in a period
    "testhost.",           # host name, must end in a period
    80,                    # port
    ["192.168.0.42"],      # addresses of the host
    ["Local web server"],  # TXT record strings
)
```

`create_service` raises `ValueError` in these cases:

- the instance name, service or port is missing;
- the port is out of range;
- the domain or host name is not fully qualified, that is, it does not end in a period.

Some arguments are filled in when left empty:

- An empty domain becomes `local.`.
- An empty host name comes from `socket.gethostname()`.
- An empty address list is looked up for the host name, and then for the host name with the domain appended.

A service answers questions for these names:

- its service name, `_http._tcp.local.` here: the PTR, SRV, A, AAAA and TXT records;
- its instance name, `hostname._http._tcp.local.` here: ANY, SRV, A, AAAA or TXT;
- its host name: A and AAAA only;
- `_services._dns-sd._udp.<domain>`: a PTR to the service name.

IPv4 addresses, and IPv4-mapped IPv6 addresses, go into A records. Other
addresses go into AAAA records. Every record carries a TTL of 120 seconds.
You can ask a service directly:

```python
from mdnskit.records import Question, RecordType

for record in service.records(Question("_http._tcp.local.", RecordType.PTR)):
    print(record)
```

## Serving a service

```python
from mdnskit.server import Config, Server

with Server(Config(zone=service)) as server:
    ...  # answers queries until the block ends
```

`Config` takes these settings:

- `zone`: the zone that answers questions.
- `iface`: an optional interface name to join the multicast group on.
- `log_empty_responses`: log queries that got no answer.
- `logger`: an optional `logging.Logger`.

`Server` joins the IPv4 and IPv6 mDNS groups on port 5353. It raises `OSError`
if neither group can be joined.

A question whose class has the top bit set gets its records in the unicast
response, which carries the query's id. Other questions get their records in
the multicast response, which has id 0. The server rejects and does not answer
these queries:

- queries with a non-zero opcode;
- queries with a non-zero rcode;
- queries with the truncated bit set.

`Server.build_responses(query)` returns the two response messages without
sending them. `Server.handle_packet(packet, source)` decodes and answers one
datagram.

## Discovering services

```python
import queue

from mdnskit.client import Client, default_params, query

entries = queue.Queue()
with Client(True, False, None, None) as client:
    query([default_params("_http._tcp")], entries, client)

while not entries.empty():
    entry = entries.get()
    print(entry.name, entry.host, entry.port, entry.info)
```

`Client(use_ipv4, use_ipv6, logger, interface)` raises `ValueError` if both
protocols are disabled. It raises `OSError` if no socket can be opened.

`Client.query` works as follows:

- It sends one PTR query per `QueryParam`.
- It then listens for `client.listen_window` seconds, which defaults to 2.
- It puts each newly completed entry into the queue without blocking, so entries that do not fit are dropped.

The module-level `query` function fills in an empty domain (`local`) and a
zero timeout (1 second) before it calls the client.

A `QueryParam` names the service and domain. It can also ask for a unicast
response with `want_unicast_response`.

A `ServiceEntry` holds these fields:

- `name`, `host` and `port`;
- `addr_v4` and `addr_v6`, with `addr_v6_zone` for link-local addresses;
- `info`, the TXT strings joined with `|`, and `info_fields`, the strings as a list;
- `src_ip`, the address the answer came from.

`ResponseCollector` does the merging of response records into entries and can
be used on its own with decoded `Message` objects.

## What it does not do

- There is no command-line tool. Everything is used from Python.
- The server does not probe for or resolve name conflicts.
- The server always replies to the querier's source address and never sends
  answers to the multicast group.
- The server does not wait for known-answer records that follow a truncated query.
- `QueryParam.timeout`, `interface`, `entries`, `disable_ipv4`,
  `disable_ipv6` and `logger` are carried but not used by `Client.query`.
  Configure the client itself instead.

## Running the tests

```
pip install mdnskit[test]
pytest
```