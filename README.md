# dnsforward

Building blocks for a forwarding DNS proxy, built on `dnspython`.

The package holds the pieces of the request path that a proxy applies
to a query and its response:

- `dnsforward.dns64`: AAAA synthesis from A records (RFC 6147).
  `setup_dns64(enabled, prefixes)` validates NAT64 prefixes. With no
  prefixes it uses the Well-Known Prefix `64:ff9b::/96`. The `DNS64` class
  provides `check`, `filter_answers`, `synthesize`, `should_strip`,
  `map_address` and `perform`.
- `dnsforward.ecs`: EDNS Client Subnet. `ecs_from_msg(msg)` returns a
  `ClientSubnet` and the scope. `set_ecs(msg, ip, scope)` adds the option
  with a /24 mask for IPv4 and a /56 mask for IPv6.
- `dnsforward.dnscontext`: `DNSContext` holds the per-request state.
  `DNSContext.scrub()` adds EDNS0 to the response when the request had it,
  and truncates the response to the allowed size. `dns_size(is_udp, msg)`
  returns that size. `Proto` and `DoQVersion` are enums.
- `dnsforward.ratelimit`: `RateLimiter` is a sliding-window limiter.
  `IPRateLimiter` limits requests per client subnet and skips whitelisted
  addresses.
- `dnsforward.recursion`: `RecursionDetector` remembers recently sent
  requests for a short time, keyed by `msg_to_signature(msg)`.
- `dnsforward.optimistic`: `OptimisticResolver.resolve_once` refreshes an
  expired cached entry. Only one refresh runs per key at a time.
- `dnsforward.retry`: `bind_with_retry(bind, count, interval)` and
  `BindRetryConfig`.
- `dnsforward.doh`: DNS-over-HTTPS request handling.
  `new_doh_request(method, query, content_type, body)` parses a request and
  raises `DoHRequestError`, which carries the HTTP status to answer with.
  `real_ip_from_headers` and `remote_addr` detect the client address.
  `matches_userinfo` checks basic-auth credentials.
- `dnsforward.wire`: length-prefixed messages for TCP and TLS:
  `read_prefixed`, `write_prefixed` and `read_dns_request`.
- `dnsforward.netutils`: `fqdn`, `validate_domain_name`,
  `extract_reversed_addr` and `ip_from_reversed_addr` for ARPA names.
- `dnsforward.neterrors`: `is_epipe(err)`.

## Installation

```
pip install .
```

## Examples

```python
import ipaddress

import dns.message

from dnsforward.dns64 import setup_dns64
from dnsforward.doh import remote_addr
from dnsforward.ecs import ecs_from_msg, set_ecs
from dnsforward.ratelimit import IPRateLimiter

dns64 = setup_dns64(True)
print(dns64.map_address(ipaddress.IPv4Address("192.0.2.1")))  # 64:ff9b::c000:201

msg = dns.message.make_query("example.com.", "A")
print(set_ecs(msg, "192.0.2.77", 0))  # 192.0.2.0/24
subnet, scope = ecs_from_msg(msg)

limiter = IPRateLimiter(
    ratelimit=20,
    whitelist=["192.0.2.1"],
    subnet_len_ipv4=24,
    subnet_len_ipv6=64,
)
if limiter.is_ratelimited("198.51.100.7"):
    ...  # drop the request

client, proxy = remote_addr("192.0.2.10:443", {"X-Real-IP": "198.51.100.7"})
# client == (IPv4Address('198.51.100.7'), 0)
# proxy == (IPv4Address('192.0.2.10'), 443)
```

## What the package does not do

The package is a library of parts and has no command. It does not include:

- a server or listeners;
- parsing of upstream configurations or routing of names to upstreams;
- upstream selection modes or load balancing;
- per-query statistics;
- merging of identical in-flight requests;
- DNS-over-QUIC framing.

These must be supplied by the application that uses the package.

## Running the tests

```
pip install .[test]
pytest
```