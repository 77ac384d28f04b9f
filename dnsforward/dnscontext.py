"""Per-request state of the DNS proxy and response scrubbing."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Optional, Tuple, Union

import dns.flags
import dns.message

from .ecs import ClientSubnet

MAX_MSG_SIZE = 65535
"""The largest possible DNS message, used over stream transports."""

MIN_MSG_SIZE = 512
"""The smallest UDP payload size a DNS message may be limited to."""

DEFAULT_UDP_BUF_SIZE = 2048
"""The default UDP buffer size for EDNS0 records."""

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class Proto(str, Enum):
    """The DNS protocol a query arrived over."""

    UDP = "udp"
    TCP = "tcp"
    TLS = "tls"
    HTTPS = "https"
    QUIC = "quic"
    DNSCRYPT = "dnscrypt"

    def __str__(self) -> str:
        return self.value


class DoQVersion(IntEnum):
    """Supported DNS-over-QUIC versions."""

    V1_DRAFT = 0x00
    """Old drafts that send no 2-octet length prefix."""

    V1 = 0x01
    """DoQ as standardised in RFC 9250."""


@dataclass
class DNSContext:
    """The context of a single DNS request."""

    req: Optional[dns.message.Message] = None
    res: Optional[dns.message.Message] = None
    proto: Proto = Proto.UDP
    addr: Optional[Tuple[Address, int]] = None
    conn: Any = None
    quic_connection: Any = None
    quic_stream: Any = None
    response_writer: Any = None
    http_request: Any = None
    upstream: Any = None
    req_ecs: Optional[ClientSubnet] = None
    custom_upstream_config: Any = None
    query_statistics: Any = None
    requested_private_rdns: Optional[Network] = None
    local_ip: Optional[Address] = None
    doq_version: DoQVersion = DoQVersion.V1_DRAFT
    request_id: int = 0
    udp_size: int = 0
    is_private_client: bool = False
    ad_bit: bool = False
    has_edns0: bool = False
    do_bit: bool = False

    def calc_flags_and_size(self) -> None:
        """Compute the request flags and UDP size once, if not done yet."""
        if self.udp_size != 0 or self.req is None:
            return

        self.ad_bit = bool(self.req.flags & dns.flags.AD)
        self.udp_size = DEFAULT_UDP_BUF_SIZE
        if self.req.edns >= 0:
            self.has_edns0 = True
            self.do_bit = bool(self.req.ednsflags & dns.flags.DO)
            self.udp_size = self.req.payload

    def scrub(self) -> None:
        """Prepare the response for writing, truncating it if necessary."""
        if self.res is None or self.req is None:
            return

        self.calc_flags_and_size()

        # A response must not carry EDNS0 unless the request did (RFC 6891).
        if self.has_edns0 and self.res.edns < 0:
            self.res.use_edns(
                edns=0,
                ednsflags=dns.flags.DO if self.do_bit else 0,
                payload=self.udp_size,
            )

        _truncate(self.res, dns_size(self.proto == Proto.UDP, self.req))


def dns_size(is_udp: bool, msg: dns.message.Message) -> int:
    """Return the largest response size allowed for the request msg."""
    if not is_udp:
        return MAX_MSG_SIZE

    size = msg.payload if msg.edns >= 0 else 0
    return max(MIN_MSG_SIZE, size)


def _wire_len(msg: dns.message.Message) -> int:
    return len(msg.to_wire())


def _truncate(msg: dns.message.Message, size: int) -> None:
    """Drop records from the end of msg until it fits into size bytes.

    Records are kept whole by RRset; TC is set if answers were removed.
    """
    if _wire_len(msg) <= size:
        return

    sections = ("answer", "authority", "additional")
    original = {name: list(getattr(msg, name)) for name in sections}
    for name in sections:
        setattr(msg, name, [])

    fits = True
    for name in sections:
        kept = []
        if fits:
            for rrset in original[name]:
                setattr(msg, name, kept + [rrset])
                if _wire_len(msg) > size:
                    fits = False
                    break
                kept.append(rrset)
        setattr(msg, name, kept)

    if len(msg.answer) < len(original["answer"]):
        msg.flags |= dns.flags.TC