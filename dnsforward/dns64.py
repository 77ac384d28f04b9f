"""DNS64 synthesis of AAAA records from A records (RFC 6147)."""

from __future__ import annotations

import ipaddress
import logging
import secrets
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple, Union

import dns.message
import dns.rcode
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from .netutils import ip_from_reversed_addr

logger = logging.getLogger(__name__)

MAX_NAT64_PREFIX_BIT_LEN = 96
"""The maximum length of a NAT64 prefix in bits."""

NAT64_PREFIX_LENGTH = 16 - 4
"""The length of a NAT64 prefix in bytes."""

MAX_DNS64_SYN_TTL = 600
"""The maximum TTL of synthesized responses with no SOA record, in seconds."""

DNS64_WELL_KNOWN_PREFIX = ipaddress.IPv6Network("64:ff9b::/96")
"""The Well-Known Prefix for the algorithmic mapping (RFC 6052)."""

Exchange = Callable[[dns.message.Message], Tuple[Optional[dns.message.Message], Any]]


class DNS64:
    """NAT64 prefixes used to detect and construct DNS64 responses.

    The DNS64 function is disabled when there are no prefixes.
    """

    def __init__(self, prefixes: Iterable[ipaddress.IPv6Network]) -> None:
        self.prefixes: List[ipaddress.IPv6Network] = list(prefixes)

    @property
    def enabled(self) -> bool:
        """Whether DNS64 is enabled."""
        return bool(self.prefixes)

    def _contains(self, addr: Union[ipaddress.IPv4Address, ipaddress.IPv6Address]) -> bool:
        return any(addr in pref for pref in self.prefixes)

    def check(
        self, req: dns.message.Message, resp: dns.message.Message
    ) -> Optional[dns.message.Message]:
        """Return the A request to resolve for DNS64, or None if not needed.

        Filters AAAA records within the NAT64 prefixes out of resp's answer.
        """
        if not self.prefixes:
            return None

        q = req.question[0]
        if q.rdtype != dns.rdatatype.AAAA or q.rdclass != dns.rdataclass.IN:
            # DNS64 for classes other than IN is undefined.
            return None

        rcode = resp.rcode()
        if rcode == dns.rcode.NXDOMAIN:
            return None
        if rcode == dns.rcode.NOERROR:
            filtered, has_answers = self.filter_answers(resp.answer)
            resp.answer = filtered
            if has_answers:
                return None
        # Any other RCODE is treated as NOERROR with an empty answer.

        dns64_req = dns.message.from_wire(req.to_wire())
        dns64_req.id = secrets.randbits(16)
        dns64_req.question[0] = dns.rrset.RRset(q.name, q.rdclass, dns.rdatatype.A)
        return dns64_req

    def filter_answers(
        self, rrs: Sequence[dns.rrset.RRset]
    ) -> Tuple[List[dns.rrset.RRset], bool]:
        """Drop AAAA records within the NAT64 prefixes.

        The flag is true if the result holds an AAAA record outside the
        prefixes, a CNAME or a DNAME.
        """
        filtered: List[dns.rrset.RRset] = []
        has_answers = False
        for rrset in rrs:
            if rrset.rdtype == dns.rdatatype.AAAA:
                kept = []
                for rd in rrset:
                    addr: Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
                    addr = ipaddress.IPv6Address(rd.address)
                    if addr.ipv4_mapped is not None:
                        addr = addr.ipv4_mapped
                    if not self._contains(addr):
                        kept.append(rd)
                if kept:
                    new = dns.rrset.RRset(rrset.name, rrset.rdclass, rrset.rdtype)
                    for rd in kept:
                        new.add(rd, rrset.ttl)
                    filtered.append(new)
                    has_answers = True
            elif rrset.rdtype in (dns.rdatatype.CNAME, dns.rdatatype.DNAME):
                # Chains are not followed; treat them as passable answers.
                filtered.append(rrset)
                has_answers = True
            else:
                filtered.append(rrset)
        return filtered, has_answers

    def synthesize(
        self,
        orig_req: dns.message.Message,
        orig_resp: dns.message.Message,
        resp: dns.message.Message,
    ) -> bool:
        """Rewrite orig_resp with AAAA records synthesized from resp.

        Returns True if orig_resp was modified.
        """
        if not resp.answer:
            return False

        qname = orig_req.question[0].name
        soa_ttl = MAX_DNS64_SYN_TTL
        for rrset in orig_resp.authority:
            if rrset.rdtype == dns.rdatatype.SOA and rrset.name == qname:
                soa_ttl = rrset.ttl
                break

        orig_resp.answer = [self._synth_rrset(rrset, soa_ttl) for rrset in resp.answer]
        orig_resp.authority = list(resp.authority)
        orig_resp.additional = list(resp.additional)
        return True

    def _synth_rrset(self, rrset: dns.rrset.RRset, soa_ttl: int) -> dns.rrset.RRset:
        if rrset.rdtype != dns.rdatatype.A:
            return rrset
        aaaa = dns.rrset.RRset(rrset.name, rrset.rdclass, dns.rdatatype.AAAA)
        ttl = min(rrset.ttl, soa_ttl)
        for rd in rrset:
            mapped = self.map_address(ipaddress.IPv4Address(rd.address))
            aaaa.add(
                dns.rdata.from_text(rrset.rdclass, dns.rdatatype.AAAA, str(mapped)),
                ttl,
            )
        return aaaa

    def should_strip(self, req: dns.message.Message) -> bool:
        """Whether req is a PTR for an address within a DNS64 prefix.

        Both the configured prefixes and the Well-Known one are matched.
        """
        if not self.prefixes:
            return False

        q = req.question[0]
        if q.rdtype != dns.rdatatype.PTR:
            return False

        try:
            ip = ip_from_reversed_addr(q.name.to_text())
        except ValueError as exc:
            logger.debug("failed to parse ip from ptr request: %s", exc)
            return False

        if self._contains(ip):
            logger.debug("the ip is within dns64 custom prefix set: %s", ip)
        elif ip in DNS64_WELL_KNOWN_PREFIX:
            logger.debug("the ip is within dns64 well-known prefix: %s", ip)
        else:
            return False
        return True

    def map_address(self, addr: ipaddress.IPv4Address) -> ipaddress.IPv6Address:
        """Map addr into the first configured NAT64 prefix."""
        if not self.prefixes:
            raise RuntimeError("dns64 is not configured")
        addr = ipaddress.IPv4Address(addr)
        pref = self.prefixes[0].network_address.packed
        return ipaddress.IPv6Address(pref[:NAT64_PREFIX_LENGTH] + addr.packed)

    def perform(
        self,
        orig_req: dns.message.Message,
        orig_resp: Optional[dns.message.Message],
        exchange: Exchange,
    ) -> Any:
        """Perform DNS64 for orig_resp if needed.

        exchange sends a request and returns the response and the upstream
        that resolved it.  Returns that upstream if orig_resp was
        synthesized, otherwise None.
        """
        if orig_resp is None:
            return None

        dns64_req = self.check(orig_req, orig_resp)
        if dns64_req is None:
            return None

        host = orig_req.question[0].name
        logger.debug("received an empty aaaa response, checking dns64: %s", host)

        try:
            dns64_resp, upstream = exchange(dns64_req)
        except Exception as exc:  # noqa: BLE001
            logger.error("dns64 request failed: %s", exc)
            return None

        if dns64_resp is not None and self.synthesize(orig_req, orig_resp, dns64_resp):
            logger.debug("synthesized aaaa response: %s", host)
            return upstream
        return None


def setup_dns64(
    enabled: bool,
    prefixes: Iterable[Union[str, ipaddress.IPv4Network, ipaddress.IPv6Network]] = (),
) -> DNS64:
    """Validate the NAT64 prefixes and return the DNS64 settings.

    With no prefixes the Well-Known Prefix is used.  Each prefix must be an
    IPv6 network no longer than 96 bits; host bits are masked off.
    """
    if not enabled:
        return DNS64([])

    prefixes = list(prefixes)
    if not prefixes:
        return DNS64([DNS64_WELL_KNOWN_PREFIX])

    result: List[ipaddress.IPv6Network] = []
    for idx, pref in enumerate(prefixes):
        network = ipaddress.ip_network(pref, strict=False)
        if network.version != 6:
            raise ValueError(f'prefix at index {idx}: "{pref}" is not an IPv6 prefix')
        if network.prefixlen > MAX_NAT64_PREFIX_BIT_LEN:
            raise ValueError(f'prefix at index {idx}: "{pref}" is too long for DNS64')
        result.append(network)
    return DNS64(result)