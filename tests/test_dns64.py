import ipaddress

import dns.message
import dns.rcode
import dns.rdatatype
import dns.reversename
import dns.rrset
import pytest

from dnsforward.dns64 import (
    DNS64,
    DNS64_WELL_KNOWN_PREFIX,
    MAX_DNS64_SYN_TTL,
    setup_dns64,
)

HOST = "example.org."


def _aaaa_query():
    return dns.message.make_query(HOST, "AAAA")


def _response(req, *rrsets):
    resp = dns.message.make_response(req)
    resp.answer.extend(rrsets)
    return resp


def _a_rrset(ttl=300, address="192.0.2.33"):
    return dns.rrset.from_text(HOST, ttl, "IN", "A", address)


def test_setup_disabled():
    assert setup_dns64(False, ["2001:db8::/96"]).enabled is False


def test_setup_default_prefix():
    assert setup_dns64(True, []).prefixes == [DNS64_WELL_KNOWN_PREFIX]


def test_setup_masks_prefix():
    d = setup_dns64(True, ["2001:db8::1/64"])
    assert d.prefixes == [ipaddress.ip_network("2001:db8::1/64", strict=False)]


def test_setup_rejects_ipv4():
    with pytest.raises(ValueError, match="is not an IPv6 prefix"):
        setup_dns64(True, ["2001:db8::/96", "192.0.2.0/24"])


def test_setup_rejects_long_prefix():
    with pytest.raises(ValueError, match="too long for DNS64"):
        setup_dns64(True, ["2001:db8::/112"])


def test_map_address_well_known():
    d = setup_dns64(True)
    # RFC 6052 example.
    assert d.map_address(ipaddress.IPv4Address("192.0.2.33")) == ipaddress.IPv6Address(
        "64:ff9b::192.0.2.33"
    )


def test_map_address_disabled():
    with pytest.raises(RuntimeError):
        DNS64([]).map_address(ipaddress.IPv4Address("192.0.2.33"))


def test_check_disabled():
    req = _aaaa_query()
    assert DNS64([]).check(req, _response(req)) is None


def test_check_empty_answer():
    d = setup_dns64(True)
    req = _aaaa_query()
    dns64_req = d.check(req, _response(req))
    assert dns64_req is not None
    assert dns64_req.question[0].rdtype == dns.rdatatype.A
    assert dns64_req.question[0].name == req.question[0].name
    assert req.question[0].rdtype == dns.rdatatype.AAAA


def test_check_not_aaaa():
    d = setup_dns64(True)
    req = dns.message.make_query(HOST, "A")
    assert d.check(req, _response(req)) is None


def test_check_nxdomain():
    d = setup_dns64(True)
    req = _aaaa_query()
    resp = _response(req)
    resp.set_rcode(dns.rcode.NXDOMAIN)
    assert d.check(req, resp) is None


def test_check_servfail_requests_a():
    d = setup_dns64(True)
    req = _aaaa_query()
    resp = _response(req)
    resp.set_rcode(dns.rcode.SERVFAIL)
    assert d.check(req, resp).question[0].rdtype == dns.rdatatype.A


def test_check_real_aaaa():
    d = setup_dns64(True)
    req = _aaaa_query()
    rrset = dns.rrset.from_text(HOST, 60, "IN", "AAAA", "2001:db8::1")
    resp = _response(req, rrset)
    assert d.check(req, resp) is None
    assert resp.answer == [rrset]


def test_check_filters_excluded():
    d = setup_dns64(True)
    req = _aaaa_query()
    resp = _response(req, dns.rrset.from_text(HOST, 60, "IN", "AAAA", "64:ff9b::1"))
    assert d.check(req, resp) is not None
    assert resp.answer == []


def test_filter_answers_cname_passes():
    d = setup_dns64(True)
    cname = dns.rrset.from_text(HOST, 60, "IN", "CNAME", "other.example.")
    filtered, has_answers = d.filter_answers([cname])
    assert filtered == [cname]
    assert has_answers is True


def test_filter_answers_partial():
    d = setup_dns64(True)
    rrset = dns.rrset.from_text(HOST, 60, "IN", "AAAA", "64:ff9b::1", "2001:db8::1")
    filtered, has_answers = d.filter_answers([rrset])
    assert has_answers is True
    assert [rd.address for rd in filtered[0]] == ["2001:db8::1"]
    assert filtered[0].ttl == 60


def test_synthesize_empty():
    d = setup_dns64(True)
    req = _aaaa_query()
    orig = _response(req)
    assert d.synthesize(req, orig, _response(req)) is False


def test_synthesize_ttl_from_a():
    d = setup_dns64(True)
    req = _aaaa_query()
    orig = _response(req)
    assert d.synthesize(req, orig, _response(req, _a_rrset(ttl=300))) is True
    ans = orig.answer[0]
    assert ans.rdtype == dns.rdatatype.AAAA
    assert ans.ttl == 300
    assert [ipaddress.IPv6Address(rd.address) for rd in ans] == [
        d.map_address(ipaddress.IPv4Address("192.0.2.33"))
    ]


def test_synthesize_ttl_capped():
    d = setup_dns64(True)
    req = _aaaa_query()
    orig = _response(req)
    d.synthesize(req, orig, _response(req, _a_rrset(ttl=100000)))
    assert orig.answer[0].ttl == MAX_DNS64_SYN_TTL


def test_synthesize_ttl_from_soa():
    d = setup_dns64(True)
    req = _aaaa_query()
    orig = _response(req)
    orig.authority.append(
        dns.rrset.from_text(
            HOST, 100, "IN", "SOA", "ns.example.org. admin.example.org. 1 2 3 4 5"
        )
    )
    d.synthesize(req, orig, _response(req, _a_rrset(ttl=300)))
    assert orig.answer[0].ttl == 100


def test_synthesize_keeps_non_a():
    d = setup_dns64(True)
    req = _aaaa_query()
    orig = _response(req)
    cname = dns.rrset.from_text(HOST, 60, "IN", "CNAME", "other.example.")
    d.synthesize(req, orig, _response(req, cname))
    assert orig.answer == [cname]


def _ptr(addr):
    return dns.message.make_query(dns.reversename.from_address(addr), "PTR")


def test_should_strip_well_known():
    assert setup_dns64(True).should_strip(_ptr("64:ff9b::c000:221")) is True


def test_should_strip_custom_prefix_also_matches_well_known():
    d = setup_dns64(True, ["2001:db8::/96"])
    assert d.should_strip(_ptr("64:ff9b::c000:221")) is True
    assert d.should_strip(_ptr("2001:db8::c000:221")) is True


def test_should_strip_other():
    d = setup_dns64(True)
    assert d.should_strip(_ptr("192.0.2.33")) is False
    assert d.should_strip(dns.message.make_query(HOST, "A")) is False


def test_should_strip_disabled():
    assert DNS64([]).should_strip(_ptr("64:ff9b::c000:221")) is False


def test_perform_success():
    d = setup_dns64(True)
    req = _aaaa_query()
    orig = _response(req)
    upstream = object()
    seen = []

    def exchange(r):
        seen.append(r)
        return _response(r, _a_rrset()), upstream

    assert d.perform(req, orig, exchange) is upstream
    assert seen[0].question[0].rdtype == dns.rdatatype.A
    assert orig.answer[0].rdtype == dns.rdatatype.AAAA


def test_perform_failure():
    d = setup_dns64(True)
    req = _aaaa_query()
    orig = _response(req)

    def exchange(r):
        raise OSError("boom")

    assert d.perform(req, orig, exchange) is None
    assert orig.answer == []


def test_perform_no_response():
    d = setup_dns64(True)

    def exchange(r):
        raise AssertionError("must not be called")

    assert d.perform(_aaaa_query(), None, exchange) is None