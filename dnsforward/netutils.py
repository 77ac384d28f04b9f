"""Domain name validation and reverse-lookup (ARPA) name helpers."""

from __future__ import annotations

import ipaddress
import re
from typing import List, Tuple, Union

MAX_DOMAIN_NAME_LEN = 253
MAX_LABEL_LEN = 63

IPV4_ARPA_SUFFIX = "in-addr.arpa"
IPV6_ARPA_SUFFIX = "ip6.arpa"

_LABEL_RE = re.compile(r"[A-Za-z0-9_](?:[A-Za-z0-9_-]*[A-Za-z0-9_])?")
_OCTET_RE = re.compile(r"0|[1-9][0-9]{0,2}")
_NIBBLE_RE = re.compile(r"[0-9a-f]")

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def fqdn(name: str) -> str:
    """Return name with a trailing dot."""
    return name if name.endswith(".") else name + "."


def validate_domain_name(name: str) -> None:
    """Raise ValueError if name is not a valid domain name."""
    if not name:
        raise ValueError("bad domain name: empty")
    if len(name) > MAX_DOMAIN_NAME_LEN:
        raise ValueError(f"bad domain name {name!r}: too long")
    for label in name.split("."):
        if not label:
            raise ValueError(f"bad domain name {name!r}: empty label")
        if len(label) > MAX_LABEL_LEN:
            raise ValueError(f"bad domain name {name!r}: label {label!r} is too long")
        if not _LABEL_RE.fullmatch(label):
            raise ValueError(f"bad domain name {name!r}: bad label {label!r}")


def _split_arpa(domain: str) -> Tuple[str, List[str]]:
    name = domain.lower()
    if name.endswith("."):
        name = name[:-1]
    for suffix in (IPV4_ARPA_SUFFIX, IPV6_ARPA_SUFFIX):
        if name == suffix:
            return suffix, []
        if name.endswith("." + suffix):
            return suffix, name[: -len(suffix) - 1].split(".")
    raise ValueError(f"bad arpa domain name {domain!r}: not a reversed ip network")


def extract_reversed_addr(domain: str) -> Network:
    """Return the network encoded in a full or partial ARPA domain name."""
    suffix, labels = _split_arpa(domain)
    if suffix == IPV4_ARPA_SUFFIX:
        if len(labels) > 4:
            raise ValueError(f"bad arpa domain name {domain!r}: too many labels")
        octets = []
        for label in reversed(labels):
            if not _OCTET_RE.fullmatch(label) or int(label) > 255:
                raise ValueError(f"bad arpa domain name {domain!r}: bad octet {label!r}")
            octets.append(int(label))
        value = int.from_bytes(bytes(octets + [0] * (4 - len(octets))), "big")
        return ipaddress.IPv4Network((value, 8 * len(octets)))

    if len(labels) > 32:
        raise ValueError(f"bad arpa domain name {domain!r}: too many labels")
    nibbles = []
    for label in reversed(labels):
        if not _NIBBLE_RE.fullmatch(label):
            raise ValueError(f"bad arpa domain name {domain!r}: bad nibble {label!r}")
        nibbles.append(label)
    value = int("".join(nibbles).ljust(32, "0"), 16)
    return ipaddress.IPv6Network((value, 4 * len(nibbles)))


def ip_from_reversed_addr(domain: str) -> Address:
    """Return the single address encoded in a complete ARPA domain name."""
    network = extract_reversed_addr(domain)
    if network.prefixlen != network.max_prefixlen:
        raise ValueError(f"bad arpa domain name {domain!r}: not a full address")
    return network.network_address