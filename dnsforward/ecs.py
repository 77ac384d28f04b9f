"""EDNS Client Subnet helpers."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import dns.edns
import dns.message

DEFAULT_ECS_V4 = 24
"""The default length of the network mask for IPv4 addresses in ECS."""

DEFAULT_ECS_V6 = 56
"""The default length of the network mask for IPv6 addresses in ECS."""

ECS_UDP_SIZE = 4096
"""The UDP payload size of an OPT record created to hold ECS."""

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass(frozen=True)
class ClientSubnet:
    """A client subnet: an address and a prefix length."""

    ip: Address
    prefix_len: int

    @property
    def network(self) -> Union[ipaddress.IPv4Network, ipaddress.IPv6Network]:
        """The network with host bits masked off."""
        return ipaddress.ip_network((self.ip, self.prefix_len), strict=False)

    @property
    def bits(self) -> int:
        """The total number of bits in the address."""
        return self.ip.max_prefixlen

    def __str__(self) -> str:
        return f"{self.ip}/{self.prefix_len}"


def ecs_from_msg(msg: dns.message.Message) -> Tuple[Optional[ClientSubnet], int]:
    """Return the subnet and scope from msg's EDNS Client Subnet option, if any."""
    if msg.edns < 0:
        return None, 0

    for opt in msg.options:
        if not isinstance(opt, dns.edns.ECSOption):
            continue
        if opt.family == 1:
            ip: Address = ipaddress.IPv4Address(opt.address)
        elif opt.family == 2:
            ip = ipaddress.IPv6Address(opt.address)
        else:
            continue
        return ClientSubnet(ip, opt.srclen), opt.scopelen

    return None, 0


def set_ecs(msg: dns.message.Message, ip: Union[str, Address], scope: int) -> ClientSubnet:
    """Add an EDNS Client Subnet option for ip to msg.

    Returns the masked subnet put into the option.
    """
    addr = ipaddress.ip_address(ip)
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    prefix_len = DEFAULT_ECS_V4 if addr.version == 4 else DEFAULT_ECS_V6

    masked = ipaddress.ip_network((addr, prefix_len), strict=False).network_address
    subnet = ClientSubnet(masked, prefix_len)
    option = dns.edns.ECSOption(str(masked), prefix_len, scope)

    if msg.edns >= 0:
        # Servers may answer FORMERR to several OPT records, so extend the
        # existing one.
        msg.use_edns(
            edns=msg.edns,
            ednsflags=msg.ednsflags,
            payload=msg.payload,
            options=list(msg.options) + [option],
        )
    else:
        msg.use_edns(edns=0, payload=ECS_UDP_SIZE, options=[option])

    return subnet