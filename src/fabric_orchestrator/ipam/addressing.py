"""
Interface addressing.

Purpose
Derive deterministic point to point addresses for switch ports.

Design notes
Every port owns a fixed sub-block of its switch's south subnet: a /30 for
IPv4, a /127 for IPv6. The block index is the numeric suffix of the port name,
so Ethernet8 owns the ninth block no matter which other ports exist. This keeps
addresses stable across passes and restarts without any allocation state.

The south side of a link takes the first usable host of its block. The north
side takes the next host of the peer's block, so both ends share one network.
"""

from __future__ import annotations

import ipaddress
from itertools import combinations
from typing import Dict, Iterable, List, Tuple, Union

from fabric_orchestrator.core.constants import (
    IPV4_ADDRESSES_PER_LANE,
    IPV4_INTERFACE_PREFIX,
    IPV6_ADDRESSES_PER_LANE,
    IPV6_INTERFACE_PREFIX,
    SWITCH_PORT_PREFIX,
)
from fabric_orchestrator.core.errors import MalformedData
from fabric_orchestrator.core.types import AddressFamily, InterfaceSpec, NICState

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
Interface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]
Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def interface_prefix(af: AddressFamily) -> int:
    return IPV4_INTERFACE_PREFIX if af == AddressFamily.ipv4 else IPV6_INTERFACE_PREFIX


def addresses_per_lane(af: AddressFamily) -> int:
    return IPV4_ADDRESSES_PER_LANE if af == AddressFamily.ipv4 else IPV6_ADDRESSES_PER_LANE


def family_of(value: Union[Network, Interface, Address]) -> AddressFamily:
    return AddressFamily.ipv4 if value.version == 4 else AddressFamily.ipv6


def parse_network(cidr: str) -> Network:
    """Parse a CIDR block. Host bits must be zero."""
    try:
        return ipaddress.ip_network(cidr.strip(), strict=True)
    except ValueError as exc:
        raise MalformedData(f"invalid CIDR {cidr!r}: {exc}") from exc


def parse_interface(address: str) -> Interface:
    """Parse a CIDR qualified host address such as 10.0.0.1/30."""
    try:
        return ipaddress.ip_interface(address.strip())
    except ValueError as exc:
        raise MalformedData(f"invalid address {address!r}: {exc}") from exc


def interface_index(name: str, prefix: str = SWITCH_PORT_PREFIX) -> int:
    """Ethernet12 -> 12."""
    if not name.startswith(prefix):
        raise MalformedData(f"interface {name!r} does not start with {prefix!r}")
    suffix = name[len(prefix):]
    if not suffix.isdigit():
        raise MalformedData(f"interface {name!r} has no numeric index")
    return int(suffix)


def interface_subnet(
    network: Network, name: str, af: AddressFamily, prefix: str = SWITCH_PORT_PREFIX
) -> Network:
    """Return the sub-block owned by the named port."""
    if family_of(network) != af:
        raise MalformedData(f"{network} is not an {af.value} network")
    new_prefix = interface_prefix(af)
    if network.prefixlen > new_prefix:
        raise MalformedData(f"{network} is smaller than a /{new_prefix}")
    index = interface_index(name, prefix)
    blocks = 1 << (new_prefix - network.prefixlen)
    if index >= blocks:
        raise MalformedData(f"{name} needs block {index}, {network} only has {blocks}")
    block_size = 1 << (network.max_prefixlen - new_prefix)
    base = network.network_address + index * block_size
    return ipaddress.ip_network(f"{base}/{new_prefix}")


def host(network: Network, offset: int) -> Address:
    """Address at a fixed offset from the network address, inside the network."""
    if offset < 0 or offset >= network.num_addresses:
        raise MalformedData(f"offset {offset} is outside {network}")
    return network.network_address + offset


def south_address(
    cidr: str, name: str, af: AddressFamily, prefix: str = SWITCH_PORT_PREFIX
) -> str:
    """Address of the south facing end of a port, from the switch's own south subnet."""
    block = interface_subnet(parse_network(cidr), name, af, prefix)
    offset = 1 if af == AddressFamily.ipv4 else 0
    return f"{host(block, offset)}/{block.prefixlen}"


def adjacent_address(peer_address: str, af: AddressFamily) -> str:
    """Address of the north facing end, the other host of the peer port's block."""
    peer = parse_interface(peer_address)
    if family_of(peer) != af:
        raise MalformedData(f"{peer_address} is not an {af.value} address")
    offset = 2 if af == AddressFamily.ipv4 else 1
    return f"{host(peer.network, offset)}/{peer.network.prefixlen}"


def address_count(
    interfaces: Dict[str, InterfaceSpec], af: AddressFamily, prefix: str = SWITCH_PORT_PREFIX
) -> int:
    """Addresses a south subnet must hold for the active ports."""
    per_lane = addresses_per_lane(af)
    total = 0
    for name, nic in interfaces.items():
        if not name.startswith(prefix) or nic.state != NICState.up:
            continue
        total += nic.lanes * per_lane
    return total


def block_size(af: AddressFamily) -> int:
    """Addresses in one port block, 4 for a /30 and 2 for a /127."""
    max_prefixlen = 32 if af == AddressFamily.ipv4 else 128
    return 1 << (max_prefixlen - interface_prefix(af))


def required_addresses(
    interfaces: Dict[str, InterfaceSpec], af: AddressFamily, prefix: str = SWITCH_PORT_PREFIX
) -> int:
    """
    Size a south subnet must have.

    Blocks are indexed by port number, not packed, so the subnet has to reach
    the block of the highest numbered active port as well as hold every lane.
    """
    needed = address_count(interfaces, af, prefix)
    active = [
        interface_index(name, prefix)
        for name, nic in interfaces.items()
        if name.startswith(prefix) and nic.state == NICState.up
    ]
    if active:
        needed = max(needed, (max(active) + 1) * block_size(af))
    return needed


def overlapping_networks(addresses: Iterable[str]) -> List[Tuple[str, str]]:
    """
    Pairs of addresses whose networks overlap.

    Both ends of one link share a network and are reported too, callers that
    check a whole fabric filter peer pairs out.
    """
    parsed = [(a, parse_interface(a).network) for a in addresses if a]
    out: List[Tuple[str, str]] = []
    for (a, net_a), (b, net_b) in combinations(parsed, 2):
        if net_a.version == net_b.version and net_a.overlaps(net_b):
            out.append((a, b))
    return out
