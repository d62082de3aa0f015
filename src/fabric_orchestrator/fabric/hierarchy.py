"""
Hierarchy resolution.

Purpose
Place every switch on a level of the fabric and point each of its ports
north or south.

Design notes
Level 0 is anchored externally through a top of fabric assignment, neighbor
data alone cannot tell the top from the bottom. Every other switch sits one
level below the shallowest peer switch that is already resolved. Resolution
spreads outward from the anchors one hop per pass. A switch whose peers are all
unresolved keeps the sentinel, and a peer resolving later re-triggers it.

Inputs are the switch being resolved and the population of other switch
records. Peers are found by chassis id, never by holding a reference.
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Tuple

from fabric_orchestrator.core.constants import TOP_LEVEL, UNRESOLVED_LEVEL
from fabric_orchestrator.core.types import (
    Direction,
    InterfaceSpec,
    SwitchRecord,
    SwitchStatus,
)


def chassis_index(population: List[SwitchRecord]) -> Dict[str, SwitchRecord]:
    return {r.chassis_id: r for r in population}


def peer_switches(
    status: SwitchStatus, population: List[SwitchRecord]
) -> Iterator[Tuple[str, InterfaceSpec, SwitchRecord]]:
    """Yield (port name, interface, peer record) for ports cabled to a known switch."""
    index = chassis_index(population)
    for name in sorted(status.interfaces):
        nic = status.interfaces[name]
        if nic.peer is None or not nic.peer.chassis_id:
            continue
        peer = index.get(nic.peer.chassis_id)
        if peer is not None:
            yield name, nic, peer


def build_level_map(population: List[SwitchRecord]) -> Dict[int, List[SwitchRecord]]:
    """Resolved level to switches, ascending. Unresolved switches are left out."""
    levels: Dict[int, List[SwitchRecord]] = {}
    for record in population:
        level = record.status.connection_level
        if level == UNRESOLVED_LEVEL:
            continue
        levels.setdefault(level, []).append(record)
    return {level: levels[level] for level in sorted(levels)}


def compute_connection_level(
    record: SwitchRecord, population: List[SwitchRecord], top_of_fabric: bool
) -> int:
    """
    Level the switch should sit on given its peers.

    Returns the current level when nothing better is known.
    """
    if top_of_fabric:
        return TOP_LEVEL
    current = record.status.connection_level
    levels = build_level_map(population)
    if TOP_LEVEL not in levels:
        return current
    peer_chassis = {peer.chassis_id for _, _, peer in peer_switches(record.status, population)}
    for level, switches in levels.items():
        if level >= current:
            break
        if any(s.chassis_id in peer_chassis for s in switches):
            return level + 1
    return current


def assign_directions(status: SwitchStatus, population: List[SwitchRecord]) -> None:
    """
    Set port directions in place.

    Level 0 points everything south. Elsewhere a port faces north when its peer
    sits on a lower level and south when the peer sits higher. Ports without a
    resolved peer switch keep what they have.
    """
    level = status.connection_level
    if level == TOP_LEVEL:
        for nic in status.interfaces.values():
            nic.direction = Direction.south
        return
    if level == UNRESOLVED_LEVEL:
        return
    for _, nic, peer in peer_switches(status, population):
        peer_level = peer.status.connection_level
        if peer_level == UNRESOLVED_LEVEL:
            continue
        if peer_level < level:
            nic.direction = Direction.north
        elif peer_level > level:
            nic.direction = Direction.south


def levels_match_peers(record: SwitchRecord, population: List[SwitchRecord]) -> bool:
    """
    Consistency of level and directions against resolved peers.

    Unresolved peers and peers on the same level are ignored. A lower peer
    must be exactly one level up and behind a north port. A higher peer must
    be behind a south port.
    """
    level = record.status.connection_level
    if level == UNRESOLVED_LEVEL:
        return False
    for _, nic, peer in peer_switches(record.status, population):
        peer_level = peer.status.connection_level
        if peer_level == UNRESOLVED_LEVEL or peer_level == level:
            continue
        if peer_level < level:
            if nic.direction != Direction.north or level != peer_level + 1:
                return False
        elif nic.direction != Direction.south:
            return False
    if level == TOP_LEVEL:
        return all(nic.direction == Direction.south for nic in record.status.interfaces.values())
    return True
