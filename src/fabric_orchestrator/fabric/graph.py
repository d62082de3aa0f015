"""
Fabric graph.

This module turns the switch population into a graph that a fabric wide
validator can reason about. The convergence engine only ever looks at one
switch and its direct peers. This view checks the invariants that span the
whole fabric, for operators and for tests.

What is a FabricGraph
- nodes: switch name -> SwitchRecord
- adjacency: switch name -> list of edges

Edges come from the peers recorded in each switch status. A link is listed
from both ends once both switches have converged their interfaces.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Set, Tuple

from fabric_orchestrator.core.constants import TOP_LEVEL, UNRESOLVED_LEVEL
from fabric_orchestrator.core.types import Direction, PeerType, SwitchRecord
from fabric_orchestrator.fabric.roles import derive_role
from fabric_orchestrator.ipam.addressing import overlapping_networks


@dataclass(frozen=True)
class GraphEdge:
    """
    One adjacency entry.

    peer_switch is empty when the peer is not a known switch, peer_type then
    tells machine from router.
    """

    local_intf: str
    peer_switch: str
    peer_intf: str
    peer_type: PeerType
    direction: Direction


@dataclass
class FabricGraph:
    """In memory topology keyed by switch name."""

    nodes: Dict[str, SwitchRecord]
    adjacency: Dict[str, List[GraphEdge]] = field(default_factory=dict)

    def edges_from(self, switch: str) -> List[GraphEdge]:
        return self.adjacency.get(switch, [])

    def has_switch(self, switch: str) -> bool:
        return switch in self.nodes


def _peer_port(peer_record: SwitchRecord, description: str, port_id: str) -> str:
    if description in peer_record.status.interfaces:
        return description
    if port_id in peer_record.status.interfaces:
        return port_id
    return ""


def build_fabric_graph(switches: List[SwitchRecord]) -> FabricGraph:
    """
    Build a FabricGraph from switch records.

    Peers are matched by chassis id. The peer port is the neighbor's port
    description, falling back to its port id, when that names a port on the
    peer switch.
    """
    nodes = {r.name: r for r in switches}
    by_chassis = {r.chassis_id: r for r in switches}
    g = FabricGraph(nodes=nodes, adjacency={name: [] for name in nodes})

    for record in switches:
        for name in sorted(record.status.interfaces):
            nic = record.status.interfaces[name]
            if nic.peer is None:
                continue
            peer_record = by_chassis.get(nic.peer.chassis_id)
            peer_name = peer_record.name if peer_record is not None else ""
            peer_intf = ""
            if peer_record is not None:
                peer_intf = _peer_port(peer_record, nic.peer.port_description, nic.peer.port_id)
            g.adjacency[record.name].append(
                GraphEdge(
                    local_intf=name,
                    peer_switch=peer_name,
                    peer_intf=peer_intf,
                    peer_type=PeerType.switch if peer_record is not None else nic.peer.type,
                    direction=nic.direction,
                )
            )

    return g


@dataclass
class TopologyValidationResult:
    """
    Result of fabric validation.

    ok means no blocking errors.
    errors are invariant violations.
    warnings are non blocking, usually a fabric that is still converging.
    evidence is a structured dictionary that can be inserted into alerts.
    """

    ok: bool
    errors: List[str]
    warnings: List[str]
    evidence: Dict[str, object]


def validate_fabric(g: FabricGraph) -> TopologyValidationResult:
    """
    Validate fabric wide invariants.

    Validations
    1. A level 0 switch has no north ports.
    2. Two resolved switches cabled together sit on adjacent levels.
    3. A switch is a leaf exactly when it has machine peers.
    4. No two interface networks overlap, except the two ends of one link.
    """

    errors: List[str] = []
    warnings: List[str] = []
    evidence: Dict[str, object] = {}

    level_counts: Dict[str, int] = {}
    unresolved: List[str] = []
    for record in g.nodes.values():
        level = record.status.connection_level
        if level == UNRESOLVED_LEVEL:
            unresolved.append(record.name)
        else:
            level_counts[str(level)] = level_counts.get(str(level), 0) + 1
    evidence["levels"] = dict(sorted(level_counts.items()))
    if unresolved:
        warnings.append(f"switches without a level: {sorted(unresolved)}")

    # Validation 1 and 2
    for name in sorted(g.nodes):
        level = g.nodes[name].status.connection_level
        for e in g.edges_from(name):
            if level == TOP_LEVEL and e.direction == Direction.north:
                errors.append(f"{name} is on level 0 but {e.local_intf} faces north")
            if not e.peer_switch or level == UNRESOLVED_LEVEL:
                continue
            peer_level = g.nodes[e.peer_switch].status.connection_level
            if peer_level == UNRESOLVED_LEVEL:
                continue
            if abs(level - peer_level) != 1:
                errors.append(
                    f"{name} level {level} and {e.peer_switch} level {peer_level} "
                    f"are cabled via {e.local_intf} but not adjacent"
                )

    # Validation 3
    role_counts: Dict[str, int] = {}
    for name in sorted(g.nodes):
        status = g.nodes[name].status
        role_counts[status.role.value] = role_counts.get(status.role.value, 0) + 1
        expected = derive_role(status)
        if status.role != expected:
            errors.append(f"{name} is a {status.role.value} but its peers make it a {expected.value}")
    evidence["roles"] = dict(sorted(role_counts.items()))

    # Validation 4
    owner: Dict[str, Tuple[str, str]] = {}
    for name in sorted(g.nodes):
        for intf, nic in g.nodes[name].status.interfaces.items():
            for spec in (nic.ipv4, nic.ipv6):
                if not spec.address:
                    continue
                if spec.address in owner:
                    errors.append(f"{spec.address} is used by {owner[spec.address]} and {(name, intf)}")
                    continue
                owner[spec.address] = (name, intf)

    link_pairs: Set[frozenset] = set()
    for name in sorted(g.nodes):
        for e in g.edges_from(name):
            if e.peer_switch and e.peer_intf:
                link_pairs.add(frozenset({(name, e.local_intf), (e.peer_switch, e.peer_intf)}))

    overlaps: List[Tuple[str, str]] = []
    for a, b in overlapping_networks(sorted(owner)):
        if frozenset({owner[a], owner[b]}) in link_pairs:
            continue
        overlaps.append((a, b))
        errors.append(f"{owner[a][0]} {owner[a][1]} {a} overlaps {owner[b][0]} {owner[b][1]} {b}")
    evidence["overlaps"] = overlaps

    ok = len(errors) == 0
    return TopologyValidationResult(ok=ok, errors=errors, warnings=warnings, evidence=evidence)
