"""
Interface derivation from neighbor facts.

Facts describe what onboarding observed on each device port. The engine keeps
only front panel ports, the ones named with the switch port prefix, and turns
each into an InterfaceSpec with the link layer neighbor attached as peer.

Port parameters
mtu and fec start from the facts. A switch config may pin them for every
port, and a north facing port takes them from the south port of its peer so
both ends of a link agree.

Re-validation
interfaces_match_facts is the drift check. When it fails on a switch that
already converged, the caller rebuilds interfaces from scratch and the
hierarchy resolves again.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional

from fabric_orchestrator.core.constants import (
    ROUTER_CAPABILITY,
    STATION_CAPABILITY,
    SWITCH_PORT_PREFIX,
)
from fabric_orchestrator.core.errors import MalformedData
from fabric_orchestrator.core.types import (
    FECType,
    InterfaceSpec,
    LLDPNeighbor,
    PeerSpec,
    PeerType,
    PortFact,
    PortParameters,
    SwitchFacts,
)
from fabric_orchestrator.inventory.store import normalize_chassis_id


def fec_from_fact(fec: str) -> FECType:
    """An empty fact means no forward error correction."""
    if not fec:
        return FECType.none
    try:
        return FECType(fec.lower())
    except ValueError as exc:
        raise MalformedData(f"unknown FEC {fec!r}") from exc


def peer_type_from_capabilities(capabilities: Iterable[str]) -> PeerType:
    """
    Classify a neighbor by its advertised system capabilities.

    Hosts either advertise nothing or Station. A neighbor that routes but does
    not bridge is an external router. Anything else is treated as a switch
    until a switch record confirms it.
    """
    caps = set(capabilities)
    if not caps or STATION_CAPABILITY in caps:
        return PeerType.machine
    if caps == {ROUTER_CAPABILITY}:
        return PeerType.router
    return PeerType.switch


def peer_from_lldp(neighbor: LLDPNeighbor) -> PeerSpec:
    return PeerSpec(
        chassis_id=normalize_chassis_id(neighbor.chassis_id),
        system_name=neighbor.system_name,
        port_id=neighbor.port_id,
        port_description=neighbor.port_description,
        type=peer_type_from_capabilities(neighbor.capabilities),
    )


def is_empty_neighbor(neighbor: LLDPNeighbor) -> bool:
    return neighbor == LLDPNeighbor(chassis_id="")


def interface_from_port(port: PortFact) -> InterfaceSpec:
    """The first non empty discovery record becomes the peer."""
    peer: Optional[PeerSpec] = None
    for neighbor in port.lldp:
        if is_empty_neighbor(neighbor):
            continue
        peer = peer_from_lldp(neighbor)
        break
    return InterfaceSpec(
        mac=port.mac.lower(),
        fec=fec_from_fact(port.fec),
        speed=port.speed,
        lanes=port.lanes,
        state=port.state,
        peer=peer,
    )


def interfaces_from_facts(
    facts: SwitchFacts, prefix: str = SWITCH_PORT_PREFIX
) -> Dict[str, InterfaceSpec]:
    """Front panel ports keyed by name. Direction starts as south."""
    return {
        port.name: interface_from_port(port)
        for port in facts.ports
        if port.name.startswith(prefix)
    }


def switch_port_count(facts: SwitchFacts, prefix: str = SWITCH_PORT_PREFIX) -> int:
    return sum(1 for port in facts.ports if port.name.startswith(prefix))


def _peer_matches(stored: Optional[PeerSpec], observed: Optional[PeerSpec]) -> bool:
    if stored is None or observed is None:
        return stored is None and observed is None
    # type and ref are derived by the engine, only observed fields count
    return (
        stored.chassis_id == observed.chassis_id
        and stored.system_name == observed.system_name
        and stored.port_id == observed.port_id
        and stored.port_description == observed.port_description
    )


def interfaces_match_facts(
    interfaces: Dict[str, InterfaceSpec],
    facts: SwitchFacts,
    prefix: str = SWITCH_PORT_PREFIX,
) -> bool:
    """
    True when stored interfaces still describe what the facts report.

    mtu and fec are port parameters, owned by the parameter step, and do not
    count as drift.
    """
    observed = interfaces_from_facts(facts, prefix)
    if set(observed) != set(interfaces):
        return False
    for name, want in observed.items():
        have = interfaces[name]
        if (
            have.mac != want.mac
            or have.lanes != want.lanes
            or have.speed != want.speed
            or have.state != want.state
        ):
            return False
        if not _peer_matches(have.peer, want.peer):
            return False
    return True


def apply_port_parameters(nic: InterfaceSpec, params: Optional[PortParameters]) -> None:
    """Copy every field params pins onto nic."""
    if params is None:
        return
    if params.mtu is not None:
        nic.mtu = params.mtu
    if params.fec is not None:
        nic.fec = params.fec


def port_parameters_of(nic: InterfaceSpec) -> PortParameters:
    return PortParameters(mtu=nic.mtu, fec=nic.fec)
