"""
Core types.

This file defines the shared data structures used across the engine.

Important design choice
Records are plain values. A switch never holds a live pointer to another
switch. Peers are identified by chassis id and port, and resolved through an
explicit lookup against the current population when needed.

The status record is what the external configuration agent consumes, so its
shape is stable and JSON serializable through core.serialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from fabric_orchestrator.core.constants import (
    CONFIG_KIND,
    POOL_KIND,
    SWITCH_KIND,
    SWITCH_PORT_MTU,
    UNRESOLVED_LEVEL,
)


class SwitchState(str, Enum):
    """
    Primary processing state of a switch.

    initial
      Record exists, interfaces are not yet derived from facts.

    processing
      Interfaces are known, the engine is still converging.

    ready
      Every step of the pipeline is satisfied.
    """

    initial = "initial"
    processing = "processing"
    ready = "ready"


class SwitchRole(str, Enum):
    """
    Switch role in a spine/leaf fabric.

    leaf
      At least one peer is a machine.

    spine
      Only fabric transit, no machine peers.
    """

    spine = "spine"
    leaf = "leaf"


class ConfState(str, Enum):
    """Configuration push state, owned jointly with the external agent."""

    initial = "initial"
    pending = "pending"
    in_progress = "in progress"
    applied = "applied"


class ManagerType(str, Enum):
    local = "local"
    remote = "remote"


class ManagerState(str, Enum):
    active = "active"
    failed = "failed"


class Direction(str, Enum):
    """
    Interface direction relative to the fabric root.

    north points toward level 0.
    south points toward leaves and hosts.
    """

    north = "north"
    south = "south"
    unset = "unset"


class PeerType(str, Enum):
    machine = "machine"
    switch = "switch"
    router = "router"
    undefined = "undefined"


class FECType(str, Enum):
    none = "none"
    rs = "rs"
    fc = "fc"


class NICState(str, Enum):
    up = "up"
    down = "down"


class AddressFamily(str, Enum):
    ipv4 = "IPv4"
    ipv6 = "IPv6"


class PoolKind(str, Enum):
    """
    Pool kinds.

    subnet
      A reserved CIDR block, subdivided by the engine.

    address
      A single reserved address, used as is.
    """

    subnet = "subnet"
    address = "address"


@dataclass(frozen=True)
class ResourceReference:
    """Value identifier of another record, resolved by lookup at read time."""

    kind: str
    name: str


@dataclass
class PeerSpec:
    """
    What is plugged into a switch port.

    chassis_id, system_name, port_id and port_description come from link
    layer discovery. type is derived from advertised capabilities and
    upgraded to switch once the chassis id matches a known switch record.
    ref names that switch record.
    """

    chassis_id: str = ""
    system_name: str = ""
    port_id: str = ""
    port_description: str = ""
    type: PeerType = PeerType.undefined
    ref: Optional[ResourceReference] = None


@dataclass
class IPAddressSpec:
    """CIDR qualified address plus the resource that allocated it."""

    address: str = ""
    ref: Optional[ResourceReference] = None


@dataclass
class SubnetSpec:
    cidr: str = ""
    ref: Optional[ResourceReference] = None


@dataclass
class InterfaceSpec:
    """
    State of one switch port.

    direction defaults to south. Only the hierarchy resolver turns a port
    north, when its peer switch sits on a lower level.

    mtu and fec are port parameters. They start from the observed facts and
    are then pinned by the switch config, or inherited from the peer port on
    north facing links.
    """

    mac: str
    fec: FECType = FECType.none
    mtu: int = SWITCH_PORT_MTU
    speed: int = 0
    lanes: int = 1
    state: NICState = NICState.up
    direction: Direction = Direction.south
    ipv4: IPAddressSpec = field(default_factory=IPAddressSpec)
    ipv6: IPAddressSpec = field(default_factory=IPAddressSpec)
    peer: Optional[PeerSpec] = None


@dataclass
class ConfigurationSpec:
    """
    Configuration push sub record.

    managed, manager_type, manager_state and last_check are written back by
    the external configuration agent. The engine only flips a stale
    active manager to failed and the state to pending.
    """

    managed: bool = False
    state: ConfState = ConfState.initial
    manager_type: Optional[ManagerType] = None
    manager_state: Optional[ManagerState] = None
    last_check: Optional[datetime] = None


@dataclass
class SwitchStatus:
    """
    Persisted status of a switch.

    connection_level 255 means unresolved.
    asn 0 means not yet assigned.
    config_ref names the switch config that supplies port parameters.
    message carries the reason of the last halted pass for operators.
    """

    total_ports: int = 0
    switch_ports: int = 0
    role: SwitchRole = SwitchRole.spine
    connection_level: int = UNRESOLVED_LEVEL
    config_ref: Optional[ResourceReference] = None
    interfaces: Dict[str, InterfaceSpec] = field(default_factory=dict)
    subnet_v4: SubnetSpec = field(default_factory=SubnetSpec)
    subnet_v6: SubnetSpec = field(default_factory=SubnetSpec)
    loopback_v4: IPAddressSpec = field(default_factory=IPAddressSpec)
    loopback_v6: IPAddressSpec = field(default_factory=IPAddressSpec)
    asn: int = 0
    configuration: ConfigurationSpec = field(default_factory=ConfigurationSpec)
    state: SwitchState = SwitchState.initial
    message: str = ""

    def subnet(self, af: AddressFamily) -> SubnetSpec:
        return self.subnet_v4 if af == AddressFamily.ipv4 else self.subnet_v6

    def loopback(self, af: AddressFamily) -> IPAddressSpec:
        return self.loopback_v4 if af == AddressFamily.ipv4 else self.loopback_v6


@dataclass
class SwitchRecord:
    """
    A switch record as held by the declarative store.

    resource_version is the optimistic concurrency token. The store bumps it
    on every write and rejects writes that carry a stale value.
    """

    name: str
    chassis_id: str
    hostname: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    status: SwitchStatus = field(default_factory=SwitchStatus)
    resource_version: int = 0

    def reference(self) -> ResourceReference:
        return ResourceReference(kind=SWITCH_KIND, name=self.name)


@dataclass(frozen=True)
class LLDPNeighbor:
    """One link layer discovery record observed on a port."""

    chassis_id: str
    system_name: str = ""
    port_id: str = ""
    port_description: str = ""
    capabilities: Tuple[str, ...] = ()


@dataclass
class PortFact:
    """
    Observed facts for one device port.

    Produced by the onboarding workflow, read only for this engine.
    """

    name: str
    mac: str
    fec: str = ""
    speed: int = 0
    lanes: int = 1
    state: NICState = NICState.up
    lldp: List[LLDPNeighbor] = field(default_factory=list)


@dataclass
class SwitchFacts:
    """
    Neighbor fact record for a whole switch.

    total_ports counts every device port, including management ones.
    """

    switch: str
    total_ports: int = 0
    ports: List[PortFact] = field(default_factory=list)


@dataclass(frozen=True)
class SwitchAssignment:
    """
    External anchor that pins a chassis to the top of the fabric.

    Level 0 cannot be inferred from neighbor data alone, so an operator
    assigns it. region and availability_zone are informational.
    """

    chassis_id: str
    region: str = ""
    availability_zone: str = ""


@dataclass
class AddressPool:
    """
    Externally managed address reservation.

    cidr is the reserved block for subnet pools and the reserved address for
    address pools. labels are matched by selectors.
    """

    name: str
    family: AddressFamily
    kind: PoolKind
    cidr: str
    labels: Dict[str, str] = field(default_factory=dict)

    def reference(self) -> ResourceReference:
        return ResourceReference(kind=POOL_KIND, name=self.name)


@dataclass
class PortParameters:
    """
    Port settings a switch config may pin.

    A field left as None keeps whatever the port already has.
    """

    mtu: Optional[int] = None
    fec: Optional[FECType] = None


@dataclass
class SwitchConfig:
    """
    Label selected port parameter defaults.

    switches is a label selector over switch records, an empty selector picks
    every switch. ports_defaults applies to every front panel port of a
    selected switch.
    """

    name: str
    switches: Dict[str, str] = field(default_factory=dict)
    ports_defaults: PortParameters = field(default_factory=PortParameters)

    def reference(self) -> ResourceReference:
        return ResourceReference(kind=CONFIG_KIND, name=self.name)
