"""
Convergence steps.

Purpose
Each step owns one slice of a switch status and knows two things: whether its
slice is already right for the current snapshot, and how to move it one
increment closer.

Design notes
Steps are synchronous and read only the PassContext. They mutate the working
copy of the record held by the context, never the store. A step that cannot
make progress raises PrerequisiteUnmet. A step that finds the fabric
contradicting itself raises InvariantViolation.

The order in default_steps is significant. Later steps read what earlier steps
wrote, and a pass persists at the first step that changes anything.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Protocol, Tuple

from fabric_orchestrator.core.constants import (
    SWITCH_PORT_PREFIX,
    TOP_LEVEL,
    UNRESOLVED_LEVEL,
)
from fabric_orchestrator.core.errors import InvariantViolation, PrerequisiteUnmet
from fabric_orchestrator.core.types import (
    AddressFamily,
    AddressPool,
    ConfState,
    Direction,
    InterfaceSpec,
    IPAddressSpec,
    ManagerState,
    NICState,
    PeerSpec,
    PeerType,
    PoolKind,
    PortParameters,
    ResourceReference,
    SubnetSpec,
    SwitchConfig,
    SwitchFacts,
    SwitchRecord,
    SwitchRole,
    SwitchState,
    SwitchStatus,
)
from fabric_orchestrator.bgp.asn import calculate_asn
from fabric_orchestrator.fabric.hierarchy import (
    assign_directions,
    chassis_index,
    compute_connection_level,
    levels_match_peers,
)
from fabric_orchestrator.fabric.interfaces import (
    apply_port_parameters,
    interfaces_from_facts,
    interfaces_match_facts,
    port_parameters_of,
    switch_port_count,
)
from fabric_orchestrator.fabric.roles import derive_role, role_matches_peers
from fabric_orchestrator.inventory.events import labels_match
from fabric_orchestrator.ipam.addressing import (
    adjacent_address,
    parse_interface,
    parse_network,
    required_addresses,
    south_address,
)
from fabric_orchestrator.ipam.pools import loopback_selector, single_pool, south_subnet_selector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConvergenceConfig:
    """
    Engine configuration.

    ipv4_enabled, ipv6_enabled
    Address families to allocate. Disabling IPv4 also leaves asn at 0.

    port_prefix
    Name prefix of front panel ports.

    config_check_timeout_seconds
    Age after which a silent configuration agent is considered failed.
    """

    ipv4_enabled: bool = True
    ipv6_enabled: bool = True
    port_prefix: str = SWITCH_PORT_PREFIX
    config_check_timeout_seconds: int = 300

    def families(self) -> List[AddressFamily]:
        out: List[AddressFamily] = []
        if self.ipv4_enabled:
            out.append(AddressFamily.ipv4)
        if self.ipv6_enabled:
            out.append(AddressFamily.ipv6)
        return out


@dataclass
class FabricSnapshot:
    """
    What one pass may read.

    switches holds every other switch record, never the one being reconciled.
    pools holds the pools labeled with this switch as owner.
    configs holds the switch configs whose selector picks this switch.
    """

    switches: List[SwitchRecord] = field(default_factory=list)
    facts: Optional[SwitchFacts] = None
    top_of_fabric: bool = False
    pools: List[AddressPool] = field(default_factory=list)
    configs: List[SwitchConfig] = field(default_factory=list)

    def peer(self, chassis_id: str) -> Optional[SwitchRecord]:
        return chassis_index(self.switches).get(chassis_id)


@dataclass
class PassContext:
    record: SwitchRecord
    snapshot: FabricSnapshot
    config: ConvergenceConfig
    now: datetime
    pending: List[str] = field(default_factory=list)

    @property
    def status(self) -> SwitchStatus:
        return self.record.status


class ConvergenceStep(Protocol):
    """
    One idempotent unit of convergence.

    is_satisfied must not mutate anything.
    advance mutates ctx.record.status or raises.
    """

    name: str

    def is_satisfied(self, ctx: PassContext) -> bool:
        """Return True when this step has nothing to do."""

    def advance(self, ctx: PassContext) -> None:
        """Move the status one increment toward satisfied."""


class AnchorTopOfFabric:
    name = "anchor-top-of-fabric"

    def is_satisfied(self, ctx: PassContext) -> bool:
        if not ctx.snapshot.top_of_fabric:
            return True
        return ctx.status.connection_level == TOP_LEVEL and ctx.status.role == SwitchRole.spine

    def advance(self, ctx: PassContext) -> None:
        ctx.status.connection_level = TOP_LEVEL
        ctx.status.role = SwitchRole.spine


class SyncInterfaces:
    """
    Keep interfaces in line with neighbor facts.

    First fill moves the switch from initial to processing. Later divergence
    is a re-validation reset: interfaces are rebuilt, the level is cleared and
    the switch drops back to initial. Subnets and loopbacks survive a reset.
    """

    name = "sync-interfaces"

    def is_satisfied(self, ctx: PassContext) -> bool:
        facts = ctx.snapshot.facts
        status = ctx.status
        if facts is None or not status.interfaces or status.state == SwitchState.initial:
            return False
        return (
            status.total_ports == facts.total_ports
            and status.switch_ports == switch_port_count(facts, ctx.config.port_prefix)
            and interfaces_match_facts(status.interfaces, facts, ctx.config.port_prefix)
        )

    def advance(self, ctx: PassContext) -> None:
        facts = ctx.snapshot.facts
        if facts is None:
            raise PrerequisiteUnmet("no neighbor facts")
        prefix = ctx.config.port_prefix
        status = ctx.status
        status.total_ports = facts.total_ports
        status.switch_ports = switch_port_count(facts, prefix)

        if not status.interfaces:
            status.interfaces = interfaces_from_facts(facts, prefix)
            status.state = SwitchState.processing
            return

        if not interfaces_match_facts(status.interfaces, facts, prefix):
            logger.info("%s: interfaces diverge from facts, resetting", ctx.record.name)
            status.interfaces = interfaces_from_facts(facts, prefix)
            status.connection_level = TOP_LEVEL if ctx.snapshot.top_of_fabric else UNRESOLVED_LEVEL
            status.state = SwitchState.initial
            return

        if status.state == SwitchState.initial:
            status.state = SwitchState.processing


class ResolveSwitchConfig:
    """
    Reference the switch config whose selector picks this switch.

    Without one, port parameters stay as observed. Two configs selecting the
    same switch contradict each other.
    """

    name = "resolve-switch-config"

    def _expected(self, ctx: PassContext) -> Optional[ResourceReference]:
        configs = ctx.snapshot.configs
        if len(configs) > 1:
            names = ", ".join(c.name for c in configs)
            raise InvariantViolation(
                f"{ctx.record.name} is selected by several switch configs: {names}"
            )
        return configs[0].reference() if configs else None

    def is_satisfied(self, ctx: PassContext) -> bool:
        if len(ctx.snapshot.configs) > 1:
            return False
        return ctx.status.config_ref == self._expected(ctx)

    def advance(self, ctx: PassContext) -> None:
        ctx.status.config_ref = self._expected(ctx)


class ResolvePeers:
    """Upgrade neighbors that are known switch records and link them by reference."""

    name = "resolve-peers"

    def _expected(self, ctx: PassContext) -> Dict[str, Optional[PeerSpec]]:
        facts = ctx.snapshot.facts
        if facts is None:
            raise PrerequisiteUnmet("no neighbor facts")
        observed = interfaces_from_facts(facts, ctx.config.port_prefix)
        out: Dict[str, Optional[PeerSpec]] = {}
        for name, nic in observed.items():
            peer = nic.peer
            if peer is not None:
                known = ctx.snapshot.peer(peer.chassis_id)
                if known is not None:
                    peer.type = PeerType.switch
                    peer.ref = known.reference()
            out[name] = peer
        return out

    def is_satisfied(self, ctx: PassContext) -> bool:
        if ctx.snapshot.facts is None:
            return False
        expected = self._expected(ctx)
        return all(
            name in expected and nic.peer == expected[name]
            for name, nic in ctx.status.interfaces.items()
        )

    def advance(self, ctx: PassContext) -> None:
        expected = self._expected(ctx)
        for name, nic in ctx.status.interfaces.items():
            if name in expected:
                nic.peer = expected[name]


class ResolveHierarchy:
    """Connection level and port directions, computed together."""

    name = "resolve-hierarchy"

    def _expected(self, ctx: PassContext) -> SwitchStatus:
        record = copy.deepcopy(ctx.record)
        top = ctx.snapshot.top_of_fabric
        if not top and record.status.connection_level == TOP_LEVEL:
            # anchor was withdrawn
            record.status.connection_level = UNRESOLVED_LEVEL
        record.status.connection_level = compute_connection_level(
            record, ctx.snapshot.switches, top
        )
        assign_directions(record.status, ctx.snapshot.switches)
        return record.status

    def is_satisfied(self, ctx: PassContext) -> bool:
        if not levels_match_peers(ctx.record, ctx.snapshot.switches):
            return False
        expected = self._expected(ctx)
        if expected.connection_level != ctx.status.connection_level:
            return False
        return all(
            ctx.status.interfaces[name].direction == nic.direction
            for name, nic in expected.interfaces.items()
        )

    def advance(self, ctx: PassContext) -> None:
        expected = self._expected(ctx)
        before = ctx.status.connection_level
        ctx.status.connection_level = expected.connection_level
        moved = before != expected.connection_level
        for name, nic in expected.interfaces.items():
            if ctx.status.interfaces[name].direction != nic.direction:
                ctx.status.interfaces[name].direction = nic.direction
                moved = True
        if expected.connection_level == UNRESOLVED_LEVEL and not moved:
            raise PrerequisiteUnmet("no peer switch with a resolved level")


class ApplyPortParameters:
    """
    mtu and fec for every port.

    Facts give the starting point and the referenced switch config pins what
    it sets. A north port then copies the parameters of the peer's port so
    both ends of the link agree. Until the peer port is known it keeps the
    config values.
    """

    name = "apply-port-parameters"

    @staticmethod
    def _config(ctx: PassContext) -> Optional[SwitchConfig]:
        ref = ctx.status.config_ref
        if ref is None:
            return None
        for config in ctx.snapshot.configs:
            if config.name == ref.name:
                return config
        return None

    def _expected(self, ctx: PassContext) -> Dict[str, PortParameters]:
        facts = ctx.snapshot.facts
        if facts is None:
            raise PrerequisiteUnmet("no neighbor facts")
        observed = interfaces_from_facts(facts, ctx.config.port_prefix)
        config = self._config(ctx)
        out: Dict[str, PortParameters] = {}
        for name in sorted(ctx.status.interfaces):
            nic = ctx.status.interfaces[name]
            seen = observed.get(name)
            want = InterfaceSpec(mac=nic.mac, fec=seen.fec if seen is not None else nic.fec)
            if config is not None:
                apply_port_parameters(want, config.ports_defaults)
            if nic.direction == Direction.north:
                far = _peer_interface(ctx, nic, name)
                if far is not None:
                    apply_port_parameters(want, port_parameters_of(far[1]))
            out[name] = port_parameters_of(want)
        return out

    def is_satisfied(self, ctx: PassContext) -> bool:
        if ctx.snapshot.facts is None:
            return False
        expected = self._expected(ctx)
        return all(
            port_parameters_of(ctx.status.interfaces[name]) == params
            for name, params in expected.items()
        )

    def advance(self, ctx: PassContext) -> None:
        for name, params in self._expected(ctx).items():
            apply_port_parameters(ctx.status.interfaces[name], params)


class AssignRole:
    name = "assign-role"

    def is_satisfied(self, ctx: PassContext) -> bool:
        return role_matches_peers(ctx.status)

    def advance(self, ctx: PassContext) -> None:
        role = derive_role(ctx.status)
        if ctx.snapshot.top_of_fabric and role == SwitchRole.leaf:
            raise InvariantViolation(
                f"{ctx.record.name} is assigned top of fabric but has machine peers"
            )
        ctx.status.role = role


def _owned_pools(ctx: PassContext, selector: Dict[str, str]) -> List[AddressPool]:
    return [p for p in ctx.snapshot.pools if labels_match(p.labels, selector)]


class AllocateSouthSubnets:
    """
    Claim the south subnet pool for every enabled family.

    The pool must hold every lane of the active ports and reach the block of
    the highest numbered one. An undersized pool is waited on like a missing
    one, it is never grown or replaced here. A claimed subnet is never
    requested again, so nothing too small may be claimed.
    """

    name = "allocate-south-subnets"

    def is_satisfied(self, ctx: PassContext) -> bool:
        return all(ctx.status.subnet(af).cidr for af in ctx.config.families())

    def advance(self, ctx: PassContext) -> None:
        waiting: List[str] = []
        claimed = False
        for af in ctx.config.families():
            if ctx.status.subnet(af).cidr:
                continue
            selector = south_subnet_selector(ctx.record.name, af)
            pools = [p for p in _owned_pools(ctx, selector) if p.kind == PoolKind.subnet]
            pool = single_pool(pools, f"{af.value} south subnet")
            if pool is None:
                waiting.append(f"{af.value} south subnet pool")
                continue
            network = parse_network(pool.cidr)
            needed = required_addresses(ctx.status.interfaces, af, ctx.config.port_prefix)
            if network.num_addresses < needed:
                logger.warning(
                    "%s: pool %s holds %d addresses, %d needed",
                    ctx.record.name, pool.name, network.num_addresses, needed,
                )
                waiting.append(f"larger {af.value} south subnet pool")
                continue
            spec = ctx.status.subnet(af)
            spec.cidr = str(network)
            spec.ref = pool.reference()
            claimed = True
        if waiting and not claimed:
            raise PrerequisiteUnmet("waiting for " + ", ".join(waiting))


class AllocateLoopbacks:
    """Claim one loopback per enabled family, stored as a host prefix."""

    name = "allocate-loopbacks"

    def is_satisfied(self, ctx: PassContext) -> bool:
        return all(ctx.status.loopback(af).address for af in ctx.config.families())

    def advance(self, ctx: PassContext) -> None:
        waiting: List[str] = []
        claimed = False
        for af in ctx.config.families():
            if ctx.status.loopback(af).address:
                continue
            selector = loopback_selector(ctx.record.name, af)
            pools = [p for p in _owned_pools(ctx, selector) if p.kind == PoolKind.address]
            pool = single_pool(pools, f"{af.value} loopback")
            if pool is None:
                waiting.append(f"{af.value} loopback pool")
                continue
            ip = parse_interface(pool.cidr).ip
            spec = ctx.status.loopback(af)
            spec.address = f"{ip}/{ip.max_prefixlen}"
            spec.ref = pool.reference()
            claimed = True
        if waiting and not claimed:
            raise PrerequisiteUnmet("waiting for " + ", ".join(waiting))


class DeriveASN:
    name = "derive-asn"

    def is_satisfied(self, ctx: PassContext) -> bool:
        return ctx.status.asn == calculate_asn(ctx.status.loopback_v4.address)

    def advance(self, ctx: PassContext) -> None:
        ctx.status.asn = calculate_asn(ctx.status.loopback_v4.address)


def _peer_interface(
    ctx: PassContext, nic: InterfaceSpec, local_name: str
) -> Optional[Tuple[str, InterfaceSpec]]:
    """
    Find the far end of a link on the peer switch.

    Neighbors usually advertise the port name as port description. Port id is
    tried next, then the peer's own view of the link.
    """
    if nic.peer is None:
        return None
    peer = ctx.snapshot.peer(nic.peer.chassis_id)
    if peer is None:
        return None
    for candidate in (nic.peer.port_description, nic.peer.port_id):
        if candidate and candidate in peer.status.interfaces:
            return candidate, peer.status.interfaces[candidate]
    own_chassis = ctx.record.chassis_id
    for name in sorted(peer.status.interfaces):
        far = peer.status.interfaces[name]
        if far.peer is None or far.peer.chassis_id != own_chassis:
            continue
        if local_name in (far.peer.port_description, far.peer.port_id):
            return name, far
    return None


class AssignInterfaceAddresses:
    """
    Point to point addresses for every active port.

    South ports draw from the switch's own south subnet. North ports take the
    adjacent address of the peer's south port and wait until the peer has one.
    """

    name = "assign-interface-addresses"

    def _expected(
        self, ctx: PassContext
    ) -> Tuple[Dict[Tuple[str, AddressFamily], IPAddressSpec], List[str]]:
        prefix = ctx.config.port_prefix
        out: Dict[Tuple[str, AddressFamily], IPAddressSpec] = {}
        waiting: List[str] = []
        for name in sorted(ctx.status.interfaces):
            nic = ctx.status.interfaces[name]
            if nic.state != NICState.up or not name.startswith(prefix):
                continue
            for af in ctx.config.families():
                if nic.direction == Direction.south:
                    subnet: SubnetSpec = ctx.status.subnet(af)
                    if not subnet.cidr:
                        waiting.append(f"{name} {af.value} subnet")
                        continue
                    out[(name, af)] = IPAddressSpec(
                        address=south_address(subnet.cidr, name, af, prefix),
                        ref=subnet.ref,
                    )
                elif nic.direction == Direction.north:
                    far = _peer_interface(ctx, nic, name)
                    far_spec = None
                    if far is not None:
                        far_spec = far[1].ipv4 if af == AddressFamily.ipv4 else far[1].ipv6
                    if far_spec is None or not far_spec.address:
                        waiting.append(f"{name} {af.value} peer address")
                        continue
                    out[(name, af)] = IPAddressSpec(
                        address=adjacent_address(far_spec.address, af),
                        ref=far_spec.ref,
                    )
        return out, waiting

    @staticmethod
    def _current(nic: InterfaceSpec, af: AddressFamily) -> IPAddressSpec:
        return nic.ipv4 if af == AddressFamily.ipv4 else nic.ipv6

    def is_satisfied(self, ctx: PassContext) -> bool:
        expected, waiting = self._expected(ctx)
        if waiting:
            return False
        return all(
            self._current(ctx.status.interfaces[name], af) == spec
            for (name, af), spec in expected.items()
        )

    def advance(self, ctx: PassContext) -> None:
        expected, waiting = self._expected(ctx)
        for (name, af), spec in expected.items():
            nic = ctx.status.interfaces[name]
            if af == AddressFamily.ipv4:
                nic.ipv4 = spec
            else:
                nic.ipv6 = spec
        if waiting:
            logger.debug("%s: waiting for %s", ctx.record.name, ", ".join(waiting))


class MarkReady:
    name = "mark-ready"

    def is_satisfied(self, ctx: PassContext) -> bool:
        return ctx.status.state == SwitchState.ready

    def advance(self, ctx: PassContext) -> None:
        if ctx.pending:
            raise PrerequisiteUnmet("pending steps: " + ", ".join(ctx.pending))
        ctx.status.state = SwitchState.ready
        ctx.status.message = ""


class CheckConfigurationLiveness:
    """
    Fail a configuration agent that stopped checking in.

    Only ready, managed switches are watched. An agent that already failed
    stays failed until it acknowledges again.
    """

    name = "check-configuration-liveness"

    def _expired(self, ctx: PassContext) -> bool:
        last = ctx.status.configuration.last_check
        if last is None:
            return True
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        timeout = timedelta(seconds=ctx.config.config_check_timeout_seconds)
        return ctx.now - last > timeout

    def is_satisfied(self, ctx: PassContext) -> bool:
        conf = ctx.status.configuration
        if ctx.status.state != SwitchState.ready or not conf.managed:
            return True
        if conf.manager_state == ManagerState.failed:
            return True
        return not self._expired(ctx)

    def advance(self, ctx: PassContext) -> None:
        conf = ctx.status.configuration
        logger.warning("%s: configuration agent missed its check", ctx.record.name)
        conf.manager_state = ManagerState.failed
        conf.state = ConfState.pending


def default_steps() -> List[ConvergenceStep]:
    return [
        AnchorTopOfFabric(),
        SyncInterfaces(),
        ResolveSwitchConfig(),
        ResolvePeers(),
        ResolveHierarchy(),
        ApplyPortParameters(),
        AssignRole(),
        AllocateSouthSubnets(),
        AllocateLoopbacks(),
        DeriveASN(),
        AssignInterfaceAddresses(),
        MarkReady(),
        CheckConfigurationLiveness(),
    ]
