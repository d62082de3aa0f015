"""
End to end convergence of the reference two spine, two leaf fabric.
"""

from builders import LOOPBACKS_V4, MemoryPlugin, build_fabric, make_facts

from fabric_orchestrator.agent.runner import AgentRunner
from fabric_orchestrator.bgp.asn import calculate_asn
from fabric_orchestrator.core.types import Direction, PeerType, SwitchRole, SwitchState
from fabric_orchestrator.fabric.graph import build_fabric_graph, validate_fabric
from fabric_orchestrator.fabric.hierarchy import levels_match_peers
from fabric_orchestrator.ipam.addressing import overlapping_networks


def converged_runner():
    runner = AgentRunner(MemoryPlugin(build_fabric()))
    cycles = runner.run_until_converged(max_cycles=50)
    assert cycles < 50
    return runner


def test_two_spine_two_leaf_fabric_converges():
    runner = converged_runner()
    switches = {r.name: r for r in runner.inventory.switches.all()}

    for name in ("spine1", "spine2"):
        status = switches[name].status
        assert status.state == SwitchState.ready
        assert status.connection_level == 0
        assert status.role == SwitchRole.spine
        assert all(n.direction == Direction.south for n in status.interfaces.values())

    for name in ("leaf1", "leaf2"):
        status = switches[name].status
        assert status.state == SwitchState.ready
        assert status.connection_level == 1
        assert status.role == SwitchRole.leaf
        assert status.interfaces["Ethernet0"].direction == Direction.north
        assert status.interfaces["Ethernet4"].direction == Direction.north
        assert status.interfaces["Ethernet8"].direction == Direction.south
        assert status.interfaces["Ethernet8"].peer.type == PeerType.machine
        assert status.message == ""


def test_link_addresses_pair_up():
    runner = converged_runner()
    sw = {r.name: r.status for r in runner.inventory.switches.all()}

    assert sw["spine1"].interfaces["Ethernet0"].ipv4.address == "10.0.1.1/30"
    assert sw["leaf1"].interfaces["Ethernet0"].ipv4.address == "10.0.1.2/30"
    assert sw["spine2"].interfaces["Ethernet0"].ipv4.address == "10.0.2.1/30"
    assert sw["leaf1"].interfaces["Ethernet4"].ipv4.address == "10.0.2.2/30"
    assert sw["spine1"].interfaces["Ethernet4"].ipv4.address == "10.0.1.17/30"
    assert sw["leaf2"].interfaces["Ethernet0"].ipv4.address == "10.0.1.18/30"
    assert sw["leaf1"].interfaces["Ethernet8"].ipv4.address == "10.1.1.33/30"

    assert sw["spine1"].interfaces["Ethernet0"].ipv6.address == "fd00:1::/127"
    assert sw["leaf1"].interfaces["Ethernet0"].ipv6.address == "fd00:1::1/127"
    assert sw["leaf1"].interfaces["Ethernet8"].ipv6.address == "fd00:11::10/127"

    # north side points at the subnet it borrowed from
    assert sw["leaf1"].interfaces["Ethernet0"].ipv4.ref == sw["spine1"].subnet_v4.ref


def test_loopbacks_and_asns():
    runner = converged_runner()
    for record in runner.inventory.switches.all():
        status = record.status
        assert status.loopback_v4.address == f"{LOOPBACKS_V4[record.name]}/32"
        assert status.loopback_v6.address.endswith("/128")
        assert status.asn == calculate_asn(LOOPBACKS_V4[record.name])
        assert status.asn != 0
    asns = [r.status.asn for r in runner.inventory.switches.all()]
    assert len(set(asns)) == len(asns)


def test_fabric_invariants_hold():
    runner = converged_runner()
    switches = runner.inventory.switches.all()

    for record in switches:
        others = [r for r in switches if r.name != record.name]
        assert levels_match_peers(record, others)

        addresses = [
            spec.address
            for nic in record.status.interfaces.values()
            for spec in (nic.ipv4, nic.ipv6)
            if spec.address
        ]
        # injective within a switch
        assert overlapping_networks(addresses) == []

    result = validate_fabric(build_fabric_graph(switches))
    assert result.ok, result.errors
    assert result.evidence["levels"] == {"0": 2, "1": 2}


def test_rerun_is_idempotent():
    runner = converged_runner()
    before = {r.name: r for r in runner.inventory.switches.all()}

    assert runner.run_cycle() == 0

    after = {r.name: r for r in runner.inventory.switches.all()}
    assert after == before


def test_role_flips_when_machine_is_unplugged_and_back():
    runner = converged_runner()
    inv = runner.inventory

    inv.facts.put(make_facts("leaf1", with_machine=False))
    runner.run_until_converged()
    status = inv.switches.get("leaf1").status
    assert status.role == SwitchRole.spine
    assert status.state == SwitchState.ready
    assert status.connection_level == 1

    inv.facts.put(make_facts("leaf1", with_machine=True))
    runner.run_until_converged()
    assert inv.switches.get("leaf1").status.role == SwitchRole.leaf
    assert validate_fabric(build_fabric_graph(inv.switches.all())).ok
