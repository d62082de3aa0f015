"""
Port parameters: switch config defaults and inheritance across links.
"""

from datetime import datetime, timezone

import pytest

from builders import CHASSIS, MemoryPlugin, build_fabric, make_facts

from fabric_orchestrator.agent.runner import AgentRunner
from fabric_orchestrator.core.constants import SWITCH_PORT_MTU
from fabric_orchestrator.core.errors import InvariantViolation
from fabric_orchestrator.core.types import (
    FECType,
    PortParameters,
    ResourceReference,
    SwitchConfig,
    SwitchRecord,
    SwitchState,
)
from fabric_orchestrator.convergence.pipeline import ConvergencePipeline, take_snapshot

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def label_spines(inventory) -> None:
    for name in ("spine1", "spine2"):
        inventory.switches.add(
            SwitchRecord(name=name, chassis_id=CHASSIS[name], labels={"tier": "spine"})
        )


def converge(inventory) -> None:
    cycles = AgentRunner(MemoryPlugin(inventory)).run_until_converged(max_cycles=50)
    assert cycles < 50


def test_ports_keep_observed_parameters_without_a_config():
    inv = build_fabric()
    converge(inv)

    status = inv.switches.get("leaf1").status
    assert status.config_ref is None
    for nic in status.interfaces.values():
        assert nic.mtu == SWITCH_PORT_MTU
        assert nic.fec == FECType.rs


def test_config_pins_parameters_of_selected_switches():
    inv = build_fabric()
    inv.configs.add(
        SwitchConfig(name="jumbo", ports_defaults=PortParameters(mtu=9216, fec=FECType.none))
    )
    converge(inv)

    for record in inv.switches.all():
        assert record.status.state == SwitchState.ready
        assert record.status.config_ref == ResourceReference(kind="SwitchConfig", name="jumbo")
        for nic in record.status.interfaces.values():
            assert nic.mtu == 9216
            assert nic.fec == FECType.none


def test_north_ports_inherit_from_the_peer_port():
    inv = build_fabric()
    label_spines(inv)
    inv.configs.add(
        SwitchConfig(
            name="spines",
            switches={"tier": "spine"},
            ports_defaults=PortParameters(mtu=9000, fec=FECType.fc),
        )
    )
    converge(inv)

    spine = inv.switches.get("spine1").status
    assert spine.interfaces["Ethernet0"].mtu == 9000
    assert spine.interfaces["Ethernet0"].fec == FECType.fc

    leaf = inv.switches.get("leaf1").status
    assert leaf.config_ref is None
    assert leaf.state == SwitchState.ready
    for uplink in ("Ethernet0", "Ethernet4"):
        assert leaf.interfaces[uplink].mtu == 9000
        assert leaf.interfaces[uplink].fec == FECType.fc
    # the machine port is south facing and keeps what the facts report
    assert leaf.interfaces["Ethernet8"].mtu == SWITCH_PORT_MTU
    assert leaf.interfaces["Ethernet8"].fec == FECType.rs


def test_config_change_updates_a_ready_fabric_in_place():
    inv = build_fabric()
    converge(inv)
    before = inv.switches.get("leaf1").status

    inv.configs.add(SwitchConfig(name="jumbo", ports_defaults=PortParameters(mtu=9216)))
    converge(inv)

    after = inv.switches.get("leaf1").status
    assert after.state == SwitchState.ready
    assert after.connection_level == before.connection_level
    assert after.interfaces["Ethernet0"].mtu == 9216
    # fec is not pinned by the config
    assert after.interfaces["Ethernet0"].fec == FECType.rs
    assert after.interfaces["Ethernet0"].ipv4 == before.interfaces["Ethernet0"].ipv4

    inv.configs.remove("jumbo")
    converge(inv)
    status = inv.switches.get("leaf1").status
    assert status.config_ref is None
    assert status.interfaces["Ethernet0"].mtu == SWITCH_PORT_MTU


def test_fec_change_in_facts_is_not_a_reset():
    inv = build_fabric()
    converge(inv)

    facts = make_facts("spine1")
    for p in facts.ports:
        if p.name == "Ethernet0":
            p.fec = "fc"
    inv.facts.put(facts)
    converge(inv)

    spine = inv.switches.get("spine1").status
    assert spine.state == SwitchState.ready
    assert spine.interfaces["Ethernet0"].fec == FECType.fc
    # leaf1 Ethernet0 is the north end of that link
    assert inv.switches.get("leaf1").status.interfaces["Ethernet0"].fec == FECType.fc


def test_two_configs_selecting_one_switch_are_an_invariant_violation():
    inv = build_fabric()
    inv.configs.add(SwitchConfig(name="a", ports_defaults=PortParameters(mtu=9000)))
    inv.configs.add(SwitchConfig(name="b", ports_defaults=PortParameters(mtu=9216)))

    pipeline = ConvergencePipeline()
    record = inv.switches.get("spine1")
    outcome = pipeline.run_pass(record, take_snapshot(inv, record), NOW)
    inv.switches.update_status("spine1", outcome.status, record.resource_version)
    record = inv.switches.get("spine1")
    outcome = pipeline.run_pass(record, take_snapshot(inv, record), NOW)
    inv.switches.update_status("spine1", outcome.status, record.resource_version)

    record = inv.switches.get("spine1")
    with pytest.raises(InvariantViolation):
        pipeline.run_pass(record, take_snapshot(inv, record), NOW)
