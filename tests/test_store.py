import pytest

from fabric_orchestrator.core.errors import ConflictError, SwitchNotFound
from fabric_orchestrator.core.types import (
    AddressFamily,
    AddressPool,
    PoolKind,
    SwitchAssignment,
    SwitchFacts,
    SwitchRecord,
    SwitchState,
)
from fabric_orchestrator.inventory.store import (
    AssignmentStore,
    FactStore,
    SwitchStore,
    normalize_chassis_id,
)
from fabric_orchestrator.ipam.pools import PoolStore


def test_switch_store_add_get():
    store = SwitchStore()
    store.add(SwitchRecord(name="leaf1", chassis_id="BB-00-00-00-00-01"))

    rec = store.get("leaf1")
    assert rec is not None
    assert rec.chassis_id == "bb:00:00:00:00:01"
    assert rec.resource_version == 1
    assert store.names() == ["leaf1"]
    assert store.get("missing") is None
    with pytest.raises(SwitchNotFound):
        store.require("missing")


def test_get_returns_a_copy():
    store = SwitchStore()
    store.add(SwitchRecord(name="leaf1", chassis_id="bb:00:00:00:00:01"))

    rec = store.get("leaf1")
    rec.status.state = SwitchState.ready
    assert store.get("leaf1").status.state == SwitchState.initial


def test_update_status_is_compare_and_swap():
    store = SwitchStore()
    store.add(SwitchRecord(name="leaf1", chassis_id="bb:00:00:00:00:01"))
    rec = store.get("leaf1")

    rec.status.state = SwitchState.processing
    stored = store.update_status("leaf1", rec.status, rec.resource_version)
    assert stored.resource_version == 2
    assert store.get("leaf1").status.state == SwitchState.processing

    # second writer with the stale version loses
    with pytest.raises(ConflictError):
        store.update_status("leaf1", rec.status, rec.resource_version)


def test_update_status_unknown_switch():
    with pytest.raises(SwitchNotFound):
        SwitchStore().update_status("ghost", SwitchRecord("x", "y").status, 1)


def test_all_with_label_selector_and_chassis_lookup():
    store = SwitchStore()
    store.add(SwitchRecord(name="b", chassis_id="c2", labels={"rack": "r1"}))
    store.add(SwitchRecord(name="a", chassis_id="c1", labels={"rack": "r2"}))

    assert [r.name for r in store.all()] == ["a", "b"]
    assert [r.name for r in store.all({"rack": "r1"})] == ["b"]
    assert store.find_by_chassis_id("C1").name == "a"
    assert store.find_by_chassis_id("c9") is None


def test_stores_publish_events():
    events = []
    switches = SwitchStore()
    facts = FactStore()
    pools = PoolStore()
    assignments = AssignmentStore()
    for store in (switches, facts, pools, assignments):
        store.subscribe(events.append)

    switches.add(SwitchRecord(name="leaf1", chassis_id="bb:00:00:00:00:01"))
    facts.put(SwitchFacts(switch="leaf1"))
    pools.add(AddressPool("p1", AddressFamily.ipv4, PoolKind.subnet, "10.0.0.0/24", {"k": "v"}))
    assignments.add(SwitchAssignment(chassis_id="AA:00:00:00:00:01"))

    assert [(e.kind, e.name) for e in events] == [
        ("switch", "leaf1"),
        ("facts", "leaf1"),
        ("pool", "p1"),
        ("assignment", "aa:00:00:00:00:01"),
    ]
    assert events[2].labels == {"k": "v"}
    assert assignments.is_top("aa-00-00-00-00-01")


def test_normalize_chassis_id():
    assert normalize_chassis_id(" AA-BB-CC-DD-EE-FF ") == "aa:bb:cc:dd:ee:ff"
