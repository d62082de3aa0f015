import asyncio

from builders import CHASSIS, build_fabric, make_facts

from fabric_orchestrator.agent.controller import FabricController, WorkQueue
from fabric_orchestrator.agent.reconciler import SwitchReconciler
from fabric_orchestrator.core.types import (
    PortParameters,
    SwitchConfig,
    SwitchRecord,
    SwitchRole,
    SwitchState,
)
from fabric_orchestrator.inventory.events import StoreEvent


def make_controller(inventory=None, workers=2):
    inventory = inventory or build_fabric()
    return FabricController(inventory, SwitchReconciler(inventory), workers=workers), inventory


def test_work_queue_dedups_and_marks_dirty():
    async def scenario():
        q = WorkQueue()
        q.add("a")
        q.add("a")
        q.add("b")
        assert len(q) == 2

        key = await q.get()
        assert key == "a"
        # re-added while processing: held back until done
        q.add("a")
        assert len(q) == 1
        q.done("a")
        assert len(q) == 2

        assert await q.get() == "b"
        q.done("b")
        assert await q.get() == "a"
        q.done("a")
        await asyncio.wait_for(q.join(), timeout=1)

    asyncio.run(scenario())


def test_work_queue_delayed_add_keeps_earliest_timer():
    async def scenario():
        q = WorkQueue()
        q.add_after("a", 60)
        q.add_after("a", 0.01)
        q.add_after("a", 30)
        assert q.scheduled() == ["a"]
        key = await asyncio.wait_for(q.get(), timeout=1)
        assert key == "a"
        q.done("a")
        assert q.scheduled() == []

    asyncio.run(scenario())


def test_switch_event_fans_out_to_neighbors():
    controller, inv = make_controller()

    async def scenario():
        await controller.run_until_idle()

    asyncio.run(scenario())
    keys = controller.keys_for(StoreEvent(kind="switch", name="spine1", chassis_id=CHASSIS["spine1"]))
    assert keys == ["spine1", "leaf1", "leaf2"]


def test_other_events_map_to_owners():
    controller, _ = make_controller()
    assert controller.keys_for(StoreEvent(kind="facts", name="leaf2")) == ["leaf2"]
    assert controller.keys_for(StoreEvent(kind="facts", name="ghost")) == []
    assert controller.keys_for(
        StoreEvent(kind="pool", name="p", labels={"ipam.fabric.io/owner": "leaf1"})
    ) == ["leaf1"]
    assert controller.keys_for(StoreEvent(kind="pool", name="p")) == [
        "leaf1",
        "leaf2",
        "spine1",
        "spine2",
    ]
    assert controller.keys_for(
        StoreEvent(kind="assignment", name=CHASSIS["spine2"], chassis_id=CHASSIS["spine2"])
    ) == ["spine2"]


def test_controller_converges_fabric_from_events():
    controller, inv = make_controller(workers=3)
    asyncio.run(controller.run_until_idle())

    for record in inv.switches.all():
        assert record.status.state == SwitchState.ready, record.name
    assert inv.switches.get("leaf1").status.connection_level == 1


def test_fact_change_is_picked_up_by_a_running_controller():
    controller, inv = make_controller()

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(controller.run(stop))
        await asyncio.sleep(0)
        await asyncio.wait_for(controller.queue.join(), timeout=5)
        assert inv.switches.get("leaf2").status.role == SwitchRole.leaf

        inv.facts.put(make_facts("leaf2", with_machine=False))
        await asyncio.wait_for(controller.queue.join(), timeout=5)
        stop.set()
        await task

    asyncio.run(scenario())
    status = inv.switches.get("leaf2").status
    assert status.role == SwitchRole.spine
    assert status.state == SwitchState.ready


def test_config_events_map_to_selected_switches():
    inv = build_fabric()
    inv.switches.add(
        SwitchRecord(name="spine1", chassis_id=CHASSIS["spine1"], labels={"tier": "spine"})
    )
    controller, _ = make_controller(inv)

    assert controller.keys_for(
        StoreEvent(kind="config", name="c", labels={"tier": "spine"})
    ) == ["spine1"]
    assert controller.keys_for(StoreEvent(kind="config", name="c")) == [
        "leaf1",
        "leaf2",
        "spine1",
        "spine2",
    ]


def test_config_added_to_a_running_controller_reaches_every_port():
    controller, inv = make_controller()

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(controller.run(stop))
        await asyncio.sleep(0)
        await asyncio.wait_for(controller.queue.join(), timeout=5)

        inv.configs.add(SwitchConfig(name="jumbo", ports_defaults=PortParameters(mtu=9216)))
        await asyncio.wait_for(controller.queue.join(), timeout=5)
        stop.set()
        await task

    asyncio.run(scenario())
    for record in inv.switches.all():
        assert record.status.state == SwitchState.ready
        assert all(nic.mtu == 9216 for nic in record.status.interfaces.values()), record.name
