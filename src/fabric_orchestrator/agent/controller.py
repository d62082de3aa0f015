"""
Fabric controller.

Purpose
Turn store events into reconcile calls and run them on a pool of asyncio
workers.

Design notes
The WorkQueue guarantees one switch is never reconciled by two workers at the
same time. A key added while it is being processed is marked dirty and queued
again once the worker is done, so no event is lost and no pass overlaps with
another for the same switch.

A change to one switch can unblock its peers, for example a spine that just
resolved its level lets its leaves resolve theirs. Switch events therefore fan
out to every switch that lists the changed chassis as a neighbor.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Set

from fabric_orchestrator.agent.reconciler import SwitchReconciler
from fabric_orchestrator.core.constants import LABEL_OWNER
from fabric_orchestrator.inventory.events import StoreEvent
from fabric_orchestrator.inventory.store import FabricInventory

logger = logging.getLogger(__name__)


class WorkQueue:
    """Deduplicating work queue with delayed adds."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._queued: Set[str] = set()
        self._processing: Set[str] = set()
        self._dirty: Set[str] = set()
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def add(self, key: str) -> None:
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        """Add key once delay seconds have passed. The earliest pending timer wins."""
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        existing = self._timers.get(key)
        if existing is not None:
            if existing.when() <= when:
                return
            existing.cancel()
        self._timers[key] = loop.call_at(when, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)

    async def get(self) -> str:
        key = await self._queue.get()
        self._queued.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str) -> None:
        self._processing.discard(key)
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued key is processed. Timers are not waited on."""
        await self._queue.join()

    def scheduled(self) -> List[str]:
        return sorted(self._timers)

    def cancel_timers(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def __len__(self) -> int:
        return self._queue.qsize()


class FabricController:
    """
    Event driven reconcile loop.

    Subscribes to every store of the inventory on construction.
    """

    def __init__(
        self,
        inventory: FabricInventory,
        reconciler: SwitchReconciler,
        workers: int = 4,
    ) -> None:
        self._inventory = inventory
        self._reconciler = reconciler
        self._workers = max(1, workers)
        self.queue = WorkQueue()

        inventory.switches.subscribe(self._on_event)
        inventory.facts.subscribe(self._on_event)
        inventory.pools.subscribe(self._on_event)
        inventory.assignments.subscribe(self._on_event)
        inventory.configs.subscribe(self._on_event)

    def keys_for(self, event: StoreEvent) -> List[str]:
        """Switch names an event should reconcile."""
        switches = self._inventory.switches
        if event.kind == "switch":
            keys = [event.name]
            for record in switches.all():
                if record.name == event.name:
                    continue
                if any(
                    nic.peer is not None and nic.peer.chassis_id == event.chassis_id
                    for nic in record.status.interfaces.values()
                ):
                    keys.append(record.name)
            return keys
        if event.kind == "facts":
            return [event.name] if switches.get(event.name) is not None else []
        if event.kind == "pool":
            owner = event.labels.get(LABEL_OWNER)
            if owner:
                return [owner] if switches.get(owner) is not None else []
            return switches.names()
        if event.kind == "assignment":
            record = switches.find_by_chassis_id(event.chassis_id)
            return [record.name] if record is not None else []
        if event.kind == "config":
            return [r.name for r in switches.all(event.labels)]
        logger.warning("unknown store event kind %s", event.kind)
        return []

    def _on_event(self, event: StoreEvent) -> None:
        for key in self.keys_for(event):
            self.queue.add(key)

    def enqueue_all(self) -> None:
        for name in self._inventory.switches.names():
            self.queue.add(name)

    def _process(self, key: str) -> None:
        try:
            result = self._reconciler.reconcile(key)
        except Exception:
            delay = self._reconciler.backoff(key)
            logger.exception("%s: reconcile failed, retry in %.0fs", key, delay)
            self.queue.add_after(key, delay)
            return
        if result.requeue_after is not None:
            self.queue.add_after(key, result.requeue_after)

    async def _worker(self, index: int) -> None:
        logger.debug("worker %d started", index)
        while True:
            key = await self.queue.get()
            try:
                self._process(key)
            finally:
                self.queue.done(key)
            # let other workers and timers run between passes
            await asyncio.sleep(0)

    def _start_workers(self) -> List[asyncio.Task]:
        return [asyncio.create_task(self._worker(i)) for i in range(self._workers)]

    async def _stop_workers(self, tasks: List[asyncio.Task]) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.queue.cancel_timers()

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        """Reconcile until stop is set. Without a stop event, run until cancelled."""
        stop = stop or asyncio.Event()
        self.enqueue_all()
        tasks = self._start_workers()
        logger.info("controller started with %d workers", self._workers)
        try:
            await stop.wait()
        finally:
            await self._stop_workers(tasks)
            logger.info("controller stopped")

    async def run_until_idle(self) -> None:
        """
        Reconcile until the queue drains.

        Timed requeues are dropped, so switches that are still waiting on a
        prerequisite stay where they are.
        """
        self.enqueue_all()
        tasks = self._start_workers()
        try:
            await self.queue.join()
        finally:
            await self._stop_workers(tasks)
