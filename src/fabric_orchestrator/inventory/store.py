"""
Inventory stores.

We keep simple in memory stores as the normalized view of the external
declarative store. They carry the contract the engine relies on:

get returns a copy, so callers never mutate stored state in place
update_status is a compare and swap on resource_version
every write publishes a StoreEvent

Chassis ids are normalized on the way in, so lookups by chassis id do not
depend on how a source spelled the MAC.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from fabric_orchestrator.core.errors import ConflictError, SwitchNotFound
from fabric_orchestrator.core.types import (
    SwitchAssignment,
    SwitchConfig,
    SwitchFacts,
    SwitchRecord,
    SwitchStatus,
)
from fabric_orchestrator.inventory.events import Notifier, StoreEvent, labels_match
from fabric_orchestrator.ipam.pools import PoolStore

logger = logging.getLogger(__name__)


def normalize_chassis_id(chassis_id: str) -> str:
    """Lower case and colon separated."""
    return chassis_id.strip().lower().replace("-", ":")


class SwitchStore(Notifier):
    """
    Switch registry keyed by switch name.

    add is the external create or replace path.
    update_status is the only write path the engine uses.
    """

    def __init__(self) -> None:
        super().__init__()
        self._records: Dict[str, SwitchRecord] = {}

    def add(self, record: SwitchRecord) -> SwitchRecord:
        """Add or replace a switch record. Returns the stored copy."""
        stored = copy.deepcopy(record)
        stored.chassis_id = normalize_chassis_id(stored.chassis_id)
        previous = self._records.get(stored.name)
        stored.resource_version = (previous.resource_version if previous else 0) + 1
        self._records[stored.name] = stored
        self._emit(StoreEvent(kind="switch", name=stored.name, chassis_id=stored.chassis_id))
        return copy.deepcopy(stored)

    def get(self, name: str) -> Optional[SwitchRecord]:
        """Return a copy of the record if present."""
        record = self._records.get(name)
        return copy.deepcopy(record) if record is not None else None

    def require(self, name: str) -> SwitchRecord:
        record = self.get(name)
        if record is None:
            raise SwitchNotFound(name)
        return record

    def all(self, selector: Optional[Dict[str, str]] = None) -> List[SwitchRecord]:
        """Return copies of all records matching the label selector, sorted by name."""
        return [
            copy.deepcopy(self._records[name])
            for name in sorted(self._records)
            if labels_match(self._records[name].labels, selector)
        ]

    def names(self) -> List[str]:
        """Return sorted switch names. Useful for deterministic outputs."""
        return sorted(self._records.keys())

    def find_by_chassis_id(self, chassis_id: str) -> Optional[SwitchRecord]:
        wanted = normalize_chassis_id(chassis_id)
        for name in sorted(self._records):
            if self._records[name].chassis_id == wanted:
                return copy.deepcopy(self._records[name])
        return None

    def update_status(
        self, name: str, status: SwitchStatus, expected_version: int
    ) -> SwitchRecord:
        """
        Persist a new status if the caller saw the latest version.

        Raises ConflictError when another writer got there first.
        """
        current = self._records.get(name)
        if current is None:
            raise SwitchNotFound(name)
        if current.resource_version != expected_version:
            raise ConflictError(
                f"{name}: expected version {expected_version}, "
                f"store has {current.resource_version}"
            )
        current.status = copy.deepcopy(status)
        current.resource_version += 1
        logger.debug("switch %s status stored at version %d", name, current.resource_version)
        self._emit(StoreEvent(kind="switch", name=name, chassis_id=current.chassis_id))
        return copy.deepcopy(current)

    def __iter__(self) -> Iterator[SwitchRecord]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._records)


class FactStore(Notifier):
    """Neighbor facts keyed by switch name. Written by onboarding, read here."""

    def __init__(self) -> None:
        super().__init__()
        self._facts: Dict[str, SwitchFacts] = {}

    def put(self, facts: SwitchFacts) -> None:
        self._facts[facts.switch] = copy.deepcopy(facts)
        self._emit(StoreEvent(kind="facts", name=facts.switch))

    def get(self, switch: str) -> Optional[SwitchFacts]:
        facts = self._facts.get(switch)
        return copy.deepcopy(facts) if facts is not None else None

    def remove(self, switch: str) -> None:
        if self._facts.pop(switch, None) is not None:
            self._emit(StoreEvent(kind="facts", name=switch))

    def all(self) -> List[SwitchFacts]:
        return [copy.deepcopy(self._facts[k]) for k in sorted(self._facts)]


class AssignmentStore(Notifier):
    """Top of fabric anchors keyed by normalized chassis id."""

    def __init__(self) -> None:
        super().__init__()
        self._assignments: Dict[str, SwitchAssignment] = {}

    def add(self, assignment: SwitchAssignment) -> None:
        chassis_id = normalize_chassis_id(assignment.chassis_id)
        self._assignments[chassis_id] = SwitchAssignment(
            chassis_id=chassis_id,
            region=assignment.region,
            availability_zone=assignment.availability_zone,
        )
        self._emit(StoreEvent(kind="assignment", name=chassis_id, chassis_id=chassis_id))

    def get(self, chassis_id: str) -> Optional[SwitchAssignment]:
        return self._assignments.get(normalize_chassis_id(chassis_id))

    def is_top(self, chassis_id: str) -> bool:
        return normalize_chassis_id(chassis_id) in self._assignments

    def all(self) -> List[SwitchAssignment]:
        return [self._assignments[k] for k in sorted(self._assignments)]


class SwitchConfigStore(Notifier):
    """Switch configs keyed by config name."""

    def __init__(self) -> None:
        super().__init__()
        self._configs: Dict[str, SwitchConfig] = {}

    def add(self, config: SwitchConfig) -> None:
        self._configs[config.name] = copy.deepcopy(config)
        self._emit(StoreEvent(kind="config", name=config.name, labels=dict(config.switches)))

    def remove(self, name: str) -> None:
        config = self._configs.pop(name, None)
        if config is not None:
            self._emit(StoreEvent(kind="config", name=name, labels=dict(config.switches)))

    def get(self, name: str) -> Optional[SwitchConfig]:
        config = self._configs.get(name)
        return copy.deepcopy(config) if config is not None else None

    def matching(self, labels: Dict[str, str]) -> List[SwitchConfig]:
        """Configs whose selector picks a switch with these labels, sorted by name."""
        return [
            copy.deepcopy(self._configs[name])
            for name in sorted(self._configs)
            if labels_match(labels, self._configs[name].switches)
        ]

    def all(self) -> List[SwitchConfig]:
        return [copy.deepcopy(self._configs[k]) for k in sorted(self._configs)]


@dataclass
class FabricInventory:
    """
    Everything the engine reads, bundled.

    switches is also the one store the engine writes to.
    """

    switches: SwitchStore = field(default_factory=SwitchStore)
    facts: FactStore = field(default_factory=FactStore)
    pools: PoolStore = field(default_factory=PoolStore)
    assignments: AssignmentStore = field(default_factory=AssignmentStore)
    configs: SwitchConfigStore = field(default_factory=SwitchConfigStore)
