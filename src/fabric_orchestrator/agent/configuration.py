"""
Configuration agent write-back.

The agent that pushes computed status to the device reports back through these
calls. They are the only writes to the configuration sub record made outside
the engine. The engine reads them to watch agent liveness.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fabric_orchestrator.core.types import ConfState, ManagerState, ManagerType, SwitchRecord
from fabric_orchestrator.inventory.store import SwitchStore


def begin_configuration(store: SwitchStore, name: str, manager_type: ManagerType) -> SwitchRecord:
    """Agent picked the switch up and is applying."""
    record = store.require(name)
    conf = record.status.configuration
    conf.managed = True
    conf.manager_type = manager_type
    conf.state = ConfState.in_progress
    return store.update_status(name, record.status, record.resource_version)


def acknowledge_configuration(
    store: SwitchStore,
    name: str,
    manager_type: ManagerType,
    now: Optional[datetime] = None,
) -> SwitchRecord:
    """
    Agent applied the configuration and is alive.

    Raises ConflictError when the engine wrote in between. The agent is
    expected to retry against the fresh record.
    """
    record = store.require(name)
    conf = record.status.configuration
    conf.managed = True
    conf.manager_type = manager_type
    conf.manager_state = ManagerState.active
    conf.state = ConfState.applied
    conf.last_check = now or datetime.now(timezone.utc)
    return store.update_status(name, record.status, record.resource_version)
