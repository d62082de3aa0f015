"""
Address pools.

Pools are reserved externally and only read here. The engine never creates a
pool. When a pool is missing it waits, and the pool's arrival re-triggers the
switch through the store subscription.

Selectors
A switch finds its pools by label: purpose, owner (the switch name) and
address family. More than one distinct pool for the same selector is an
operator error, not something to pick from.
"""

from __future__ import annotations

import copy
from typing import Dict, List, Optional

from fabric_orchestrator.core.constants import (
    LABEL_FAMILY,
    LABEL_OWNER,
    LABEL_PURPOSE,
    PURPOSE_LOOPBACK,
    PURPOSE_SOUTH_SUBNET,
)
from fabric_orchestrator.core.errors import InvariantViolation
from fabric_orchestrator.core.types import AddressFamily, AddressPool
from fabric_orchestrator.inventory.events import Notifier, StoreEvent, labels_match


def pool_selector(purpose: str, owner: str, af: AddressFamily) -> Dict[str, str]:
    return {LABEL_PURPOSE: purpose, LABEL_OWNER: owner, LABEL_FAMILY: af.value}


def south_subnet_selector(owner: str, af: AddressFamily) -> Dict[str, str]:
    return pool_selector(PURPOSE_SOUTH_SUBNET, owner, af)


def loopback_selector(owner: str, af: AddressFamily) -> Dict[str, str]:
    return pool_selector(PURPOSE_LOOPBACK, owner, af)


class PoolStore(Notifier):
    """Pool registry keyed by pool name."""

    def __init__(self) -> None:
        super().__init__()
        self._pools: Dict[str, AddressPool] = {}

    def add(self, pool: AddressPool) -> None:
        self._pools[pool.name] = copy.deepcopy(pool)
        self._emit(StoreEvent(kind="pool", name=pool.name, labels=dict(pool.labels)))

    def get(self, name: str) -> Optional[AddressPool]:
        pool = self._pools.get(name)
        return copy.deepcopy(pool) if pool is not None else None

    def list(self, selector: Optional[Dict[str, str]] = None) -> List[AddressPool]:
        """Pools matching the selector, sorted by name."""
        return [
            copy.deepcopy(self._pools[name])
            for name in sorted(self._pools)
            if labels_match(self._pools[name].labels, selector)
        ]

    def names(self) -> List[str]:
        return sorted(self._pools.keys())


def single_pool(pools: List[AddressPool], what: str) -> Optional[AddressPool]:
    """
    Return the only pool in the list, None for an empty list.

    Several pools with the same CIDR count as one, they cannot conflict.
    """
    if not pools:
        return None
    distinct = {p.cidr for p in pools}
    if len(distinct) > 1:
        names = ", ".join(p.name for p in pools)
        raise InvariantViolation(f"conflicting {what} pools: {names}")
    return pools[0]
