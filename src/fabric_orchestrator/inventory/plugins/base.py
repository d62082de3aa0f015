"""
Inventory plugin interfaces.

Goal
Keep the engine source agnostic. A plugin turns some external source into a
FabricInventory: switch records, neighbor facts, top of fabric assignments
and address pools.

We keep the interface narrow so it is easy to mock in tests.
"""

from __future__ import annotations

from typing import Protocol

from fabric_orchestrator.inventory.store import FabricInventory


class InventoryPlugin(Protocol):
    """
    Inventory plugin interface.

    load returns a fully populated FabricInventory.
    """

    def load(self) -> FabricInventory:
        """Load inventory into a FabricInventory."""
