"""
Agent runner.

Purpose
Wire inventory loading, the convergence pipeline and the reconcile loop.

This is the composition layer of the system. The engine stays pure, the runner
handles configuration and the event loop.

Two modes
run_until_converged reconciles every switch in rounds until a round persists
nothing. This is deterministic and what tests and the --once CLI flag use.
run_forever hands the inventory to the event driven FabricController.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fabric_orchestrator.agent.config import OrchestratorConfig
from fabric_orchestrator.agent.controller import FabricController
from fabric_orchestrator.agent.reconciler import Clock, SwitchReconciler
from fabric_orchestrator.convergence.pipeline import ConvergencePipeline
from fabric_orchestrator.inventory.plugins.base import InventoryPlugin
from fabric_orchestrator.inventory.store import FabricInventory

logger = logging.getLogger(__name__)


class AgentRunner:
    """
    Top level loop.

    This is not the convergence engine.
    This is the runtime around it.
    """

    def __init__(
        self,
        inventory_plugin: InventoryPlugin,
        config: OrchestratorConfig | None = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config or OrchestratorConfig()
        self._inventory = inventory_plugin.load()
        self._reconciler = SwitchReconciler(
            self._inventory,
            pipeline=ConvergencePipeline(config=self._config.convergence),
            config=self._config.runner,
            clock=clock,
        )

    @property
    def inventory(self) -> FabricInventory:
        return self._inventory

    @property
    def reconciler(self) -> SwitchReconciler:
        return self._reconciler

    def run_cycle(self) -> int:
        """Reconcile every switch once. Returns the number of persisted writes."""
        persisted = 0
        for name in self._inventory.switches.names():
            result = self._reconciler.reconcile(name)
            if result.persisted:
                persisted += 1
        return persisted

    def run_until_converged(self, max_cycles: int = 100) -> int:
        """
        Run cycles until one persists nothing.

        Returns the number of cycles run. Stopping at max_cycles is logged,
        it usually means two writers keep flipping a record.
        """
        for cycle in range(1, max_cycles + 1):
            if self.run_cycle() == 0:
                logger.info("fabric settled after %d cycles", cycle)
                return cycle
        logger.warning("fabric did not settle within %d cycles", max_cycles)
        return max_cycles

    def controller(self) -> FabricController:
        return FabricController(
            self._inventory, self._reconciler, workers=self._config.runner.workers
        )

    def run_forever(self) -> None:
        """
        Continuous event driven execution.
        """
        try:
            asyncio.run(self.controller().run())
        except KeyboardInterrupt:
            logger.info("interrupted")
