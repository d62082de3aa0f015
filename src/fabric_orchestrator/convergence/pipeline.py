"""
Convergence pipeline.

Purpose
Drive one switch one increment closer to ready per pass.

Design notes
A pass walks the steps in order on a working copy of the record. Satisfied
steps are skipped. The first step whose advance changes the status ends the
pass, the caller persists, and the store event schedules the next pass. A step
that advances without changing anything is noted as pending and the walk goes
on, so later steps still get to make progress.

PrerequisiteUnmet halts the pass without a change. InvariantViolation and
MalformedData propagate to the caller, which decides how to retry.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from fabric_orchestrator.core.constants import LABEL_OWNER
from fabric_orchestrator.core.errors import PrerequisiteUnmet
from fabric_orchestrator.core.types import SwitchRecord, SwitchStatus
from fabric_orchestrator.convergence.steps import (
    ConvergenceConfig,
    ConvergenceStep,
    FabricSnapshot,
    PassContext,
    default_steps,
)
from fabric_orchestrator.inventory.store import FabricInventory

logger = logging.getLogger(__name__)


@dataclass
class PassOutcome:
    """
    Result of one pass.

    status is the working copy after the pass.
    changed means status differs from the record that went in.
    step names the step that produced the change.
    pending lists steps that advanced without progress.
    blocked_by names the step that raised PrerequisiteUnmet, reason its message.
    """

    status: SwitchStatus
    changed: bool = False
    step: Optional[str] = None
    pending: List[str] = field(default_factory=list)
    blocked_by: Optional[str] = None
    reason: str = ""


def take_snapshot(inventory: FabricInventory, record: SwitchRecord) -> FabricSnapshot:
    """Read everything a pass for record may look at."""
    return FabricSnapshot(
        switches=[r for r in inventory.switches.all() if r.name != record.name],
        facts=inventory.facts.get(record.name),
        top_of_fabric=inventory.assignments.is_top(record.chassis_id),
        pools=inventory.pools.list({LABEL_OWNER: record.name}),
        configs=inventory.configs.matching(record.labels),
    )


class ConvergencePipeline:
    """Ordered step walker. Holds no per switch state."""

    def __init__(
        self,
        steps: Optional[Sequence[ConvergenceStep]] = None,
        config: Optional[ConvergenceConfig] = None,
    ) -> None:
        self._steps = list(steps) if steps is not None else default_steps()
        self._config = config or ConvergenceConfig()

    @property
    def step_names(self) -> List[str]:
        return [s.name for s in self._steps]

    def run_pass(
        self, record: SwitchRecord, snapshot: FabricSnapshot, now: datetime
    ) -> PassOutcome:
        baseline = copy.deepcopy(record.status)
        ctx = PassContext(
            record=copy.deepcopy(record),
            snapshot=snapshot,
            config=self._config,
            now=now,
        )

        for step in self._steps:
            if step.is_satisfied(ctx):
                continue
            try:
                step.advance(ctx)
            except PrerequisiteUnmet as exc:
                logger.debug("%s: %s blocked: %s", record.name, step.name, exc)
                return PassOutcome(
                    status=baseline,
                    pending=list(ctx.pending),
                    blocked_by=step.name,
                    reason=str(exc),
                )
            if ctx.status != baseline:
                return PassOutcome(
                    status=ctx.status,
                    changed=True,
                    step=step.name,
                    pending=list(ctx.pending),
                )
            ctx.pending.append(step.name)

        return PassOutcome(status=ctx.status, pending=list(ctx.pending))
