"""
Switch reconciler.

Purpose
Run one convergence pass for one switch, persist the outcome and decide when
the switch should be looked at again.

This is the one place where engine errors are classified:

PrerequisiteUnmet
Not an error. The reason is recorded in the status message and the switch is
retried after the normal interval.

InvariantViolation
Logged at error. Status stays untouched, retried after the normal interval.

MalformedData
Logged at warning. Retried with exponential backoff, the input will not fix
itself quickly.

ConflictError
Another writer won. Retried immediately against the fresh record.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from fabric_orchestrator.agent.config import RunnerConfig
from fabric_orchestrator.convergence.pipeline import ConvergencePipeline, take_snapshot
from fabric_orchestrator.core.errors import (
    ConflictError,
    InvariantViolation,
    MalformedData,
    SwitchNotFound,
)
from fabric_orchestrator.core.types import SwitchState, SwitchStatus
from fabric_orchestrator.inventory.store import FabricInventory

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReconcileResult:
    """
    Outcome of one reconcile call.

    requeue_after None means no timed retry. A persisted change retriggers the
    switch through the store event instead.
    """

    name: str
    persisted: bool = False
    requeue_after: Optional[float] = None
    step: Optional[str] = None
    error: Optional[str] = None


class SwitchReconciler:
    def __init__(
        self,
        inventory: FabricInventory,
        pipeline: Optional[ConvergencePipeline] = None,
        config: Optional[RunnerConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._inventory = inventory
        self._pipeline = pipeline or ConvergencePipeline()
        self._config = config or RunnerConfig()
        self._clock = clock or utc_now
        self._failures: Dict[str, int] = {}

    def backoff(self, name: str) -> float:
        """Next backoff delay for name. Each call doubles it up to the cap."""
        attempt = self._failures.get(name, 0)
        self._failures[name] = attempt + 1
        delay = self._config.backoff_base_seconds * (2 ** attempt)
        return min(delay, self._config.backoff_max_seconds)

    def _persist(self, name: str, status: SwitchStatus, version: int) -> Optional[ReconcileResult]:
        try:
            self._inventory.switches.update_status(name, status, version)
        except ConflictError as exc:
            logger.debug("%s: %s", name, exc)
            return ReconcileResult(name=name, requeue_after=0)
        except SwitchNotFound:
            logger.debug("%s: deleted while reconciling", name)
            return ReconcileResult(name=name)
        return None

    def reconcile(self, name: str) -> ReconcileResult:
        record = self._inventory.switches.get(name)
        if record is None:
            logger.debug("%s: no such switch, dropping", name)
            return ReconcileResult(name=name)

        snapshot = take_snapshot(self._inventory, record)
        try:
            outcome = self._pipeline.run_pass(record, snapshot, self._clock())
        except InvariantViolation as exc:
            logger.error("%s: invariant violated: %s", name, exc)
            return ReconcileResult(
                name=name, requeue_after=self._config.requeue_interval_seconds, error=str(exc)
            )
        except MalformedData as exc:
            delay = self.backoff(name)
            logger.warning("%s: malformed data, retry in %.0fs: %s", name, delay, exc)
            return ReconcileResult(name=name, requeue_after=delay, error=str(exc))

        self._failures.pop(name, None)

        if outcome.changed:
            failed = self._persist(name, outcome.status, record.resource_version)
            if failed is not None:
                return failed
            logger.info("%s: %s applied", name, outcome.step)
            return ReconcileResult(name=name, persisted=True, step=outcome.step)

        if outcome.blocked_by is not None:
            persisted = False
            if record.status.message != outcome.reason:
                status = copy.deepcopy(record.status)
                status.message = outcome.reason
                failed = self._persist(name, status, record.resource_version)
                if failed is not None:
                    return failed
                persisted = True
            return ReconcileResult(
                name=name,
                persisted=persisted,
                requeue_after=self._config.requeue_interval_seconds,
                step=outcome.blocked_by,
            )

        if record.status.state != SwitchState.ready:
            return ReconcileResult(name=name, requeue_after=self._config.requeue_interval_seconds)
        if record.status.configuration.managed:
            return ReconcileResult(name=name, requeue_after=self._config.liveness_interval_seconds)
        return ReconcileResult(name=name)
