"""
Configuration loading.

Configuration is a small JSON document with two sections:

{
  "convergence": {"ipv6_enabled": false, "config_check_timeout_seconds": 600},
  "runner": {"requeue_interval_seconds": 10, "workers": 8}
}

Both sections and every key are optional. Unknown keys are rejected so a typo
does not silently fall back to a default.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Type, TypeVar

from fabric_orchestrator.convergence.steps import ConvergenceConfig

T = TypeVar("T")


@dataclass(frozen=True)
class RunnerConfig:
    """
    Runner configuration.

    requeue_interval_seconds
    Retry delay for a switch that is not ready yet.

    liveness_interval_seconds
    Delay between configuration liveness checks of a ready, managed switch.

    backoff_base_seconds, backoff_max_seconds
    Exponential backoff for malformed data and unexpected errors.

    workers
    Concurrent reconcile workers. One switch is never handled by two at once.
    """

    requeue_interval_seconds: float = 30
    liveness_interval_seconds: float = 150
    backoff_base_seconds: float = 5
    backoff_max_seconds: float = 300
    workers: int = 4


@dataclass(frozen=True)
class OrchestratorConfig:
    convergence: ConvergenceConfig = field(default_factory=ConvergenceConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)


def _section(cls: Type[T], raw: Any, section: str) -> T:
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValueError(f"config section {section} must be an object")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"unknown keys in config section {section}: {unknown}")
    return cls(**raw)


def config_from_dict(data: Dict[str, Any]) -> OrchestratorConfig:
    unknown = sorted(set(data) - {"convergence", "runner"})
    if unknown:
        raise ValueError(f"unknown config sections: {unknown}")
    return OrchestratorConfig(
        convergence=_section(ConvergenceConfig, data.get("convergence"), "convergence"),
        runner=_section(RunnerConfig, data.get("runner"), "runner"),
    )


def load_config(path: Path) -> OrchestratorConfig:
    """Read configuration from a JSON file."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("config document must be an object")
    return config_from_dict(data)
