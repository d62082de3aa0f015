import json
from pathlib import Path

import pytest

from fabric_orchestrator.agent.config import OrchestratorConfig, RunnerConfig, load_config
from fabric_orchestrator.convergence.steps import ConvergenceConfig
from fabric_orchestrator.core.types import AddressFamily


def test_defaults():
    config = OrchestratorConfig()
    assert config.runner == RunnerConfig()
    assert config.runner.requeue_interval_seconds == 30
    assert config.runner.liveness_interval_seconds == 150
    assert config.convergence.config_check_timeout_seconds == 300
    assert config.convergence.families() == [AddressFamily.ipv4, AddressFamily.ipv6]


def test_load_config_overrides(tmp_path: Path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "convergence": {"ipv6_enabled": False, "config_check_timeout_seconds": 60},
                "runner": {"workers": 8},
            }
        ),
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.convergence == ConvergenceConfig(ipv6_enabled=False, config_check_timeout_seconds=60)
    assert config.runner.workers == 8
    assert config.runner.requeue_interval_seconds == 30


@pytest.mark.parametrize(
    "payload",
    [
        {"runner": {"worker": 8}},
        {"convergnce": {}},
        {"runner": []},
        [],
    ],
)
def test_load_config_rejects_unknown_shapes(tmp_path: Path, payload):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)
