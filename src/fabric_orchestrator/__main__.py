"""
Command line entry.

python -m fabric_orchestrator --inventory fabric.json
python -m fabric_orchestrator --inventory fabric.json --once > status.json
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from fabric_orchestrator.agent.config import OrchestratorConfig, load_config
from fabric_orchestrator.agent.runner import AgentRunner
from fabric_orchestrator.core.errors import OrchestratorError
from fabric_orchestrator.core.log import setup_logging
from fabric_orchestrator.core.serialization import record_to_dict
from fabric_orchestrator.fabric.graph import build_fabric_graph, validate_fabric
from fabric_orchestrator.inventory.plugins.static import StaticInventoryPlugin


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fabric-orchestrator",
        description="Converge switch hierarchy, addressing and ASNs from neighbor facts.",
    )
    parser.add_argument("--inventory", required=True, type=Path, help="static inventory JSON file")
    parser.add_argument("--config", type=Path, help="configuration JSON file")
    parser.add_argument(
        "--once",
        action="store_true",
        help="converge once, print status records as JSON and exit",
    )
    parser.add_argument("--max-cycles", type=int, default=100, help="cycle limit for --once")
    parser.add_argument("--log-level", default="INFO", help="stderr log level")
    parser.add_argument("--log-file", help="also write debug logs to this file")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = setup_logging(args.log_level, args.log_file)

    try:
        config = load_config(args.config) if args.config else OrchestratorConfig()
        runner = AgentRunner(StaticInventoryPlugin(args.inventory), config=config)
    except (OSError, ValueError, OrchestratorError) as exc:
        logger.error("startup failed: %s", exc)
        return 2

    if not args.once:
        runner.run_forever()
        return 0

    cycles = runner.run_until_converged(args.max_cycles)
    switches = runner.inventory.switches.all()
    result = validate_fabric(build_fabric_graph(switches))
    for warning in result.warnings:
        logger.warning(warning)
    for error in result.errors:
        logger.error(error)

    json.dump(
        {
            "cycles": cycles,
            "ok": result.ok,
            "switches": [record_to_dict(r) for r in switches],
        },
        sys.stdout,
        indent=2,
    )
    sys.stdout.write("\n")
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
