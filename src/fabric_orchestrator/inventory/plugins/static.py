"""
Static inventory plugin.

Reads a local json file that describes a fabric.
This is useful for dev, tests, and small demos.

Schema example
{
  "switches": [
    {"name": "spine1", "chassisId": "aa:00:00:00:00:01", "hostname": "spine1", "labels": {}}
  ],
  "facts": [
    {
      "switch": "spine1",
      "totalPorts": 3,
      "ports": [
        {
          "name": "Ethernet0", "mac": "aa:00:00:00:01:00", "fec": "rs",
          "speed": 100000, "lanes": 4, "state": "up",
          "lldp": [
            {"chassisId": "bb:00:00:00:00:01", "systemName": "leaf1",
             "portId": "bb:00:00:00:01:00", "portDescription": "Ethernet0",
             "capabilities": ["Bridge", "Router"]}
          ]
        }
      ]
    }
  ],
  "assignments": [{"chassisId": "aa:00:00:00:00:01", "region": "eu", "availabilityZone": "a"}],
  "pools": [
    {"name": "spine1-v4", "family": "IPv4", "kind": "subnet", "cidr": "10.0.0.0/24",
     "labels": {"ipam.fabric.io/purpose": "south-subnet", "ipam.fabric.io/owner": "spine1",
                "ipam.fabric.io/family": "IPv4"}}
  ],
  "configs": [
    {"name": "default", "switches": {}, "portsDefaults": {"mtu": 9216, "fec": "rs"}}
  ]
}

A switch may carry a "status" object in the camelCase status format, which
lets a demo start from a partially converged fabric.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fabric_orchestrator.core.errors import MalformedData
from fabric_orchestrator.core.serialization import status_from_dict
from fabric_orchestrator.core.types import (
    AddressFamily,
    AddressPool,
    FECType,
    LLDPNeighbor,
    NICState,
    PoolKind,
    PortFact,
    PortParameters,
    SwitchAssignment,
    SwitchConfig,
    SwitchFacts,
    SwitchRecord,
)
from fabric_orchestrator.inventory.plugins.base import InventoryPlugin
from fabric_orchestrator.inventory.store import FabricInventory


def _switch_from_dict(obj: dict[str, Any]) -> SwitchRecord:
    record = SwitchRecord(
        name=str(obj["name"]),
        chassis_id=str(obj["chassisId"]),
        hostname=str(obj.get("hostname", "")),
        labels={str(k): str(v) for k, v in (obj.get("labels") or {}).items()},
    )
    if isinstance(obj.get("status"), dict):
        record.status = status_from_dict(obj["status"])
    return record


def _neighbor_from_dict(obj: dict[str, Any]) -> LLDPNeighbor:
    return LLDPNeighbor(
        chassis_id=str(obj.get("chassisId", "")),
        system_name=str(obj.get("systemName", "")),
        port_id=str(obj.get("portId", "")),
        port_description=str(obj.get("portDescription", "")),
        capabilities=tuple(str(c) for c in obj.get("capabilities", []) or []),
    )


def _port_from_dict(obj: dict[str, Any]) -> PortFact:
    return PortFact(
        name=str(obj["name"]),
        mac=str(obj.get("mac", "")),
        fec=str(obj.get("fec", "")),
        speed=int(obj.get("speed", 0)),
        lanes=int(obj.get("lanes", 1)),
        state=NICState(str(obj.get("state", "up"))),
        lldp=[_neighbor_from_dict(n) for n in obj.get("lldp", []) or [] if isinstance(n, dict)],
    )


def _facts_from_dict(obj: dict[str, Any]) -> SwitchFacts:
    ports = [_port_from_dict(p) for p in obj.get("ports", []) or [] if isinstance(p, dict)]
    return SwitchFacts(
        switch=str(obj["switch"]),
        total_ports=int(obj.get("totalPorts", len(ports))),
        ports=ports,
    )


def _assignment_from_dict(obj: dict[str, Any]) -> SwitchAssignment:
    return SwitchAssignment(
        chassis_id=str(obj["chassisId"]),
        region=str(obj.get("region", "")),
        availability_zone=str(obj.get("availabilityZone", "")),
    )


def _pool_from_dict(obj: dict[str, Any]) -> AddressPool:
    return AddressPool(
        name=str(obj["name"]),
        family=AddressFamily(str(obj["family"])),
        kind=PoolKind(str(obj.get("kind", PoolKind.subnet.value))),
        cidr=str(obj["cidr"]),
        labels={str(k): str(v) for k, v in (obj.get("labels") or {}).items()},
    )


def _config_from_dict(obj: dict[str, Any]) -> SwitchConfig:
    defaults = obj.get("portsDefaults") or {}
    mtu = defaults.get("mtu")
    fec = defaults.get("fec")
    return SwitchConfig(
        name=str(obj["name"]),
        switches={str(k): str(v) for k, v in (obj.get("switches") or {}).items()},
        ports_defaults=PortParameters(
            mtu=int(mtu) if mtu is not None else None,
            fec=FECType(str(fec).lower()) if fec is not None else None,
        ),
    )


def _items(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    items = data.get(key, []) or []
    if not isinstance(items, list):
        raise MalformedData(f"{key} must be a list")
    return [obj for obj in items if isinstance(obj, dict)]


@dataclass(frozen=True)
class StaticInventoryPlugin(InventoryPlugin):
    """
    Load inventory from a local json file.

    path points to a json file that matches the schema described in the module docstring.
    """

    path: Path

    def load(self) -> FabricInventory:
        data = json.loads(Path(self.path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise MalformedData(f"{self.path}: top level must be an object")

        inventory = FabricInventory()
        try:
            for obj in _items(data, "switches"):
                inventory.switches.add(_switch_from_dict(obj))
            for obj in _items(data, "facts"):
                inventory.facts.put(_facts_from_dict(obj))
            for obj in _items(data, "assignments"):
                inventory.assignments.add(_assignment_from_dict(obj))
            for obj in _items(data, "pools"):
                inventory.pools.add(_pool_from_dict(obj))
            for obj in _items(data, "configs"):
                inventory.configs.add(_config_from_dict(obj))
        except (KeyError, ValueError) as exc:
            raise MalformedData(f"{self.path}: {exc}") from exc

        return inventory
