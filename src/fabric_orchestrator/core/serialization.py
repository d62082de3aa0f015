"""
Status record serialization.

The status record is the contract with the external configuration agent.
On the wire it is JSON with camelCase keys. Enums travel as their values and
timestamps as ISO 8601 strings.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Optional

from fabric_orchestrator.core.errors import MalformedData
from fabric_orchestrator.core.types import (
    ConfigurationSpec,
    ConfState,
    Direction,
    FECType,
    InterfaceSpec,
    IPAddressSpec,
    ManagerState,
    ManagerType,
    NICState,
    PeerSpec,
    PeerType,
    ResourceReference,
    SubnetSpec,
    SwitchRecord,
    SwitchRole,
    SwitchState,
    SwitchStatus,
)


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _normalize(obj: Any) -> Any:
    if hasattr(obj, "value"):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {_camel(str(k)): _normalize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_normalize(v) for v in obj]
    return obj


def status_to_dict(status: SwitchStatus) -> Dict[str, Any]:
    """
    Convert a status record into a JSON safe dict.

    Interface names are keys of the interfaces map and are kept verbatim.
    """
    out = _normalize(asdict(status))
    out["interfaces"] = {
        name: _normalize(asdict(nic)) for name, nic in status.interfaces.items()
    }
    return out


def record_to_dict(record: SwitchRecord) -> Dict[str, Any]:
    return {
        "name": record.name,
        "chassisId": record.chassis_id,
        "hostname": record.hostname,
        "labels": dict(record.labels),
        "resourceVersion": record.resource_version,
        "status": status_to_dict(record.status),
    }


def _ref(raw: Optional[Dict[str, Any]]) -> Optional[ResourceReference]:
    if not raw:
        return None
    return ResourceReference(kind=str(raw["kind"]), name=str(raw["name"]))


def _address(raw: Optional[Dict[str, Any]]) -> IPAddressSpec:
    raw = raw or {}
    return IPAddressSpec(address=str(raw.get("address", "")), ref=_ref(raw.get("ref")))


def _subnet(raw: Optional[Dict[str, Any]]) -> SubnetSpec:
    raw = raw or {}
    return SubnetSpec(cidr=str(raw.get("cidr", "")), ref=_ref(raw.get("ref")))


def _peer(raw: Optional[Dict[str, Any]]) -> Optional[PeerSpec]:
    if raw is None:
        return None
    return PeerSpec(
        chassis_id=str(raw.get("chassisId", "")),
        system_name=str(raw.get("systemName", "")),
        port_id=str(raw.get("portId", "")),
        port_description=str(raw.get("portDescription", "")),
        type=PeerType(raw.get("type", PeerType.undefined.value)),
        ref=_ref(raw.get("ref")),
    )


def _interface(raw: Dict[str, Any]) -> InterfaceSpec:
    return InterfaceSpec(
        mac=str(raw.get("mac", "")),
        fec=FECType(raw.get("fec") or FECType.none.value),
        mtu=int(raw.get("mtu", 9100)),
        speed=int(raw.get("speed", 0)),
        lanes=int(raw.get("lanes", 1)),
        state=NICState(raw.get("state", NICState.up.value)),
        direction=Direction(raw.get("direction", Direction.south.value)),
        ipv4=_address(raw.get("ipv4")),
        ipv6=_address(raw.get("ipv6")),
        peer=_peer(raw.get("peer")),
    )


def _configuration(raw: Optional[Dict[str, Any]]) -> ConfigurationSpec:
    raw = raw or {}
    manager_type = raw.get("managerType")
    manager_state = raw.get("managerState")
    last_check = raw.get("lastCheck")
    return ConfigurationSpec(
        managed=bool(raw.get("managed", False)),
        state=ConfState(raw.get("state", ConfState.initial.value)),
        manager_type=ManagerType(manager_type) if manager_type else None,
        manager_state=ManagerState(manager_state) if manager_state else None,
        last_check=datetime.fromisoformat(last_check) if last_check else None,
    )


def status_from_dict(raw: Dict[str, Any]) -> SwitchStatus:
    """
    Parse a camelCase status document.

    Missing keys fall back to the defaults of a freshly created record.
    Unknown enum values raise MalformedData.
    """
    try:
        return SwitchStatus(
            total_ports=int(raw.get("totalPorts", 0)),
            switch_ports=int(raw.get("switchPorts", 0)),
            role=SwitchRole(raw.get("role", SwitchRole.spine.value)),
            connection_level=int(raw.get("connectionLevel", 255)),
            config_ref=_ref(raw.get("configRef")),
            interfaces={
                str(name): _interface(nic)
                for name, nic in (raw.get("interfaces") or {}).items()
            },
            subnet_v4=_subnet(raw.get("subnetV4")),
            subnet_v6=_subnet(raw.get("subnetV6")),
            loopback_v4=_address(raw.get("loopbackV4")),
            loopback_v6=_address(raw.get("loopbackV6")),
            asn=int(raw.get("asn", 0)),
            configuration=_configuration(raw.get("configuration")),
            state=SwitchState(raw.get("state", SwitchState.initial.value)),
            message=str(raw.get("message", "")),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedData(f"invalid status document: {exc}") from exc
