"""
Fabric role helpers.

Why this file exists
Role is not configured, it is observed. A switch with at least one machine
behind it is a leaf, everything else is a spine. The derivation is recomputed
every pass, so a role flips both ways as machines are cabled and removed.
"""

from __future__ import annotations

from fabric_orchestrator.core.types import PeerType, SwitchRole, SwitchStatus


def has_machine_peers(status: SwitchStatus) -> bool:
    return any(
        nic.peer is not None and nic.peer.type == PeerType.machine
        for nic in status.interfaces.values()
    )


def derive_role(status: SwitchStatus) -> SwitchRole:
    """Return the role the current peers imply."""
    return SwitchRole.leaf if has_machine_peers(status) else SwitchRole.spine


def role_matches_peers(status: SwitchStatus) -> bool:
    return status.role == derive_role(status)
