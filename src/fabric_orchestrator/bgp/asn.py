"""
ASN derivation.

A switch's private 4 byte ASN is a pure function of its IPv4 loopback. The
last three bytes of the IPv4 mapped 16 byte form are added to ASN_BASE, so
every loopback inside one /8 maps to a distinct ASN.
"""

from __future__ import annotations

import ipaddress

from fabric_orchestrator.core.constants import ASN_BASE
from fabric_orchestrator.core.errors import MalformedData


def calculate_asn(address: str) -> int:
    """
    ASN for a loopback address.

    Empty or all zero input means no loopback yet and yields 0. A prefix
    suffix such as /32 is accepted and ignored.
    """
    if not address:
        return 0
    try:
        ip = ipaddress.ip_interface(address.strip()).ip
    except ValueError as exc:
        raise MalformedData(f"invalid loopback {address!r}: {exc}") from exc
    if int(ip) == 0:
        return 0
    if isinstance(ip, ipaddress.IPv4Address):
        raw = b"\x00" * 10 + b"\xff\xff" + ip.packed
    else:
        raw = ip.packed
    return ASN_BASE + raw[13] * 65536 + raw[14] * 256 + raw[15]
