"""
Fabric constants.

Values shared by the resolver, the address allocator and the stores.
Label keys are the contract with whoever pre-creates address pools.
"""

from __future__ import annotations

TOP_LEVEL = 0
UNRESOLVED_LEVEL = 255

ASN_BASE = 4_200_000_000

SWITCH_PORT_PREFIX = "Ethernet"
SWITCH_PORT_MTU = 9100

IPV4_INTERFACE_PREFIX = 30
IPV6_INTERFACE_PREFIX = 127

IPV4_ADDRESSES_PER_LANE = 4
IPV6_ADDRESSES_PER_LANE = 2

STATION_CAPABILITY = "Station"
ROUTER_CAPABILITY = "Router"
BRIDGE_CAPABILITY = "Bridge"

LABEL_PREFIX = "ipam.fabric.io/"
LABEL_PURPOSE = LABEL_PREFIX + "purpose"
LABEL_OWNER = LABEL_PREFIX + "owner"
LABEL_FAMILY = LABEL_PREFIX + "family"

PURPOSE_SOUTH_SUBNET = "south-subnet"
PURPOSE_LOOPBACK = "loopback"

SWITCH_KIND = "Switch"
POOL_KIND = "AddressPool"
CONFIG_KIND = "SwitchConfig"
