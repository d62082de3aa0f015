import pytest

from fabric_orchestrator.bgp.asn import calculate_asn
from fabric_orchestrator.core.constants import ASN_BASE
from fabric_orchestrator.core.errors import MalformedData


def test_lowest_loopback_maps_to_base_plus_one():
    assert calculate_asn("0.0.0.1") == ASN_BASE + 1


def test_unset_loopback_has_no_asn():
    assert calculate_asn("") == 0
    assert calculate_asn("0.0.0.0") == 0


def test_last_three_octets_are_used():
    assert calculate_asn("10.255.1.1") == ASN_BASE + 255 * 65536 + 256 + 1
    # first octet does not matter
    assert calculate_asn("10.1.2.3") == calculate_asn("192.1.2.3")


def test_prefix_suffix_is_ignored():
    assert calculate_asn("10.255.0.1/32") == calculate_asn("10.255.0.1")


def test_ipv6_uses_trailing_bytes():
    assert calculate_asn("fd00::1:2:3") == ASN_BASE + 0x02 * 65536 + 0x03
    assert calculate_asn("fd00::0102:0304") == ASN_BASE + 0x02 * 65536 + 0x03 * 256 + 0x04


def test_garbage_is_malformed():
    with pytest.raises(MalformedData):
        calculate_asn("not-an-ip")
