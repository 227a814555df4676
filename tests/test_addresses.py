from __future__ import annotations

import pytest

from capo.addresses import instance_addresses, node_addresses
from capo.api.model import AddressType, Instance, NetworkInterface, NodeAddress

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


def dual_stack() -> Instance:
    return Instance(
        id="srv-1",
        name="worker-0",
        status="ACTIVE",
        addresses={
            "private": (
                NetworkInterface("10.0.0.5", 4, "fixed"),
                NetworkInterface("fd00::5", 6, "fixed"),
            ),
            "public": (
                NetworkInterface("172.24.4.10", 4, "floating"),
                NetworkInterface("2001:db8::10", 6, "floating"),
                NetworkInterface("192.168.0.9", 4, "provider"),
            ),
        },
    )


class TestInstanceAddresses:
    def test_maps_roles_to_address_types(self):
        assert instance_addresses(dual_stack()) == [
            NodeAddress(AddressType.INTERNAL_IP, "10.0.0.5"),
            NodeAddress(AddressType.EXTERNAL_IP, "172.24.4.10"),
        ]

    def test_ipv6_family(self):
        assert instance_addresses(dual_stack(), family=6) == [
            NodeAddress(AddressType.INTERNAL_IP, "fd00::5"),
            NodeAddress(AddressType.EXTERNAL_IP, "2001:db8::10"),
        ]

    def test_no_networks(self):
        assert instance_addresses(Instance(id="srv-1", name="a", status="BUILD")) == []


class TestNodeAddresses:
    def test_appends_hostname_and_internal_dns(self):
        addresses = node_addresses("worker-0", dual_stack())

        assert addresses[-2:] == (
            NodeAddress(AddressType.HOSTNAME, "worker-0"),
            NodeAddress(AddressType.INTERNAL_DNS, "worker-0"),
        )
        assert len(addresses) == 4

    def test_empty_without_instance(self):
        assert node_addresses("worker-0", None) == ()
