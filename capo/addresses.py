from __future__ import annotations

from loguru import logger

from capo.api.model import AddressType, Instance, NodeAddress

log = logger.bind(component="addresses")

_ROLE_TO_TYPE = {
    "floating": AddressType.EXTERNAL_IP,
    "fixed": AddressType.INTERNAL_IP,
}


def instance_addresses(instance: Instance, *, family: int = 4) -> list[NodeAddress]:
    """IP addresses of ``instance`` in one address family.

    Floating interfaces become external IPs, fixed interfaces internal IPs.
    Other families and unknown interface roles are skipped.
    """
    addresses: list[NodeAddress] = []
    for network, interfaces in instance.addresses.items():
        for iface in interfaces:
            if iface.version != family:
                log.trace(
                    "Ignoring IPv{v} address {addr} on {net}",
                    v=iface.version, addr=iface.address, net=network,
                )
                continue
            address_type = _ROLE_TO_TYPE.get(iface.type)
            if address_type is None:
                log.trace("Ignoring address {addr} with unknown type {t!r}", addr=iface.address, t=iface.type)
                continue
            addresses.append(NodeAddress(address_type, iface.address))
    return addresses


def node_addresses(
    machine_name: str,
    instance: Instance | None,
    *,
    family: int = 4,
) -> tuple[NodeAddress, ...]:
    """Full address list for a machine: instance IPs plus hostname and internal DNS.

    With no instance the list is empty.
    """
    if instance is None:
        return ()
    return (
        *instance_addresses(instance, family=family),
        NodeAddress(AddressType.HOSTNAME, machine_name),
        NodeAddress(AddressType.INTERNAL_DNS, machine_name),
    )
