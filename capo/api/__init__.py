from capo.api.model import (
    AddressType,
    Instance,
    InstanceListOpts,
    Machine,
    MachineStatus,
    NetworkInterface,
    NodeAddress,
    Secret,
)
from capo.api.ports import ClusterInfo, ComputeService, EventRecorder, MachineStore, SecretStore
from capo.api.spec import OpenStackProviderSpec, RootVolume, SecretRef, decode_provider_spec

__all__ = [
    "AddressType",
    "ClusterInfo",
    "ComputeService",
    "EventRecorder",
    "Instance",
    "InstanceListOpts",
    "Machine",
    "MachineStatus",
    "MachineStore",
    "NetworkInterface",
    "NodeAddress",
    "OpenStackProviderSpec",
    "RootVolume",
    "Secret",
    "SecretRef",
    "SecretStore",
    "decode_provider_spec",
]
