from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Literal, TypeAlias

from capo.constants import MachineLabel


class AddressType(StrEnum):
    """Node address kinds written to ``status.addresses``."""

    EXTERNAL_IP = "ExternalIP"
    INTERNAL_IP = "InternalIP"
    HOSTNAME = "Hostname"
    INTERNAL_DNS = "InternalDNS"


@dataclass(frozen=True, slots=True)
class NodeAddress:
    type: AddressType
    address: str


@dataclass(frozen=True, slots=True)
class MachineStatus:
    """Status subset written only by the actuator."""

    addresses: tuple[NodeAddress, ...] = ()
    error_reason: str | None = None
    error_message: str | None = None


@dataclass(frozen=True, slots=True)
class Machine:
    """Desired-state record for a single compute instance.

    ``provider_spec`` is the raw provider blob as stored; it is decoded into
    an :class:`~capo.api.spec.OpenStackProviderSpec` at the actuator boundary.
    """

    name: str
    namespace: str
    provider_spec: Mapping[str, Any] = field(default_factory=dict)
    provider_id: str | None = None
    labels: Mapping[str, str] = field(default_factory=dict)
    annotations: Mapping[str, str] = field(default_factory=dict)
    status: MachineStatus = field(default_factory=MachineStatus)
    resource_version: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.namespace, self.name)

    @property
    def cluster_label(self) -> str:
        return self.labels.get(MachineLabel.CLUSTER, "")

    def with_annotations(self, updates: Mapping[str, str | None]) -> Machine:
        """Return a copy with annotations set, or removed when the value is None."""
        annotations = dict(self.annotations)
        for key, value in updates.items():
            if value is None:
                annotations.pop(key, None)
            else:
                annotations[key] = value
        return replace(self, annotations=annotations)


@dataclass(frozen=True, slots=True)
class Secret:
    name: str
    namespace: str
    data: Mapping[str, bytes] = field(default_factory=dict)
    type: str = "Opaque"


# =============================================================================
# Compute Instances
# =============================================================================

InterfaceRole: TypeAlias = Literal["fixed", "floating"]


@dataclass(frozen=True, slots=True)
class NetworkInterface:
    """One address on one of the instance's networks."""

    address: str
    version: int = 4
    type: InterfaceRole | str = "fixed"


@dataclass(frozen=True, slots=True)
class Instance:
    """A provider instance as reported by the compute API.

    ``addresses`` maps network name to the interfaces attached on it, in
    provider order.
    """

    id: str
    name: str
    status: str
    addresses: Mapping[str, tuple[NetworkInterface, ...]] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class InstanceListOpts:
    """Filter for instance listing: name, image and flavor must all match."""

    name: str
    image: str
    flavor: str
