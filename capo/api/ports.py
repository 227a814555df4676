"""Narrow interfaces for the actuator's external collaborators.

The actuator holds only these protocols. Implementations are free to be
stateless API clients (see ``capo.store.kubernetes``) or in-memory fakes
(see ``capo.store.memory``).
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from capo.api.model import Instance, InstanceListOpts, Machine, Secret
    from capo.api.spec import OpenStackProviderSpec
    from capo.events import MachineEvent


@runtime_checkable
class ComputeService(Protocol):
    """Compute provider operations used by the actuator.

    All methods raise on provider failure; the actuator classifies the
    error according to the operation that was in flight.
    """

    async def create_instance(
        self,
        cluster_name: str,
        name: str,
        spec: OpenStackProviderSpec,
        user_data: bytes,
        key_name: str,
    ) -> Instance:
        """Request a new server. Returns it in whatever state the API reports.

        ``user_data`` is opaque; it may be text or compressed binary.
        """
        ...

    async def get_instance(self, instance_id: str) -> Instance:
        ...

    async def list_instances(self, opts: InstanceListOpts) -> Sequence[Instance]:
        """Servers matching name, image and flavor, in provider order."""
        ...

    async def delete_instance(self, instance_id: str) -> None:
        ...

    async def associate_floating_ip(self, instance_id: str, floating_ip: str) -> None:
        ...

    async def set_machine_labels(self, machine: Machine, instance_id: str) -> None:
        """Push machine identity labels to the server's metadata."""
        ...

    async def image_exists(self, image: str) -> None:
        """Raise if the image cannot be found."""
        ...

    async def flavor_exists(self, flavor: str) -> None:
        """Raise if the flavor cannot be found."""
        ...

    async def availability_zone_exists(self, zone: str) -> None:
        """Raise if the availability zone cannot be found. Empty means any."""
        ...


@runtime_checkable
class MachineStore(Protocol):
    """Read-one, write-whole, write-status-subset access to machine records."""

    async def get(self, namespace: str, name: str) -> Machine:
        """Raises RecordNotFoundError when absent."""
        ...

    async def update(self, machine: Machine) -> Machine:
        """Persist metadata and spec. Status is not written."""
        ...

    async def update_status(self, machine: Machine) -> Machine:
        """Persist only the status subresource."""
        ...


@runtime_checkable
class SecretStore(Protocol):
    async def get_secret(self, namespace: str, name: str) -> Secret:
        """Raises RecordNotFoundError when absent."""
        ...

    async def create_secret(self, secret: Secret) -> Secret:
        ...


@runtime_checkable
class ClusterInfo(Protocol):
    async def infrastructure_name(self) -> str:
        """The identity machines must carry in their cluster label."""
        ...


@runtime_checkable
class EventRecorder(Protocol):
    async def record(self, machine: Machine, event: MachineEvent) -> None:
        """Best effort: implementations log delivery failures instead of raising."""
        ...
