from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import pytest

from capo.actuator import MachineActuator
from capo.api.model import Instance, InstanceListOpts, Machine, NetworkInterface, Secret
from capo.api.spec import OpenStackProviderSpec
from capo.config import ActuatorConfig
from capo.constants import MachineLabel
from capo.store.memory import EventLog, InMemoryMachineStore, InMemorySecretStore, StaticClusterInfo

CLUSTER = "ocp-abc12"
NAMESPACE = "openshift-machine-api"


def provider_spec(**overrides: Any) -> dict[str, Any]:
    value = {
        "apiVersion": "openstackproviderconfig.openshift.io/v1alpha1",
        "kind": "OpenstackProviderSpec",
        "flavor": "m1.large",
        "image": "rhcos",
        "keyName": "ops",
        **overrides,
    }
    return {"value": {k: v for k, v in value.items() if v is not None}}


def make_machine(
    name: str = "worker-0",
    *,
    role: str = "worker",
    cluster: str = CLUSTER,
    **kwargs: Any,
) -> Machine:
    kwargs.setdefault("provider_spec", provider_spec())
    return Machine(
        name=name,
        namespace=NAMESPACE,
        labels={MachineLabel.CLUSTER: cluster, MachineLabel.ROLE: role},
        **kwargs,
    )


def active_instance(instance_id: str = "srv-1", name: str = "worker-0") -> Instance:
    return Instance(
        id=instance_id,
        name=name,
        status="ACTIVE",
        addresses={
            "private": (
                NetworkInterface("10.0.0.5", 4, "fixed"),
                NetworkInterface("fd00::5", 6, "fixed"),
                NetworkInterface("172.24.4.10", 4, "floating"),
            ),
        },
    )


@dataclass
class FakeComputeService:
    """Scriptable ComputeService.

    ``statuses`` is consumed by get_instance one poll at a time; the last
    entry repeats. Any ``fail_*`` attribute set to an exception makes the
    matching call raise it; ``fail_get`` fires once.
    """

    instances: dict[str, Instance] = field(default_factory=dict)
    statuses: list[str] = field(default_factory=lambda: ["ACTIVE"])
    next_id: int = 1
    calls: list[tuple[str, Any]] = field(default_factory=list)
    created_user_data: list[bytes] = field(default_factory=list)
    fail_create: Exception | None = None
    fail_get: Exception | None = None
    fail_list: Exception | None = None
    fail_delete: Exception | None = None
    fail_floating_ip: Exception | None = None
    fail_labels: Exception | None = None
    missing_images: set[str] = field(default_factory=set)
    missing_flavors: set[str] = field(default_factory=set)
    missing_zones: set[str] = field(default_factory=set)

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    async def create_instance(
        self,
        cluster_name: str,
        name: str,
        spec: OpenStackProviderSpec,
        user_data: bytes,
        key_name: str,
    ) -> Instance:
        self.calls.append(("create_instance", (cluster_name, name, key_name)))
        if self.fail_create is not None:
            raise self.fail_create
        instance = replace(active_instance(f"srv-{self.next_id}", name), status="BUILD")
        self.next_id += 1
        self.instances[instance.id] = instance
        self.created_user_data.append(user_data)
        return instance

    async def get_instance(self, instance_id: str) -> Instance:
        self.calls.append(("get_instance", instance_id))
        if self.fail_get is not None:
            error, self.fail_get = self.fail_get, None
            raise error
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        instance = replace(self.instances[instance_id], status=status)
        self.instances[instance_id] = instance
        return instance

    async def list_instances(self, opts: InstanceListOpts) -> Sequence[Instance]:
        self.calls.append(("list_instances", opts))
        if self.fail_list is not None:
            raise self.fail_list
        return [i for i in self.instances.values() if i.name == opts.name]

    async def delete_instance(self, instance_id: str) -> None:
        self.calls.append(("delete_instance", instance_id))
        if self.fail_delete is not None:
            raise self.fail_delete
        self.instances.pop(instance_id, None)

    async def associate_floating_ip(self, instance_id: str, floating_ip: str) -> None:
        self.calls.append(("associate_floating_ip", (instance_id, floating_ip)))
        if self.fail_floating_ip is not None:
            raise self.fail_floating_ip

    async def set_machine_labels(self, machine: Machine, instance_id: str) -> None:
        self.calls.append(("set_machine_labels", instance_id))
        if self.fail_labels is not None:
            raise self.fail_labels

    async def image_exists(self, image: str) -> None:
        self.calls.append(("image_exists", image))
        if image in self.missing_images:
            raise LookupError(f"image {image} not found")

    async def flavor_exists(self, flavor: str) -> None:
        self.calls.append(("flavor_exists", flavor))
        if flavor in self.missing_flavors:
            raise LookupError(f"flavor {flavor} not found")

    async def availability_zone_exists(self, zone: str) -> None:
        self.calls.append(("availability_zone_exists", zone))
        if zone in self.missing_zones:
            raise LookupError(f"availability zone {zone} not found")


class FailingMachineStore(InMemoryMachineStore):
    """Store whose writes fail once ``broken`` is set."""

    def __init__(self, *machines: Machine) -> None:
        super().__init__(*machines)
        self.broken = False

    async def update(self, machine: Machine) -> Machine:
        if self.broken:
            raise ConnectionError("api server unavailable")
        return await super().update(machine)

    async def update_status(self, machine: Machine) -> Machine:
        if self.broken:
            raise ConnectionError("api server unavailable")
        return await super().update_status(machine)


FAST = ActuatorConfig(create_timeout=0.2, poll_interval=0.05)


@pytest.fixture
def compute() -> FakeComputeService:
    return FakeComputeService()


@pytest.fixture
def machine() -> Machine:
    return make_machine()


@pytest.fixture
def store(machine: Machine) -> InMemoryMachineStore:
    return InMemoryMachineStore(machine)


@pytest.fixture
def secrets() -> InMemorySecretStore:
    return InMemorySecretStore()


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def actuator(
    compute: FakeComputeService,
    events: EventLog,
    store: InMemoryMachineStore,
    secrets: InMemorySecretStore,
) -> MachineActuator:
    return MachineActuator(
        compute,
        StaticClusterInfo(CLUSTER),
        events,
        store=store,
        secrets=secrets,
        config=FAST,
    )


def user_data_secret(name: str = "worker-user-data", **data: bytes) -> Secret:
    return Secret(name=name, namespace=NAMESPACE, data=data)
