"""In-memory record stores.

Used when the actuator runs without a cluster API (local runs, tests).
Records are copied on the way in and out, so a caller holding a Machine
never observes writes made through the store. Every write bumps
``resource_version`` and is recorded in ``writes`` for inspection.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal, TypeAlias

from loguru import logger

from capo.api.model import Machine, Secret
from capo.core.exceptions import RecordNotFoundError
from capo.events import MachineEvent

log = logger.bind(component="memory-store")

WriteKind: TypeAlias = Literal["update", "update_status"]


@dataclass(frozen=True, slots=True)
class Write:
    kind: WriteKind
    machine: Machine


class InMemoryMachineStore:
    """MachineStore keyed by ``(namespace, name)``.

    ``update`` persists everything except status; ``update_status`` persists
    only status. This mirrors a status subresource, which is what makes the
    two writes distinguishable.
    """

    def __init__(self, *machines: Machine) -> None:
        self._records: dict[tuple[str, str], Machine] = {}
        self._version = 0
        self.writes: list[Write] = []
        for machine in machines:
            self.put(machine)

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def put(self, machine: Machine) -> Machine:
        """Seed or overwrite a record wholesale."""
        stored = replace(machine, resource_version=self._next_version())
        self._records[machine.key] = stored
        return stored

    def _existing(self, namespace: str, name: str) -> Machine:
        try:
            return self._records[(namespace, name)]
        except KeyError:
            raise RecordNotFoundError("Machine", namespace, name) from None

    async def get(self, namespace: str, name: str) -> Machine:
        return self._existing(namespace, name)

    async def update(self, machine: Machine) -> Machine:
        current = self._existing(machine.namespace, machine.name)
        stored = replace(machine, status=current.status, resource_version=self._next_version())
        self._records[machine.key] = stored
        self.writes.append(Write("update", stored))
        log.debug("Updated machine {ns}/{name}", ns=machine.namespace, name=machine.name)
        return stored

    async def update_status(self, machine: Machine) -> Machine:
        current = self._existing(machine.namespace, machine.name)
        stored = replace(current, status=machine.status, resource_version=self._next_version())
        self._records[machine.key] = stored
        self.writes.append(Write("update_status", stored))
        log.debug("Updated status of machine {ns}/{name}", ns=machine.namespace, name=machine.name)
        return stored

    def count(self, kind: WriteKind) -> int:
        return sum(1 for w in self.writes if w.kind == kind)


class InMemorySecretStore:
    def __init__(self, *secrets: Secret) -> None:
        self._secrets: dict[tuple[str, str], Secret] = {
            (s.namespace, s.name): s for s in secrets
        }

    async def get_secret(self, namespace: str, name: str) -> Secret:
        try:
            return self._secrets[(namespace, name)]
        except KeyError:
            raise RecordNotFoundError("Secret", namespace, name) from None

    async def create_secret(self, secret: Secret) -> Secret:
        key = (secret.namespace, secret.name)
        if key in self._secrets:
            raise ValueError(f"secret {secret.namespace}/{secret.name} already exists")
        self._secrets[key] = secret
        return secret

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._secrets

    def __iter__(self):
        return iter(self._secrets.values())


@dataclass(slots=True)
class EventLog:
    """EventRecorder that keeps every event in order."""

    events: list[tuple[Machine, MachineEvent]] = field(default_factory=list)

    async def record(self, machine: Machine, event: MachineEvent) -> None:
        self.events.append((machine, event))

    @property
    def reasons(self) -> list[str]:
        return [event.reason for _, event in self.events]


@dataclass(frozen=True, slots=True)
class StaticClusterInfo:
    name: str

    async def infrastructure_name(self) -> str:
        return self.name
