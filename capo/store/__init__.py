"""Record store adapters for the actuator's ports."""

from capo.store.memory import (
    EventLog,
    InMemoryMachineStore,
    InMemorySecretStore,
    StaticClusterInfo,
)

__all__ = [
    "EventLog",
    "InMemoryMachineStore",
    "InMemorySecretStore",
    "StaticClusterInfo",
]
