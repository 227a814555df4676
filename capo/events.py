"""Observability events emitted by the actuator.

One event per terminal outcome of Create/Update/Delete:

    match event:
        case MachineEvent(type=EventType.NORMAL, reason="Created"):
            ...
        case MachineEvent(type=EventType.WARNING, reason=reason):
            print(f"{reason}: {event.message}")
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, TypeAlias

from capo.constants import CREATED_REASON, DELETED_REASON, EventAction

if TYPE_CHECKING:
    from capo.api.model import Machine


class EventType(StrEnum):
    NORMAL = "Normal"
    WARNING = "Warning"


@dataclass(frozen=True, slots=True)
class MachineEvent:
    type: EventType
    reason: str
    message: str


def created(machine: Machine) -> MachineEvent:
    return MachineEvent(EventType.NORMAL, CREATED_REASON, f"Created machine {machine.name}")


def deleted(machine: Machine) -> MachineEvent:
    return MachineEvent(EventType.NORMAL, DELETED_REASON, f"Deleted machine {machine.name}")


def failed(action: EventAction, reason: str) -> MachineEvent:
    return MachineEvent(EventType.WARNING, f"Failed{action}", reason)


EventCallback: TypeAlias = Callable[["Machine", MachineEvent], None]


class CallbackRecorder:
    """EventRecorder that forwards every event to a plain callable."""

    __slots__ = ("_callback",)

    def __init__(self, callback: EventCallback) -> None:
        self._callback = callback

    async def record(self, machine: Machine, event: MachineEvent) -> None:
        self._callback(machine, event)
