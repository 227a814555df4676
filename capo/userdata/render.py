"""Startup script templating.

The raw user data is treated as a template with ``{{ dotted.name }}``
placeholders. Control-plane machines are rendered from the machine record
alone; joining machines additionally receive ``{{ token }}``:

    #!/bin/bash
    hostnamectl set-hostname {{ machine.name }}
    kubeadm join --token {{ token }} ...

Placeholders that do not resolve fail the render.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from capo.api.model import Machine
from capo.constants import CONTROL_PLANE_ROLE, MachineLabel

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)\s*\}\}")


class RenderError(Exception):
    """Raised when a startup script template cannot be rendered."""


def is_control_plane(machine: Machine) -> bool:
    return machine.labels.get(MachineLabel.ROLE) == CONTROL_PLANE_ROLE


def _machine_context(machine: Machine) -> dict[str, Any]:
    return {
        "machine": {
            "name": machine.name,
            "namespace": machine.namespace,
            "role": machine.labels.get(MachineLabel.ROLE, ""),
            "type": machine.labels.get(MachineLabel.TYPE, ""),
        },
        "cluster": {"name": machine.cluster_label},
    }


def _lookup(context: Mapping[str, Any], dotted: str) -> str:
    value: Any = context
    for part in dotted.split("."):
        if not isinstance(value, Mapping) or part not in value:
            raise RenderError(f"template references undefined value {dotted!r}")
        value = value[part]
    if isinstance(value, Mapping):
        raise RenderError(f"template value {dotted!r} is not a scalar")
    return str(value)


def render(script: str, context: Mapping[str, Any]) -> str:
    return _PLACEHOLDER.sub(lambda m: _lookup(context, m.group(1)), script)


def control_plane_script(machine: Machine, script: str) -> str:
    """Render the startup script for a control-plane (initial) machine."""
    return render(script, _machine_context(machine))


def node_script(machine: Machine, token: str, script: str) -> str:
    """Render the startup script for a joining machine."""
    if not token:
        raise RenderError("joining machine requires a bootstrap token")
    return render(script, {**_machine_context(machine), "token": token})
