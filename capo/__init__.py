"""capo - OpenStack machine actuator.

Reconciles desired-state machine records against OpenStack servers:

    from capo import MachineActuator, load_config
    from capo.store.kubernetes import (
        KubernetesClusterInfo,
        KubernetesEventRecorder,
        KubernetesMachineStore,
        KubernetesSecretStore,
        load_clients,
    )

    core, custom = load_clients()
    actuator = MachineActuator(
        compute,
        KubernetesClusterInfo(custom),
        KubernetesEventRecorder(core),
        store=KubernetesMachineStore(custom),
        secrets=KubernetesSecretStore(core),
        config=load_config(),
    )

    if not await actuator.exists(machine):
        machine = await actuator.create(machine)
    else:
        machine = await actuator.update(machine)
"""

from loguru import logger

from capo.actuator import MachineActuator
from capo.api.model import Instance, Machine, MachineStatus, NodeAddress, Secret
from capo.api.spec import OpenStackProviderSpec, decode_provider_spec
from capo.config import ActuatorConfig, load_config
from capo.core.exceptions import (
    CapoError,
    ConfigurationError,
    DeletionError,
    InstanceLookupError,
    MachineError,
    ProvisioningError,
    RecordNotFoundError,
    StatusWriteError,
    TokenIssueError,
)
from capo.events import EventType, MachineEvent
from capo.observability.logging import LogConfig, setup_logging, teardown_logging

logger.disable("capo")

__version__ = "0.1.0"

__all__ = [
    "ActuatorConfig",
    "CapoError",
    "ConfigurationError",
    "DeletionError",
    "EventType",
    "Instance",
    "InstanceLookupError",
    "LogConfig",
    "Machine",
    "MachineActuator",
    "MachineError",
    "MachineEvent",
    "MachineStatus",
    "NodeAddress",
    "OpenStackProviderSpec",
    "ProvisioningError",
    "RecordNotFoundError",
    "Secret",
    "StatusWriteError",
    "TokenIssueError",
    "decode_provider_spec",
    "load_config",
    "setup_logging",
    "teardown_logging",
]
