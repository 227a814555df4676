"""Centralized constants and enums for capo.

Annotation keys, label keys, secret keys and timing defaults are defined
here so the actuator, stores and tests agree on the exact strings.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Machine Labels and Annotations
# =============================================================================


class MachineLabel(StrEnum):
    """Label keys read from the machine record."""

    CLUSTER = "machine.uccp.io/cluster-api-cluster"
    ROLE = "machine.uccp.io/cluster-api-machine-role"
    TYPE = "machine.uccp.io/cluster-api-machine-type"


class MachineAnnotation(StrEnum):
    """Annotation keys written by the actuator."""

    INSTANCE_STATE = "machine.uccp.io/instance-state"
    RESOURCE_ID = "openstack-resourceId"


# Instance-state sentinel: the backing instance is broken or was destroyed.
ERROR_STATE: Final = "ERROR"

CONTROL_PLANE_ROLE: Final = "master"


# =============================================================================
# Compute Instance States
# =============================================================================


class InstanceState(StrEnum):
    """Server states reported by the compute API."""

    BUILD = "BUILD"
    ACTIVE = "ACTIVE"
    ERROR = "ERROR"
    SHUTOFF = "SHUTOFF"
    DELETED = "DELETED"


# =============================================================================
# User Data Secret
# =============================================================================


class UserDataKey(StrEnum):
    """Keys looked up in the user-data secret."""

    USER_DATA = "userData"
    DISABLE_TEMPLATING = "disableTemplating"
    POSTPROCESSOR = "postprocessor"


# =============================================================================
# Events
# =============================================================================


class EventAction(StrEnum):
    """Actions that tag failure events (``Failed<Action>``)."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"


CREATED_REASON: Final = "Created"
DELETED_REASON: Final = "Deleted"


# =============================================================================
# Timing Defaults
# =============================================================================

CREATE_TIMEOUT_ENV: Final = "CLUSTER_API_OPENSTACK_INSTANCE_CREATE_TIMEOUT"
DEFAULT_CREATE_TIMEOUT_MINUTES: Final = 5
DEFAULT_POLL_INTERVAL: Final = 10.0
DEFAULT_TOKEN_TTL_MINUTES: Final = 60

PROVIDER_ID_PREFIX: Final = "openstack:///"
TOKEN_NAMESPACE: Final = "kube-system"
