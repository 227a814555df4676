"""Custom exception hierarchy for capo.

All capo-specific exceptions inherit from CapoError, enabling callers
(typically the reconcile driver) to catch all of them with a single
except clause. MachineError subclasses are the classified errors: they
carry a reason code and are written to the machine's status before
being raised.
"""

from __future__ import annotations

from typing import ClassVar


class CapoError(Exception):
    """Base exception for all capo errors."""


class MachineError(CapoError):
    """Classified machine error with a reason code and human message."""

    reason: ClassVar[str] = "MachineError"
    retryable: ClassVar[bool] = True

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(MachineError):
    """Raised for invalid machine configuration. Requires operator correction."""

    reason = "InvalidConfiguration"
    retryable = False


class ProvisioningError(MachineError):
    """Raised when creating the backing instance fails."""

    reason = "CreateError"


class DeletionError(MachineError):
    """Raised when deleting the backing instance fails."""

    reason = "DeleteError"


class StatusWriteError(CapoError):
    """Raised when persisting status or the error trail fails."""


class InstanceLookupError(CapoError):
    """Raised when the provider cannot be queried for a machine's instance."""


class RecordNotFoundError(CapoError):
    """Raised when a record store lookup finds nothing."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} not found")


class TokenIssueError(CapoError):
    """Raised when a bootstrap token cannot be minted or stored."""
