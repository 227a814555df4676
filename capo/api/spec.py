"""OpenStack provider spec, decoded once at the actuator boundary.

The machine record carries the provider configuration as an untyped blob.
``decode_provider_spec`` validates it into frozen pydantic models and fails
closed: unknown fields, wrong types and missing required fields all raise
``ConfigurationError``. Null values are treated as absent.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Self

from pydantic import BaseModel, Field, ValidationError, model_validator

from capo.core.exceptions import ConfigurationError

API_VERSIONS = frozenset({
    "openstackproviderconfig.openshift.io/v1alpha1",
    "openstackproviderconfig/v1alpha1",
})
KIND = "OpenstackProviderSpec"

_UNMARSHAL = "Cannot unmarshal providerSpec field"


class _SpecModel(BaseModel):
    model_config = {"extra": "forbid", "frozen": True, "strict": True}

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return {k: v for k, v in data.items() if v is not None}
        return data


class SecretRef(_SpecModel):
    name: str = ""
    namespace: str = ""


class RootVolume(_SpecModel):
    source_uuid: str = Field(alias="sourceUUID")
    source_type: str = Field(default="image", alias="sourceType")
    device_type: str = Field(default="disk", alias="deviceType")
    volume_type: str = Field(default="", alias="volumeType")
    disk_size: int = Field(default=0, alias="diskSize")
    availability_zone: str = Field(default="", alias="availabilityZone")


class OpenStackProviderSpec(_SpecModel):
    """Decoded provider configuration for one machine.

    Attributes:
        flavor: Compute flavor name.
        image: Image name. May be empty when booting from ``root_volume``.
        key_name: SSH key pair registered with the compute API.
        availability_zone: Zone to schedule the instance into.
        floating_ip: Floating IP to associate once the instance is active.
        user_data_secret: Secret holding the raw startup script.
        root_volume: Boot-from-volume settings.
        networks: Network attachment parameters, passed to the provider as-is.
        ports: Port parameters, passed to the provider as-is.
        security_groups: Security group parameters, passed as-is.
    """

    # Type metadata, checked in _check_identity.
    api_version: str | None = Field(default=None, alias="apiVersion")
    kind: str | None = None
    metadata: dict[str, str] | None = None

    flavor: str = ""
    image: str = ""
    key_name: str = Field(default="", alias="keyName")
    ssh_user_name: str = Field(default="", alias="sshUserName")
    availability_zone: str = Field(default="", alias="availabilityZone")
    floating_ip: str = Field(default="", alias="floatingIP")
    cloud_name: str = Field(default="", alias="cloudName")
    clouds_secret: SecretRef | None = Field(default=None, alias="cloudsSecret")
    user_data_secret: SecretRef | None = Field(default=None, alias="userDataSecret")
    root_volume: RootVolume | None = Field(default=None, alias="rootVolume")
    networks: list[dict[str, Any]] = Field(default_factory=list)
    ports: list[dict[str, Any]] = Field(default_factory=list)
    security_groups: list[dict[str, Any]] = Field(default_factory=list, alias="securityGroups")
    tags: list[str] = Field(default_factory=list)
    server_metadata: dict[str, str] | None = Field(default=None, alias="serverMetadata")
    config_drive: bool | None = Field(default=None, alias="configDrive")
    trunk: bool = False
    server_group_id: str = Field(default="", alias="serverGroupID")
    server_group_name: str = Field(default="", alias="serverGroupName")
    primary_subnet: str = Field(default="", alias="primarySubnet")

    @model_validator(mode="after")
    def _check_identity(self) -> Self:
        if self.api_version is not None and self.api_version not in API_VERSIONS:
            raise ValueError(f"unsupported apiVersion {self.api_version!r}")
        if self.kind is not None and self.kind != KIND:
            raise ValueError(f"unsupported kind {self.kind!r}")
        return self

    @model_validator(mode="after")
    def _check_boot_source(self) -> Self:
        if not self.flavor:
            raise ValueError("flavor is required")
        if not self.image and self.root_volume is None:
            raise ValueError("image is required unless rootVolume is set")
        return self


def _location(loc: tuple[str | int, ...]) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else part
    return path


def _describe(error: Mapping[str, Any]) -> str:
    path = _location(tuple(error["loc"]))
    match error["type"]:
        case "extra_forbidden":
            return f"unknown field {path}"
        case "missing":
            return f"{path} is required"
        case "value_error":
            message = str(error["ctx"]["error"]) if "ctx" in error else error["msg"]
            return f"{path}: {message}" if path else message
        case _:
            return f"{path}: {error['msg']}" if path else error["msg"]


def decode_provider_spec(raw: Mapping[str, Any] | None) -> OpenStackProviderSpec:
    """Decode a raw providerSpec blob.

    Accepts either the bare spec or the ``{"value": {...}}`` envelope used
    by machine records.

    Raises:
        ConfigurationError: On any unknown field, type mismatch, or a missing
            flavor / image.
    """
    if raw is None:
        raise ConfigurationError(f"{_UNMARSHAL}: providerSpec is empty")
    if set(raw) == {"value"}:
        raw = raw["value"]
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{_UNMARSHAL}: value: expected object, got {type(raw).__name__}")

    try:
        return OpenStackProviderSpec.model_validate(dict(raw))
    except ValidationError as e:
        details = "; ".join(_describe(error) for error in e.errors())
        raise ConfigurationError(f"{_UNMARSHAL}: {details}") from e
