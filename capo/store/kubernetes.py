"""Kubernetes-backed record stores.

Machines live in ``machine.openshift.io/v1beta1`` custom objects, the
cluster identity in the ``config.openshift.io/v1`` Infrastructure named
``cluster``. Secrets and events go through the core API.

The kubernetes client is synchronous; every call runs through
``asyncio.to_thread`` on the default executor so the actuator's event
loop never blocks on the API server.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, TypeAlias

from kubernetes import config as kube_config
from kubernetes.client import CoreV1Api, CustomObjectsApi
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from loguru import logger

from capo.api.model import AddressType, Machine, MachineStatus, NodeAddress, Secret
from capo.core.exceptions import RecordNotFoundError
from capo.events import MachineEvent

log = logger.bind(component="kubernetes-store")

MACHINE_GROUP = "machine.openshift.io"
MACHINE_VERSION = "v1beta1"
MACHINE_PLURAL = "machines"

INFRA_GROUP = "config.openshift.io"
INFRA_VERSION = "v1"
INFRA_PLURAL = "infrastructures"
INFRA_NAME = "cluster"

EVENT_SOURCE = "openstack-controller"

RawObject: TypeAlias = dict[str, Any]

_ADDRESS_TYPES = frozenset(t.value for t in AddressType)


def load_clients() -> tuple[CoreV1Api, CustomObjectsApi]:
    """Load kube-config from the local file, falling back to in-cluster."""
    try:
        kube_config.load_kube_config()
        log.info("Loaded kube-config from local file")
    except ConfigException:
        kube_config.load_incluster_config()
        log.info("Loaded in-cluster kube-config")
    return CoreV1Api(), CustomObjectsApi()


# =============================================================================
# Machine codec
# =============================================================================


def machine_from_object(obj: Mapping[str, Any]) -> Machine:
    meta = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    addresses = tuple(
        NodeAddress(AddressType(a["type"]), a["address"])
        for a in status.get("addresses") or ()
        if a.get("type") in _ADDRESS_TYPES
    )
    return Machine(
        name=meta["name"],
        namespace=meta.get("namespace", ""),
        provider_spec=spec.get("providerSpec") or {},
        provider_id=spec.get("providerID"),
        labels=dict(meta.get("labels") or {}),
        annotations=dict(meta.get("annotations") or {}),
        status=MachineStatus(
            addresses=addresses,
            error_reason=status.get("errorReason"),
            error_message=status.get("errorMessage"),
        ),
        resource_version=meta.get("resourceVersion"),
    )


def apply_metadata(obj: RawObject, machine: Machine) -> RawObject:
    """Overlay labels, annotations and providerID onto a stored object."""
    meta = {**obj.get("metadata", {}), "labels": dict(machine.labels), "annotations": dict(machine.annotations)}
    if machine.resource_version is not None:
        meta["resourceVersion"] = machine.resource_version
    spec = dict(obj.get("spec") or {})
    if machine.provider_id is not None:
        spec["providerID"] = machine.provider_id
    return {**obj, "metadata": meta, "spec": spec}


def apply_status(obj: RawObject, machine: Machine) -> RawObject:
    """Overlay the actuator-owned status fields onto a stored object."""
    status = dict(obj.get("status") or {})
    status["addresses"] = [{"type": str(a.type), "address": a.address} for a in machine.status.addresses]
    for key, value in (("errorReason", machine.status.error_reason), ("errorMessage", machine.status.error_message)):
        if value is None:
            status.pop(key, None)
        else:
            status[key] = value
    meta = dict(obj.get("metadata") or {})
    if machine.resource_version is not None:
        meta["resourceVersion"] = machine.resource_version
    return {**obj, "metadata": meta, "status": status}


# =============================================================================
# Stores
# =============================================================================


class KubernetesMachineStore:
    def __init__(self, api: CustomObjectsApi) -> None:
        self._api = api

    async def _get_object(self, namespace: str, name: str) -> RawObject:
        try:
            return await asyncio.to_thread(
                self._api.get_namespaced_custom_object,
                MACHINE_GROUP, MACHINE_VERSION, namespace, MACHINE_PLURAL, name,
            )
        except ApiException as e:
            if e.status == 404:
                raise RecordNotFoundError("Machine", namespace, name) from e
            raise

    async def get(self, namespace: str, name: str) -> Machine:
        return machine_from_object(await self._get_object(namespace, name))

    async def update(self, machine: Machine) -> Machine:
        obj = apply_metadata(await self._get_object(machine.namespace, machine.name), machine)
        saved = await asyncio.to_thread(
            self._api.replace_namespaced_custom_object,
            MACHINE_GROUP, MACHINE_VERSION, machine.namespace, MACHINE_PLURAL, machine.name, obj,
        )
        log.debug("Updated machine {ns}/{name}", ns=machine.namespace, name=machine.name)
        return machine_from_object(saved)

    async def update_status(self, machine: Machine) -> Machine:
        obj = apply_status(await self._get_object(machine.namespace, machine.name), machine)
        saved = await asyncio.to_thread(
            self._api.replace_namespaced_custom_object_status,
            MACHINE_GROUP, MACHINE_VERSION, machine.namespace, MACHINE_PLURAL, machine.name, obj,
        )
        log.debug("Updated status of machine {ns}/{name}", ns=machine.namespace, name=machine.name)
        return machine_from_object(saved)


class KubernetesSecretStore:
    def __init__(self, api: CoreV1Api) -> None:
        self._api = api

    async def get_secret(self, namespace: str, name: str) -> Secret:
        try:
            raw = await asyncio.to_thread(self._api.read_namespaced_secret, name, namespace)
        except ApiException as e:
            if e.status == 404:
                raise RecordNotFoundError("Secret", namespace, name) from e
            raise
        return Secret(
            name=raw.metadata.name,
            namespace=raw.metadata.namespace,
            data={k: base64.b64decode(v) for k, v in (raw.data or {}).items()},
            type=raw.type or "Opaque",
        )

    async def create_secret(self, secret: Secret) -> Secret:
        body = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"name": secret.name, "namespace": secret.namespace},
            "type": secret.type,
            "data": {k: base64.b64encode(v).decode() for k, v in secret.data.items()},
        }
        await asyncio.to_thread(self._api.create_namespaced_secret, secret.namespace, body)
        log.debug("Created secret {ns}/{name}", ns=secret.namespace, name=secret.name)
        return secret


class KubernetesClusterInfo:
    def __init__(self, api: CustomObjectsApi) -> None:
        self._api = api

    async def infrastructure_name(self) -> str:
        infra = await asyncio.to_thread(
            self._api.get_cluster_custom_object,
            INFRA_GROUP, INFRA_VERSION, INFRA_PLURAL, INFRA_NAME,
        )
        return (infra.get("status") or {}).get("infrastructureName", "")


class KubernetesEventRecorder:
    """Posts machine events to the core API. Failures are logged, never raised."""

    def __init__(self, api: CoreV1Api, *, component: str = EVENT_SOURCE) -> None:
        self._api = api
        self._component = component

    async def record(self, machine: Machine, event: MachineEvent) -> None:
        now = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        body = {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {"generateName": f"{machine.name}.", "namespace": machine.namespace},
            "involvedObject": {
                "apiVersion": f"{MACHINE_GROUP}/{MACHINE_VERSION}",
                "kind": "Machine",
                "name": machine.name,
                "namespace": machine.namespace,
            },
            "type": str(event.type),
            "reason": event.reason,
            "message": event.message,
            "source": {"component": self._component},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }
        try:
            await asyncio.to_thread(self._api.create_namespaced_event, machine.namespace, body)
        except Exception as e:
            log.warning(
                "Failed to record event {reason} for {name}: {err}",
                reason=event.reason, name=machine.name, err=e,
            )
