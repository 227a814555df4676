"""Instance lifecycle actuator.

Reconciles a machine record against its OpenStack server through four
operations, each safe to re-invoke any number of times:

- ``create``: validate, render user data, create the server, wait for it to
  become ACTIVE, associate a floating IP and write back status.
- ``delete``: delete the server if one is found; otherwise a no-op.
- ``update``: re-resolve the server and write back status. Never creates.
- ``exists``: whether a live server matches the machine.

Every classified failure (``MachineError``) is recorded as a warning event
and written to the machine's status and instance-state annotation before
being raised, so observers keep a trail across process restarts.

The actuator holds no locks. The caller guarantees at most one concurrent
operation per machine; operations on different machines may run in
parallel against the same collaborators.
"""

from __future__ import annotations

from dataclasses import replace
from typing import NoReturn

from loguru import logger

from capo import events
from capo.addresses import node_addresses
from capo.api.model import Instance, InstanceListOpts, Machine
from capo.api.ports import ClusterInfo, ComputeService, EventRecorder, MachineStore, SecretStore
from capo.api.spec import OpenStackProviderSpec, decode_provider_spec
from capo.bootstrap.token import TokenIssuer
from capo.config import ActuatorConfig
from capo.constants import ERROR_STATE, EventAction, MachineAnnotation, UserDataKey
from capo.core.exceptions import (
    ConfigurationError,
    DeletionError,
    InstanceLookupError,
    MachineError,
    ProvisioningError,
    StatusWriteError,
    TokenIssueError,
)
from capo.userdata.postprocess import PostprocessError, postprocess
from capo.userdata.render import RenderError, control_plane_script, is_control_plane, node_script
from capo.wait import wait_for_active


class MachineActuator:
    """Create/Delete/Update/Exists against the compute service.

    Args:
        compute: Compute provider client.
        cluster: Source of the cluster's infrastructure name.
        events: Recorder for Created/Deleted/Failed<Action> events.
        store: Machine record store. When None, status and annotation
            changes are only applied to the returned record and errors are
            only logged (e.g. before the cluster's API is reachable).
        secrets: Secret store for user data and bootstrap tokens.
        config: Timeouts and address settings, resolved once at startup.
        issuer: Bootstrap token issuer. Built from ``secrets`` when omitted.
    """

    def __init__(
        self,
        compute: ComputeService,
        cluster: ClusterInfo,
        events: EventRecorder,
        *,
        store: MachineStore | None = None,
        secrets: SecretStore | None = None,
        config: ActuatorConfig | None = None,
        issuer: TokenIssuer | None = None,
    ) -> None:
        self._compute = compute
        self._cluster = cluster
        self._events = events
        self._store = store
        self._secrets = secrets
        self._config = config or ActuatorConfig()
        if issuer is None and secrets is not None:
            issuer = TokenIssuer(secrets, self._config.token_ttl, self._config.token_namespace)
        self._issuer = issuer

    # =========================================================================
    # Operations
    # =========================================================================

    async def create(self, machine: Machine) -> Machine:
        """Create the server backing ``machine`` and bind it.

        Returns:
            The machine record as last written.

        Raises:
            ConfigurationError: Label mismatch, providerID already set, bad
                provider spec, failed validation, bad user-data secret or
                unknown postprocessor. Not retried.
            ProvisioningError: Token issuance, rendering, server creation,
                activation timeout or floating IP association failed.
            StatusWriteError: Persisting the outcome failed.
        """
        log = logger.bind(component="actuator", machine=machine.name)

        infra_name = await self._cluster.infrastructure_name()
        if machine.cluster_label != infra_name:
            await self._fail(machine, ConfigurationError(
                f"machine.uccp.io/cluster-api-cluster label value is incorrect: "
                f"{machine.cluster_label}, machine {machine.name} cannot join cluster {infra_name}"
            ), EventAction.CREATE)

        # A destroyed instance is never recreated under the same identity:
        # the replacement node's certificate requests would not be approved.
        if machine.provider_id is not None:
            await self._fail(machine, ConfigurationError(
                f"the instance has been destroyed for the machine {machine.name}, cannot recreate it."
            ), EventAction.CREATE)

        try:
            spec = decode_provider_spec(machine.provider_spec)
        except ConfigurationError as e:
            await self._fail(machine, e, EventAction.CREATE)

        await self._validate(machine, spec)

        user_data = await self._user_data(machine, spec)

        try:
            instance = await self._compute.create_instance(
                f"{machine.namespace}-{machine.cluster_label}",
                machine.name,
                spec,
                user_data,
                spec.key_name,
            )
        except Exception as e:
            await self._fail(machine, ProvisioningError(
                f"error creating Openstack instance: {e}"
            ), EventAction.CREATE)
        log.info("Created instance {id}, waiting for it to become active", id=instance.id)

        try:
            instance = await wait_for_active(
                self._compute,
                instance.id,
                timeout=self._config.create_timeout,
                interval=self._config.poll_interval,
            )
        except TimeoutError as e:
            await self._fail(machine, ProvisioningError(
                f"error creating Openstack instance: {e}"
            ), EventAction.CREATE)

        if spec.floating_ip:
            try:
                await self._compute.associate_floating_ip(instance.id, spec.floating_ip)
            except Exception as e:
                await self._fail(machine, ProvisioningError(
                    f"Associate floatingIP err: {e}"
                ), EventAction.CREATE)

        # Best effort: the instance is fully usable without its labels, so a
        # failure here is logged and never fails the create.
        try:
            await self._compute.set_machine_labels(machine, instance.id)
        except Exception as e:
            log.warning("Failed to set labels on instance {id}: {err}", id=instance.id, err=e)

        await self._emit(machine, events.created(machine))
        return await self._write_back(machine, instance)

    async def delete(self, machine: Machine) -> None:
        """Delete the server backing ``machine``. No-op if it is already gone."""
        log = logger.bind(component="actuator", machine=machine.name)

        instance = await self._lookup_or_fail(machine, EventAction.DELETE)
        if instance is None:
            log.info("Skipped deleting {name} that is already deleted", name=machine.name)
            return

        instance_id = machine.annotations.get(MachineAnnotation.RESOURCE_ID) or instance.id
        try:
            await self._compute.delete_instance(instance_id)
        except Exception as e:
            await self._fail(machine, DeletionError(
                f"error deleting Openstack instance: {e}"
            ), EventAction.DELETE)

        log.info("Deleted instance {id}", id=instance_id)
        await self._emit(machine, events.deleted(machine))

    async def update(self, machine: Machine) -> Machine:
        """Re-resolve the server and write back status. Never creates.

        When no server is found, the addresses are cleared, the resource ID
        annotation is dropped and the instance state becomes ``ERROR``.
        """
        instance = await self._lookup_or_fail(machine, EventAction.UPDATE)
        if instance is None:
            logger.bind(component="actuator", machine=machine.name).info(
                "No instance found for {name}, marking it unbound", name=machine.name,
            )
        return await self._write_back(machine, instance)

    async def exists(self, machine: Machine) -> bool:
        """Whether a server matching the machine's name, image and flavor exists.

        Raises:
            ConfigurationError: The provider spec cannot be decoded.
            InstanceLookupError: The compute service could not be queried.
        """
        return await self._lookup(machine) is not None

    # =========================================================================
    # Create helpers
    # =========================================================================

    async def _validate(self, machine: Machine, spec: OpenStackProviderSpec) -> None:
        try:
            if spec.root_volume is None:
                await self._compute.image_exists(spec.image)
            await self._compute.flavor_exists(spec.flavor)
            await self._compute.availability_zone_exists(spec.availability_zone)
        except Exception as e:
            await self._fail(machine, ConfigurationError(
                f"Machine validation failed: {e}"
            ), EventAction.CREATE)

    async def _user_data(self, machine: Machine, spec: OpenStackProviderSpec) -> bytes:
        """Resolve, render and postprocess the machine's startup data.

        The secret bytes are passed through untouched (e.g. gzip-compressed
        cloud-init) unless templating or a postprocessor needs them as text.
        """
        ref = spec.user_data_secret
        if ref is None:
            return b""

        if not ref.name:
            await self._fail(machine, ConfigurationError(
                "UserDataSecret name must be provided"
            ), EventAction.CREATE)
        if self._secrets is None:
            await self._fail(machine, ConfigurationError(
                f"Machine {machine.name} references user data secret {ref.name} "
                f"but no secret store is configured"
            ), EventAction.CREATE)

        namespace = ref.namespace or machine.namespace
        secret = await self._secrets.get_secret(namespace, ref.name)

        raw = secret.data.get(UserDataKey.USER_DATA)
        if raw is None:
            await self._fail(machine, ConfigurationError(
                f"Machine's userdata secret {ref.name} in namespace {namespace} "
                f"did not contain key {UserDataKey.USER_DATA}"
            ), EventAction.CREATE)

        templating = bool(raw) and UserDataKey.DISABLE_TEMPLATING not in secret.data
        postprocessor = secret.data.get(UserDataKey.POSTPROCESSOR)
        if not templating and postprocessor is None:
            return raw

        try:
            script = raw.decode()
        except UnicodeDecodeError as e:
            await self._fail(machine, ConfigurationError(
                f"Machine's userdata secret {ref.name} in namespace {namespace} "
                f"is not valid UTF-8 text and cannot be templated or postprocessed: {e}"
            ), EventAction.CREATE)

        rendered = script
        if templating:
            rendered = await self._render(machine, script)

        if postprocessor is not None:
            try:
                rendered = postprocess(postprocessor.decode(errors="replace"), rendered)
            except PostprocessError as e:
                await self._fail(machine, ConfigurationError(str(e)), EventAction.CREATE)

        return rendered.encode()

    async def _render(self, machine: Machine, script: str) -> str:
        log = logger.bind(component="actuator", machine=machine.name)
        try:
            if is_control_plane(machine):
                return control_plane_script(machine, script)

            log.info("Creating bootstrap token")
            if self._issuer is None:
                raise TokenIssueError("no secret store configured for bootstrap tokens")
            token = await self._issuer.issue()
            return node_script(machine, token, script)
        except (RenderError, TokenIssueError) as e:
            await self._fail(machine, ProvisioningError(
                f"error creating Openstack instance: {e}"
            ), EventAction.CREATE)

    # =========================================================================
    # Lookup
    # =========================================================================

    async def _lookup(self, machine: Machine) -> Instance | None:
        # Known ambiguity: the filter is name + image + flavor, not the bound
        # providerID, so two machines sharing all three would match each
        # other's servers.
        spec = decode_provider_spec(machine.provider_spec)
        opts = InstanceListOpts(name=machine.name, image=spec.image, flavor=spec.flavor)
        try:
            instances = await self._compute.list_instances(opts)
        except Exception as e:
            raise InstanceLookupError(
                f"error listing instances for machine {machine.name}: {e}"
            ) from e
        return instances[0] if instances else None

    async def _lookup_or_fail(self, machine: Machine, action: EventAction) -> Instance | None:
        try:
            return await self._lookup(machine)
        except ConfigurationError as e:
            await self._fail(machine, e, action)

    # =========================================================================
    # Status write-back
    # =========================================================================

    async def _current(self, machine: Machine) -> Machine:
        """The latest stored copy; the driver may have edited the record meanwhile."""
        if self._store is None:
            return machine
        return await self._store.get(machine.namespace, machine.name)

    async def _write_back(self, machine: Machine, instance: Instance | None) -> Machine:
        """Bind providerID, annotate, and refresh addresses.

        Metadata is written on every call; the status subresource only when
        the computed address list differs from the stored one.
        """
        try:
            current = await self._current(machine)
        except Exception as e:
            raise StatusWriteError(f"unable to read machine {machine.name}: {e}") from e

        if instance is not None:
            provider_id = f"{self._config.provider_id_prefix}{instance.id}"
            if current.provider_id is not None and current.provider_id != provider_id:
                await self._fail(current, ConfigurationError(
                    f"providerID has changed from {current.provider_id} to {provider_id}. "
                    f"This is not supported. The recommended action is to delete and recreate this machine."
                ), EventAction.UPDATE)
            annotated = replace(current, provider_id=provider_id).with_annotations({
                MachineAnnotation.RESOURCE_ID: instance.id,
                MachineAnnotation.INSTANCE_STATE: instance.status,
            })
        else:
            annotated = current.with_annotations({
                MachineAnnotation.RESOURCE_ID: None,
                MachineAnnotation.INSTANCE_STATE: ERROR_STATE,
            })

        addresses = node_addresses(machine.name, instance, family=self._config.address_family)

        if self._store is None:
            return replace(annotated, status=replace(annotated.status, addresses=addresses))

        try:
            saved = await self._store.update(annotated)
            if addresses != saved.status.addresses:
                saved = await self._store.update_status(
                    replace(saved, status=replace(saved.status, addresses=addresses))
                )
        except Exception as e:
            raise StatusWriteError(f"unable to update machine {machine.name}: {e}") from e
        return saved

    # =========================================================================
    # Error reporting
    # =========================================================================

    async def _emit(self, machine: Machine, event: events.MachineEvent) -> None:
        try:
            await self._events.record(machine, event)
        except Exception as e:
            logger.bind(component="actuator", machine=machine.name).warning(
                "Failed to emit {reason} event: {err}", reason=event.reason, err=e,
            )

    async def _fail(
        self,
        machine: Machine,
        error: MachineError,
        action: EventAction | None,
    ) -> NoReturn:
        """Record ``error`` on the machine and raise it.

        Raises:
            StatusWriteError: Persisting the error trail failed; chained to
                the store failure and raised instead of ``error``.
            MachineError: ``error`` itself, otherwise.
        """
        log = logger.bind(component="actuator", machine=machine.name)

        if action is not None:
            await self._emit(machine, events.failed(action, error.reason))

        if self._store is not None:
            try:
                await self._persist_error(machine, error)
            except Exception as e:
                log.error("Unable to record error on machine {name}: {err}", name=machine.name, err=e)
                raise StatusWriteError(f"unable to update machine status: {e}") from e

        log.error("Machine error {name}: {msg}", name=machine.name, msg=error.message)
        raise error

    async def _persist_error(self, machine: Machine, error: MachineError) -> None:
        assert self._store is not None
        current = await self._store.get(machine.namespace, machine.name)
        marked = await self._store.update(
            current.with_annotations({MachineAnnotation.INSTANCE_STATE: ERROR_STATE})
        )
        await self._store.update_status(replace(
            marked,
            status=replace(marked.status, error_reason=error.reason, error_message=error.message),
        ))
