"""Bounded polling for instance readiness."""

from __future__ import annotations

from loguru import logger
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from capo.api.model import Instance
from capo.api.ports import ComputeService
from capo.constants import InstanceState

log = logger.bind(component="wait")


class _InstancePendingError(Exception):
    """Instance not yet active - retry."""


async def wait_for_active(
    compute: ComputeService,
    instance_id: str,
    *,
    timeout: float,
    interval: float,
) -> Instance:
    """Poll an instance until it reports ACTIVE.

    Polls immediately, then every ``interval`` seconds. The last poll starts
    no later than ``timeout`` seconds after the first one, so the call
    returns within roughly ``timeout + interval``. Errors from the compute
    API count as "not ready yet".

    Raises:
        TimeoutError: If the instance is not active when the deadline passes.
    """

    @retry(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_exception_type(_InstancePendingError),
    )
    async def check() -> Instance:
        try:
            instance = await compute.get_instance(instance_id)
        except Exception as e:
            log.debug("Polling {id} failed: {err}", id=instance_id, err=e)
            raise _InstancePendingError() from e

        log.debug("Instance {id} is {status}", id=instance_id, status=instance.status)
        if instance.status != InstanceState.ACTIVE:
            raise _InstancePendingError()
        return instance

    try:
        return await check()
    except RetryError as e:
        raise TimeoutError(
            f"instance {instance_id} did not become {InstanceState.ACTIVE} within {timeout:g}s"
        ) from e
