"""Actuator configuration.

Loads ~/.capo/defaults.toml (global) and capo.toml (project), merges them,
and builds an immutable ActuatorConfig from the ``[actuator]`` table. The
instance-create timeout environment override is applied once, here, and
never re-read by the actuator.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, TypeAlias

from loguru import logger

from capo.constants import (
    CREATE_TIMEOUT_ENV,
    DEFAULT_CREATE_TIMEOUT_MINUTES,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TOKEN_TTL_MINUTES,
    PROVIDER_ID_PREFIX,
    TOKEN_NAMESPACE,
)

log = logger.bind(component="config")

RawConfig: TypeAlias = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".capo" / "defaults.toml"
PROJECT_CONFIG_NAME = "capo.toml"


@dataclass(frozen=True, slots=True)
class ActuatorConfig:
    """Explicit actuator settings.

    Args:
        create_timeout: Seconds to wait for a new instance to become active.
        poll_interval: Seconds between instance status polls.
        token_ttl: Lifetime of minted bootstrap tokens.
        address_family: IP version kept when computing node addresses.
        token_namespace: Namespace bootstrap token secrets are created in.
        provider_id_prefix: Prefix joined with the instance ID to form providerID.
    """

    create_timeout: float = DEFAULT_CREATE_TIMEOUT_MINUTES * 60.0
    poll_interval: float = DEFAULT_POLL_INTERVAL
    token_ttl: timedelta = field(default=timedelta(minutes=DEFAULT_TOKEN_TTL_MINUTES))
    address_family: int = 4
    token_namespace: str = TOKEN_NAMESPACE
    provider_id_prefix: str = PROVIDER_ID_PREFIX

    def with_env(self, environ: Mapping[str, str] | None = None) -> ActuatorConfig:
        """Apply the create-timeout override (whole minutes).

        Malformed or non-positive values are ignored.
        """
        env = os.environ if environ is None else environ
        raw = env.get(CREATE_TIMEOUT_ENV, "").strip()
        if not raw:
            return self
        try:
            minutes = int(raw)
        except ValueError:
            log.warning(
                "Ignoring malformed {var}={raw!r}, using {default:g}s",
                var=CREATE_TIMEOUT_ENV, raw=raw, default=self.create_timeout,
            )
            return self
        if minutes <= 0:
            log.warning("Ignoring non-positive {var}={raw}", var=CREATE_TIMEOUT_ENV, raw=raw)
            return self
        return replace(self, create_timeout=minutes * 60.0)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ActuatorConfig:
        return cls().with_env(environ)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def _build_actuator_config(raw: RawConfig) -> ActuatorConfig:
    raw = dict(raw)
    known = {f.name for f in fields(ActuatorConfig)}
    unknown = sorted(set(raw) - known - {"token_ttl_minutes", "create_timeout_minutes"})
    if unknown:
        raise ValueError(
            f"Unknown [actuator] key(s): {', '.join(unknown)}. Valid: {', '.join(sorted(known))}"
        )

    if "create_timeout_minutes" in raw:
        raw["create_timeout"] = float(raw.pop("create_timeout_minutes")) * 60.0
    if "token_ttl_minutes" in raw:
        raw["token_ttl"] = timedelta(minutes=raw.pop("token_ttl_minutes"))
    elif "token_ttl" in raw and not isinstance(raw["token_ttl"], timedelta):
        raw["token_ttl"] = timedelta(seconds=raw["token_ttl"])

    return ActuatorConfig(**raw)


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ActuatorConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)

    merged = _deep_merge(global_cfg, project_cfg)
    config = _build_actuator_config(merged.get("actuator", {}))
    return config.with_env(environ)
