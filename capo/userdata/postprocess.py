"""User data postprocessors.

A small closed registry of named transforms applied to rendered user data.
The only transform is ``ct``: Container Linux Config (YAML) transpiled to an
Ignition 2.2.0 config (JSON) for the ``openstack-metadata`` platform.

Unknown names fail closed.
"""

from __future__ import annotations

import json
import posixpath
import re
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any, Final, TypeAlias
from urllib.parse import quote

import yaml

IGNITION_VERSION: Final = "2.2.0"
PLATFORM: Final = "openstack-metadata"

# Dynamic data placeholders and the coreos-metadata variables they map to.
_OPENSTACK_METADATA: Final = MappingProxyType({
    "HOSTNAME": "COREOS_OPENSTACK_HOSTNAME",
    "PRIVATE_IPV4": "COREOS_OPENSTACK_IPV4_LOCAL",
    "PUBLIC_IPV4": "COREOS_OPENSTACK_IPV4_PUBLIC",
})
_DYNAMIC = re.compile(r"\{(" + "|".join(_OPENSTACK_METADATA) + r")\}")
_METADATA_DROPIN_NAME: Final = "20-clct-metadata.conf"
_METADATA_DROPIN: Final = (
    "[Unit]\n"
    "Requires=coreos-metadata.service\n"
    "After=coreos-metadata.service\n\n"
    "[Service]\n"
    "EnvironmentFile=/run/metadata/coreos\n"
)

Postprocessor: TypeAlias = Callable[[str], str]


class PostprocessError(Exception):
    """Raised when a postprocessor rejects its input."""


class UnknownPostprocessorError(PostprocessError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Postprocessor error: unknown postprocessor: '{name}'")


# =============================================================================
# Container Linux Config -> Ignition
# =============================================================================


class _Report:
    """Collects transpile problems; any entry fails the transform."""

    def __init__(self) -> None:
        self.entries: list[str] = []

    def error(self, path: str, message: str) -> None:
        self.entries.append(f"{path}: {message}")

    def raise_if_any(self) -> None:
        if self.entries:
            raise PostprocessError(f"Postprocessor error: {'; '.join(self.entries)}")


def _data_url(text: str) -> str:
    return "data:," + quote(text, safe="")


def _substitute_dynamic(text: str) -> tuple[str, bool]:
    replaced, count = _DYNAMIC.subn(lambda m: "${" + _OPENSTACK_METADATA[m.group(1)] + "}", text)
    return replaced, count > 0


def _check_keys(node: Mapping[str, Any], allowed: set[str], path: str, report: _Report) -> None:
    for key in sorted(set(node) - allowed):
        report.error(f"{path}.{key}", "unknown field")


def _list_of_maps(node: Any, path: str, report: _Report) -> list[Mapping[str, Any]]:
    if node is None:
        return []
    if not isinstance(node, list) or not all(isinstance(n, Mapping) for n in node):
        report.error(path, "expected a list of objects")
        return []
    return node


def _absolute_path(node: Mapping[str, Any], path: str, report: _Report) -> str:
    target = node.get("path")
    if not isinstance(target, str) or not posixpath.isabs(target):
        report.error(f"{path}.path", "must be an absolute path")
        return ""
    return target


def _owner(node: Any, path: str, report: _Report) -> dict[str, Any] | None:
    if node is None:
        return None
    if not isinstance(node, Mapping):
        report.error(path, "expected an object")
        return None
    _check_keys(node, {"id", "name"}, path, report)
    return {k: node[k] for k in ("id", "name") if k in node}


def _node_common(node: Mapping[str, Any], path: str, report: _Report) -> dict[str, Any]:
    out: dict[str, Any] = {
        "filesystem": node.get("filesystem", "root"),
        "path": _absolute_path(node, path, report),
    }
    for key in ("user", "group"):
        if (owner := _owner(node.get(key), f"{path}.{key}", report)) is not None:
            out[key] = owner
    if "overwrite" in node:
        out["overwrite"] = bool(node["overwrite"])
    return out


def _file(node: Mapping[str, Any], path: str, report: _Report) -> dict[str, Any]:
    _check_keys(node, {"path", "filesystem", "mode", "contents", "user", "group", "overwrite", "append"}, path, report)
    out = _node_common(node, path, report)

    contents = node.get("contents") or {}
    if not isinstance(contents, Mapping):
        report.error(f"{path}.contents", "expected an object")
        contents = {}
    _check_keys(contents, {"inline", "remote", "local"}, f"{path}.contents", report)

    if "local" in contents:
        report.error(f"{path}.contents.local", "local files are not supported")
    if "inline" in contents and "remote" in contents:
        report.error(f"{path}.contents", "inline and remote are mutually exclusive")

    source = ""
    verification: dict[str, Any] = {}
    if "inline" in contents:
        source = _data_url(str(contents["inline"]))
    elif "remote" in contents:
        remote = contents["remote"]
        if not isinstance(remote, Mapping) or not isinstance(remote.get("url"), str):
            report.error(f"{path}.contents.remote.url", "url is required")
        else:
            source = remote["url"]
            hash_ = (remote.get("verification") or {}).get("hash")
            if isinstance(hash_, Mapping):
                verification = {"hash": f"{hash_.get('function', 'sha512')}-{hash_.get('sum', '')}"}

    out["contents"] = {"source": source, "verification": verification}
    if "mode" in node:
        mode = node["mode"]
        if isinstance(mode, bool) or not isinstance(mode, int) or not 0 <= mode <= 0o7777:
            report.error(f"{path}.mode", "invalid file mode")
        else:
            out["mode"] = mode
    if node.get("append"):
        out["append"] = True
    return out


def _directory(node: Mapping[str, Any], path: str, report: _Report) -> dict[str, Any]:
    _check_keys(node, {"path", "filesystem", "mode", "user", "group", "overwrite"}, path, report)
    out = _node_common(node, path, report)
    if "mode" in node:
        out["mode"] = node["mode"]
    return out


def _link(node: Mapping[str, Any], path: str, report: _Report) -> dict[str, Any]:
    _check_keys(node, {"path", "filesystem", "target", "hard", "user", "group", "overwrite"}, path, report)
    out = _node_common(node, path, report)
    if not isinstance(node.get("target"), str):
        report.error(f"{path}.target", "target is required")
    else:
        out["target"] = node["target"]
    out["hard"] = bool(node.get("hard", False))
    return out


def _unit(
    node: Mapping[str, Any],
    path: str,
    report: _Report,
    *,
    systemd: bool,
) -> dict[str, Any]:
    allowed = {"name", "contents"}
    if systemd:
        allowed |= {"enable", "enabled", "mask", "dropins"}
    _check_keys(node, allowed, path, report)

    name = node.get("name")
    if not isinstance(name, str) or not name:
        report.error(f"{path}.name", "unit name is required")
        name = ""
    out: dict[str, Any] = {"name": name}

    needs_metadata = False
    if "contents" in node:
        out["contents"], needs_metadata = _substitute_dynamic(str(node["contents"]))

    if not systemd:
        return out

    if "enable" in node or "enabled" in node:
        out["enabled"] = bool(node.get("enabled", node.get("enable")))
    if "mask" in node:
        out["mask"] = bool(node["mask"])

    dropins: list[dict[str, str]] = []
    for i, dropin in enumerate(_list_of_maps(node.get("dropins"), f"{path}.dropins", report)):
        dpath = f"{path}.dropins[{i}]"
        _check_keys(dropin, {"name", "contents"}, dpath, report)
        if not isinstance(dropin.get("name"), str):
            report.error(f"{dpath}.name", "dropin name is required")
            continue
        contents, dynamic = _substitute_dynamic(str(dropin.get("contents", "")))
        needs_metadata = needs_metadata or dynamic
        dropins.append({"name": dropin["name"], "contents": contents})
    if needs_metadata:
        dropins.append({"name": _METADATA_DROPIN_NAME, "contents": _METADATA_DROPIN})
    if dropins:
        out["dropins"] = dropins
    return out


_USER_FIELDS: Final = MappingProxyType({
    "name": "name",
    "password_hash": "passwordHash",
    "ssh_authorized_keys": "sshAuthorizedKeys",
    "uid": "uid",
    "gecos": "gecos",
    "home_dir": "homeDir",
    "no_create_home": "noCreateHome",
    "primary_group": "primaryGroup",
    "groups": "groups",
    "no_user_group": "noUserGroup",
    "no_log_init": "noLogInit",
    "shell": "shell",
    "system": "system",
})


def _user(node: Mapping[str, Any], path: str, report: _Report) -> dict[str, Any]:
    _check_keys(node, set(_USER_FIELDS), path, report)
    if not isinstance(node.get("name"), str):
        report.error(f"{path}.name", "user name is required")
    return {_USER_FIELDS[k]: v for k, v in node.items() if k in _USER_FIELDS}


def transpile_container_linux(user_data: str) -> str:
    """Transpile a Container Linux Config into Ignition JSON.

    Raises:
        PostprocessError: If the YAML cannot be parsed or any field is
            invalid; all problems are reported together.
    """
    try:
        config = yaml.safe_load(user_data)
    except yaml.YAMLError as e:
        raise PostprocessError(f"Postprocessor error: {e}") from e

    if config is None:
        config = {}
    if not isinstance(config, Mapping):
        raise PostprocessError("Postprocessor error: config must be a YAML mapping")

    report = _Report()
    _check_keys(config, {"storage", "systemd", "networkd", "passwd"}, "config", report)

    ignition: dict[str, Any] = {
        "ignition": {"config": {}, "security": {"tls": {}}, "timeouts": {}, "version": IGNITION_VERSION},
        "networkd": {},
        "passwd": {},
        "storage": {},
        "systemd": {},
    }

    storage = config.get("storage") or {}
    if isinstance(storage, Mapping):
        _check_keys(storage, {"files", "directories", "links"}, "storage", report)
        for section, convert in (("files", _file), ("directories", _directory), ("links", _link)):
            nodes = _list_of_maps(storage.get(section), f"storage.{section}", report)
            if nodes:
                ignition["storage"][section] = [
                    convert(n, f"storage.{section}[{i}]", report) for i, n in enumerate(nodes)
                ]
    else:
        report.error("storage", "expected an object")

    for section, systemd in (("systemd", True), ("networkd", False)):
        block = config.get(section) or {}
        if not isinstance(block, Mapping):
            report.error(section, "expected an object")
            continue
        _check_keys(block, {"units"}, section, report)
        units = _list_of_maps(block.get("units"), f"{section}.units", report)
        if units:
            ignition[section]["units"] = [
                _unit(u, f"{section}.units[{i}]", report, systemd=systemd)
                for i, u in enumerate(units)
            ]

    passwd = config.get("passwd") or {}
    if isinstance(passwd, Mapping):
        _check_keys(passwd, {"users"}, "passwd", report)
        users = _list_of_maps(passwd.get("users"), "passwd.users", report)
        if users:
            ignition["passwd"]["users"] = [
                _user(u, f"passwd.users[{i}]", report) for i, u in enumerate(users)
            ]
    else:
        report.error("passwd", "expected an object")

    report.raise_if_any()
    return json.dumps(ignition, separators=(",", ":"), sort_keys=True)


# =============================================================================
# Registry
# =============================================================================

POSTPROCESSORS: Final[Mapping[str, Postprocessor]] = MappingProxyType({
    "ct": transpile_container_linux,
})


def postprocess(name: str, user_data: str) -> str:
    """Apply the postprocessor registered under ``name``.

    Raises:
        UnknownPostprocessorError: If no transform is registered under ``name``.
        PostprocessError: If the transform rejects the user data.
    """
    transform = POSTPROCESSORS.get(name)
    if transform is None:
        raise UnknownPostprocessorError(name)
    return transform(user_data)
