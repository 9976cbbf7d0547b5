"""Configuration loader for nodeagentctl.

Configuration values are merged from multiple sources, later sources winning:

1. Built-in defaults.
2. ``/etc/nodeagentctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``NODEAGENTCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export NODEAGENTCTL_RELEASE__CHANNEL=stable
    export NODEAGENTCTL_BIN_DIR_READ_ONLY=true

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load nodeagentctl configuration. Install with "
        "`pip install nodeagentctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "NODEAGENTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}
# Release identifiers are taken verbatim; YAML would read 1.10 as 1.1.
RAW_ENV_PATHS = {
    ("release", "channel"),
    ("release", "version"),
    ("release", "commit"),
    ("release", "pr"),
    ("release", "pr_artifact_url"),
    ("release", "github_token"),
}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ReleaseConfig:
    """Where releases live and which one to install."""

    github_url: str = "https://github.com/coroot/coroot-node-agent/releases"
    storage_url: str = "https://coroot-ci-builds.s3.amazonaws.com"
    channel_url: str = "https://github.com/coroot/coroot-node-agent/releases"
    channel: str = "latest"
    version: str | None = None
    commit: str | None = None
    pr: str | None = None
    pr_artifact_url: str | None = None
    github_token: str | None = None
    downloaders: tuple[str, ...] = ("curl", "wget")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation (the token is redacted)."""
        return {
            "github_url": self.github_url,
            "storage_url": self.storage_url,
            "channel_url": self.channel_url,
            "channel": self.channel,
            "version": self.version,
            "commit": self.commit,
            "pr": self.pr,
            "pr_artifact_url": self.pr_artifact_url,
            "github_token": "***" if self.github_token else None,
            "downloaders": list(self.downloaders),
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    unit_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"unit_dir": str(self.unit_dir), "systemctl_bin": self.systemctl_bin}


@dataclass(frozen=True)
class EnvironmentConfig:
    """Name prefixes copied from the operator environment into the env file."""

    prefixes: tuple[str, ...] = ("K3S_", "CONTAINERD_")
    ignore_case_prefixes: tuple[str, ...] = ("NO_PROXY", "HTTP_PROXY", "HTTPS_PROXY")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "prefixes": list(self.prefixes),
            "ignore_case_prefixes": list(self.ignore_case_prefixes),
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for nodeagentctl."""

    config_file: Path
    system_name: str
    artifact_name: str
    description: str
    documentation: str
    bin_dir: Path
    bin_dir_read_only: bool
    data_dir: Path
    logs_dir: Path
    templates_dir: Path
    owner: str
    group: str
    arch: str | None
    release: ReleaseConfig
    systemd: SystemdConfig
    environment: EnvironmentConfig

    @property
    def binary_path(self) -> Path:
        """Return the installed binary location."""
        return self.bin_dir / self.system_name

    @property
    def unit_name(self) -> str:
        """Return the systemd unit name."""
        return f"{self.system_name}.service"

    @property
    def unit_path(self) -> Path:
        """Return the service definition location."""
        return self.systemd.unit_dir / self.unit_name

    @property
    def env_file(self) -> Path:
        """Return the environment file consumed by the unit."""
        return self.systemd.unit_dir / f"{self.unit_name}.env"

    @property
    def uninstall_path(self) -> Path:
        """Return the location of the generated uninstall script."""
        return self.bin_dir / f"{self.system_name}-uninstall.sh"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "system_name": self.system_name,
            "artifact_name": self.artifact_name,
            "description": self.description,
            "documentation": self.documentation,
            "bin_dir": str(self.bin_dir),
            "bin_dir_read_only": self.bin_dir_read_only,
            "data_dir": str(self.data_dir),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "owner": self.owner,
            "group": self.group,
            "arch": self.arch,
            "release": self.release.to_dict(),
            "systemd": self.systemd.to_dict(),
            "environment": self.environment.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/nodeagentctl/config.yml",
    "system_name": "coroot-node-agent",
    "artifact_name": None,  # derived from system_name when absent
    "description": "Coroot node agent",
    "documentation": "https://coroot.com",
    "bin_dir": "/usr/bin",
    "bin_dir_read_only": False,
    "data_dir": None,  # derived from system_name when absent
    "logs_dir": "/var/log/nodeagentctl",
    "templates_dir": "/etc/nodeagentctl/templates",
    "owner": "root",
    "group": "root",
    "arch": None,
    "release": {
        "github_url": "https://github.com/coroot/coroot-node-agent/releases",
        "storage_url": "https://coroot-ci-builds.s3.amazonaws.com",
        "channel_url": "https://github.com/coroot/coroot-node-agent/releases",
        "channel": "latest",
        "version": None,
        "commit": None,
        "pr": None,
        "pr_artifact_url": None,
        "github_token": None,
        "downloaders": ["curl", "wget"],
    },
    "systemd": {
        "unit_dir": "/etc/systemd/system",
        "systemctl_bin": "systemctl",
    },
    "environment": {
        "prefixes": ["K3S_", "CONTAINERD_"],
        "ignore_case_prefixes": ["NO_PROXY", "HTTP_PROXY", "HTTPS_PROXY"],
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_RELEASE_KEYS = set(cast(Mapping[str, object], DEFAULTS["release"]).keys())
ALLOWED_SYSTEMD_KEYS = {"unit_dir", "systemctl_bin"}
ALLOWED_ENVIRONMENT_KEYS = {"prefixes", "ignore_case_prefixes"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in (
        ("release", ALLOWED_RELEASE_KEYS),
        ("systemd", ALLOWED_SYSTEMD_KEYS),
        ("environment", ALLOWED_ENVIRONMENT_KEYS),
    ):
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    system_name = raw.get("system_name")
    if not isinstance(system_name, str) or not system_name.strip():
        raise ConfigError("system_name must be a non-empty string.")
    if "/" in system_name:
        raise ConfigError(f"system_name must not contain '/': {system_name!r}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    system_name = str(raw["system_name"]).strip()
    artifact_value = _optional_str(raw.get("artifact_name"), "artifact_name")
    data_dir_value = raw.get("data_dir")
    data_dir = _to_path(data_dir_value) if data_dir_value else Path("/var/lib") / system_name

    release_mapping = _as_dict(raw.get("release"), "release")
    defaults = ReleaseConfig()
    downloaders = _as_str_tuple(
        release_mapping.get("downloaders", list(defaults.downloaders)),
        "release.downloaders",
    )
    if not downloaders:
        raise ConfigError("release.downloaders must list at least one executable.")
    release = ReleaseConfig(
        github_url=_expect_str(
            release_mapping.get("github_url", defaults.github_url), "release.github_url"
        ).rstrip("/"),
        storage_url=_expect_str(
            release_mapping.get("storage_url", defaults.storage_url), "release.storage_url"
        ).rstrip("/"),
        channel_url=_expect_str(
            release_mapping.get("channel_url", defaults.channel_url), "release.channel_url"
        ).rstrip("/"),
        channel=_expect_str(release_mapping.get("channel", defaults.channel), "release.channel"),
        version=_optional_str(release_mapping.get("version"), "release.version"),
        commit=_optional_str(release_mapping.get("commit"), "release.commit"),
        pr=_optional_str(release_mapping.get("pr"), "release.pr"),
        pr_artifact_url=_optional_str(
            release_mapping.get("pr_artifact_url"), "release.pr_artifact_url"
        ),
        github_token=_optional_str(release_mapping.get("github_token"), "release.github_token"),
        downloaders=downloaders,
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        unit_dir=_to_path(systemd_mapping.get("unit_dir", "/etc/systemd/system")),
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
    )

    environment_mapping = _as_dict(raw.get("environment"), "environment")
    env_defaults = EnvironmentConfig()
    environment = EnvironmentConfig(
        prefixes=_as_str_tuple(
            environment_mapping.get("prefixes", list(env_defaults.prefixes)),
            "environment.prefixes",
        ),
        ignore_case_prefixes=_as_str_tuple(
            environment_mapping.get(
                "ignore_case_prefixes", list(env_defaults.ignore_case_prefixes)
            ),
            "environment.ignore_case_prefixes",
        ),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        system_name=system_name,
        artifact_name=artifact_value or system_name,
        description=str(raw.get("description", "Coroot node agent")),
        documentation=str(raw.get("documentation", "https://coroot.com")),
        bin_dir=_to_path(raw.get("bin_dir")),
        bin_dir_read_only=_expect_bool(raw.get("bin_dir_read_only"), "bin_dir_read_only"),
        data_dir=data_dir,
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        owner=str(raw.get("owner", "root")),
        group=str(raw.get("group", "root")),
        arch=_optional_str(raw.get("arch"), "arch"),
        release=release,
        systemd=systemd,
        environment=environment,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        if tuple(path_segments) in RAW_ENV_PATHS:
            coerced: object = value.strip()
        else:
            coerced = _coerce_value(value)
        _assign_nested(overrides, path_segments, coerced)
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_str_tuple(value: object, label: str) -> tuple[str, ...]:
    if isinstance(value, str):
        # Environment overrides arrive as comma separated strings.
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    items: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"Entries of {label} must be non-empty strings. Got {item!r}.")
        items.append(item.strip())
    return tuple(items)


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_bool(value: object | None, label: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _optional_str(value: object | None, label: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    raise ConfigError(
        f"Expected {label} to be a string. Got {type(value).__name__} {value!r}; quote it in YAML."
    )


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "EnvironmentConfig",
    "ReleaseConfig",
    "SystemdConfig",
    "load_config",
]
