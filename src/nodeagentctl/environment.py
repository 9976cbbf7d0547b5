"""Capture operator environment variables into the service env file."""
from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from .config import EnvironmentConfig
from .errors import FilesystemError

LOGGER = logging.getLogger(__name__)

ENV_FILE_MODE = 0o600


@dataclass(frozen=True, slots=True)
class PrefixRule:
    """Keep variables whose name starts with ``prefix``."""

    prefix: str
    ignore_case: bool = False

    def matches(self, name: str) -> bool:
        """Return True when *name* is selected by this rule."""
        if self.ignore_case:
            return name.upper().startswith(self.prefix.upper())
        return name.startswith(self.prefix)


def rules_from_config(config: EnvironmentConfig) -> tuple[PrefixRule, ...]:
    """Build the rule table from configuration."""
    rules = [PrefixRule(prefix) for prefix in config.prefixes]
    rules.extend(PrefixRule(prefix, ignore_case=True) for prefix in config.ignore_case_prefixes)
    return tuple(rules)


def filter_environment(
    items: Iterable[tuple[str, str]],
    rules: Sequence[PrefixRule],
) -> list[tuple[str, str]]:
    """Return the entries of *items* selected by *rules*, in encounter order."""
    selected: list[tuple[str, str]] = []
    seen: set[str] = set()
    for name, value in items:
        if name in seen:
            continue
        if not any(rule.matches(name) for rule in rules):
            continue
        if "\n" in value:
            LOGGER.warning("Skipping %s: multi-line values cannot be written to an env file", name)
            continue
        seen.add(name)
        selected.append((name, value))
    return selected


def write_environment_file(path: Path, entries: Sequence[tuple[str, str]]) -> None:
    """Rewrite *path* with ``NAME=value`` lines, owner read/write only.

    The mode is tightened before any content is written so the file is never
    readable by other users, including when it already existed.
    """
    text = "".join(f"{name}={value}\n" for name, value in entries)
    try:
        # Undecodable bytes arrive from os.environ as surrogate escapes.
        content = text.encode("utf-8", "surrogateescape")
    except UnicodeEncodeError as exc:
        raise FilesystemError(f"Unable to encode environment file {path}: {exc}") from exc
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            path.chmod(ENV_FILE_MODE)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, ENV_FILE_MODE)
        with os.fdopen(fd, "wb") as handle:
            os.fchmod(handle.fileno(), ENV_FILE_MODE)
            handle.write(content)
    except OSError as exc:
        raise FilesystemError(f"Unable to write environment file {path}: {exc}") from exc


def provision_environment(
    path: Path,
    config: EnvironmentConfig,
    *,
    env: Mapping[str, str] | None = None,
) -> list[tuple[str, str]]:
    """Filter *env* (default: ``os.environ``) into *path* and return what was kept."""
    source = os.environ if env is None else env
    entries = filter_environment(source.items(), rules_from_config(config))
    write_environment_file(path, entries)
    return entries


__all__ = [
    "ENV_FILE_MODE",
    "PrefixRule",
    "filter_environment",
    "provision_environment",
    "rules_from_config",
    "write_environment_file",
]
