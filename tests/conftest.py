"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import grp
import hashlib
import os
import pwd
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from nodeagentctl.config import AppConfig, load_config
from nodeagentctl.errors import DownloadError
from nodeagentctl.host import HostVerifier
from nodeagentctl.lifecycle import LifecycleController
from nodeagentctl.logging import StructuredLogger
from nodeagentctl.providers.binary import BinaryInstaller
from nodeagentctl.providers.systemd import SystemdProvider
from nodeagentctl.templates import TemplateEngine

GITHUB_URL = "https://github.example/agent/releases"


def sha256_hex(data: bytes) -> str:
    """Return the hex SHA-256 of *data*."""
    return hashlib.sha256(data).hexdigest()


def current_owner() -> tuple[str, str]:
    """Return the user and group names of the test process."""
    return pwd.getpwuid(os.getuid()).pw_name, grp.getgrgid(os.getgid()).gr_name


def make_config(tmp_path: Path, overrides: Mapping[str, object] | None = None) -> AppConfig:
    """Build a config rooted in *tmp_path*, owned by the current user."""
    user, group = current_owner()
    merged: dict[str, object] = {
        "system_name": "k3s",
        "bin_dir": str(tmp_path / "bin"),
        "logs_dir": str(tmp_path / "logs"),
        "templates_dir": str(tmp_path / "templates"),
        "data_dir": str(tmp_path / "data"),
        "owner": user,
        "group": group,
        "arch": "x86_64",
        "release": {
            "github_url": GITHUB_URL,
            "storage_url": "https://storage.example",
            "channel_url": "https://update.example/v1-release/channels",
            "channel": "stable",
        },
        "systemd": {"unit_dir": str(tmp_path / "systemd")},
    }
    for key, value in (overrides or {}).items():
        existing = merged.get(key)
        if isinstance(existing, dict) and isinstance(value, Mapping):
            merged[key] = {**existing, **value}
        else:
            merged[key] = value
    return load_config(config_file=tmp_path / "missing.yml", env={}, overrides=merged)


@dataclass
class FakeTransport:
    """In-memory stand-in for the curl/wget transport."""

    files: dict[str, bytes] = field(default_factory=dict)
    redirects: dict[str, str] = field(default_factory=dict)
    downloads: list[str] = field(default_factory=list)
    tokens: list[str | None] = field(default_factory=list)
    tool: str = "curl"

    def download(self, destination: Path, url: str, *, bearer_token: str | None = None) -> None:
        self.downloads.append(url)
        self.tokens.append(bearer_token)
        if url not in self.files:
            raise DownloadError(f"Download failed: {url} (curl exit 22)")
        destination.write_bytes(self.files[url])

    def resolve_redirect(self, url: str) -> str:
        self.downloads.append(url)
        return self.redirects.get(url, url)


@dataclass
class Harness:
    """A lifecycle controller wired to fakes under a temporary directory."""

    config: AppConfig
    controller: LifecycleController
    transport: FakeTransport
    systemctl_calls: list[tuple[str, ...]]
    messages: list[str]

    def commands(self) -> list[str]:
        """Return the systemctl sub-commands issued so far."""
        return [call[1] for call in self.systemctl_calls]

    def binary_downloads(self) -> list[str]:
        """Return download URLs excluding manifests and channel lookups."""
        return [
            url
            for url in self.transport.downloads
            if "sha256sum" not in url and "/channels/" not in url
        ]


HarnessFactory = Callable[..., Harness]


@pytest.fixture
def fake_systemctl(tmp_path: Path) -> Path:
    """Create an executable stand-in for ``/bin/systemctl``."""
    path = tmp_path / "fake-systemctl"
    path.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    path.chmod(0o755)
    return path


@pytest.fixture
def make_harness(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    fake_systemctl: Path,
) -> HarnessFactory:
    """Return a factory building :class:`Harness` objects."""
    systemctl_calls: list[tuple[str, ...]] = []

    def fake_run_command(
        self: SystemdProvider,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        systemctl_calls.append(tuple(args))
        return subprocess.CompletedProcess(list(args), 0, stdout="", stderr="")

    monkeypatch.setattr(SystemdProvider, "_run_command", fake_run_command)

    def factory(
        overrides: Mapping[str, object] | None = None,
        *,
        transport: FakeTransport | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> Harness:
        config = make_config(tmp_path, overrides)
        templates = TemplateEngine.with_overrides(config.templates_dir)
        messages: list[str] = []
        fake_transport = transport or FakeTransport()
        controller = LifecycleController(
            config=config,
            logger=StructuredLogger(config.logs_dir),
            templates=templates,
            systemd=SystemdProvider(
                templates=templates,
                system_name=config.system_name,
                systemd_dir=config.systemd.unit_dir,
            ),
            host=HostVerifier(systemctl_bin="missing-systemctl", systemctl_path=fake_systemctl),
            installer=BinaryInstaller(
                bin_dir=config.bin_dir,
                name=config.system_name,
                owner=config.owner,
                group=config.group,
            ),
            transport=fake_transport,  # type: ignore[arg-type]
            environ=environ if environ is not None else {},
            notify=messages.append,
        )
        return Harness(
            config=config,
            controller=controller,
            transport=fake_transport,
            systemctl_calls=systemctl_calls,
            messages=messages,
        )

    return factory
