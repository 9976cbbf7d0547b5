"""Tests for host platform checks."""
from __future__ import annotations

from pathlib import Path

import pytest

from nodeagentctl.errors import UnsupportedPlatformError
from nodeagentctl.exit_codes import ExitCode
from nodeagentctl.host import ArchSpec, HostVerifier


def test_verify_system_accepts_executable_systemctl(fake_systemctl: Path) -> None:
    """An executable systemctl at the expected path is enough."""
    HostVerifier(systemctl_bin="missing-systemctl", systemctl_path=fake_systemctl).verify_system()


def test_verify_system_falls_back_to_path_lookup(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A systemctl found on PATH is accepted when the fixed path is absent."""
    monkeypatch.setattr("nodeagentctl.host.shutil.which", lambda name: f"/usr/bin/{name}")

    HostVerifier(systemctl_path=tmp_path / "absent").verify_system()


def test_verify_system_fails_without_systemd(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Hosts without systemctl are rejected."""
    monkeypatch.setattr("nodeagentctl.host.shutil.which", lambda name: None)

    with pytest.raises(UnsupportedPlatformError, match="Cannot find systemd") as excinfo:
        HostVerifier(systemctl_path=tmp_path / "absent").verify_system()
    assert excinfo.value.exit_code == ExitCode.ENVIRONMENT


@pytest.mark.parametrize("arch", ["amd64", "x86_64", "X86_64"])
def test_verify_arch_maps_amd64(arch: str) -> None:
    """Both amd64 spellings map to the unsuffixed artifact."""
    assert HostVerifier().verify_arch(arch) == ArchSpec("amd64", "")


@pytest.mark.parametrize("arch", ["aarch64", "arm64", "s390x", "i386"])
def test_verify_arch_rejects_other_architectures(arch: str) -> None:
    """Architectures without a published artifact are rejected."""
    with pytest.raises(UnsupportedPlatformError, match=f"Unsupported architecture {arch}"):
        HostVerifier().verify_arch(arch)


def test_verify_arch_defaults_to_machine(monkeypatch: pytest.MonkeyPatch) -> None:
    """Without an override the running machine is inspected."""
    monkeypatch.setattr("nodeagentctl.host.platform.machine", lambda: "x86_64")

    assert HostVerifier().verify_arch().name == "amd64"
