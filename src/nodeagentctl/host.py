"""Host checks performed before anything is downloaded."""
from __future__ import annotations

import os
import platform
import shutil
from dataclasses import dataclass
from pathlib import Path

from .errors import UnsupportedPlatformError


@dataclass(frozen=True, slots=True)
class ArchSpec:
    """Canonical architecture name plus the artifact filename suffix."""

    name: str
    suffix: str


# Release artifacts are published for amd64 only. Another architecture needs
# a row here, e.g. "aarch64": ArchSpec("arm64", "-arm64").
SUPPORTED_ARCHITECTURES: dict[str, ArchSpec] = {
    "amd64": ArchSpec("amd64", ""),
    "x86_64": ArchSpec("amd64", ""),
}


@dataclass(slots=True)
class HostVerifier:
    """Confirm the host runs systemd on a supported processor architecture."""

    systemctl_bin: str = "systemctl"
    systemctl_path: Path = Path("/bin/systemctl")

    def verify_system(self) -> None:
        """Fail unless a usable ``systemctl`` is present."""
        if os.access(self.systemctl_path, os.X_OK):
            return
        if shutil.which(self.systemctl_bin) is not None:
            return
        raise UnsupportedPlatformError("Cannot find systemd")

    def verify_arch(self, arch: str | None = None) -> ArchSpec:
        """Return the :class:`ArchSpec` for *arch* (default: this machine)."""
        reported = (arch or platform.machine()).strip()
        spec = SUPPORTED_ARCHITECTURES.get(reported.lower())
        if spec is None:
            raise UnsupportedPlatformError(f"Unsupported architecture {reported}")
        return spec


__all__ = ["ArchSpec", "HostVerifier", "SUPPORTED_ARCHITECTURES"]
