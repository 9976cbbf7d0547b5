"""Error taxonomy shared by every install step.

Each error carries the exit code the CLI terminates with. There is no local
recovery for any of them: the lifecycle controller stops at the first one.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class InstallerError(RuntimeError):
    """Base class for fatal installer failures."""

    exit_code: ExitCode = ExitCode.PROVIDER


class UnsupportedPlatformError(InstallerError):
    """Raised when the host lacks systemd or runs an unsupported architecture."""

    exit_code = ExitCode.ENVIRONMENT


class UnresolvedReleaseError(InstallerError):
    """Raised when a release reference cannot be turned into download URLs."""

    exit_code = ExitCode.RELEASE


class DownloadError(InstallerError):
    """Raised when the transport is missing or a download exits non-zero."""

    exit_code = ExitCode.DOWNLOAD


class HashMismatchError(InstallerError):
    """Raised when a manifest has no entry or the digest does not match."""

    exit_code = ExitCode.INTEGRITY


class FilesystemError(InstallerError):
    """Raised when writing, moving or chowning an installed artifact fails."""

    exit_code = ExitCode.FILESYSTEM


__all__ = [
    "DownloadError",
    "FilesystemError",
    "HashMismatchError",
    "InstallerError",
    "UnresolvedReleaseError",
    "UnsupportedPlatformError",
]
