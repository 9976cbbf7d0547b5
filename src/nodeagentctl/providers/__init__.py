"""Provider interfaces for nodeagentctl."""
from __future__ import annotations

from .binary import BinaryInstaller, StagingArea, extract_member, staging_area
from .release import ArtifactLocator, ReleaseReference, ReleaseResolver
from .systemd import SystemdError, SystemdProvider
from .transport import Transport

__all__ = [
    "ArtifactLocator",
    "BinaryInstaller",
    "ReleaseReference",
    "ReleaseResolver",
    "StagingArea",
    "SystemdError",
    "SystemdProvider",
    "Transport",
    "extract_member",
    "staging_area",
]
