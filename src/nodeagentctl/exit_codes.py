"""Process exit codes returned by ``nodeagentctl``."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """One exit code per installer error family."""

    OK = 0
    VALIDATION = 2  # bad configuration or CLI input
    ENVIRONMENT = 3  # no systemd or unsupported architecture
    PROVIDER = 4  # systemctl failures
    RELEASE = 5
    DOWNLOAD = 6
    INTEGRITY = 7
    FILESYSTEM = 8
    INTERRUPTED = 130
