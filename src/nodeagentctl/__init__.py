"""Installer and upgrader for the node agent systemd service."""
from __future__ import annotations

__all__ = ["__version__"]

# Kept in step with ``project.version`` in pyproject.toml.
__version__ = "0.1.0"
