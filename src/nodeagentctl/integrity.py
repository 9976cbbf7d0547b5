"""Content digests used for integrity checks and change detection.

Two things are built on SHA-256 here. The manifest gate compares a downloaded
binary against the digest published next to it. The restart gate compares an
:class:`InstalledState` captured before mutating the host against one captured
afterwards; the service is restarted only when they differ.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path

from .errors import FilesystemError, HashMismatchError


@dataclass(frozen=True, slots=True)
class Digest:
    """Hexadecimal SHA-256 digest compared as exact text."""

    value: str

    @classmethod
    def parse(cls, text: str) -> Digest:
        """Parse ``<hex>[<whitespace><filename>]`` keeping only the digest."""
        fields = text.split()
        if not fields:
            raise HashMismatchError("Empty digest entry.")
        return cls(fields[0])

    def __str__(self) -> str:
        return self.value


def compute_digest(path: Path) -> Digest:
    """Return the SHA-256 digest of *path*."""
    digest = hashlib.sha256()
    try:
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(1024 * 1024), b""):
                digest.update(chunk)
    except OSError as exc:
        raise FilesystemError(f"Unable to read {path}: {exc}") from exc
    return Digest(digest.hexdigest())


def expected_digest_from_manifest(manifest: str, filename: str) -> Digest:
    """Return the digest listed for *filename* in a ``sha256sum`` style manifest."""
    for line in manifest.splitlines():
        fields = line.split()
        if len(fields) < 2:
            continue
        if fields[-1] == filename:
            return Digest.parse(fields[0])
    raise HashMismatchError(f"No hash entry for {filename} found in manifest")


def verify_digest(path: Path, expected: Digest) -> Digest:
    """Require *path* to hash to *expected*; return the computed digest."""
    actual = compute_digest(path)
    if actual != expected:
        raise HashMismatchError(f"Download sha256 does not match {expected}, got {actual}")
    return actual


def _optional_digest(path: Path) -> Digest | None:
    if not path.is_file():
        return None
    return compute_digest(path)


@dataclass(frozen=True, slots=True)
class InstalledState:
    """Digests of the binary, service definition and environment file."""

    binary: Digest | None
    service_definition: Digest | None
    environment_file: Digest | None

    @classmethod
    def capture(cls, binary: Path, service_definition: Path, environment_file: Path) -> InstalledState:
        """Hash the three installed artifacts as they exist right now."""
        return cls(
            binary=_optional_digest(binary),
            service_definition=_optional_digest(service_definition),
            environment_file=_optional_digest(environment_file),
        )

    def to_dict(self) -> dict[str, str | None]:
        """Return a serialisable representation."""
        return {
            "binary": str(self.binary) if self.binary else None,
            "service_definition": (
                str(self.service_definition) if self.service_definition else None
            ),
            "environment_file": str(self.environment_file) if self.environment_file else None,
        }


__all__ = [
    "Digest",
    "InstalledState",
    "compute_digest",
    "expected_digest_from_manifest",
    "verify_digest",
]
