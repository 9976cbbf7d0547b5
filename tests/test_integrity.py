"""Tests for digests, manifest lookup and installed-state snapshots."""
from __future__ import annotations

from pathlib import Path

import pytest

from nodeagentctl.errors import HashMismatchError
from nodeagentctl.integrity import (
    Digest,
    InstalledState,
    compute_digest,
    expected_digest_from_manifest,
    verify_digest,
)

from conftest import sha256_hex

MANIFEST = (
    "1111111111111111111111111111111111111111111111111111111111111111  k3s-arm64\n"
    "2222222222222222222222222222222222222222222222222222222222222222  k3s\n"
    "3333333333333333333333333333333333333333333333333333333333333333  k3s-airgap-images.tar\n"
)


def test_compute_digest_matches_sha256(tmp_path: Path) -> None:
    """The digest is the hex SHA-256 of the file contents."""
    path = tmp_path / "blob"
    path.write_bytes(b"agent-binary")

    assert compute_digest(path) == Digest(sha256_hex(b"agent-binary"))


def test_manifest_lookup_requires_exact_filename() -> None:
    """Only the entry whose filename matches exactly is used."""
    assert expected_digest_from_manifest(MANIFEST, "k3s") == Digest("2" * 64)
    assert expected_digest_from_manifest(MANIFEST, "k3s-arm64") == Digest("1" * 64)


def test_manifest_without_entry_is_integrity_error() -> None:
    """A missing entry aborts before any binary is downloaded."""
    with pytest.raises(HashMismatchError, match="No hash entry for k3s-s390x found in manifest"):
        expected_digest_from_manifest(MANIFEST, "k3s-s390x")


def test_single_line_manifest_keeps_first_field() -> None:
    """Per-commit manifests list a single ``<hash>  <name>`` line."""
    assert Digest.parse("abc123  k3s-deadbeef\n") == Digest("abc123")
    assert expected_digest_from_manifest("abc123  k3s\n", "k3s") == Digest("abc123")


def test_verify_digest_reports_both_values(tmp_path: Path) -> None:
    """A mismatch names the expected and the actual digest."""
    path = tmp_path / "k3s.bin"
    path.write_bytes(b"tampered")
    actual = sha256_hex(b"tampered")

    with pytest.raises(HashMismatchError) as excinfo:
        verify_digest(path, Digest("0" * 64))

    assert str(excinfo.value) == f"Download sha256 does not match {'0' * 64}, got {actual}"
    assert verify_digest(path, Digest(actual)) == Digest(actual)


def test_installed_state_equality_tracks_every_artifact(tmp_path: Path) -> None:
    """Changing any one of the three artifacts changes the snapshot."""
    binary = tmp_path / "k3s"
    unit = tmp_path / "k3s.service"
    env = tmp_path / "k3s.service.env"

    empty = InstalledState.capture(binary, unit, env)
    assert empty == InstalledState(None, None, None)

    binary.write_bytes(b"v1")
    unit.write_text("[Unit]\n", encoding="utf-8")
    env.write_text("", encoding="utf-8")
    first = InstalledState.capture(binary, unit, env)
    assert first != empty
    assert InstalledState.capture(binary, unit, env) == first

    env.write_text("K3S_TOKEN=x\n", encoding="utf-8")
    second = InstalledState.capture(binary, unit, env)
    assert second != first
    assert second.binary == first.binary
    assert second.to_dict()["environment_file"] == sha256_hex(b"K3S_TOKEN=x\n")
