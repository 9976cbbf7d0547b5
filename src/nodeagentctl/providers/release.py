"""Turn a release reference into concrete download locations."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal
from urllib.parse import urlsplit

from ..config import ReleaseConfig
from ..errors import UnresolvedReleaseError
from ..host import ArchSpec
from .transport import Transport

LOGGER = logging.getLogger(__name__)

ReferenceKind = Literal["pr", "commit", "version", "channel"]


@dataclass(frozen=True, slots=True)
class ReleaseReference:
    """The single release selector active for a run."""

    kind: ReferenceKind
    value: str

    @classmethod
    def from_config(cls, release: ReleaseConfig) -> ReleaseReference:
        """Pick the reference by priority: PR, commit, version, then channel."""
        if release.pr:
            return cls("pr", release.pr)
        if release.commit:
            return cls("commit", release.commit)
        if release.version:
            return cls("version", release.version)
        if not release.channel.strip():
            raise UnresolvedReleaseError("No release version, commit, PR or channel configured")
        return cls("channel", release.channel.strip())

    def describe(self) -> str:
        """Return a short human readable label."""
        return f"{self.kind} {self.value}"


@dataclass(frozen=True, slots=True)
class ArtifactLocator:
    """Where to fetch the binary and, unless unverified, its hash manifest."""

    reference: ReleaseReference
    filename: str
    binary_url: str
    manifest_url: str | None
    version: str | None = None
    bearer_token: str | None = None

    @property
    def verified(self) -> bool:
        """Return False for artifacts installed without a hash check."""
        return self.manifest_url is not None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation (the token is never included)."""
        return {
            "reference": {"kind": self.reference.kind, "value": self.reference.value},
            "filename": self.filename,
            "binary_url": self.binary_url,
            "manifest_url": self.manifest_url,
            "version": self.version,
            "verified": self.verified,
        }


@dataclass(slots=True)
class ReleaseResolver:
    """Resolve release references against the configured download hosts."""

    release: ReleaseConfig
    artifact_name: str
    transport: Transport

    def resolve(self, reference: ReleaseReference, arch: ArchSpec) -> ArtifactLocator:
        """Return the :class:`ArtifactLocator` for *reference* on *arch*."""
        filename = f"{self.artifact_name}{arch.suffix}"
        if reference.kind == "pr":
            return self._resolve_pull_request(reference, filename)
        if reference.kind == "commit":
            base = f"{self.release.storage_url}/{filename}-{reference.value}"
            return ArtifactLocator(
                reference=reference,
                filename=filename,
                binary_url=base,
                manifest_url=f"{base}.sha256sum",
            )

        version = reference.value if reference.kind == "version" else self.channel_version(
            reference.value
        )
        download = f"{self.release.github_url}/download/{version}"
        return ArtifactLocator(
            reference=reference,
            filename=filename,
            binary_url=f"{download}/{filename}",
            manifest_url=f"{download}/sha256sum-{arch.name}.txt",
            version=version,
        )

    def channel_version(self, channel: str) -> str:
        """Follow the channel redirect and return the trailing path segment."""
        channel_url = f"{self.release.channel_url}/{channel}"
        LOGGER.debug("Resolving channel %s via %s", channel, channel_url)
        target = self.transport.resolve_redirect(channel_url).strip()
        if not target or target.rstrip("/") == channel_url.rstrip("/"):
            raise UnresolvedReleaseError(f"Unable to resolve release for channel {channel}")
        version = urlsplit(target).path.rstrip("/").rsplit("/", 1)[-1]
        if not version or version == channel:
            raise UnresolvedReleaseError(
                f"Unable to parse release for channel {channel} from {target}"
            )
        return version

    def _resolve_pull_request(self, reference: ReleaseReference, filename: str) -> ArtifactLocator:
        # Pre-release PR builds ship without a manifest; the archive is trusted
        # as delivered by the authenticated download.
        if not self.release.pr_artifact_url:
            raise UnresolvedReleaseError(
                f"No artifact URL configured for pull request {reference.value}"
            )
        return ArtifactLocator(
            reference=reference,
            filename=filename,
            binary_url=self.release.pr_artifact_url,
            manifest_url=None,
            bearer_token=self.release.github_token,
        )


__all__ = ["ArtifactLocator", "ReleaseReference", "ReleaseResolver"]
