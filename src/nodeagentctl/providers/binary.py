"""Stage, verify and install the node agent binary."""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ..errors import FilesystemError, HashMismatchError
from ..integrity import Digest, compute_digest

LOGGER = logging.getLogger(__name__)

BINARY_MODE = 0o755


@dataclass(frozen=True, slots=True)
class StagingArea:
    """Paths inside the temporary directory owned by one install run."""

    root: Path
    manifest: Path
    archive: Path
    binary: Path


@contextmanager
def staging_area(name: str) -> Iterator[StagingArea]:
    """Create a temporary download directory removed on every exit path."""
    try:
        root = Path(tempfile.mkdtemp(prefix=f"{name}-install."))
    except OSError as exc:
        raise FilesystemError(f"Unable to create temporary directory: {exc}") from exc
    try:
        yield StagingArea(
            root=root,
            manifest=root / f"{name}.hash",
            archive=root / f"{name}.zip",
            binary=root / f"{name}.bin",
        )
    finally:
        shutil.rmtree(root, ignore_errors=True)


def extract_member(archive: Path, member: str, destination: Path) -> None:
    """Write *member* of the zip *archive* to *destination*."""
    try:
        with zipfile.ZipFile(archive) as bundle, bundle.open(member) as source:
            with destination.open("wb") as target:
                shutil.copyfileobj(source, target)
    except KeyError as exc:
        raise HashMismatchError(f"Archive {archive.name} does not contain {member}") from exc
    except (OSError, zipfile.BadZipFile) as exc:
        raise FilesystemError(f"Unable to extract {member} from {archive}: {exc}") from exc


@dataclass(slots=True)
class BinaryInstaller:
    """Atomically place a verified binary at ``bin_dir/name``."""

    bin_dir: Path
    name: str
    owner: str = "root"
    group: str = "root"

    @property
    def target(self) -> Path:
        """Return the installed binary path."""
        return self.bin_dir / self.name

    def installed_digest(self) -> Digest | None:
        """Return the digest of the installed executable, if there is one."""
        if not self.target.is_file() or not os.access(self.target, os.X_OK):
            return None
        return compute_digest(self.target)

    def matches(self, expected: Digest) -> bool:
        """Return True when the installed binary already hashes to *expected*."""
        return self.installed_digest() == expected

    def install(self, staged: Path) -> Path:
        """Move *staged* into place with mode 0755 and the configured owner.

        The binary is first copied next to the target so the final rename is
        atomic even when the staging directory lives on another filesystem.
        A failure leaves any previously installed binary untouched.
        """
        temp_path: Path | None = None
        try:
            self.bin_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=f".{self.name}.", dir=str(self.bin_dir))
            os.close(fd)
            temp_path = Path(temp_name)
            shutil.copyfile(staged, temp_path)
            temp_path.chmod(BINARY_MODE)
            shutil.chown(temp_path, user=self.owner, group=self.group)
            os.replace(temp_path, self.target)
            temp_path = None
        except (OSError, LookupError) as exc:
            raise FilesystemError(f"Unable to install {self.target}: {exc}") from exc
        finally:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
        LOGGER.debug("Installed %s", self.target)
        return self.target


__all__ = [
    "BINARY_MODE",
    "BinaryInstaller",
    "StagingArea",
    "extract_member",
    "staging_area",
]
