"""Download transport backed by ``curl`` or ``wget``."""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import DownloadError

SUPPORTED_TOOLS = ("curl", "wget")


@dataclass(slots=True)
class Transport:
    """Fetch remote bytes with the first available download tool.

    Downloads are one-shot: any non-zero exit status is fatal and nothing is
    retried.
    """

    tool: str
    executable: str

    @classmethod
    def detect(cls, preferences: Sequence[str] = SUPPORTED_TOOLS) -> Transport:
        """Return a transport for the first executable tool in *preferences*."""
        for tool in preferences:
            name = Path(tool).name
            if name not in SUPPORTED_TOOLS:
                raise DownloadError(f"Incorrect downloader executable '{tool}'")
            resolved = shutil.which(tool)
            if resolved is not None:
                return cls(tool=name, executable=resolved)
        wanted = " or ".join(preferences)
        raise DownloadError(f"Can not find {wanted} for downloading files")

    def download(self, destination: Path, url: str, *, bearer_token: str | None = None) -> None:
        """Copy the bytes at *url* into *destination*."""
        if self.tool == "curl":
            args = [self.executable, "-o", str(destination), "-sfL"]
            if bearer_token:
                args.extend(["-H", f"Authorization: Bearer {bearer_token}"])
            args.append(url)
        else:
            args = [self.executable, "-qO", str(destination)]
            if bearer_token:
                args.append(f"--header=Authorization: Bearer {bearer_token}")
            args.append(url)
        result = self._run(args)
        if result.returncode != 0:
            detail = (result.stderr or "").strip()
            message = f"Download failed: {url} ({self.tool} exit {result.returncode})"
            raise DownloadError(f"{message}: {detail}" if detail else message)

    def resolve_redirect(self, url: str) -> str:
        """Return the URL that *url* redirects to.

        curl reports the effective URL after following redirects; wget prints
        response headers on stderr and the last ``Location`` wins.
        """
        if self.tool == "curl":
            result = self._run(
                [self.executable, "-w", "%{url_effective}", "-L", "-s", "-S", url, "-o", "/dev/null"]
            )
            if result.returncode != 0:
                raise DownloadError(f"Download failed: {url} (curl exit {result.returncode})")
            return (result.stdout or "").strip()

        result = self._run([self.executable, "-SqO", "/dev/null", url])
        location = ""
        for line in (result.stderr or "").splitlines():
            key, _, value = line.strip().partition(":")
            if key.lower() == "location":
                location = value.strip()
        return location

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Execute the download tool (isolated for testing)."""
        try:
            return subprocess.run(  # noqa: S603 - executable resolved via shutil.which
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise DownloadError(f"Unable to execute {args[0]}: {exc}") from exc


__all__ = ["SUPPORTED_TOOLS", "Transport"]
