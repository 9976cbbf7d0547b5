"""Systemd provider for the node agent service unit."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import FilesystemError, InstallerError
from ..exit_codes import ExitCode
from ..templates import TemplateEngine, TemplateRenderError

UNIT_TEMPLATE = "systemd/service.j2"


class SystemdError(InstallerError):
    """Raised when systemd operations fail."""

    exit_code = ExitCode.PROVIDER


@dataclass(slots=True)
class SystemdProvider:
    """Render and manage the systemd unit for the installed agent."""

    templates: TemplateEngine
    system_name: str
    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"

    @property
    def unit_name(self) -> str:
        """Return the systemd unit name."""
        return f"{self.system_name}.service"

    @property
    def unit_path(self) -> Path:
        """Return the full path of the unit file."""
        return self.systemd_dir / self.unit_name

    @property
    def env_path(self) -> Path:
        """Return the environment file referenced by the unit."""
        return self.systemd_dir / f"{self.unit_name}.env"

    def render_unit(self, context: Mapping[str, object]) -> bool:
        """Write the unit file from *context*, replacing any existing one."""
        try:
            return self.templates.render_to_path(UNIT_TEMPLATE, self.unit_path, context, mode=0o644)
        except TemplateRenderError as exc:
            raise FilesystemError(str(exc)) from exc

    def enable(self) -> subprocess.CompletedProcess[str]:
        """Enable the unit by path and reload the daemon."""
        result = self._systemctl("enable", self.unit_path)
        self.daemon_reload()
        return result

    def disable_previous(self) -> None:
        """Disable any earlier registration and delete its unit and env files."""
        self._systemctl("disable", self.unit_name, check=False)
        for path in (self.unit_path, self.env_path):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise FilesystemError(f"Unable to remove {path}: {exc}") from exc

    def restart(self) -> subprocess.CompletedProcess[str]:
        """Restart the unit."""
        return self._systemctl("restart", self.unit_name)

    def daemon_reload(self) -> subprocess.CompletedProcess[str]:
        """Ask systemd to reload unit definitions."""
        return self._systemctl("daemon-reload")

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit_or_path: str | Path | None = None,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit_or_path is not None:
            args.append(str(unit_or_path))
        return self._run_command(args, check=check, error_prefix=f"{self.systemctl_bin} {command}")

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise SystemdError(f"Unable to execute {args[0]}: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["SystemdError", "SystemdProvider"]
