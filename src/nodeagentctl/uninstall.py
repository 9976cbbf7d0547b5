"""Generate the self-deleting uninstall script."""
from __future__ import annotations

import shutil
from pathlib import Path

from .config import AppConfig
from .errors import FilesystemError
from .templates import TemplateEngine, TemplateRenderError

UNINSTALL_TEMPLATE = "uninstall/uninstall.sh.j2"
UNINSTALL_MODE = 0o755


def uninstall_context(config: AppConfig) -> dict[str, object]:
    """Return the template context for *config*."""
    return {
        "system_name": config.system_name,
        "unit_name": config.unit_name,
        "unit_path": str(config.unit_path),
        "environment_file": str(config.env_file),
        "uninstall_path": str(config.uninstall_path),
        "binary_path": str(config.binary_path),
        "data_dir": str(config.data_dir),
        "systemctl_bin": config.systemd.systemctl_bin,
    }


def create_uninstall_script(config: AppConfig, templates: TemplateEngine) -> Path | None:
    """Write the uninstall script, or return ``None`` when ``bin_dir`` is read-only."""
    if config.bin_dir_read_only:
        return None
    path = config.uninstall_path
    try:
        templates.render_to_path(
            UNINSTALL_TEMPLATE,
            path,
            uninstall_context(config),
            mode=UNINSTALL_MODE,
        )
        shutil.chown(path, user=config.owner, group=config.group)
    except TemplateRenderError as exc:
        raise FilesystemError(str(exc)) from exc
    except (OSError, LookupError) as exc:
        raise FilesystemError(f"Unable to set ownership of {path}: {exc}") from exc
    return path


__all__ = ["UNINSTALL_MODE", "create_uninstall_script", "uninstall_context"]
