"""Jinja2 template rendering for generated system files.

Built-in templates live next to this module (``systemd/service.j2`` and
``uninstall/uninstall.sh.j2``).
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    BaseLoader,
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError,
)


class TemplateRenderError(RuntimeError):
    """Raised when a template cannot be rendered or written."""


@dataclass(slots=True)
class TemplateEngine:
    """Render built-in templates, letting an override directory shadow them."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine whose lookups try *override_dir* before built-ins."""
        loaders: list[BaseLoader] = []
        if override_dir is not None and override_dir.is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("nodeagentctl", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,  # noqa: S701 - renders shell and ini files, not HTML
        )
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context*."""
        try:
            template = self.environment.get_template(template_name)
            return template.render(**context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to render {template_name}: {exc}") from exc

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render into *destination*, always replacing it atomically.

        Returns ``True`` when the content on disk differs from what was there
        before (including when the file did not exist).
        """
        content = self.render_to_string(template_name, context)
        try:
            previous = destination.read_text(encoding="utf-8")
        except (FileNotFoundError, UnicodeDecodeError):
            previous = None
        except OSError as exc:
            raise TemplateRenderError(f"Unable to read {destination}: {exc}") from exc

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                prefix=f".{destination.name}.", dir=str(destination.parent)
            )
        except OSError as exc:
            raise TemplateRenderError(f"Unable to write {destination}: {exc}") from exc
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            temp_path.chmod(mode)
            temp_path.replace(destination)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise TemplateRenderError(f"Unable to write {destination}: {exc}") from exc
        return previous != content


__all__ = ["TemplateEngine", "TemplateRenderError"]
