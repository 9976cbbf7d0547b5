"""Tests for the generated uninstall script."""
from __future__ import annotations

import os
import subprocess
from pathlib import Path

from nodeagentctl.templates import TemplateEngine
from nodeagentctl.uninstall import create_uninstall_script

from conftest import make_config


def test_script_is_executable_and_removes_everything(tmp_path: Path) -> None:
    """The script stops the unit, then deletes files, then itself."""
    config = make_config(tmp_path)

    path = create_uninstall_script(config, TemplateEngine.with_overrides(None))

    assert path == tmp_path / "bin" / "k3s-uninstall.sh"
    assert oct(path.stat().st_mode & 0o777) == "0o755"
    script = path.read_text(encoding="utf-8")
    lines = [line.strip() for line in script.splitlines()]
    assert lines[0] == "#!/bin/sh"

    stop = lines.index("systemctl stop k3s.service")
    disable = lines.index("systemctl disable k3s.service")
    trap = lines.index("trap remove_uninstall EXIT")
    remove_unit = lines.index(f"rm -f {config.unit_path}")
    remove_env = lines.index(f"rm -f {config.env_file}")
    remove_data = lines.index(f"rm -rf {config.data_dir} || true")
    remove_binary = lines.index(f"rm -f {config.binary_path}")
    assert stop < disable < trap < remove_unit < remove_env < remove_data < remove_binary
    assert f"rm -f {config.uninstall_path}" in lines


def test_script_is_skipped_for_read_only_bin_dir(tmp_path: Path) -> None:
    """Nothing is written when bin_dir is marked read-only."""
    config = make_config(tmp_path, {"bin_dir_read_only": True})

    assert create_uninstall_script(config, TemplateEngine.with_overrides(None)) is None
    assert not config.uninstall_path.exists()


def test_override_template_is_used(tmp_path: Path) -> None:
    """Operators can replace the script through the templates directory."""
    config = make_config(tmp_path)
    override = config.templates_dir / "uninstall" / "uninstall.sh.j2"
    override.parent.mkdir(parents=True)
    override.write_text("#!/bin/sh\necho {{ unit_name }}\n", encoding="utf-8")

    path = create_uninstall_script(config, TemplateEngine.with_overrides(config.templates_dir))

    assert path is not None
    assert path.read_text(encoding="utf-8") == "#!/bin/sh\necho k3s.service\n"


def _fake_tool(directory: Path, name: str, body: str) -> Path:
    path = directory / name
    path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def test_running_script_removes_artifacts_and_itself(tmp_path: Path) -> None:
    """Every artifact is removed even when systemctl fails, the script last."""
    fake_bin = tmp_path / "fake-bin"
    fake_bin.mkdir()
    # Report root so the script does not re-exec through sudo.
    _fake_tool(fake_bin, "id", "echo 0")
    failing_systemctl = _fake_tool(fake_bin, "systemctl", "exit 1")
    config = make_config(tmp_path, {"systemd": {"systemctl_bin": str(failing_systemctl)}})

    path = create_uninstall_script(config, TemplateEngine.with_overrides(None))
    assert path is not None

    config.unit_path.parent.mkdir(parents=True)
    config.unit_path.write_text("[Unit]\n", encoding="utf-8")
    config.env_file.write_text("K3S_TOKEN=abc\n", encoding="utf-8")
    config.binary_path.write_bytes(b"agent")
    (config.data_dir / "state").mkdir(parents=True)

    result = subprocess.run(  # noqa: S603
        ["/bin/sh", str(path)],
        capture_output=True,
        text=True,
        check=False,
        env={**os.environ, "PATH": f"{fake_bin}{os.pathsep}{os.environ.get('PATH', '')}"},
    )

    assert result.returncode == 0, result.stderr
    for leftover in (
        config.unit_path,
        config.env_file,
        config.binary_path,
        config.data_dir,
        path,
    ):
        assert not leftover.exists(), leftover
