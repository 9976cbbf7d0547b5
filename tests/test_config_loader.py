"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from nodeagentctl.config import AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.system_name == "coroot-node-agent"
    assert config.artifact_name == "coroot-node-agent"
    assert config.bin_dir == Path("/usr/bin")
    assert config.binary_path == Path("/usr/bin/coroot-node-agent")
    assert config.data_dir == Path("/var/lib/coroot-node-agent")
    assert config.unit_path == Path("/etc/systemd/system/coroot-node-agent.service")
    assert config.env_file == Path("/etc/systemd/system/coroot-node-agent.service.env")
    assert config.uninstall_path == Path("/usr/bin/coroot-node-agent-uninstall.sh")
    assert config.bin_dir_read_only is False
    assert config.release.channel == "latest"
    assert config.release.downloaders == ("curl", "wget")
    assert config.environment.prefixes == ("K3S_", "CONTAINERD_")


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "nodeagentctl.yml"
    cfg.write_text(
        "system_name: k3s\n"
        "bin_dir: /usr/local/bin\n"
        "release:\n"
        "  channel: stable\n"
        "  commit: \"0123456\"\n"
        "environment:\n"
        "  prefixes: [AGENT_]\n",
        encoding="utf-8",
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.system_name == "k3s"
    assert config.data_dir == Path("/var/lib/k3s")
    assert config.binary_path == Path("/usr/local/bin/k3s")
    assert config.release.channel == "stable"
    assert config.release.commit == "0123456"
    assert config.environment.prefixes == ("AGENT_",)


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "nodeagentctl.yml"
    cfg.write_text("release:\n  channel: stable\n", encoding="utf-8")
    env = {
        "NODEAGENTCTL_CONFIG_FILE": str(cfg),
        "NODEAGENTCTL_RELEASE__CHANNEL": "testing",
        "NODEAGENTCTL_RELEASE__DOWNLOADERS": "wget,curl",
        "NODEAGENTCTL_BIN_DIR_READ_ONLY": "true",
        "NODEAGENTCTL_SYSTEMD__UNIT_DIR": str(tmp_path / "units"),
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.release.channel == "testing"
    assert config.release.downloaders == ("wget", "curl")
    assert config.bin_dir_read_only is True
    assert config.unit_path == tmp_path / "units" / "coroot-node-agent.service"


def test_overrides_beat_environment(tmp_path: Path) -> None:
    """Programmatic overrides (CLI flags) win over environment variables."""
    config = load_config(
        config_file=tmp_path / "absent.yml",
        env={"NODEAGENTCTL_RELEASE__VERSION": "v1.0.0"},
        overrides={"release": {"version": "v2.0.0"}, "arch": "x86_64"},
    )

    assert config.release.version == "v2.0.0"
    assert config.release.channel == "latest"
    assert config.arch == "x86_64"


def test_github_token_is_redacted(tmp_path: Path) -> None:
    """The token never appears in the serialised config."""
    config = load_config(
        config_file=tmp_path / "absent.yml",
        env={"NODEAGENTCTL_RELEASE__GITHUB_TOKEN": "ghp_secret"},
    )

    assert config.release.github_token == "ghp_secret"
    assert config.to_dict()["release"]["github_token"] == "***"  # type: ignore[index]


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("bogus: 1\n", "Unknown configuration keys: bogus"),
        ("release:\n  mirror: x\n", "Unknown release configuration keys: mirror"),
        ("system_name: ''\n", "system_name must be a non-empty string"),
        ("system_name: a/b\n", "must not contain '/'"),
        ("bin_dir_read_only: maybe\n", "Expected bin_dir_read_only to be a boolean"),
        ("release:\n  downloaders: []\n", "must list at least one executable"),
        ("- a\n- b\n", "must contain a mapping"),
        ("release:\n  version: 1.10\n", "Expected release.version to be a string"),
        ("release:\n  commit: 1234567\n", "quote it in YAML"),
    ],
)
def test_invalid_config_raises(tmp_path: Path, content: str, message: str) -> None:
    """Invalid values are reported as ConfigError."""
    cfg = tmp_path / "nodeagentctl.yml"
    cfg.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError, match=message):
        load_config(config_file=cfg, env={})


def test_release_identifiers_from_env_are_kept_verbatim(tmp_path: Path) -> None:
    """Versions and commit ids are not read as numbers."""
    config = load_config(
        config_file=tmp_path / "absent.yml",
        env={
            "NODEAGENTCTL_RELEASE__VERSION": "1.10",
            "NODEAGENTCTL_RELEASE__COMMIT": "0123456",
            "NODEAGENTCTL_RELEASE__PR": "42",
            "NODEAGENTCTL_RELEASE__CHANNEL": "1.30",
            "NODEAGENTCTL_BIN_DIR_READ_ONLY": "yes",
        },
    )

    assert config.release.version == "1.10"
    assert config.release.commit == "0123456"
    assert config.release.pr == "42"
    assert config.release.channel == "1.30"
    assert config.bin_dir_read_only is True
