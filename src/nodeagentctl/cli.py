"""Typer-powered command line interface for ``nodeagentctl``.

Progress goes to stdout as ``[INFO]`` lines; a failure prints a single
``[ERROR]`` line on stderr and exits with the code carried by the error.
"""
from __future__ import annotations

import json
import signal
from dataclasses import dataclass
from pathlib import Path
from types import FrameType
from typing import NoReturn

import typer
from rich.console import Console

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .errors import InstallerError
from .exit_codes import ExitCode
from .lifecycle import LifecycleController
from .logging import StructuredLogger

app = typer.Typer(
    add_completion=False,
    help="Install, upgrade and uninstall the node agent systemd service.",
)
console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to nodeagentctl's YAML config file.",
)
RELEASE_VERSION_OPTION = typer.Option(
    None,
    "--release-version",
    help="Install this exact release tag instead of resolving a channel.",
)
CHANNEL_OPTION = typer.Option(
    None,
    "--channel",
    help="Release channel resolved to a version through its redirect.",
)
COMMIT_OPTION = typer.Option(
    None,
    "--commit",
    help="Install the CI build for this commit id.",
)
PR_OPTION = typer.Option(
    None,
    "--pr",
    help="Install the unverified build artifact of this pull request.",
)
PR_ARTIFACT_URL_OPTION = typer.Option(
    None,
    "--pr-artifact-url",
    help="Zip archive URL holding the pull request build.",
)
ARCH_OPTION = typer.Option(
    None,
    "--arch",
    help="Override the detected processor architecture.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the result as JSON.",
)


@dataclass
class RuntimeContext:
    """Objects shared by commands."""

    config_file: Path | None


def _info(message: str) -> None:
    console.print(f"[INFO]  {message}", markup=False, highlight=False)


def _fail(message: str, code: int) -> NoReturn:
    err_console.print(f"[ERROR]  {message}", markup=False, highlight=False)
    raise typer.Exit(code=code)


def _raise_interrupt(signum: int, frame: FrameType | None) -> None:
    raise KeyboardInterrupt


def _load(ctx: typer.Context, overrides: dict[str, object] | None = None) -> AppConfig:
    runtime = ctx.obj
    config_file = runtime.config_file if isinstance(runtime, RuntimeContext) else None
    try:
        return load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        _fail(str(exc), int(ExitCode.VALIDATION))


def _controller(config: AppConfig) -> LifecycleController:
    logger = StructuredLogger(config.logs_dir)
    return LifecycleController.from_config(config, logger, notify=_info)


def _release_overrides(
    *,
    release_version: str | None = None,
    channel: str | None = None,
    commit: str | None = None,
    pr: str | None = None,
    pr_artifact_url: str | None = None,
    arch: str | None = None,
) -> dict[str, object]:
    release: dict[str, object] = {}
    if release_version is not None:
        release["version"] = release_version
    if channel is not None:
        release["channel"] = channel
    if commit is not None:
        release["commit"] = commit
    if pr is not None:
        release["pr"] = pr
    if pr_artifact_url is not None:
        release["pr_artifact_url"] = pr_artifact_url
    overrides: dict[str, object] = {}
    if release:
        overrides["release"] = release
    if arch is not None:
        overrides["arch"] = arch
    return overrides


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the nodeagentctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"nodeagentctl {__version__}")
        raise typer.Exit(code=0)

    ctx.obj = RuntimeContext(config_file=config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


@app.command("install")
def install_command(
    ctx: typer.Context,
    release_version: str | None = RELEASE_VERSION_OPTION,
    channel: str | None = CHANNEL_OPTION,
    commit: str | None = COMMIT_OPTION,
    pr: str | None = PR_OPTION,
    pr_artifact_url: str | None = PR_ARTIFACT_URL_OPTION,
    arch: str | None = ARCH_OPTION,
) -> None:
    """Install or upgrade the agent and (re)start it when anything changed."""
    config = _load(
        ctx,
        _release_overrides(
            release_version=release_version,
            channel=channel,
            commit=commit,
            pr=pr,
            pr_artifact_url=pr_artifact_url,
            arch=arch,
        ),
    )
    controller = _controller(config)

    previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        outcome = controller.install()
    except KeyboardInterrupt:
        _fail("Interrupted", int(ExitCode.INTERRUPTED))
    finally:
        signal.signal(signal.SIGTERM, previous)

    if outcome.is_err():
        error = outcome.error
        assert isinstance(error, InstallerError)
        _fail(str(error), int(error.exit_code))


@app.command("resolve")
def resolve_command(
    ctx: typer.Context,
    release_version: str | None = RELEASE_VERSION_OPTION,
    channel: str | None = CHANNEL_OPTION,
    commit: str | None = COMMIT_OPTION,
    pr: str | None = PR_OPTION,
    pr_artifact_url: str | None = PR_ARTIFACT_URL_OPTION,
    arch: str | None = ARCH_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the download locations for the selected release without installing."""
    config = _load(
        ctx,
        _release_overrides(
            release_version=release_version,
            channel=channel,
            commit=commit,
            pr=pr,
            pr_artifact_url=pr_artifact_url,
            arch=arch,
        ),
    )
    outcome = _controller(config).resolve()
    if outcome.is_err():
        error = outcome.error
        assert isinstance(error, InstallerError)
        _fail(str(error), int(error.exit_code))

    locator = outcome.unwrap()
    if json_output:
        typer.echo(json.dumps(locator.to_dict(), indent=2))
        return
    console.print(f"Reference: {locator.reference.describe()}", highlight=False)
    if locator.version:
        console.print(f"Version: {locator.version}", highlight=False)
    console.print(f"Binary: {locator.binary_url}", highlight=False)
    if locator.manifest_url:
        console.print(f"Manifest: {locator.manifest_url}", highlight=False)
    else:
        console.print("[yellow]Manifest: none (hash verification skipped)[/yellow]")


@app.command("check")
def check_command(
    ctx: typer.Context,
    arch: str | None = ARCH_OPTION,
) -> None:
    """Verify that this host runs systemd on a supported architecture."""
    config = _load(ctx, _release_overrides(arch=arch))
    outcome = _controller(config).check_host()
    if outcome.is_err():
        error = outcome.error
        assert isinstance(error, InstallerError)
        _fail(str(error), int(error.exit_code))
    console.print(f"[green]Host supported ({outcome.unwrap().name}).[/green]")


@app.command("uninstall-script")
def uninstall_script_command(ctx: typer.Context) -> None:
    """Write the uninstall script without installing anything else."""
    config = _load(ctx)
    outcome = _controller(config).write_uninstall_script()
    if outcome.is_err():
        error = outcome.error
        assert isinstance(error, InstallerError)
        _fail(str(error), int(error.exit_code))
    path = outcome.unwrap()
    if path is None:
        console.print("[yellow]bin_dir is read-only; uninstall script not written.[/yellow]")
        return
    console.print(f"[green]Uninstall script written to {path}.[/green]")


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
