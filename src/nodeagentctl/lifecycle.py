"""Install/upgrade orchestration for the node agent.

The controller runs a fixed sequence of steps. Each step yields a
:class:`~nodeagentctl.result.Result`; the first error ends the run and is
returned to the caller unchanged. Nothing is rolled back: every artifact is
replaced atomically on its own, but a failed run leaves earlier artifacts in
place.

Two hash gates keep re-runs cheap. The binary is downloaded only when the
installed one does not match the published digest, and the service is
restarted only when the digests of the binary, unit file and env file differ
between a snapshot taken before the first write and one taken after the last.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from .config import AppConfig
from .environment import provision_environment
from .errors import FilesystemError, InstallerError
from .host import ArchSpec, HostVerifier
from .integrity import Digest, InstalledState, expected_digest_from_manifest, verify_digest
from .logging import OperationScope, StructuredLogger
from .providers.binary import BinaryInstaller, StagingArea, extract_member, staging_area
from .providers.release import ArtifactLocator, ReleaseReference, ReleaseResolver
from .providers.systemd import SystemdProvider
from .providers.transport import Transport
from .result import Result
from .templates import TemplateEngine
from .uninstall import create_uninstall_script

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class BinaryDelivery:
    """Outcome of the resolve, fetch, verify and install phase."""

    locator: ArtifactLocator
    download_skipped: bool
    installed: bool


@dataclass(slots=True)
class InstallReport:
    """Summary of a completed install run."""

    arch: ArchSpec
    locator: ArtifactLocator
    download_skipped: bool
    binary_installed: bool
    before: InstalledState
    after: InstalledState
    restarted: bool
    uninstall_script: Path | None = None
    environment_names: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Return True when any installed artifact changed."""
        return self.before != self.after

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "arch": self.arch.name,
            "locator": self.locator.to_dict(),
            "download_skipped": self.download_skipped,
            "binary_installed": self.binary_installed,
            "before": self.before.to_dict(),
            "after": self.after.to_dict(),
            "restarted": self.restarted,
            "uninstall_script": str(self.uninstall_script) if self.uninstall_script else None,
            "environment_names": list(self.environment_names),
        }


@dataclass(slots=True)
class LifecycleController:
    """Drive a complete install or upgrade of the node agent service."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    systemd: SystemdProvider
    host: HostVerifier
    installer: BinaryInstaller
    transport: Transport | None = None
    environ: Mapping[str, str] | None = None
    notify: Callable[[str], None] = LOGGER.info

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        logger: StructuredLogger,
        *,
        notify: Callable[[str], None] | None = None,
    ) -> LifecycleController:
        """Build a controller wired to the real host."""
        templates = TemplateEngine.with_overrides(config.templates_dir)
        return cls(
            config=config,
            logger=logger,
            templates=templates,
            systemd=SystemdProvider(
                templates=templates,
                system_name=config.system_name,
                systemd_dir=config.systemd.unit_dir,
                systemctl_bin=config.systemd.systemctl_bin,
            ),
            host=HostVerifier(systemctl_bin=config.systemd.systemctl_bin),
            installer=BinaryInstaller(
                bin_dir=config.bin_dir,
                name=config.system_name,
                owner=config.owner,
                group=config.group,
            ),
            notify=notify or LOGGER.info,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def install(self) -> Result[InstallReport, InstallerError]:
        """Install or upgrade the agent, restarting it only when something changed."""
        args = {"release": self.config.release.to_dict(), "arch": self.config.arch}
        target = {"kind": "service", "unit": self.systemd.unit_name}
        with self.logger.operation("install", args=args, target=target) as op:
            outcome = self._install(op)
            if outcome.is_err():
                error = outcome.error
                assert error is not None
                op.error(str(error), rc=int(error.exit_code))
            else:
                report = outcome.unwrap()
                message = "Service restarted." if report.restarted else "No change detected."
                op.success(message, changed=int(report.changed), context=report.to_dict())
            return outcome

    def resolve(self) -> Result[ArtifactLocator, InstallerError]:
        """Resolve the configured release without touching the host."""
        with self.logger.operation("resolve", args=self.config.release.to_dict()) as op:
            arch = self._step(op, "host.verify-arch", self._verify_arch)
            if arch.is_err():
                return self._abort(op, arch.error)
            transport = self._step(op, "transport.detect", self._detect_transport)
            if transport.is_err():
                return self._abort(op, transport.error)
            locator = self._step(
                op,
                "release.resolve",
                lambda: self._resolver(transport.unwrap()).resolve(
                    ReleaseReference.from_config(self.config.release), arch.unwrap()
                ),
            )
            if locator.is_err():
                return self._abort(op, locator.error)
            op.success("Release resolved.", changed=0, context=locator.unwrap().to_dict())
            return locator

    def check_host(self) -> Result[ArchSpec, InstallerError]:
        """Run the platform checks only."""
        with self.logger.operation("check") as op:
            arch = self._step(op, "host.verify", self._verify_host)
            if arch.is_err():
                return self._abort(op, arch.error)
            op.success("Host supported.", changed=0, context={"arch": arch.unwrap().name})
            return arch

    def write_uninstall_script(self) -> Result[Path | None, InstallerError]:
        """Generate the uninstall script on its own."""
        with self.logger.operation("uninstall-script") as op:
            path = self._step(op, "uninstall.script", self._create_uninstall)
            if path.is_err():
                return self._abort(op, path.error)
            op.success("Uninstall script written.", changed=int(path.unwrap() is not None))
            return path

    # ------------------------------------------------------------------
    # Install sequence
    # ------------------------------------------------------------------

    def _install(self, op: OperationScope) -> Result[InstallReport, InstallerError]:
        arch = self._step(op, "host.verify", self._verify_host)
        if arch.is_err():
            return Result.err(arch.error)

        transport = self._step(op, "transport.detect", self._detect_transport)
        if transport.is_err():
            return Result.err(transport.error)

        # Nothing below may write to the installed artifacts before this.
        before = self._step(op, "snapshot.before", self._snapshot)
        if before.is_err():
            return Result.err(before.error)

        delivery = self._deliver_binary(op, arch.unwrap(), transport.unwrap())
        if delivery.is_err():
            return Result.err(delivery.error)

        uninstall = self._step(op, "uninstall.script", self._create_uninstall)
        if uninstall.is_err():
            return Result.err(uninstall.error)

        disabled = self._step(op, "systemd.disable-previous", self.systemd.disable_previous)
        if disabled.is_err():
            return Result.err(disabled.error)

        environment = self._step(op, "environment.write", self._write_environment)
        if environment.is_err():
            return Result.err(environment.error)

        unit = self._step(op, "systemd.unit", self._write_unit)
        if unit.is_err():
            return Result.err(unit.error)

        enabled = self._step(op, "systemd.enable", self._enable)
        if enabled.is_err():
            return Result.err(enabled.error)

        after = self._step(op, "snapshot.after", self._snapshot)
        if after.is_err():
            return Result.err(after.error)

        restarted = False
        if before.unwrap() == after.unwrap():
            self.notify("No change detected so skipping service start")
            op.add_step("systemd.restart", status="skipped", detail="no change detected")
        else:
            restart = self._step(op, "systemd.restart", self._restart)
            if restart.is_err():
                return Result.err(restart.error)
            restarted = True

        shipped = delivery.unwrap()
        return Result.ok(
            InstallReport(
                arch=arch.unwrap(),
                locator=shipped.locator,
                download_skipped=shipped.download_skipped,
                binary_installed=shipped.installed,
                before=before.unwrap(),
                after=after.unwrap(),
                restarted=restarted,
                uninstall_script=uninstall.unwrap(),
                environment_names=environment.unwrap(),
            )
        )

    def _deliver_binary(
        self,
        op: OperationScope,
        arch: ArchSpec,
        transport: Transport,
    ) -> Result[BinaryDelivery, InstallerError]:
        try:
            with staging_area(self.config.system_name) as staging:
                return self._deliver_into(op, staging, arch, transport)
        except InstallerError as exc:
            # Only the temporary directory creation raises past the steps.
            op.add_step("staging.create", status="error", detail=str(exc))
            return Result.err(exc)

    def _deliver_into(
        self,
        op: OperationScope,
        staging: StagingArea,
        arch: ArchSpec,
        transport: Transport,
    ) -> Result[BinaryDelivery, InstallerError]:
        resolver = self._resolver(transport)
        locator_result = self._step(
            op,
            "release.resolve",
            lambda: resolver.resolve(ReleaseReference.from_config(self.config.release), arch),
        )
        if locator_result.is_err():
            return Result.err(locator_result.error)
        locator = locator_result.unwrap()
        if locator.version:
            self.notify(f"Using {locator.version} as release")

        if not locator.verified:
            return self._deliver_unverified(op, staging, locator, transport)

        expected = self._step(
            op, "manifest.fetch", lambda: self._fetch_expected_digest(staging, locator, transport)
        )
        if expected.is_err():
            return Result.err(expected.error)

        current = self._step(
            op, "binary.compare", lambda: self.installer.matches(expected.unwrap())
        )
        if current.is_err():
            return Result.err(current.error)
        if current.unwrap():
            self.notify(
                f"Skipping binary downloaded, installed {self.config.system_name} matches hash"
            )
            op.add_step("binary.fetch", status="skipped", detail="installed binary matches hash")
            return Result.ok(BinaryDelivery(locator, download_skipped=True, installed=False))

        fetched = self._step(
            op, "binary.fetch", lambda: self._fetch(transport, staging.binary, locator)
        )
        if fetched.is_err():
            return Result.err(fetched.error)

        verified = self._step(
            op, "binary.verify", lambda: self._verify_binary(staging.binary, expected.unwrap())
        )
        if verified.is_err():
            return Result.err(verified.error)

        installed = self._step(op, "binary.install", lambda: self._install_binary(staging.binary))
        if installed.is_err():
            return Result.err(installed.error)
        return Result.ok(BinaryDelivery(locator, download_skipped=False, installed=True))

    def _deliver_unverified(
        self,
        op: OperationScope,
        staging: StagingArea,
        locator: ArtifactLocator,
        transport: Transport,
    ) -> Result[BinaryDelivery, InstallerError]:
        # Pull request builds publish no manifest. This path installs whatever
        # the authenticated archive contains and says so.
        self.notify(
            f"Installing unverified artifact for {locator.reference.describe()}; "
            "hash verification skipped"
        )
        fetched = self._step(
            op, "binary.fetch", lambda: self._fetch(transport, staging.archive, locator)
        )
        if fetched.is_err():
            return Result.err(fetched.error)

        extracted = self._step(
            op,
            "binary.extract",
            lambda: extract_member(staging.archive, locator.filename, staging.binary),
        )
        if extracted.is_err():
            return Result.err(extracted.error)
        op.add_step("binary.verify", status="skipped", detail="unverified pull request artifact")

        installed = self._step(op, "binary.install", lambda: self._install_binary(staging.binary))
        if installed.is_err():
            return Result.err(installed.error)
        return Result.ok(BinaryDelivery(locator, download_skipped=False, installed=True))

    # ------------------------------------------------------------------
    # Step bodies
    # ------------------------------------------------------------------

    def _verify_host(self) -> ArchSpec:
        self.host.verify_system()
        return self._verify_arch()

    def _verify_arch(self) -> ArchSpec:
        return self.host.verify_arch(self.config.arch)

    def _detect_transport(self) -> Transport:
        if self.transport is None:
            self.transport = Transport.detect(self.config.release.downloaders)
        return self.transport

    def _resolver(self, transport: Transport) -> ReleaseResolver:
        return ReleaseResolver(
            release=self.config.release,
            artifact_name=self.config.artifact_name,
            transport=transport,
        )

    def _snapshot(self) -> InstalledState:
        return InstalledState.capture(
            self.installer.target,
            self.systemd.unit_path,
            self.systemd.env_path,
        )

    def _fetch_expected_digest(
        self,
        staging: StagingArea,
        locator: ArtifactLocator,
        transport: Transport,
    ) -> Digest:
        assert locator.manifest_url is not None
        self.notify(f"Downloading hash {locator.manifest_url}")
        transport.download(staging.manifest, locator.manifest_url)
        try:
            manifest = staging.manifest.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise FilesystemError(f"Unable to read {staging.manifest}: {exc}") from exc
        return expected_digest_from_manifest(manifest, locator.filename)

    def _fetch(self, transport: Transport, destination: Path, locator: ArtifactLocator) -> None:
        self.notify(f"Downloading binary {locator.binary_url}")
        transport.download(destination, locator.binary_url, bearer_token=locator.bearer_token)

    def _verify_binary(self, path: Path, expected: Digest) -> Digest:
        self.notify("Verifying binary download")
        return verify_digest(path, expected)

    def _install_binary(self, staged: Path) -> Path:
        self.notify(f"Installing {self.config.system_name} to {self.installer.target}")
        return self.installer.install(staged)

    def _create_uninstall(self) -> Path | None:
        if self.config.bin_dir_read_only:
            return None
        self.notify(f"Creating uninstall script {self.config.uninstall_path}")
        return create_uninstall_script(self.config, self.templates)

    def _write_environment(self) -> list[str]:
        self.notify(f"env: Creating environment file {self.systemd.env_path}")
        entries = provision_environment(
            self.systemd.env_path,
            self.config.environment,
            env=self.environ,
        )
        return [name for name, _ in entries]

    def _write_unit(self) -> bool:
        self.notify(f"systemd: Creating service file {self.systemd.unit_path}")
        return self.systemd.render_unit(
            {
                "description": self.config.description,
                "documentation": self.config.documentation,
                "environment_file": str(self.systemd.env_path),
                "exec_start": str(self.installer.target),
            }
        )

    def _enable(self) -> None:
        self.notify(f"systemd: Enabling {self.config.system_name} unit")
        self.systemd.enable()

    def _restart(self) -> None:
        self.notify(f"systemd: Starting {self.config.system_name}")
        self.systemd.restart()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _step(
        self,
        op: OperationScope,
        name: str,
        action: Callable[[], T],
    ) -> Result[T, InstallerError]:
        try:
            value = action()
        except InstallerError as exc:
            LOGGER.debug("Step %s failed: %s", name, exc)
            op.add_step(name, status="error", detail=str(exc))
            return Result.err(exc)
        op.add_step(name, status="success")
        return Result.ok(value)

    def _abort(self, op: OperationScope, error: InstallerError | None) -> Result[T, InstallerError]:
        assert error is not None
        op.error(str(error), rc=int(error.exit_code))
        return Result.err(error)


__all__ = ["BinaryDelivery", "InstallReport", "LifecycleController"]
