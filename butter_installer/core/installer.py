"""Install orchestration.

``Installer.install`` drives a single install invocation through::

    IDLE -> RESOLVING -> [RETIRING_LATEST] -> [INSTALLING_RUNTIME]
         -> [PATCHING] -> VERIFYING -> DONE | FAILED

The manifest of the target install directory decides whether any network
or subprocess work happens at all: a matching build index with the client
and server binaries present ends the run without patching. Re-invoking
after a failure is the recovery path; nothing is rolled back.

Only one invocation per game root may run at a time. This is a caller
contract; no lock is taken.
"""

from __future__ import annotations

import shutil
from enum import StrEnum
from pathlib import Path

import structlog

from butter_installer.core.bootstrap import (
    ButlerBootstrap,
    JreBootstrap,
    PatchToolProvider,
    RuntimeInstaller,
)
from butter_installer.core.config import AppConfig
from butter_installer.core.download import Downloader
from butter_installer.core.errors import (
    FilesystemError,
    PatchToolError,
    RuntimeInstallError,
)
from butter_installer.core.events import EventDispatcher, EventSink
from butter_installer.core.hotpatch import HotPatcher
from butter_installer.core.manifest import read_install_manifest, write_install_manifest
from butter_installer.core.patch_tool import PatchApplier
from butter_installer.core.paths import (
    check_installation,
    get_latest_dir,
    get_release_build_dir,
    get_staging_dir,
    migrate_legacy_channel_install,
    resolve_client_path,
    resolve_install_dir,
)
from butter_installer.core.presence import PresenceChannel, installing_activity
from butter_installer.core.types import (
    GameVersion,
    InstallationStatus,
    InstallManifest,
    Platform,
    ProgressPhase,
    VersionType,
)
from butter_installer.core.utils import ensure_executable, remove_file, remove_tree

logger = structlog.get_logger()


class InstallPhase(StrEnum):
    """States of an install invocation."""
    IDLE = "idle"
    RESOLVING = "resolving"
    RETIRING_LATEST = "retiring-latest"
    INSTALLING_RUNTIME = "installing-runtime"
    PATCHING = "patching"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


def patch_required(
    manifest: InstallManifest | None,
    version: GameVersion,
    status: InstallationStatus,
) -> bool:
    """Decide whether the artifact has to be downloaded and applied.

    Patching is skipped only when the manifest records the target build
    and both client and server binaries are on disk. A matching manifest
    with missing binaries is a partial install and is patched again.
    """
    if manifest is None or manifest.build_index != version.build_index:
        return True
    return not status.binaries_present


class Installer:
    """Install and update builds under a game root.

    Args:
        game_root: Game root directory
        downloader: Downloader for patch artifacts
        patch_applier: Runs the external patch tool
        patch_tool: Provides the patch tool binary
        runtime_installer: Installs the Java runtime when missing
        hot_patcher: Optional post-install client hotfix step
        presence: Optional presence channel updated at start and finish
        platform: Platform family; defaults to the running one
    """

    def __init__(
        self,
        game_root: Path,
        *,
        downloader: Downloader,
        patch_applier: PatchApplier,
        patch_tool: PatchToolProvider,
        runtime_installer: RuntimeInstaller,
        hot_patcher: HotPatcher | None = None,
        presence: PresenceChannel | None = None,
        platform: Platform | None = None,
    ):
        self.game_root = game_root
        self.downloader = downloader
        self.patch_applier = patch_applier
        self.patch_tool = patch_tool
        self.runtime_installer = runtime_installer
        self.hot_patcher = hot_patcher
        self.presence = presence
        self.platform = platform or Platform.current()

        self.phase = InstallPhase.IDLE
        self.history: list[InstallPhase] = [InstallPhase.IDLE]

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        presence: PresenceChannel | None = None,
        platform: Platform | None = None,
    ) -> Installer:
        """Build an installer with the default collaborators."""
        platform = platform or Platform.current()
        downloader = Downloader(config.download)
        return cls(
            config.game_dir,
            downloader=downloader,
            patch_applier=PatchApplier(strict_exit=config.patch_tool.strict_exit),
            patch_tool=ButlerBootstrap(config.patch_tool, downloader, platform),
            runtime_installer=JreBootstrap(config.runtime, downloader, platform),
            hot_patcher=HotPatcher(downloader, platform) if config.online_patch else None,
            presence=presence,
            platform=platform,
        )

    async def aclose(self) -> None:
        await self.downloader.aclose()

    def artifact_path(self, version: GameVersion) -> Path:
        """Temporary location of the downloaded artifact for a build."""
        return self.game_root / f"temp_{version.build_index}.pwr"

    def _transition(self, phase: InstallPhase) -> None:
        logger.debug("install_phase", phase=phase.value, previous=self.phase.value)
        self.phase = phase
        self.history.append(phase)

    async def install(self, version: GameVersion, sink: EventSink | None = None) -> bool:
        """Install a version, reporting through the sink.

        Every failure is reported as a single ``install-error`` event; this
        method does not raise.

        Args:
            version: Version to install
            sink: Receives lifecycle and progress events

        Returns:
            True when the version is installed, False on failure
        """
        self.phase = InstallPhase.IDLE
        self.history = [InstallPhase.IDLE]
        logger.info(
            "install_started",
            type=version.type.value,
            build=version.display_name,
            build_index=version.build_index,
            game_root=str(self.game_root),
        )
        if self.presence is not None:
            self.presence.set_state(*installing_activity(version))

        try:
            async with EventDispatcher(sink) as events:
                try:
                    await self._run(version, events)
                except Exception as e:
                    self._transition(InstallPhase.FAILED)
                    logger.error("install_failed", error=str(e), error_type=type(e).__name__)
                    events.error(str(e) or type(e).__name__)
                    return False

                events.finished(version)
                logger.info("install_finished", build_index=version.build_index)

                if self.hot_patcher is not None:
                    await self.hot_patcher.patch_if_needed(self.game_root, version, events.publish)
                return True
        finally:
            if self.presence is not None:
                self.presence.clear()

    async def _run(self, version: GameVersion, events: EventDispatcher) -> None:
        self._transition(InstallPhase.RESOLVING)
        migrate_legacy_channel_install(self.game_root, version.type)

        if version.type == VersionType.RELEASE and version.is_latest:
            self._retire_latest(version)

        install_dir = resolve_install_dir(self.game_root, version)
        status = check_installation(self.game_root, version, self.platform)
        manifest = read_install_manifest(install_dir)
        needs_patch = patch_required(manifest, version, status)

        try:
            self.game_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Failed to create {self.game_root}: {e}") from e
        events.started()

        if not status.runtime:
            self._transition(InstallPhase.INSTALLING_RUNTIME)
            await self._install_runtime()

        if needs_patch:
            if manifest is not None and manifest.build_index == version.build_index:
                logger.warning(
                    "install_binaries_missing",
                    build_index=version.build_index,
                    client=status.client,
                    server=status.server,
                )
            else:
                logger.info(
                    "install_new_build",
                    target=version.build_index,
                    current=manifest.build_index if manifest else None,
                )
            self._transition(InstallPhase.PATCHING)
            await self._patch(version, install_dir, events)
        else:
            logger.info("install_up_to_date", build_index=version.build_index)

        self._transition(InstallPhase.VERIFYING)
        verified = check_installation(self.game_root, version, self.platform)
        if not verified.binaries_present:
            logger.warning(
                "install_verification_incomplete",
                client=verified.client,
                server=verified.server,
            )
        self._transition(InstallPhase.DONE)

    def _retire_latest(self, version: GameVersion) -> None:
        """Move the build occupying the latest alias to its numbered directory.

        If the numbered directory already exists it is kept and the latest
        copy is deleted instead.
        """
        latest_dir = get_latest_dir(self.game_root)
        if not latest_dir.exists():
            return

        existing = read_install_manifest(latest_dir)
        if existing is None or existing.build_index == version.build_index:
            return

        self._transition(InstallPhase.RETIRING_LATEST)
        target_dir = get_release_build_dir(self.game_root, existing.build_index)
        try:
            if target_dir.exists():
                logger.info(
                    "retire_latest_delete",
                    build_index=existing.build_index,
                    existing=str(target_dir),
                )
                shutil.rmtree(latest_dir)
            else:
                logger.info(
                    "retire_latest_move",
                    build_index=existing.build_index,
                    target=str(target_dir),
                )
                target_dir.parent.mkdir(parents=True, exist_ok=True)
                latest_dir.rename(target_dir)
        except OSError as e:
            raise FilesystemError(f"Failed to retire latest build {existing.build_index}: {e}") from e

    async def _install_runtime(self) -> Path:
        logger.info("runtime_missing", game_root=str(self.game_root))
        try:
            runtime = await self.runtime_installer.install_runtime(self.game_root)
        except Exception as e:
            raise RuntimeInstallError(f"Failed to install JRE: {e}") from e
        if runtime is None:
            raise RuntimeInstallError("Failed to install JRE")
        logger.info("runtime_installed", path=str(runtime))
        return runtime

    async def _patch(self, version: GameVersion, install_dir: Path, events: EventDispatcher) -> None:
        tool = await self.patch_tool.ensure_patch_tool()
        if tool is None:
            raise PatchToolError("Failed to install butler")

        artifact = self.artifact_path(version)
        await self.downloader.download(
            version.url,
            artifact,
            events.progress(),
            phase=ProgressPhase.PWR_DOWNLOAD,
        )

        staging_dir = get_staging_dir(install_dir)
        await self.patch_applier.apply(
            artifact,
            tool,
            staging_dir,
            install_dir,
            events.progress(),
        )
        logger.info("patch_applied", target=str(install_dir))

        remove_file(artifact)
        remove_tree(staging_dir)

        try:
            write_install_manifest(install_dir, version)
        except OSError as e:
            raise FilesystemError(f"Failed to write install manifest: {e}") from e

        ensure_executable(resolve_client_path(install_dir, self.platform))
