"""Install directory layout for a game root.

Layout under a game root::

    game/release/latest/          mutable alias for the newest release
    game/release/build-<N>/       retired or pinned release builds
    game/pre-release/build-<N>/   pre-release builds
    jre/                          managed Java runtime shared by all builds

Each install directory holds ``Client/``, ``Server/`` and the install
manifest. Older launchers kept a single install per channel directly under
``game/<type>/``; ``migrate_legacy_channel_install`` moves such a tree into
the versioned layout.
"""

from __future__ import annotations

import shutil
from pathlib import Path

import structlog

from butter_installer.core.errors import FilesystemError
from butter_installer.core.manifest import MANIFEST_FILENAME, read_install_manifest
from butter_installer.core.types import (
    GameVersion,
    InstallationStatus,
    Platform,
    VersionType,
)

logger = structlog.get_logger()

LATEST_DIRNAME = "latest"
BUILD_DIR_PREFIX = "build-"
STAGING_DIRNAME = "staging-temp"

# Entries that identify a legacy single-channel install
LEGACY_MARKERS = ("Client", "Server")


def get_game_dir(game_root: Path) -> Path:
    return game_root / "game"


def get_channel_dir(game_root: Path, version_type: VersionType) -> Path:
    return get_game_dir(game_root) / version_type.value


def get_latest_dir(game_root: Path) -> Path:
    """Directory holding the latest release alias."""
    return get_channel_dir(game_root, VersionType.RELEASE) / LATEST_DIRNAME


def get_build_dir(game_root: Path, version_type: VersionType, build_index: int) -> Path:
    """Numbered directory for a build on a channel."""
    return get_channel_dir(game_root, version_type) / f"{BUILD_DIR_PREFIX}{build_index}"


def get_release_build_dir(game_root: Path, build_index: int) -> Path:
    return get_build_dir(game_root, VersionType.RELEASE, build_index)


def resolve_install_dir(game_root: Path, version: GameVersion) -> Path:
    """Concrete install directory for a version.

    The latest alias is only used for release builds flagged as latest;
    everything else lives in its numbered directory.
    """
    if version.type == VersionType.RELEASE and version.is_latest:
        return get_latest_dir(game_root)
    return get_build_dir(game_root, version.type, version.build_index)


def get_staging_dir(install_dir: Path) -> Path:
    return install_dir / STAGING_DIRNAME


def resolve_client_path(install_dir: Path, platform: Platform) -> Path:
    name = "HytaleClient.exe" if platform == Platform.WINDOWS else "HytaleClient"
    return install_dir / "Client" / name


def resolve_server_path(install_dir: Path) -> Path:
    return install_dir / "Server" / "HytaleServer.jar"


def get_runtime_dir(game_root: Path) -> Path:
    return game_root / "jre"


def resolve_runtime_path(game_root: Path, platform: Platform) -> Path:
    """Java executable of the managed runtime."""
    name = "java.exe" if platform == Platform.WINDOWS else "java"
    return get_runtime_dir(game_root) / "bin" / name


def check_installation(
    game_root: Path,
    version: GameVersion,
    platform: Platform,
) -> InstallationStatus:
    """Report which binaries of a version are present on disk.

    Args:
        game_root: Game root directory
        version: Version whose install directory is inspected
        platform: Platform used to name the binaries

    Returns:
        Presence of client, server and runtime
    """
    install_dir = resolve_install_dir(game_root, version)
    return InstallationStatus(
        client=resolve_client_path(install_dir, platform).is_file(),
        server=resolve_server_path(install_dir).is_file(),
        runtime=resolve_runtime_path(game_root, platform).is_file(),
    )


def _legacy_target_dir(game_root: Path, version_type: VersionType) -> Path | None:
    """Pick the versioned directory a legacy channel install moves to."""
    if version_type == VersionType.RELEASE:
        return get_latest_dir(game_root)

    manifest = read_install_manifest(get_channel_dir(game_root, version_type))
    if manifest is None:
        return None
    return get_build_dir(game_root, version_type, manifest.build_index)


def migrate_legacy_channel_install(game_root: Path, version_type: VersionType) -> Path | None:
    """Move a legacy single-channel install into the versioned layout.

    Safe to call on every invocation: returns None without touching the
    filesystem when no legacy entries exist.

    Args:
        game_root: Game root directory
        version_type: Channel to migrate

    Returns:
        Directory the legacy install was moved to, or None

    Raises:
        FilesystemError: If moving an entry fails
    """
    channel_dir = get_channel_dir(game_root, version_type)
    if not any((channel_dir / marker).exists() for marker in LEGACY_MARKERS):
        return None

    target_dir = _legacy_target_dir(game_root, version_type)
    if target_dir is None:
        logger.warning(
            "legacy_install_unversioned",
            channel=version_type.value,
            path=str(channel_dir),
        )
        return None

    if target_dir.exists():
        logger.warning(
            "legacy_migration_target_exists",
            channel=version_type.value,
            target=str(target_dir),
        )
        return None

    entries = [
        entry for entry in channel_dir.iterdir()
        if entry.name != LATEST_DIRNAME and not entry.name.startswith(BUILD_DIR_PREFIX)
    ]

    logger.info(
        "legacy_migration_started",
        channel=version_type.value,
        target=str(target_dir),
        entries=len(entries),
    )

    try:
        target_dir.mkdir(parents=True)
        for entry in entries:
            shutil.move(str(entry), str(target_dir / entry.name))
    except OSError as e:
        raise FilesystemError(
            f"Failed to migrate legacy {version_type.value} install to {target_dir}: {e}"
        ) from e

    if not (target_dir / MANIFEST_FILENAME).exists():
        logger.info("legacy_migration_without_manifest", target=str(target_dir))

    return target_dir
