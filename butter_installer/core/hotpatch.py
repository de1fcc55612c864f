"""Hash-verified replacement of the client binary.

Some builds receive an out-of-band hotfix for the client executable after
release. The catalog then carries a ``patch_url`` pointing at the
replacement binary and a ``patch_hash`` with its SHA-256. Only Windows
clients are hot-patched; other platforms always skip this step.
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Callable
from pathlib import Path

import structlog

from butter_installer.core.download import Downloader
from butter_installer.core.errors import FilesystemError, IntegrityError
from butter_installer.core.paths import resolve_client_path, resolve_install_dir
from butter_installer.core.types import (
    EventKind,
    GameVersion,
    HotPatchResult,
    InstallEvent,
    Platform,
    ProgressEvent,
    ProgressPhase,
)
from butter_installer.core.utils import (
    normalize_hash,
    remove_file,
    sha256_file,
    validate_hash_string,
)

logger = structlog.get_logger()

SUPPORTED_PLATFORMS = frozenset({Platform.WINDOWS})

Publisher = Callable[[InstallEvent], None]


def _discard(event: InstallEvent) -> None:
    pass


def hashes_match(actual: str, expected: str) -> bool:
    """Compare hex digests ignoring case and surrounding whitespace."""
    return normalize_hash(actual) == normalize_hash(expected)


def replace_file(source: Path, target: Path) -> None:
    """Move ``source`` over ``target``.

    Falls back to copy then delete when the rename fails, which happens
    across devices or while another process holds the target open. The
    target is overwritten in place and never removed first.

    Raises:
        FilesystemError: If neither rename nor copy succeeds
    """
    try:
        os.replace(source, target)
        return
    except OSError as e:
        logger.debug("replace_rename_failed", source=str(source), error=str(e))

    try:
        shutil.copyfile(source, target)
    except OSError as e:
        raise FilesystemError(f"Failed to replace {target}: {e}") from e
    remove_file(source)


class HotPatcher:
    """Apply verified client hotfixes.

    Args:
        downloader: Downloader used to fetch the replacement binary
        platform: Platform family; defaults to the running one
    """

    def __init__(self, downloader: Downloader, platform: Platform | None = None):
        self.downloader = downloader
        self.platform = platform or Platform.current()

    def temp_path_for(self, client_path: Path, version: GameVersion) -> Path:
        suffix = ".exe" if self.platform == Platform.WINDOWS else ""
        return client_path.with_name(f"temp_online_patch_{version.build_index}{suffix}")

    async def apply(
        self,
        game_root: Path,
        version: GameVersion,
        publish: Publisher = _discard,
    ) -> HotPatchResult:
        """Hot-patch the client, raising on any failure.

        The replacement is staged in a temporary file next to the client,
        which is removed again whenever the step fails.

        Args:
            game_root: Game root directory
            version: Installed version carrying patch metadata
            publish: Receives ``online-patch-progress`` events

        Returns:
            PATCHED, UP_TO_DATE, or SKIPPED when there is nothing to do

        Raises:
            IntegrityError: If the expected hash is malformed or the
                downloaded binary does not match it
            DownloadError: If the download fails
            FilesystemError: If the binary cannot be replaced
        """
        if self.platform not in SUPPORTED_PLATFORMS:
            return HotPatchResult.SKIPPED

        url = version.patch_url
        expected = version.patch_hash
        if not url or not expected:
            return HotPatchResult.SKIPPED
        if not validate_hash_string(normalize_hash(expected)):
            raise IntegrityError(f"Invalid patch hash: {expected!r}", expected=expected)

        client_path = resolve_client_path(resolve_install_dir(game_root, version), self.platform)
        if not client_path.is_file():
            logger.debug("hotpatch_client_missing", path=str(client_path))
            return HotPatchResult.SKIPPED

        current = sha256_file(client_path)
        if hashes_match(current, expected):
            logger.info("hotpatch_up_to_date", build_index=version.build_index)
            return HotPatchResult.UP_TO_DATE

        def on_progress(event: ProgressEvent) -> None:
            publish(InstallEvent(kind=EventKind.ONLINE_PATCH_PROGRESS, progress=event))

        temp_path = self.temp_path_for(client_path, version)
        try:
            await self.downloader.download(
                url, temp_path, on_progress, phase=ProgressPhase.ONLINE_PATCH
            )

            downloaded = sha256_file(temp_path)
            if not hashes_match(downloaded, expected):
                raise IntegrityError(
                    "Patch hash mismatch (SHA256)",
                    expected=normalize_hash(expected),
                    actual=downloaded,
                )

            replace_file(temp_path, client_path)
        except BaseException:
            remove_file(temp_path)
            raise

        logger.info("hotpatch_applied", build_index=version.build_index, path=str(client_path))
        return HotPatchResult.PATCHED

    async def patch_if_needed(
        self,
        game_root: Path,
        version: GameVersion,
        publish: Publisher = _discard,
    ) -> HotPatchResult:
        """Hot-patch the client; failures become ``online-patch-error`` events.

        The base install stays usable without the hotfix, so nothing raised
        here reaches the caller.
        """
        try:
            return await self.apply(game_root, version, publish)
        except Exception as e:
            logger.warning("hotpatch_failed", build_index=version.build_index, error=str(e))
            publish(InstallEvent(kind=EventKind.ONLINE_PATCH_ERROR, message=str(e)))
            return HotPatchResult.SKIPPED
