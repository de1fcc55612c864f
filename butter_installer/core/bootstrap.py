"""Acquisition of the patch tool and the managed Java runtime.

Both collaborators follow the same contract: return a usable path, or None
when the tool could not be acquired. The installer turns None into its own
error.
"""

from __future__ import annotations

import asyncio
import shutil
import tarfile
import zipfile
from pathlib import Path
from typing import Protocol

import structlog

from butter_installer.core.config import PatchToolConfig, RuntimeConfig
from butter_installer.core.download import Downloader
from butter_installer.core.errors import InstallerError
from butter_installer.core.paths import get_runtime_dir, resolve_runtime_path
from butter_installer.core.types import Platform
from butter_installer.core.utils import ensure_executable, remove_file, remove_tree

logger = structlog.get_logger()


class PatchToolProvider(Protocol):
    async def ensure_patch_tool(self) -> Path | None: ...


class RuntimeInstaller(Protocol):
    async def install_runtime(self, game_root: Path) -> Path | None: ...


def extract_archive(archive: Path, dest: Path) -> None:
    """Extract a zip or tar archive into a directory.

    Raises:
        ValueError: If the archive format is not recognized
    """
    dest.mkdir(parents=True, exist_ok=True)
    if zipfile.is_zipfile(archive):
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(dest)
    elif tarfile.is_tarfile(archive):
        with tarfile.open(archive) as tf:
            tf.extractall(dest, filter="data")
    else:
        raise ValueError(f"Unsupported archive format: {archive.name}")


def find_runtime_home(root: Path, platform: Platform) -> Path | None:
    """Locate the directory holding ``bin/java`` inside an extracted archive."""
    name = "java.exe" if platform == Platform.WINDOWS else "java"
    for candidate in sorted(root.rglob(name)):
        if candidate.parent.name == "bin" and candidate.is_file():
            return candidate.parent.parent
    return None


class ButlerBootstrap:
    """Download and unpack butler on first use.

    Args:
        config: Patch tool configuration
        downloader: Downloader used to fetch the archive
        platform: Platform family; defaults to the running one
    """

    def __init__(
        self,
        config: PatchToolConfig,
        downloader: Downloader,
        platform: Platform | None = None,
    ):
        self.config = config
        self.downloader = downloader
        self.platform = platform or Platform.current()

    @property
    def tool_dir(self) -> Path:
        return self.config.tools_dir / "butler"

    @property
    def binary_path(self) -> Path:
        name = "butler.exe" if self.platform == Platform.WINDOWS else "butler"
        return self.tool_dir / name

    async def ensure_patch_tool(self) -> Path | None:
        """Return the butler binary, downloading it if needed."""
        if self.binary_path.is_file():
            logger.debug("patch_tool_present", path=str(self.binary_path))
            return self.binary_path

        url = self.config.urls.get(self.platform)
        if not url:
            logger.error("patch_tool_unsupported_platform", platform=self.platform.value)
            return None

        archive = self.tool_dir / "butler.zip"
        logger.info("patch_tool_installing", url=url, dest=str(self.tool_dir))
        try:
            await self.downloader.download(url, archive)
            await asyncio.to_thread(extract_archive, archive, self.tool_dir)
        except (InstallerError, OSError, ValueError, zipfile.BadZipFile) as e:
            logger.error("patch_tool_install_failed", error=str(e))
            return None
        finally:
            remove_file(archive)

        if not self.binary_path.is_file():
            logger.error("patch_tool_missing_after_extract", path=str(self.binary_path))
            return None

        ensure_executable(self.binary_path)
        logger.info("patch_tool_installed", path=str(self.binary_path))
        return self.binary_path


class JreBootstrap:
    """Download and unpack the managed Java runtime into ``<root>/jre``.

    Args:
        config: Runtime configuration
        downloader: Downloader used to fetch the archive
        platform: Platform family; defaults to the running one
    """

    def __init__(
        self,
        config: RuntimeConfig,
        downloader: Downloader,
        platform: Platform | None = None,
    ):
        self.config = config
        self.downloader = downloader
        self.platform = platform or Platform.current()

    async def install_runtime(self, game_root: Path) -> Path | None:
        """Install the runtime and return its java executable."""
        java = resolve_runtime_path(game_root, self.platform)
        if java.is_file():
            return java

        url = self.config.urls.get(self.platform)
        if not url:
            logger.error("runtime_unsupported_platform", platform=self.platform.value)
            return None

        runtime_dir = get_runtime_dir(game_root)
        archive = game_root / "jre-download.tmp"
        extract_dir = game_root / "jre-extract"
        logger.info("runtime_installing", url=url, dest=str(runtime_dir))

        try:
            await self.downloader.download(url, archive)
            await asyncio.to_thread(extract_archive, archive, extract_dir)

            home = find_runtime_home(extract_dir, self.platform)
            if home is None:
                logger.error("runtime_layout_unrecognized", path=str(extract_dir))
                return None

            if runtime_dir.exists():
                shutil.rmtree(runtime_dir)
            shutil.move(str(home), str(runtime_dir))
        except (InstallerError, OSError, ValueError, zipfile.BadZipFile, tarfile.TarError) as e:
            logger.error("runtime_install_failed", error=str(e))
            return None
        finally:
            remove_file(archive)
            remove_tree(extract_dir)

        ensure_executable(java)
        logger.info("runtime_installed", path=str(java))
        return java
