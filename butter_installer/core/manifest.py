"""Per-directory install manifest.

The manifest records which build is materialized in an install directory.
It is the only source of truth the installer consults to skip work, so it is
written with a temp file and ``os.replace`` to keep readers from observing a
half-written record.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import structlog
from pydantic import ValidationError

from butter_installer.core.types import GameVersion, InstallManifest

logger = structlog.get_logger()

MANIFEST_FILENAME = ".butter-manifest.json"


def manifest_path(install_dir: Path) -> Path:
    return install_dir / MANIFEST_FILENAME


def read_install_manifest(install_dir: Path) -> InstallManifest | None:
    """Read the manifest of an install directory.

    Args:
        install_dir: Install directory

    Returns:
        Parsed manifest, or None if it is missing or unreadable
    """
    path = manifest_path(install_dir)
    if not path.exists():
        return None

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return InstallManifest.model_validate(raw)
    except (json.JSONDecodeError, OSError, ValidationError) as e:
        logger.warning("manifest_unreadable", path=str(path), error=str(e))
        return None


def write_install_manifest(install_dir: Path, version: GameVersion) -> InstallManifest:
    """Record a version as installed in a directory.

    Args:
        install_dir: Install directory
        version: Version that was just materialized

    Returns:
        The manifest that was written
    """
    manifest = InstallManifest(
        build_index=version.build_index,
        build_name=version.build_name or None,
    )

    path = manifest_path(install_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".json.tmp")

    tmp_path.write_text(
        json.dumps(manifest.model_dump(exclude_none=True), indent=2),
        encoding="utf-8",
    )
    os.replace(tmp_path, path)

    logger.debug("manifest_written", path=str(path), build_index=version.build_index)
    return manifest
