"""Core functionality for butter_installer.

This module provides the install pipeline:
- Path resolution and legacy layout migration
- Install manifests
- Streaming downloads
- Patch tool supervision
- Client hot-patching
- Install orchestration
"""

from butter_installer.core.errors import (
    DownloadError,
    FilesystemError,
    InstallerError,
    IntegrityError,
    PatchToolError,
    RuntimeInstallError,
)
from butter_installer.core.installer import Installer, InstallPhase
from butter_installer.core.types import (
    EventKind,
    GameVersion,
    HotPatchResult,
    InstallEvent,
    InstallManifest,
    Platform,
    ProgressEvent,
    ProgressPhase,
    VersionType,
)

__all__ = [
    # Types
    "EventKind",
    "GameVersion",
    "HotPatchResult",
    "InstallEvent",
    "InstallManifest",
    "Platform",
    "ProgressEvent",
    "ProgressPhase",
    "VersionType",
    # Orchestration
    "Installer",
    "InstallPhase",
    # Errors
    "InstallerError",
    "DownloadError",
    "PatchToolError",
    "IntegrityError",
    "RuntimeInstallError",
    "FilesystemError",
]
