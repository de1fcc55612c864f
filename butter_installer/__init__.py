"""Butter Installer - game build installer and patcher.

Installs and updates game builds by downloading incremental PWR patch
artifacts and applying them with butler, keeping the "latest" alias and
numbered historical builds consistent on disk.

Key modules:
- core: Install pipeline (paths, manifests, downloads, patching, hot-patch)
- commands: CLI command implementations
"""

__version__ = "0.1.0"
__author__ = "Butter Launcher Team"

# Re-export commonly used types
from butter_installer.core.types import (
    GameVersion,
    InstallManifest,
    ProgressEvent,
    VersionType,
)

__all__ = [
    "__version__",
    "__author__",
    "GameVersion",
    "InstallManifest",
    "ProgressEvent",
    "VersionType",
]
