"""CLI command implementations for butter_installer.

This module contains all command-line interface implementations:
- install: Install or update a game build
- status: Show installed builds
- hotpatch: Apply a client hotfix
- migrate: Convert a legacy single-channel install
"""

from butter_installer.commands.install import hotpatch, install, migrate, status

__all__ = ["hotpatch", "install", "migrate", "status"]
