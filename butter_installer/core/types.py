"""Core type definitions for butter_installer."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VersionType(StrEnum):
    """Release channels published by the version catalog."""
    RELEASE = "release"
    PRE_RELEASE = "pre-release"


class Platform(StrEnum):
    """Platform families the installer distinguishes."""
    WINDOWS = "windows"
    LINUX = "linux"
    DARWIN = "darwin"

    @classmethod
    def current(cls) -> Platform:
        """Detect the platform family of the running interpreter."""
        if sys.platform.startswith("win"):
            return cls.WINDOWS
        if sys.platform == "darwin":
            return cls.DARWIN
        return cls.LINUX


class ProgressPhase(StrEnum):
    """Phases reported through progress events."""
    PWR_DOWNLOAD = "pwr-download"
    PATCHING = "patching"
    ONLINE_PATCH = "online-patch"


class EventKind(StrEnum):
    """Event channels delivered to the event sink."""
    INSTALL_STARTED = "install-started"
    INSTALL_PROGRESS = "install-progress"
    INSTALL_FINISHED = "install-finished"
    INSTALL_ERROR = "install-error"
    ONLINE_PATCH_PROGRESS = "online-patch-progress"
    ONLINE_PATCH_ERROR = "online-patch-error"


class HotPatchResult(StrEnum):
    """Outcome of the hot-patch step."""
    PATCHED = "patched"
    SKIPPED = "skipped"
    UP_TO_DATE = "up-to-date"


class GameVersion(BaseModel):
    """Version descriptor supplied by the version catalog."""
    type: VersionType = Field(..., description="Release channel")
    build_index: int = Field(..., description="Monotonic build identifier")
    build_name: str = Field(default="", description="Human readable build name")
    url: str = Field(..., description="Patch artifact URL")
    is_latest: bool = Field(
        default=False,
        alias="isLatest",
        description="Whether this build takes the latest alias",
    )
    patch_url: str | None = Field(None, description="Hot-patch binary URL")
    patch_hash: str | None = Field(None, description="Expected SHA-256 of the hot-patch binary")

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    @field_validator("build_index")
    @classmethod
    def validate_build_index(cls, v: int) -> int:
        """Validate build index."""
        if v < 0:
            raise ValueError("Build index must be non-negative")
        return v

    @property
    def display_name(self) -> str:
        """Build name, or a synthesized one when the catalog omits it."""
        return self.build_name or f"Build-{self.build_index} {self.type.value}"

    @classmethod
    def from_file(cls, path: Path) -> GameVersion:
        """Load a version descriptor from a JSON file."""
        with open(path) as f:
            return cls.model_validate(json.load(f))


class InstallManifest(BaseModel):
    """Record of the build materialized in an install directory."""
    build_index: int = Field(..., description="Installed build index")
    build_name: str | None = Field(None, description="Installed build name")

    model_config = ConfigDict(extra="allow")


@dataclass(frozen=True)
class ProgressEvent:
    """A single progress observation.

    Attributes:
        phase: Phase being reported
        percent: 0-100, or -1 when progress is indeterminate
        total: Total bytes when known
        current: Bytes transferred so far
    """

    phase: ProgressPhase
    percent: int
    total: int | None = None
    current: int | None = None

    @property
    def indeterminate(self) -> bool:
        return self.percent == -1


@dataclass(frozen=True)
class InstallEvent:
    """Envelope delivered to the event sink."""

    kind: EventKind
    progress: ProgressEvent | None = None
    version: GameVersion | None = None
    message: str | None = None


@dataclass(frozen=True)
class InstallationStatus:
    """Presence of the binaries that make up a usable install."""

    client: bool
    server: bool
    runtime: bool

    @property
    def binaries_present(self) -> bool:
        """Client and server both present."""
        return self.client and self.server
