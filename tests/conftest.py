"""Pytest configuration and shared fixtures for butter_installer tests."""

import os
import stat
import sys
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from butter_installer.core.events import ProgressCallback
from butter_installer.core.paths import resolve_runtime_path
from butter_installer.core.types import (
    EventKind,
    GameVersion,
    InstallEvent,
    Platform,
    ProgressEvent,
    ProgressPhase,
    VersionType,
)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def sample_version() -> GameVersion:
    """Latest release version descriptor."""
    return GameVersion(
        type=VersionType.RELEASE,
        build_index=3,
        build_name="2026.01.17-abc123",
        url="https://x/b3.patch",
        is_latest=True,
    )


@pytest.fixture
def pre_release_version() -> GameVersion:
    """Pre-release version descriptor."""
    return GameVersion(
        type=VersionType.PRE_RELEASE,
        build_index=7,
        build_name="pre-7",
        url="https://x/p7.patch",
    )


class RecordingSink:
    """Event sink that keeps every delivered event."""

    def __init__(self) -> None:
        self.events: list[InstallEvent] = []

    def __call__(self, event: InstallEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]

    def progress(self, phase: ProgressPhase) -> list[ProgressEvent]:
        return [
            e.progress for e in self.events
            if e.progress is not None and e.progress.phase == phase
        ]


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


class FakeDownloader:
    """Downloader double that writes a fixed payload and records URLs."""

    def __init__(self, payload: bytes = b"PWR-ARTIFACT"):
        self.payload = payload
        self.calls: list[str] = []
        self.closed = False

    async def download(
        self,
        url: str,
        dest: Path,
        on_progress: ProgressCallback | None = None,
        phase: ProgressPhase = ProgressPhase.PWR_DOWNLOAD,
    ) -> Path:
        self.calls.append(url)
        total = len(self.payload)
        if on_progress:
            on_progress(ProgressEvent(phase=phase, percent=0, total=total, current=0))
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.payload)
        if on_progress:
            on_progress(ProgressEvent(phase=phase, percent=100, total=total, current=total))
        return dest

    async def aclose(self) -> None:
        self.closed = True


class FakePatchApplier:
    """Patch applier double that materializes client and server binaries."""

    def __init__(self, write_binaries: bool = True):
        self.write_binaries = write_binaries
        self.calls: list[tuple[Path, Path]] = []
        self.artifact_seen: list[bool] = []

    async def apply(
        self,
        artifact_path: Path,
        tool_path: Path,
        staging_dir: Path,
        target_dir: Path,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        self.calls.append((artifact_path, target_dir))
        self.artifact_seen.append(artifact_path.exists())
        target_dir.mkdir(parents=True, exist_ok=True)
        staging_dir.mkdir(parents=True, exist_ok=True)
        if on_progress:
            on_progress(ProgressEvent(phase=ProgressPhase.PATCHING, percent=-1))
            on_progress(ProgressEvent(phase=ProgressPhase.PATCHING, percent=42))
        if self.write_binaries:
            client = target_dir / "Client" / "HytaleClient"
            client.parent.mkdir(parents=True, exist_ok=True)
            client.write_bytes(b"client")
            server = target_dir / "Server" / "HytaleServer.jar"
            server.parent.mkdir(parents=True, exist_ok=True)
            server.write_bytes(b"server")
        if on_progress:
            on_progress(ProgressEvent(phase=ProgressPhase.PATCHING, percent=100))
        return target_dir


class FakePatchTool:
    """Patch tool provider double."""

    def __init__(self, path: Path | None):
        self.path = path
        self.calls = 0

    async def ensure_patch_tool(self) -> Path | None:
        self.calls += 1
        return self.path


class FakeRuntimeInstaller:
    """Runtime installer double that creates the java executable."""

    def __init__(self, succeed: bool = True, platform: Platform = Platform.LINUX):
        self.succeed = succeed
        self.platform = platform
        self.calls = 0

    async def install_runtime(self, game_root: Path) -> Path | None:
        self.calls += 1
        if not self.succeed:
            return None
        java = resolve_runtime_path(game_root, self.platform)
        java.parent.mkdir(parents=True, exist_ok=True)
        java.write_bytes(b"java")
        return java


def write_fake_tool(directory: Path, body: str) -> Path:
    """Write an executable Python script standing in for the patch tool.

    The script receives the same argv as the real tool; ``body`` runs with
    ``args`` bound to ``sys.argv[1:]``.
    """
    script = directory / "fake-butler"
    script.write_text(
        f"#!{sys.executable}\n"
        "import json, sys\n"
        "args = sys.argv[1:]\n"
        f"{body}\n"
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


posix_only = pytest.mark.skipif(os.name == "nt", reason="requires POSIX executable scripts")


# Pytest configuration
def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest settings."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Modify test collection to add markers automatically."""
    for item in items:
        # Add unit marker to all tests by default
        if not any(marker.name in ['integration', 'slow'] for marker in item.iter_markers()):
            item.add_marker(pytest.mark.unit)
