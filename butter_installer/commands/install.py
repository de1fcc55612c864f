"""Install commands: install, status, hotpatch and migrate."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import click
import structlog
from pydantic import ValidationError
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
)
from rich.table import Table

from butter_installer.core.config import AppConfig
from butter_installer.core.download import Downloader
from butter_installer.core.errors import InstallerError
from butter_installer.core.hotpatch import HotPatcher
from butter_installer.core.installer import Installer
from butter_installer.core.manifest import read_install_manifest
from butter_installer.core.paths import (
    BUILD_DIR_PREFIX,
    LATEST_DIRNAME,
    get_channel_dir,
    migrate_legacy_channel_install,
    resolve_client_path,
    resolve_runtime_path,
    resolve_server_path,
)
from butter_installer.core.presence import LocalPresence
from butter_installer.core.types import (
    EventKind,
    GameVersion,
    InstallEvent,
    Platform,
    ProgressPhase,
    VersionType,
)

logger = structlog.get_logger()

PHASE_LABELS = {
    ProgressPhase.PWR_DOWNLOAD: "Downloading patch",
    ProgressPhase.PATCHING: "Applying patch",
    ProgressPhase.ONLINE_PATCH: "Downloading hotfix",
}


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool, bool]:
    """Extract common context objects."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    verbose: bool = ctx.obj["verbose"]
    debug: bool = ctx.obj["debug"]
    return config, console, verbose, debug


def event_to_dict(event: InstallEvent) -> dict[str, Any]:
    """JSON-serializable form of an install event."""
    data: dict[str, Any] = {"event": event.kind.value}
    if event.progress is not None:
        data["phase"] = event.progress.phase.value
        data["percent"] = event.progress.percent
        if event.progress.total is not None:
            data["total"] = event.progress.total
        if event.progress.current is not None:
            data["current"] = event.progress.current
    if event.version is not None:
        data["version"] = event.version.model_dump(mode="json")
    if event.message is not None:
        data["message"] = event.message
    return data


class ConsoleEventSink:
    """Render install events on the console.

    Rich output draws one progress bar per phase; json output prints one
    object per event; plain output prints phase changes and results.
    """

    def __init__(self, console: Console, output_format: str = "rich"):
        self.console = console
        self.output_format = output_format
        self.progress: Progress | None = None
        self._tasks: dict[ProgressPhase, TaskID] = {}
        self._last_plain: dict[ProgressPhase, int] = {}
        self.errors: list[str] = []

    def __call__(self, event: InstallEvent) -> None:
        if event.kind in (EventKind.INSTALL_ERROR, EventKind.ONLINE_PATCH_ERROR) and event.message:
            self.errors.append(event.message)

        if self.output_format == "json":
            print(json.dumps(event_to_dict(event)))
            return

        if event.progress is not None:
            self._render_progress(event)
            return

        self.close()
        if event.kind == EventKind.INSTALL_STARTED:
            self.console.print("[cyan]Installation started[/cyan]")
        elif event.kind == EventKind.INSTALL_FINISHED and event.version is not None:
            self.console.print(f"[green]Installed {event.version.display_name}[/green]")
        elif event.kind == EventKind.INSTALL_ERROR:
            self.console.print(f"[red]Installation failed: {event.message}[/red]")
        elif event.kind == EventKind.ONLINE_PATCH_ERROR:
            self.console.print(f"[yellow]Hotfix skipped: {event.message}[/yellow]")

    def _render_progress(self, event: InstallEvent) -> None:
        assert event.progress is not None
        phase = event.progress.phase
        percent = event.progress.percent

        if self.output_format == "plain":
            last = self._last_plain.get(phase)
            if percent == 100 or last is None:
                self.console.print(f"{PHASE_LABELS[phase]}: {percent if percent >= 0 else '?'}%")
            self._last_plain[phase] = percent
            return

        if self.progress is None:
            self.progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                DownloadColumn(),
                console=self.console,
            )
            self.progress.start()

        task = self._tasks.get(phase)
        if task is None:
            task = self.progress.add_task(PHASE_LABELS[phase], total=None)
            self._tasks[phase] = task

        total = event.progress.total
        if total is not None and event.progress.current is not None:
            self.progress.update(task, total=total, completed=event.progress.current)
        elif percent >= 0:
            self.progress.update(task, total=100, completed=percent)

        if percent == 100:
            self.progress.update(task, total=total or 100, completed=total or 100)

    def close(self) -> None:
        """Stop any live progress display."""
        if self.progress is not None:
            self.progress.stop()
            self.progress = None
            self._tasks.clear()


def _build_version(
    version_file: Path | None,
    build_index: int | None,
    url: str | None,
    version_type: str,
    build_name: str,
    latest: bool,
    patch_url: str | None,
    patch_hash: str | None,
) -> GameVersion:
    """Create the version descriptor from a file or from options."""
    try:
        if version_file is not None:
            return GameVersion.from_file(version_file)
        if build_index is None or url is None:
            raise click.UsageError("Provide --version-file, or both --build-index and --url")
        return GameVersion(
            type=VersionType(version_type),
            build_index=build_index,
            build_name=build_name,
            url=url,
            is_latest=latest,
            patch_url=patch_url,
            patch_hash=patch_hash,
        )
    except (ValidationError, json.JSONDecodeError, OSError) as e:
        raise click.BadParameter(f"Invalid version descriptor: {e}") from e


async def _run_install(config: AppConfig, version: GameVersion, sink: ConsoleEventSink) -> bool:
    presence = LocalPresence()
    presence.connect()
    installer = Installer.from_config(config, presence=presence)
    try:
        return await installer.install(version, sink)
    finally:
        await installer.aclose()
        presence.disconnect()


def version_options(func: Any) -> Any:
    """Options describing a version descriptor."""
    options = [
        click.option(
            "--version-file", type=click.Path(exists=True, path_type=Path),
            help="JSON version descriptor from the catalog",
        ),
        click.option("--build-index", "-b", type=int, help="Build index"),
        click.option("--url", type=str, help="Patch artifact URL"),
        click.option(
            "--type", "version_type",
            type=click.Choice([t.value for t in VersionType]),
            default=VersionType.RELEASE.value,
            help="Release channel",
        ),
        click.option("--build-name", type=str, default="", help="Build name"),
        click.option("--latest/--no-latest", default=False, help="Install into the latest alias"),
        click.option("--patch-url", type=str, help="Hot-patch binary URL"),
        click.option("--patch-hash", type=str, help="Hot-patch SHA-256"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


game_dir_option = click.option(
    "--game-dir", "-g",
    type=click.Path(file_okay=False, path_type=Path),
    help="Game root directory (defaults to the configured one)",
)


@click.command()
@version_options
@game_dir_option
@click.option("--no-hotpatch", is_flag=True, help="Skip the client hotfix step")
@click.pass_context
def install(
    ctx: click.Context,
    version_file: Path | None,
    build_index: int | None,
    url: str | None,
    version_type: str,
    build_name: str,
    latest: bool,
    patch_url: str | None,
    patch_hash: str | None,
    game_dir: Path | None,
    no_hotpatch: bool,
) -> None:
    """Install or update a game build."""
    config, console, _, _ = _get_context_objects(ctx)
    version = _build_version(
        version_file, build_index, url, version_type, build_name, latest, patch_url, patch_hash
    )

    run_config = config.model_copy(update={
        "game_dir": game_dir or config.game_dir,
        "online_patch": config.online_patch and not no_hotpatch,
    })

    sink = ConsoleEventSink(console, config.output_format)
    try:
        ok = asyncio.run(_run_install(run_config, version, sink))
    finally:
        sink.close()

    if not ok:
        sys.exit(1)


def collect_installs(game_root: Path, platform: Platform) -> list[dict[str, Any]]:
    """Describe every install directory under a game root."""
    installs: list[dict[str, Any]] = []
    for version_type in VersionType:
        channel_dir = get_channel_dir(game_root, version_type)
        if not channel_dir.is_dir():
            continue
        for entry in sorted(channel_dir.iterdir()):
            if not entry.is_dir():
                continue
            if entry.name != LATEST_DIRNAME and not entry.name.startswith(BUILD_DIR_PREFIX):
                continue
            manifest = read_install_manifest(entry)
            installs.append({
                "channel": version_type.value,
                "directory": entry.name,
                "path": str(entry),
                "build_index": manifest.build_index if manifest else None,
                "build_name": manifest.build_name if manifest else None,
                "client": resolve_client_path(entry, platform).is_file(),
                "server": resolve_server_path(entry).is_file(),
            })
    return installs


@click.command()
@game_dir_option
@click.pass_context
def status(ctx: click.Context, game_dir: Path | None) -> None:
    """Show installed builds under the game root."""
    config, console, _, _ = _get_context_objects(ctx)
    game_root = game_dir or config.game_dir
    platform = Platform.current()

    installs = collect_installs(game_root, platform)
    runtime = resolve_runtime_path(game_root, platform).is_file()

    if config.output_format == "json":
        print(json.dumps({"game_dir": str(game_root), "runtime": runtime, "installs": installs}, indent=2))
        return

    if not installs:
        console.print(f"[yellow]No builds installed under {game_root}[/yellow]")
        return

    table = Table(title=f"Installed builds ({game_root})")
    table.add_column("Channel", style="cyan")
    table.add_column("Directory", style="cyan")
    table.add_column("Build", style="green")
    table.add_column("Name")
    table.add_column("Client")
    table.add_column("Server")

    for item in installs:
        table.add_row(
            item["channel"],
            item["directory"],
            str(item["build_index"]) if item["build_index"] is not None else "[red]no manifest[/red]",
            item["build_name"] or "",
            "yes" if item["client"] else "[red]missing[/red]",
            "yes" if item["server"] else "[red]missing[/red]",
        )
    console.print(table)
    console.print(f"Runtime: {'installed' if runtime else '[yellow]missing[/yellow]'}")


async def _run_hotpatch(config: AppConfig, game_root: Path, version: GameVersion, sink: ConsoleEventSink) -> str:
    async with Downloader(config.download) as downloader:
        patcher = HotPatcher(downloader)
        result = await patcher.patch_if_needed(game_root, version, sink)
    return result.value


@click.command()
@version_options
@game_dir_option
@click.pass_context
def hotpatch(
    ctx: click.Context,
    version_file: Path | None,
    build_index: int | None,
    url: str | None,
    version_type: str,
    build_name: str,
    latest: bool,
    patch_url: str | None,
    patch_hash: str | None,
    game_dir: Path | None,
) -> None:
    """Apply the client hotfix of an installed build."""
    config, console, _, _ = _get_context_objects(ctx)
    version = _build_version(
        version_file, build_index, url or "", version_type, build_name, latest, patch_url, patch_hash
    )

    sink = ConsoleEventSink(console, config.output_format)
    try:
        result = asyncio.run(_run_hotpatch(config, game_dir or config.game_dir, version, sink))
    finally:
        sink.close()

    if config.output_format == "json":
        print(json.dumps({"result": result}))
    else:
        console.print(f"Hotfix: {result}")


@click.command()
@click.option(
    "--type", "version_type",
    type=click.Choice([t.value for t in VersionType]),
    default=VersionType.RELEASE.value,
    help="Release channel to migrate",
)
@game_dir_option
@click.pass_context
def migrate(ctx: click.Context, version_type: str, game_dir: Path | None) -> None:
    """Move a legacy single-channel install into the versioned layout."""
    config, console, _, _ = _get_context_objects(ctx)
    try:
        target = migrate_legacy_channel_install(game_dir or config.game_dir, VersionType(version_type))
    except InstallerError as e:
        raise click.ClickException(str(e)) from e

    if target is None:
        console.print("Nothing to migrate")
    else:
        console.print(f"[green]Migrated legacy install to {target}[/green]")
