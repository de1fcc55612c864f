"""Supervision of the external patch tool (butler).

The tool is run as::

    butler apply --json --staging-dir <staging> <artifact> <target>

With ``--json`` it writes one JSON object per line on stdout. The exact
shapes vary between tool versions, so each line is decoded independently
and anything that does not look like a progress record is dropped.
"""

from __future__ import annotations

import asyncio
import json
import math
from collections.abc import Callable
from pathlib import Path
from typing import Any

import structlog

from butter_installer.core.errors import FilesystemError, PatchToolError
from butter_installer.core.events import ProgressCallback
from butter_installer.core.types import ProgressEvent, ProgressPhase

logger = structlog.get_logger()

# Keys carrying a progress value, highest priority first
PROGRESS_KEYS = ("percentage", "percent", "progress")

# Longest output line accepted from the tool
STREAM_LIMIT = 1024 * 1024


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def decode_progress_line(line: str) -> int | None:
    """Decode one line of tool output into a patch percentage.

    A line is a progress record when it is a JSON object whose ``type``
    contains "progress" (any case) or which carries a numeric
    ``percentage`` or ``percent``. Fractions in (0, 1] are scaled to
    percent; the result is clamped to [0, 100] and rounded.

    Args:
        line: Raw stdout line

    Returns:
        Percentage, or None when the line carries no usable progress

    Example:
        >>> decode_progress_line('{"type": "progress", "progress": 0.5}')
        50
        >>> decode_progress_line('not json') is None
        True
    """
    stripped = line.strip()
    if not stripped:
        return None

    try:
        obj = json.loads(stripped)
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None

    record_type = obj.get("type")
    type_says_progress = isinstance(record_type, str) and "progress" in record_type.lower()
    if not (type_says_progress or _is_number(obj.get("percentage")) or _is_number(obj.get("percent"))):
        return None

    value: float | None = None
    for key in PROGRESS_KEYS:
        if _is_number(obj.get(key)):
            try:
                value = float(obj[key])
            except OverflowError:
                return None
            break

    if value is None or math.isnan(value):
        return None

    if 0 < value <= 1:
        value *= 100
    return round(max(0.0, min(100.0, value)))


def build_apply_command(
    tool_path: Path,
    artifact_path: Path,
    staging_dir: Path,
    target_dir: Path,
) -> list[str]:
    """Argument vector for applying an artifact; the order is fixed."""
    return [
        str(tool_path),
        "apply",
        "--json",
        "--staging-dir",
        str(staging_dir),
        str(artifact_path),
        str(target_dir),
    ]


def _ignore_progress(event: ProgressEvent) -> None:
    pass


async def _read_lines(
    reader: asyncio.StreamReader,
    handle: Callable[[bytes], None],
    stream: str,
) -> None:
    """Pass each line of a pipe to ``handle`` until EOF.

    Lines longer than STREAM_LIMIT are drained and dropped whole.
    """
    discarding = False
    while True:
        try:
            raw = await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            if e.partial and not discarding:
                handle(e.partial)
            return
        except asyncio.LimitOverrunError as e:
            await reader.readexactly(e.consumed)
            if not discarding:
                logger.debug("patch_tool_line_dropped", stream=stream, limit=STREAM_LIMIT)
            discarding = True
            continue

        if discarding:
            # Tail of an oversized line
            discarding = False
            continue
        handle(raw)



class PatchApplier:
    """Apply patch artifacts with the external tool.

    Args:
        strict_exit: Raise PatchToolError when the tool exits non-zero
    """

    def __init__(self, strict_exit: bool = True):
        self.strict_exit = strict_exit

    async def apply(
        self,
        artifact_path: Path,
        tool_path: Path,
        staging_dir: Path,
        target_dir: Path,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Apply an artifact onto a target directory.

        Atomicity of the target directory is left to the tool, which
        stages its work in ``staging_dir``. A final ``percent=100`` event
        is emitted whenever the process has run, whatever its output.

        Args:
            artifact_path: Downloaded patch artifact
            tool_path: Patch tool executable
            staging_dir: Tool staging directory
            target_dir: Directory to materialize the build into
            on_progress: Receives ``patching`` progress events

        Returns:
            The target directory

        Raises:
            PatchToolError: If the tool cannot be spawned, or exits
                non-zero while ``strict_exit`` is set
            FilesystemError: If the directories cannot be created
        """
        emit = on_progress or _ignore_progress

        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Failed to prepare {target_dir}: {e}") from e

        logger.info(
            "patch_apply_started",
            artifact=str(artifact_path),
            target=str(target_dir),
            tool=str(tool_path),
        )
        emit(ProgressEvent(phase=ProgressPhase.PATCHING, percent=-1))

        command = build_apply_command(tool_path, artifact_path, staging_dir, target_dir)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                stdin=asyncio.subprocess.DEVNULL,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            logger.error("patch_tool_spawn_failed", tool=str(tool_path), error=str(e))
            raise PatchToolError(f"Failed to start patch tool {tool_path}: {e}") from e

        stderr_lines: list[str] = []

        def on_stdout(raw: bytes) -> None:
            percent = decode_progress_line(raw.decode("utf-8", errors="replace"))
            if percent is not None:
                emit(ProgressEvent(phase=ProgressPhase.PATCHING, percent=percent))

        def on_stderr(raw: bytes) -> None:
            text = raw.decode("utf-8", errors="replace").rstrip()
            if text:
                stderr_lines.append(text)
                logger.warning("patch_tool_stderr", line=text)

        assert process.stdout is not None and process.stderr is not None
        try:
            await asyncio.gather(
                _read_lines(process.stdout, on_stdout, "stdout"),
                _read_lines(process.stderr, on_stderr, "stderr"),
            )
        except BaseException:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
            raise
        finally:
            exit_code = await process.wait()
            logger.info("patch_tool_exited", exit_code=exit_code)
            emit(ProgressEvent(phase=ProgressPhase.PATCHING, percent=100))

        if exit_code != 0 and self.strict_exit:
            stderr = "\n".join(stderr_lines)
            detail = stderr_lines[-1] if stderr_lines else "no error output"
            raise PatchToolError(
                f"Patch tool exited with code {exit_code}: {detail}",
                exit_code=exit_code,
                stderr=stderr,
            )

        return target_dir
