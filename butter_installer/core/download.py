"""Streaming HTTP downloads with byte-level progress."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import structlog

from butter_installer.core.config import DownloadConfig
from butter_installer.core.errors import DownloadError, FilesystemError
from butter_installer.core.events import ProgressCallback
from butter_installer.core.types import ProgressEvent, ProgressPhase
from butter_installer.core.utils import format_size

logger = structlog.get_logger()


def _content_length(response: httpx.Response) -> int | None:
    """Total body size announced by the server, if any."""
    raw = response.headers.get("content-length")
    if raw is None:
        return None
    try:
        total = int(raw)
    except ValueError:
        return None
    return total if total > 0 else None


def compute_percent(current: int, total: int | None) -> int:
    """Percentage of a transfer, or -1 when the total is unknown.

    Example:
        >>> compute_percent(50, 200)
        25
        >>> compute_percent(50, None)
        -1
    """
    if not total:
        return -1
    return max(0, min(100, round(current * 100 / total)))


def _ignore_progress(event: ProgressEvent) -> None:
    pass


class Downloader:
    """Stream remote artifacts to disk.

    Args:
        config: Download configuration
        client: Optional pre-built async client, owned by the caller
    """

    def __init__(
        self,
        config: DownloadConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or DownloadConfig()
        self._async_client = client
        self._owns_client = client is None

    @property
    def async_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.read_timeout, connect=self.config.timeout),
                verify=self.config.verify_ssl,
                follow_redirects=True,
            )
        return self._async_client

    async def aclose(self) -> None:
        """Close the HTTP client if this downloader created it."""
        if self._async_client is not None and self._owns_client:
            await self._async_client.aclose()
            self._async_client = None

    async def __aenter__(self) -> Downloader:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def _open(self, url: str) -> httpx.Response:
        """Send the request and wait for headers under the hard deadline."""
        try:
            request = self.async_client.build_request("GET", url)
            return await asyncio.wait_for(
                self.async_client.send(request, stream=True),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError as e:
            raise DownloadError(
                f"Timed out after {self.config.timeout:g}s waiting for {url}",
                url=url,
            ) from e
        except httpx.InvalidURL as e:
            raise DownloadError(f"Invalid download URL {url!r}: {e}", url=url) from e
        except httpx.HTTPError as e:
            raise DownloadError(f"Failed to download {url}: {e}", url=url) from e

    async def download(
        self,
        url: str,
        dest: Path,
        on_progress: ProgressCallback | None = None,
        phase: ProgressPhase = ProgressPhase.PWR_DOWNLOAD,
    ) -> Path:
        """Download a URL to a file.

        A start event with ``current=0`` is emitted before the first byte
        and a ``percent=100`` event after the last one. Partial files are
        left in place when the transfer fails.

        Args:
            url: Artifact URL
            dest: Destination file, overwritten if present
            on_progress: Receives progress events
            phase: Phase tag for progress events

        Returns:
            The destination path

        Raises:
            DownloadError: On HTTP, transport, empty body or timeout failure
            FilesystemError: If the destination cannot be written
        """
        emit = on_progress or _ignore_progress
        logger.info("download_started", url=url, dest=str(dest), phase=phase.value)

        response = await self._open(url)
        try:
            if not response.is_success:
                raise DownloadError(
                    f"Failed to download: HTTP {response.status_code} {response.reason_phrase}",
                    url=url,
                    status_code=response.status_code,
                )

            total = _content_length(response)
            logger.info(
                "download_size",
                url=url,
                size=format_size(total) if total else "unknown",
            )
            emit(ProgressEvent(phase=phase, percent=0 if total else -1, total=total, current=0))

            # Progress is measured in wire bytes to match content-length
            current = 0
            written = 0
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                with open(dest, "wb") as f:
                    async for chunk in response.aiter_bytes(self.config.chunk_size):
                        f.write(chunk)
                        written += len(chunk)
                        current = response.num_bytes_downloaded
                        emit(ProgressEvent(
                            phase=phase,
                            percent=compute_percent(current, total),
                            total=total,
                            current=current,
                        ))
            except httpx.HTTPError as e:
                raise DownloadError(
                    f"Download interrupted after {format_size(response.num_bytes_downloaded)}: {e}",
                    url=url,
                    status_code=response.status_code,
                ) from e
            except OSError as e:
                raise FilesystemError(f"Failed to write {dest}: {e}") from e

            if written == 0:
                raise DownloadError("No response body", url=url, status_code=response.status_code)

            emit(ProgressEvent(phase=phase, percent=100, total=total, current=current))
            logger.info("download_completed", url=url, dest=str(dest), bytes=written)
            return dest
        finally:
            await response.aclose()
