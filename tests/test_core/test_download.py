"""Tests for butter_installer.core.download module."""

import asyncio
import gzip
from collections.abc import AsyncIterator
from pathlib import Path

import httpx
import pytest

from butter_installer.core.config import DownloadConfig
from butter_installer.core.download import Downloader, compute_percent
from butter_installer.core.errors import DownloadError
from butter_installer.core.types import ProgressEvent, ProgressPhase


def _downloader(handler, **config) -> Downloader:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return Downloader(DownloadConfig(**config), client=client)


def _fetch(downloader: Downloader, url: str, dest: Path, **kwargs) -> list[ProgressEvent]:
    events: list[ProgressEvent] = []

    async def run():
        try:
            await downloader.download(url, dest, on_progress=events.append, **kwargs)
        finally:
            await downloader.async_client.aclose()

    asyncio.run(run())
    return events


class _ChunkedStream(httpx.AsyncByteStream):
    """Body delivered in fixed pieces, as read off the socket."""

    def __init__(self, data: bytes, piece: int):
        self.pieces = [data[i:i + piece] for i in range(0, len(data), piece)]

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for piece in self.pieces:
            yield piece


class _BrokenStream(httpx.AsyncByteStream):
    """Body that fails after the first chunk."""

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield b"partial"
        raise httpx.ReadError("connection reset")


class TestComputePercent:
    """Test compute_percent function."""

    def test_known_total(self):
        assert compute_percent(0, 200) == 0
        assert compute_percent(50, 200) == 25
        assert compute_percent(200, 200) == 100

    def test_unknown_total(self):
        assert compute_percent(50, None) == -1
        assert compute_percent(50, 0) == -1

    def test_clamped(self):
        """Servers that under-report the length never push past 100."""
        assert compute_percent(300, 200) == 100


class TestDownloader:
    """Test Downloader.download."""

    def test_download_with_length(self, tmp_path: Path):
        data = b"0123456789" * 10

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, headers={"content-length": "100"}, stream=_ChunkedStream(data, 25)
            )

        downloader = _downloader(handler, chunk_size=25)
        dest = tmp_path / "temp_3.pwr"

        events = _fetch(downloader, "https://x/b3.patch", dest)

        assert dest.read_bytes() == data
        assert events[0].percent == 0
        assert events[0].current == 0
        assert events[0].total == 100
        assert [e.percent for e in events[1:]] == [25, 50, 75, 100, 100]
        assert events[-1].current == 100
        assert all(e.phase == ProgressPhase.PWR_DOWNLOAD for e in events)

    def test_progress_monotonic(self, tmp_path: Path):
        data = bytes(1000)
        downloader = _downloader(lambda request: httpx.Response(200, content=data), chunk_size=7)

        events = _fetch(downloader, "https://x/b.patch", tmp_path / "out")

        percents = [e.percent for e in events]
        assert percents == sorted(percents)
        assert percents[-1] == 100

    def test_compressed_body_progress(self, tmp_path: Path):
        """Progress follows the wire bytes that content-length counts."""
        data = b"hytale " * 20000
        compressed = gzip.compress(data)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers={
                    "content-encoding": "gzip",
                    "content-length": str(len(compressed)),
                },
                stream=_ChunkedStream(compressed, 64),
            )

        downloader = _downloader(handler, chunk_size=4096)
        dest = tmp_path / "out"

        events = _fetch(downloader, "https://x/b.patch", dest)

        assert dest.read_bytes() == data
        assert all(e.total == len(compressed) for e in events)
        assert all(e.current <= len(compressed) for e in events)
        percents = [e.percent for e in events]
        assert all(0 <= p <= 100 for p in percents)
        assert percents == sorted(percents)
        assert events[-1].percent == 100
        assert events[-1].current == len(compressed)

    def test_unknown_length_is_indeterminate(self, tmp_path: Path):
        data = b"abcdefgh"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, stream=httpx.ByteStream(data))

        downloader = _downloader(handler, chunk_size=4)
        dest = tmp_path / "out"

        events = _fetch(downloader, "https://x/b.patch", dest)

        assert dest.read_bytes() == data
        assert events[0].indeterminate
        assert events[0].total is None
        assert all(e.percent == -1 for e in events[:-1])
        assert events[-1].percent == 100
        assert events[-1].current == len(data)

    def test_phase_tag(self, tmp_path: Path):
        downloader = _downloader(lambda request: httpx.Response(200, content=b"exe"))
        events = _fetch(
            downloader, "https://x/client.exe", tmp_path / "out", phase=ProgressPhase.ONLINE_PATCH
        )
        assert {e.phase for e in events} == {ProgressPhase.ONLINE_PATCH}

    def test_http_error_status(self, tmp_path: Path):
        downloader = _downloader(lambda request: httpx.Response(404))
        dest = tmp_path / "out"

        with pytest.raises(DownloadError, match="HTTP 404 Not Found") as exc_info:
            _fetch(downloader, "https://x/missing.patch", dest)

        assert exc_info.value.status_code == 404
        assert exc_info.value.url == "https://x/missing.patch"
        assert not dest.exists()

    def test_empty_body(self, tmp_path: Path):
        downloader = _downloader(lambda request: httpx.Response(200, content=b""))
        with pytest.raises(DownloadError, match="No response body"):
            _fetch(downloader, "https://x/empty.patch", tmp_path / "out")

    def test_interrupted_stream(self, tmp_path: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"content-length": "100"}, stream=_BrokenStream())

        downloader = _downloader(handler)
        events: list[ProgressEvent] = []

        async def run():
            try:
                await downloader.download("https://x/b.patch", tmp_path / "out", events.append)
            finally:
                await downloader.async_client.aclose()

        with pytest.raises(DownloadError, match="interrupted"):
            asyncio.run(run())
        assert all(e.percent < 100 for e in events)

    def test_invalid_url(self, tmp_path: Path):
        downloader = _downloader(lambda request: httpx.Response(200, content=b"data"))
        dest = tmp_path / "out"

        with pytest.raises(DownloadError, match="Invalid download URL") as exc_info:
            _fetch(downloader, "https://x:notaport/b.patch", dest)

        assert exc_info.value.url == "https://x:notaport/b.patch"
        assert not dest.exists()

    def test_connection_error(self, tmp_path: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        downloader = _downloader(handler)
        with pytest.raises(DownloadError, match="refused"):
            _fetch(downloader, "https://x/b.patch", tmp_path / "out")

    def test_header_timeout(self, tmp_path: Path):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, content=b"late")

        downloader = _downloader(handler, timeout=0.05)
        with pytest.raises(DownloadError, match="Timed out"):
            _fetch(downloader, "https://x/slow.patch", tmp_path / "out")

    def test_creates_parent_directory(self, tmp_path: Path):
        downloader = _downloader(lambda request: httpx.Response(200, content=b"data"))
        dest = tmp_path / "nested" / "dir" / "out"
        _fetch(downloader, "https://x/b.patch", dest)
        assert dest.read_bytes() == b"data"

    def test_without_callback(self, tmp_path: Path):
        downloader = _downloader(lambda request: httpx.Response(200, content=b"data"))
        dest = tmp_path / "out"

        async def run():
            async with downloader:
                await downloader.download("https://x/b.patch", dest)
            await downloader.async_client.aclose()

        asyncio.run(run())
        assert dest.read_bytes() == b"data"


class TestDownloaderClient:
    """Test client ownership."""

    def test_owned_client_closed(self):
        async def run():
            downloader = Downloader()
            client = downloader.async_client
            await downloader.aclose()
            return client

        client = asyncio.run(run())
        assert client.is_closed

    def test_external_client_left_open(self):
        async def run():
            client = httpx.AsyncClient()
            downloader = Downloader(client=client)
            await downloader.aclose()
            closed = client.is_closed
            await client.aclose()
            return closed

        assert asyncio.run(run()) is False
