"""
Tests for the HTTP helpers against a local aiohttp test server.
"""

import asyncio
from pathlib import Path
from typing import Any, AsyncGenerator, List

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from plugin_hub.core.exceptions import NetworkError
from plugin_hub.infrastructure.network import download_file, fetch_json

PAYLOAD = b"0123456789" * 10000


async def catalog_handler(request: web.Request) -> web.Response:
    return web.json_response({"success": True, "data": []})


async def text_handler(request: web.Request) -> web.Response:
    return web.Response(text="not json")


async def archive_handler(request: web.Request) -> web.Response:
    return web.Response(body=PAYLOAD, content_type="application/octet-stream")


async def slow_handler(request: web.Request) -> web.Response:
    await asyncio.sleep(1)
    return web.Response(body=b"late")


@pytest.fixture
async def server() -> AsyncGenerator[TestServer, None]:
    app = web.Application()
    app.router.add_get("/catalog", catalog_handler)
    app.router.add_get("/text", text_handler)
    app.router.add_get("/archive.memox", archive_handler)
    app.router.add_get("/slow", slow_handler)
    async with TestServer(app) as test_server:
        yield test_server


class TestFetchJson:
    """Test cases for fetch_json."""

    async def test_fetch(self, server: TestServer) -> None:
        assert await fetch_json(str(server.make_url("/catalog"))) == {"success": True, "data": []}

    async def test_not_json(self, server: TestServer) -> None:
        with pytest.raises(ValueError):
            await fetch_json(str(server.make_url("/text")))

    async def test_http_error(self, server: TestServer) -> None:
        with pytest.raises(aiohttp.ClientResponseError):
            await fetch_json(str(server.make_url("/missing")))

    async def test_timeout(self, server: TestServer) -> None:
        with pytest.raises(asyncio.TimeoutError):
            await fetch_json(str(server.make_url("/slow")), timeout=0.2)


class TestDownloadFile:
    """Test cases for download_file."""

    async def test_download(self, server: TestServer, tmp_path: Path) -> None:
        events: List[Any] = []
        target = tmp_path / "archive.memox"

        result = await download_file(
            str(server.make_url("/archive.memox")),
            target,
            on_start=lambda: events.append("start"),
            on_progress=events.append,
            on_complete=lambda path: events.append(path),
        )

        assert result == target
        assert target.read_bytes() == PAYLOAD
        assert not (tmp_path / "archive.memox.downloading").exists()
        assert events[0] == "start"
        assert events[-2] == 100
        assert events[-1] == target

    async def test_download_failure(self, server: TestServer, tmp_path: Path) -> None:
        errors: List[Exception] = []

        with pytest.raises(NetworkError):
            await download_file(
                str(server.make_url("/missing")), tmp_path / "x.memox", on_error=errors.append
            )

        assert len(errors) == 1 and isinstance(errors[0], NetworkError)
        assert list(tmp_path.iterdir()) == []

    async def test_download_timeout(self, server: TestServer, tmp_path: Path) -> None:
        with pytest.raises(NetworkError, match="timed out"):
            await download_file(str(server.make_url("/slow")), tmp_path / "x.memox", timeout=0.2)
        assert list(tmp_path.iterdir()) == []
