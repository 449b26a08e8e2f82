"""Tests for core/fetcher.py and SyncConfig.from_env"""
import httpx
import pytest

from filterlist_mcp.core import fetcher as fetcher_mod
from filterlist_mcp.core.config import SyncConfig
from filterlist_mcp.core.fetcher import HttpFetcher


def make_fetcher(handler) -> HttpFetcher:
    return HttpFetcher(max_concurrent=2, timeout=5, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetch_success_keeps_exact_text():
    fetcher = make_fetcher(lambda req: httpx.Response(200, content="||a^\r\n||b^\n".encode()))
    result = await fetcher.fetch("https://lists.test/a.txt")
    assert result.success is True
    assert result.content == "||a^\r\n||b^\n"


@pytest.mark.asyncio
async def test_fetch_follows_redirects():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/old.txt":
            return httpx.Response(301, headers={"Location": "https://lists.test/new.txt"})
        return httpx.Response(200, content=b"||moved^\n")

    result = await make_fetcher(handler).fetch("https://lists.test/old.txt")
    assert result.success is True
    assert result.content == "||moved^\n"


@pytest.mark.asyncio
async def test_fetch_non_utf8_is_failure():
    result = await make_fetcher(lambda req: httpx.Response(200, content=b"\xff\xfe\x00bad")).fetch("https://x.test/")
    assert result.success is False
    assert "UTF-8" in result.error


@pytest.mark.asyncio
async def test_fetch_http_error():
    result = await make_fetcher(lambda req: httpx.Response(503)).fetch("https://x.test/")
    assert result.success is False
    assert result.error == "HTTP 503"


@pytest.mark.asyncio
async def test_fetch_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    result = await make_fetcher(handler).fetch("https://x.test/")
    assert result.success is False
    assert result.error == "Timeout"


@pytest.mark.asyncio
async def test_fetch_oversize_body(monkeypatch):
    monkeypatch.setattr(fetcher_mod, "MAX_CONTENT_BYTES", 4)
    result = await make_fetcher(lambda req: httpx.Response(200, content=b"0123456789")).fetch("https://x.test/")
    assert result.success is False
    assert result.error == "Content too large"


@pytest.mark.asyncio
async def test_session_reuses_one_client():
    fetcher = make_fetcher(lambda req: httpx.Response(200, content=b"ok"))
    async with fetcher:
        client = fetcher._client
        async with fetcher:
            assert fetcher._client is client
        assert (await fetcher.fetch("https://x.test/")).success
        assert fetcher._client is client
    assert fetcher._client is None


def test_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("FILTERLIST_SHARED_DIR", str(tmp_path / "shared"))
    monkeypatch.setenv("FILTERLIST_MAX_CONCURRENT", "0")
    monkeypatch.setenv("FILTERLIST_CHECK_ON_START", "false")
    monkeypatch.setenv("FILTERLIST_COMPILER_CMD", "converter --flag")
    monkeypatch.delenv("REDIS_URL", raising=False)

    config = SyncConfig.from_env()

    assert config.shared_dir == str(tmp_path / "shared")
    assert config.max_concurrent == 1
    assert config.check_on_start is False
    assert config.compiler_command == "converter --flag"
    assert config.redis_url == ""
    assert config.target_version == "16.4"
