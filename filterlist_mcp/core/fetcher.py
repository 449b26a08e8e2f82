"""
core/fetcher.py

Async HTTP/2 filter-list fetcher with:
  - Content-length guard (64 MB hard cap)
  - Strict UTF-8 decoding (undecodable bodies are failures)
  - Structured FetchResult output (never raises)
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from .config import FetchResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_CONTENT_BYTES = 64_000_000  # 64 MB hard cap

USER_AGENT = "filterlist-mcp/0.1"


# ---------------------------------------------------------------------------
# Core async fetch
# ---------------------------------------------------------------------------

async def fetch_text_async(client: httpx.AsyncClient, url: str) -> FetchResult:
    """
    Fetch *url* and return its body decoded as UTF-8.

    Never raises: all errors are captured in FetchResult.error.
    """
    try:
        resp = await client.get(
            url,
            headers={"User-Agent": USER_AGENT, "Accept": "text/plain,*/*"},
            follow_redirects=True,
        )

        if resp.status_code != 200:
            return FetchResult(url=url, success=False, error=f"HTTP {resp.status_code}")

        # Size guard (header-based, free check)
        cl = resp.headers.get("content-length")
        if cl and cl.isdigit() and int(cl) > MAX_CONTENT_BYTES:
            return FetchResult(url=url, success=False, error="Content too large")

        body = resp.content
        if len(body) > MAX_CONTENT_BYTES:
            return FetchResult(url=url, success=False, error="Content too large")

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            return FetchResult(url=url, success=False, error="Unable to decode content as UTF-8")

        return FetchResult(url=url, success=True, content=text)

    except httpx.TimeoutException:
        return FetchResult(url=url, success=False, error="Timeout")
    except httpx.RequestError as exc:
        logger.debug("Request error for %s: %s", url, exc)
        return FetchResult(url=url, success=False, error=f"Request error: {exc}")
    except Exception as exc:
        logger.debug("Unexpected error for %s: %s", url, exc)
        return FetchResult(url=url, success=False, error=f"Unexpected: {exc}")


# ---------------------------------------------------------------------------
# Shared async client factory
# ---------------------------------------------------------------------------

def build_http_client(
    max_concurrent: int,
    timeout: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Build an httpx.AsyncClient tuned for parallel HTTP/2 fetching.

    Use as an async context manager:
        async with build_http_client(...) as client:
            ...

    *transport* replaces the network layer (tests pass an httpx.MockTransport).
    """
    return httpx.AsyncClient(
        http2=True,
        transport=transport,
        limits=httpx.Limits(
            max_connections=max_concurrent,
            max_keepalive_connections=max_concurrent,
            keepalive_expiry=30.0,
        ),
        timeout=httpx.Timeout(timeout, connect=10.0),
    )


class HttpFetcher:
    """
    Fetch capability handed to the pipeline stages.

    Opens one client per ``async with`` block so connections are reused
    across the subscriptions of a single workflow.
    """

    def __init__(
        self,
        max_concurrent: int = 4,
        timeout: int = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._max_concurrent = max_concurrent
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._depth = 0

    async def __aenter__(self) -> "HttpFetcher":
        if self._depth == 0:
            self._client = build_http_client(self._max_concurrent, self._timeout, self._transport)
            await self._client.__aenter__()
        self._depth += 1
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._depth -= 1
        if self._depth == 0 and self._client is not None:
            client, self._client = self._client, None
            await client.__aexit__(*exc_info)

    async def fetch(self, url: str) -> FetchResult:
        if self._client is not None:
            return await fetch_text_async(self._client, url)
        async with self:
            return await fetch_text_async(self._client, url)  # type: ignore[arg-type]
