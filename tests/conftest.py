"""Shared fixtures: fake remote lists, fake compiler, recording host reloader."""
import asyncio
import json
from typing import Dict, List, Optional, Sequence, Set

import httpx
import pytest

from filterlist_mcp.core.catalog import SubscriptionRegistry
from filterlist_mcp.core.config import Category, CompileOptions, CompileResult, Subscription
from filterlist_mcp.core.errors import CompileError, HostReloadError
from filterlist_mcp.core.fetcher import HttpFetcher
from filterlist_mcp.core.orchestrator import Orchestrator
from filterlist_mcp.core.selection import SelectionStore
from filterlist_mcp.core.storage import StorageGateway


def list_url(name: str) -> str:
    return "https://lists.test/" + name.replace(" ", "_").replace("'", "") + ".txt"


def sample_catalog() -> List[Subscription]:
    return [
        Subscription("AdGuard Base filter", list_url("AdGuard Base filter"), Category.ADS, True),
        Subscription("EasyPrivacy", list_url("EasyPrivacy"), Category.PRIVACY, True),
        Subscription("Peter Lowe's Blocklist", list_url("Peter Lowe's Blocklist"), Category.MULTIPURPOSE, True),
    ]


class RemoteLists:
    """In-memory stand-in for the filter-list hosts, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.texts: Dict[str, str] = {}
        self.failing: Set[str] = set()
        self.requests: List[str] = []

    def set(self, name: str, text: str) -> None:
        self.texts[list_url(name)] = text

    def fail(self, name: str) -> None:
        self.failing.add(list_url(name))

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.failing:
            raise httpx.ConnectError("connection refused", request=request)
        if url not in self.texts:
            return httpx.Response(404)
        return httpx.Response(200, content=self.texts[url].encode("utf-8"))

    def fetcher(self) -> HttpFetcher:
        return HttpFetcher(max_concurrent=2, timeout=5, transport=httpx.MockTransport(self.handler))


class FakeCompiler:
    """
    One block rule per line, plus one trailing entry past the valid count.

    Lines containing ``##`` also produce an advanced rule.
    """

    def __init__(self, fail_on: Sequence[str] = ()) -> None:
        self.fail_on = set(fail_on)
        self.calls: List[List[str]] = []

    async def compile(self, lines: Sequence[str], options: CompileOptions) -> CompileResult:
        self.calls.append(list(lines))
        if any(line in self.fail_on for line in lines):
            raise CompileError("converter crashed")
        rules = [{"trigger": {"url-filter": line}, "action": {"type": "block"}} for line in lines]
        advanced = [{"source": line} for line in lines if "##" in line]
        return CompileResult(
            converted=json.dumps(rules + [{"trailing": True}]),
            converted_count=len(rules),
            advanced=json.dumps(advanced) if advanced else None,
        )


class BlockingCompiler(FakeCompiler):
    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def compile(self, lines: Sequence[str], options: CompileOptions) -> CompileResult:
        self.started.set()
        await self.release.wait()
        return await super().compile(lines, options)


class RecordingReloader:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[str] = []

    async def reload(self, identifier: str) -> None:
        self.calls.append(identifier)
        if self.fail:
            raise HostReloadError("host refused reload")


def url_filters(rules: list) -> List[str]:
    return [r["trigger"]["url-filter"] for r in rules]


@pytest.fixture
def remote() -> RemoteLists:
    r = RemoteLists()
    r.set("AdGuard Base filter", "! Title: Base\n[Adblock Plus 2.0]\n||ads.example^\n\n||banner.example^\n")
    r.set("EasyPrivacy", "! Title: EasyPrivacy\n||tracker.example^\n")
    r.set("Peter Lowe's Blocklist", "||lowe.example^\nexample.com##.ad\n")
    return r


@pytest.fixture
def shared_dir(tmp_path):
    return tmp_path / "shared"


@pytest.fixture
def make_orchestrator(tmp_path, shared_dir, remote):
    def _make(
        catalog: Optional[List[Subscription]] = None,
        compiler=None,
        reloader=None,
        gateway: Optional[StorageGateway] = None,
    ) -> Orchestrator:
        registry = SubscriptionRegistry(
            SelectionStore(tmp_path / "settings.json"),
            sample_catalog() if catalog is None else catalog,
        )
        return Orchestrator(
            registry=registry,
            gateway=gateway or StorageGateway(shared_dir),
            fetcher=remote.fetcher(),
            compiler=compiler or FakeCompiler(),
            reloader=reloader or RecordingReloader(),
            bundle_identifier="test.content-blocker",
            max_concurrent=2,
        )

    return _make
