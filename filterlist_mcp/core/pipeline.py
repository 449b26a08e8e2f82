"""
core/pipeline.py

Per-subscription pipeline stages:

  fetch_and_compile  fetch -> snapshot -> filter -> compile -> store
  has_update         fetch -> compare against the stored snapshot
  run_bounded        fan a stage out over subscriptions with a semaphore

Stages never raise for per-subscription failures: they log through the
supplied callback and report a boolean.  Only the files of the subscription
being processed are touched, so disjoint subscriptions can run concurrently.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, TypeVar

from .cache import ArtifactCache, RuleList, decode_rules
from .compiler import RuleCompiler
from .config import CompileOptions, FetchResult, Subscription
from .errors import ArtifactReadError, CompileError, FetchError, PersistError

logger = logging.getLogger(__name__)

LogFn = Callable[[str], None]
T = TypeVar("T")


class Fetcher(Protocol):
    async def fetch(self, url: str) -> FetchResult:
        ...


async def fetch_text(fetcher: Fetcher, sub: Subscription) -> str:
    """Fetch *sub*'s raw text, raising FetchError on any failure."""
    result = await fetcher.fetch(sub.url)
    if not result.success:
        raise FetchError(result.error or "unknown error")
    return result.content


def filter_rule_lines(text: str) -> List[str]:
    """Drop empty lines, ``!`` comments and ``[...]`` section headers."""
    return [
        line for line in text.splitlines()
        if line and not line.startswith("!") and not line.startswith("[")
    ]


def decode_compiled(result_text: str, count: int) -> RuleList:
    """Decode the compiler's standard output and keep only the first *count* rules."""
    return decode_rules(result_text)[:count]


async def fetch_and_compile(
    sub: Subscription,
    cache: ArtifactCache,
    fetcher: Fetcher,
    compiler: RuleCompiler,
    options: CompileOptions,
    log: LogFn,
) -> bool:
    """Fetch, compile and cache one subscription.  Returns True on success."""
    try:
        content = await fetch_text(fetcher, sub)
    except FetchError as exc:
        log(f"Error fetching filter {sub.name} from {sub.url}: {exc}")
        return False

    try:
        cache.write_raw_snapshot(sub, content)
    except PersistError as exc:
        log(f"Error saving raw content for {sub.name}: {exc}")

    lines = filter_rule_lines(content)

    try:
        compiled = await compiler.compile(lines, options)
        rules = decode_compiled(compiled.converted, compiled.converted_count)

        advanced: Optional[RuleList] = None
        if compiled.advanced:
            try:
                advanced = decode_rules(compiled.advanced)
            except ValueError as exc:
                log(f"Ignoring undecodable advanced rules for {sub.name}: {exc}")

        cache.store(sub, rules, advanced)
    except (CompileError, PersistError, ValueError) as exc:
        log(f"ERROR: Failed to convert or save JSON for {sub.name}")
        log(f"Error details: {exc}")
        return False

    log(f"Successfully wrote {sub.name}.json to: {cache.rules_path(sub)}")
    if advanced is not None:
        log(f"Successfully wrote {sub.name}_advanced.json to: {cache.advanced_path(sub)}")
    return True


async def has_update(
    sub: Subscription,
    cache: ArtifactCache,
    fetcher: Fetcher,
    log: LogFn,
) -> bool:
    """
    True if the remote text differs from the stored snapshot, or no snapshot exists.

    Fetch failures count as "no update".  Nothing on disk is modified.
    """
    try:
        remote = await fetch_text(fetcher, sub)
        local = cache.read_raw_snapshot(sub)
    except (FetchError, ArtifactReadError) as exc:
        log(f"Error checking update for {sub.name}: {exc}")
        return False

    if local is None:
        return True
    return remote != local


async def run_bounded(
    subs: Sequence[Subscription],
    stage: Callable[[Subscription], Awaitable[T]],
    max_concurrent: int,
    on_done: Optional[Callable[[Subscription, T], None]] = None,
) -> List[T]:
    """
    Run *stage* for every subscription, at most *max_concurrent* at a time.

    Results come back in input order; *on_done* fires as each one completes.
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrent))

    async def run_one(sub: Subscription) -> T:
        async with semaphore:
            value = await stage(sub)
        if on_done is not None:
            on_done(sub, value)
        return value

    return list(await asyncio.gather(*(run_one(s) for s in subs)))
