"""
core/orchestrator.py

Workflow state machine over the registry, artifact cache and stages:

  check_missing      (M)  selected subscriptions without an artifact -> prompt, else apply
  resolve_missing         fetch+compile the missing set, then apply
  apply_changes      (A)  aggregate selected artifacts -> bundle -> host reload
  check_for_updates  (U)  staleness check over the whole catalog
  update_selected    (S)  fetch+compile a given list, then apply
  enable_recommended (R)  select the recommended set, then check_missing

Only one workflow runs at a time; a second entry raises PipelineBusyError.
Per-subscription failures are logged and skipped.  A storage failure ends the
current workflow with a logged error.  Busy/phase are reset on every exit.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Optional, Tuple

from .cache import ArtifactCache, RuleList
from .catalog import RECOMMENDED_FILTERS, SubscriptionRegistry
from .compiler import CommandCompiler, RuleCompiler
from .config import Category, CompileOptions, Subscription, SyncConfig
from .errors import (
    ArtifactParseError,
    ArtifactReadError,
    HostReloadError,
    PersistError,
    PipelineBusyError,
    StorageUnavailable,
)
from .fetcher import HttpFetcher
from .host import HostReloader, build_reloader
from .pipeline import Fetcher, fetch_and_compile, has_update, run_bounded
from .selection import SelectionStore
from .state import Phase, PipelineState
from .storage import StorageGateway

logger = logging.getLogger(__name__)


class _Progress:
    """done/total counter; total == 0 reports 1.0 straight away."""

    def __init__(self, state: PipelineState, total: int) -> None:
        self._state = state
        self._total = total
        self._done = 0
        state.set_progress(1.0 if total == 0 else 0.0)

    def step(self) -> None:
        self._done += 1
        self._state.set_progress(self._done / self._total)


class Orchestrator:
    def __init__(
        self,
        registry: SubscriptionRegistry,
        gateway: StorageGateway,
        fetcher: Fetcher,
        compiler: RuleCompiler,
        reloader: HostReloader,
        bundle_identifier: str,
        compile_options: Optional[CompileOptions] = None,
        max_concurrent: int = 4,
        state: Optional[PipelineState] = None,
    ) -> None:
        self.registry = registry
        self.state = state or PipelineState()
        self._gateway = gateway
        self._fetcher = fetcher
        self._compiler = compiler
        self._reloader = reloader
        self._bundle_identifier = bundle_identifier
        self._options = compile_options or CompileOptions()
        self._max_concurrent = max_concurrent
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: SyncConfig) -> "Orchestrator":
        return cls(
            registry=SubscriptionRegistry(SelectionStore(config.settings_path, config.redis_url)),
            gateway=StorageGateway(config.shared_dir),
            fetcher=HttpFetcher(config.max_concurrent, config.fetch_timeout),
            compiler=CommandCompiler(config.compiler_command),
            reloader=build_reloader(config.reload_command),
            bundle_identifier=config.bundle_identifier,
            compile_options=CompileOptions(target_version=config.target_version),
            max_concurrent=config.max_concurrent,
        )

    # -----------------------------------------------------------------------
    # Logging
    # -----------------------------------------------------------------------

    def log(self, message: str, level: int = logging.INFO) -> None:
        """Append to the pipeline log, mirror to logging and rewrite logs.txt."""
        logger.log(level, message)
        self.state.append_log(message)
        self._save_logs()

    def _save_logs(self) -> None:
        try:
            ArtifactCache(self._gateway.resolve()).write_log(self.state.log_text)
        except (StorageUnavailable, PersistError) as exc:
            logger.warning("Error saving logs: %s", exc)

    def clear_logs(self) -> None:
        self.state.replace_logs([])
        self._save_logs()

    def load_logs(self) -> None:
        """Replace the in-memory log with the contents of logs.txt."""
        try:
            text = ArtifactCache(self._gateway.resolve()).read_log()
        except (StorageUnavailable, ArtifactReadError) as exc:
            logger.warning("Error loading logs: %s", exc)
            return
        self.state.replace_logs((text or "").splitlines())

    # -----------------------------------------------------------------------
    # Workflow guard
    # -----------------------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def _workflow(self, phase: Phase) -> AsyncIterator[None]:
        if self._lock.locked():
            raise PipelineBusyError(f"Cannot start {phase.value}: a workflow is already running")
        async with self._lock:
            self.state.set_busy(True)
            self.state.set_phase(phase)
            try:
                async with self._fetcher_session():
                    yield
            finally:
                self.state.set_phase(Phase.IDLE)
                self.state.set_busy(False)

    @asynccontextmanager
    async def _fetcher_session(self) -> AsyncIterator[None]:
        if isinstance(self._fetcher, HttpFetcher):
            async with self._fetcher:
                yield
        else:
            yield

    def _open_cache(self) -> Optional[ArtifactCache]:
        try:
            return ArtifactCache(self._gateway.resolve())
        except StorageUnavailable as exc:
            self.log(f"Error: {exc}", logging.ERROR)
            return None

    # -----------------------------------------------------------------------
    # Startup
    # -----------------------------------------------------------------------

    async def startup(self, run_missing_check: bool = True) -> None:
        """Resolve storage, reset the log, load selection, seed the bundle, run the guard."""
        try:
            root = self._gateway.resolve()
        except StorageUnavailable as exc:
            logger.error("Error: %s", exc)
            root = None
        self.clear_logs()
        if root is not None:
            self.log(f"Shared folder ready: {root}")

        await self.registry.load()

        cache = self._open_cache()
        if cache is not None:
            if cache.bundle_exists():
                self.log("blockerList.json found.")
            else:
                self.log("blockerList.json not found. Creating it...")
                self._write_bundle(cache, *self._aggregate_cached(cache))

        self.check_for_enabled_filters()
        if run_missing_check and self.registry.by_selection():
            await self.check_missing()

    def check_for_enabled_filters(self) -> bool:
        """Raise the recommended-filters prompt when nothing is selected."""
        enabled = bool(self.registry.by_selection())
        if not enabled:
            self.state.set_prompt("recommended", True)
            self.log("No filters enabled; enable some filters or the recommended set.", logging.WARNING)
        return enabled

    # -----------------------------------------------------------------------
    # Selection
    # -----------------------------------------------------------------------

    def filters(self, category: Category = Category.ALL) -> List[Subscription]:
        return self.registry.by_category(category)

    async def toggle(self, name: str) -> Subscription:
        sub = self.registry.get(name)
        try:
            sub = await self.registry.toggle(name)
        except PersistError as exc:
            self.log(f"Error saving selection: {exc}", logging.ERROR)
        self.state.set_unapplied_changes(True)
        return sub

    async def enable_recommended(self) -> List[Subscription]:
        """Workflow R: select the recommended set, persist, then run the missing-filter check."""
        async with self._workflow(Phase.CHECKING_MISSING):
            try:
                enabled = await self.registry.select(RECOMMENDED_FILTERS)
            except PersistError as exc:
                enabled = [s for s in self.registry.all() if s.name in RECOMMENDED_FILTERS]
                self.log(f"Error saving selection: {exc}", logging.ERROR)
            for sub in enabled:
                self.log(f"Enabled recommended filter: {sub.name}")
            self.state.set_unapplied_changes(True)
            self.state.set_prompt("recommended", False)
            self.log("Recommended filters have been enabled")
            cache = self._open_cache()
            if cache is not None:
                await self._check_missing(cache)
            return enabled

    # -----------------------------------------------------------------------
    # Workflow M: missing filters
    # -----------------------------------------------------------------------

    async def check_missing(self) -> Tuple[List[str], bool]:
        """
        Return ``(missing, applied)``.

        *missing* names the selected subscriptions without an artifact.  When
        none are missing the bundle is applied straight away and *applied*
        reports whether it was written.
        """
        async with self._workflow(Phase.CHECKING_MISSING):
            cache = self._open_cache()
            if cache is None:
                return [], False
            return await self._check_missing(cache)

    async def _check_missing(self, cache: ArtifactCache) -> Tuple[List[str], bool]:
        missing = [s.name for s in self.registry.by_selection() if not cache.exists(s)]
        self.state.set_missing(missing)
        if missing:
            self.log(f"Missing filters: {', '.join(missing)}")
            self.state.set_prompt("missing", True)
            return missing, False
        self.state.set_prompt("missing", False)
        return [], await self._apply(cache)

    async def resolve_missing(self) -> List[str]:
        """Fetch and compile every missing subscription, then apply.  Returns what is still missing."""
        async with self._workflow(Phase.UPDATING_SELECTED):
            cache = self._open_cache()
            if cache is None:
                return list(self.state.missing)
            subs = self.registry.in_order(self.state.missing)
            progress = _Progress(self.state, len(subs))

            def done(sub: Subscription, ok: bool) -> None:
                if ok:
                    self.state.discard_missing(sub.name)
                progress.step()

            await run_bounded(subs, lambda s: self._compile_one(s, cache), self._max_concurrent, done)
            if not self.state.missing:
                self.state.set_prompt("missing", False)
            await self._apply(cache)
            return list(self.state.missing)

    # -----------------------------------------------------------------------
    # Workflow A: apply
    # -----------------------------------------------------------------------

    async def apply_changes(self) -> bool:
        """Aggregate every selected artifact into the bundle and reload the host."""
        async with self._workflow(Phase.APPLYING):
            cache = self._open_cache()
            if cache is None:
                return False
            return await self._apply(cache)

    async def _apply(self, cache: ArtifactCache) -> bool:
        self.state.set_phase(Phase.APPLYING)
        applied_flags = self.registry.selection_flags()
        selected = self.registry.by_selection()
        progress = _Progress(self.state, len(selected))
        rules: RuleList = []
        advanced: RuleList = []

        for sub in selected:
            if not cache.exists(sub):
                if not await self._compile_one(sub, cache):
                    self.log(f"Failed to fetch and process filter: {sub.name}", logging.WARNING)
                    progress.step()
                    continue
            loaded = self._load(cache, sub)
            if loaded is not None:
                rules.extend(loaded[0])
                if loaded[1] is not None:
                    advanced.extend(loaded[1])
            progress.step()

        written = self._write_bundle(cache, rules, advanced)
        if written:
            await self._reload_host(cache)
        # a toggle during the apply is not in this bundle
        if self.registry.selection_flags() == applied_flags:
            self.state.set_unapplied_changes(False)
        return written

    def _aggregate_cached(self, cache: ArtifactCache) -> Tuple[RuleList, RuleList]:
        rules: RuleList = []
        advanced: RuleList = []
        for sub in self.registry.by_selection():
            if not cache.exists(sub):
                continue
            loaded = self._load(cache, sub)
            if loaded is not None:
                rules.extend(loaded[0])
                advanced.extend(loaded[1] or [])
        return rules, advanced

    def _load(self, cache: ArtifactCache, sub: Subscription) -> Optional[Tuple[RuleList, Optional[RuleList]]]:
        try:
            return cache.load(sub)
        except (ArtifactReadError, ArtifactParseError) as exc:
            self.log(f"Error loading rules for {sub.name}: {exc}", logging.ERROR)
            return None

    def _write_bundle(self, cache: ArtifactCache, rules: RuleList, advanced: RuleList) -> bool:
        try:
            cache.write_bundle(rules, advanced)
        except PersistError as exc:
            self.log(f"Error saving blockerList.json: {exc}", logging.ERROR)
            return False
        self.log("Successfully wrote blockerList.json")
        self.log("Successfully wrote advancedBlocking.json")
        return True

    async def _reload_host(self, cache: ArtifactCache) -> None:
        try:
            count = cache.read_bundle_rule_count()
        except (ArtifactReadError, ArtifactParseError) as exc:
            self.log(f"Error: Unable to parse blockerList.json: {exc}", logging.ERROR)
            return
        self.log(f"Attempting to reload content blocker with {count} rules")
        try:
            await self._reloader.reload(self._bundle_identifier)
        except HostReloadError as exc:
            self.log(f"Error reloading content blocker: {exc}", logging.ERROR)
            return
        self.log(f"Content blocker reloaded successfully with {count} rules")

    # -----------------------------------------------------------------------
    # Workflow U: check for updates
    # -----------------------------------------------------------------------

    async def check_for_updates(self) -> List[str]:
        """Return the names (catalog order) whose remote text differs from the snapshot."""
        async with self._workflow(Phase.CHECKING_UPDATES):
            self.state.set_available_updates([])
            cache = self._open_cache()
            if cache is None:
                return []
            subs = self.registry.all()
            progress = _Progress(self.state, len(subs))
            flags = await run_bounded(
                subs,
                lambda s: has_update(s, cache, self._fetcher, self.log),
                self._max_concurrent,
                lambda _s, _v: progress.step(),
            )
            updates = [s.name for s, changed in zip(subs, flags) if changed]
            self.state.set_available_updates(updates)
            if updates:
                self.log(f"Updates available: {', '.join(updates)}")
                self.state.set_prompt("updates", True)
            else:
                self.log("No updates available.")
            return updates

    # -----------------------------------------------------------------------
    # Workflow S: update selected
    # -----------------------------------------------------------------------

    async def update_selected(self, names: Optional[Iterable[str]] = None) -> List[str]:
        """
        Refetch and recompile *names* (default: the current update set), then apply.

        Returns the names that failed.
        """
        subs = self.registry.in_order(self.state.available_updates if names is None else names)
        async with self._workflow(Phase.UPDATING_SELECTED):
            cache = self._open_cache()
            if cache is None:
                return [s.name for s in subs]
            progress = _Progress(self.state, len(subs))
            failed: List[str] = []

            def done(sub: Subscription, ok: bool) -> None:
                if ok:
                    self.state.discard_available_update(sub.name)
                    self.state.discard_missing(sub.name)
                    self.log(f"Successfully updated {sub.name}")
                else:
                    failed.append(sub.name)
                    self.log(f"Failed to update {sub.name}", logging.WARNING)
                progress.step()

            await run_bounded(subs, lambda s: self._compile_one(s, cache), self._max_concurrent, done)
            if not self.state.available_updates:
                self.state.set_prompt("updates", False)
            await self._apply(cache)
            return [s.name for s in subs if s.name in failed]

    # -----------------------------------------------------------------------
    # Shared stage wrapper
    # -----------------------------------------------------------------------

    async def _compile_one(self, sub: Subscription, cache: ArtifactCache) -> bool:
        try:
            return await fetch_and_compile(sub, cache, self._fetcher, self._compiler, self._options, self.log)
        except Exception as exc:
            logger.exception("Unexpected failure processing %s", sub.name)
            self.log(f"Error processing {sub.name}: {exc}", logging.ERROR)
            return False


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_orchestrator: Optional[Orchestrator] = None


def get_orchestrator() -> Orchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = Orchestrator.from_config(SyncConfig.from_env())
    return _orchestrator


def set_orchestrator(orchestrator: Optional[Orchestrator]) -> None:
    global _orchestrator
    _orchestrator = orchestrator
