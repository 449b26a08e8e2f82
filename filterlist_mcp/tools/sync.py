"""
tools/sync.py

MCP tools: check_missing_filters, resolve_missing_filters, apply_changes,
           check_for_updates, update_filters, pipeline_status

Each handler runs one orchestrator workflow and returns its outcome together
with a status snapshot.  PipelineBusyError and UnknownSubscriptionError are
left for the server to turn into error payloads.
"""
from __future__ import annotations

from typing import Any, Optional

from ..core.formatters import format_log_tail, format_status
from ..core.orchestrator import Orchestrator, get_orchestrator


def _status(orch: Orchestrator, log_tail: int = 20) -> dict:
    return {"status": format_status(orch.state), "log": format_log_tail(orch.state, log_tail)}


async def handle_check_missing(
    arguments: dict[str, Any],
    orchestrator: Optional[Orchestrator] = None,
) -> dict:
    """Find selected filters with no compiled rules.  Applies straight away when none are missing."""
    orch = orchestrator or get_orchestrator()
    missing, applied = await orch.check_missing()
    return {"missing": missing, "applied": applied, **_status(orch)}


async def handle_resolve_missing(
    arguments: dict[str, Any],
    orchestrator: Optional[Orchestrator] = None,
) -> dict:
    """Download and compile every missing filter, then apply."""
    orch = orchestrator or get_orchestrator()
    still_missing = await orch.resolve_missing()
    return {"still_missing": still_missing, **_status(orch)}


async def handle_apply_changes(
    arguments: dict[str, Any],
    orchestrator: Optional[Orchestrator] = None,
) -> dict:
    """Rebuild the bundle from every selected filter and reload the host."""
    orch = orchestrator or get_orchestrator()
    written = await orch.apply_changes()
    return {"bundle_written": written, **_status(orch)}


async def handle_check_for_updates(
    arguments: dict[str, Any],
    orchestrator: Optional[Orchestrator] = None,
) -> dict:
    """Compare every filter's remote text with its last snapshot."""
    orch = orchestrator or get_orchestrator()
    updates = await orch.check_for_updates()
    return {"available_updates": updates, **_status(orch)}


async def handle_update_filters(
    arguments: dict[str, Any],
    orchestrator: Optional[Orchestrator] = None,
) -> dict:
    """
    Refetch and recompile filters, then apply.

    Input schema:
        names  (list[str]) optional: defaults to the pending update set
    """
    orch = orchestrator or get_orchestrator()
    names = arguments.get("names")
    if names is not None and not isinstance(names, list):
        return {"error": "names must be a list of filter names"}
    failed = await orch.update_selected([str(n) for n in names] if names is not None else None)
    return {"failed": failed, "available_updates": list(orch.state.available_updates), **_status(orch)}


async def handle_pipeline_status(
    arguments: dict[str, Any],
    orchestrator: Optional[Orchestrator] = None,
) -> dict:
    """
    Current pipeline state.

    Input schema:
        log_lines  (int) optional: how many trailing log lines (default 50)
    """
    orch = orchestrator or get_orchestrator()
    return _status(orch, int(arguments.get("log_lines", 50)))
