"""
tools/filters.py

MCP tools: list_filters, toggle_filter, enable_recommended

Catalog queries and selection changes.  Toggling only marks unapplied
changes; apply_changes deploys them.
"""
from __future__ import annotations

from typing import Any, Optional

from ..core.config import Category
from ..core.formatters import format_filters, format_filters_markdown
from ..core.orchestrator import Orchestrator, get_orchestrator


async def handle_list_filters(
    arguments: dict[str, Any],
    orchestrator: Optional[Orchestrator] = None,
) -> dict:
    """
    List catalog subscriptions.

    Input schema:
        category       (str) optional: all | ads | privacy | security |
                                       multipurpose | annoyances | experimental
        output_format  (str) optional: json | markdown (default json)
    """
    orch = orchestrator or get_orchestrator()
    raw = str(arguments.get("category", "all")).strip().lower() or "all"
    try:
        category = Category(raw)
    except ValueError:
        return {"error": f"Unknown category: {raw}"}

    subs = orch.filters(category)
    response = format_filters(subs)
    response["category"] = category.value
    if str(arguments.get("output_format", "json")).lower() == "markdown":
        response["table"] = format_filters_markdown(subs)
    return response


async def handle_toggle_filter(
    arguments: dict[str, Any],
    orchestrator: Optional[Orchestrator] = None,
) -> dict:
    """
    Flip the selection of one subscription.

    Input schema:
        name  (str) required
    """
    orch = orchestrator or get_orchestrator()
    name = str(arguments.get("name", "")).strip()
    if not name:
        return {"error": "name is required"}
    sub = await orch.toggle(name)
    return {
        "filter": sub.to_dict(),
        "has_unapplied_changes": orch.state.has_unapplied_changes,
    }


async def handle_enable_recommended(
    arguments: dict[str, Any],
    orchestrator: Optional[Orchestrator] = None,
) -> dict:
    """Select the recommended subscriptions, then run the missing-filter check."""
    orch = orchestrator or get_orchestrator()
    enabled = await orch.enable_recommended()
    return {
        "enabled": [s.name for s in enabled],
        "missing": list(orch.state.missing),
        "status": orch.state.snapshot(),
    }
