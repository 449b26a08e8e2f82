"""
filterlist_mcp/server.py

MCP server entry point.

Exposes:
  Tools:
    • list_filters             — catalog, optionally by category
    • toggle_filter            — flip one filter's selection (unapplied until apply_changes)
    • enable_recommended       — select the recommended set, then check for missing filters
    • check_missing_filters    — selected filters without compiled rules (applies if none)
    • resolve_missing_filters  — download + compile missing filters, then apply
    • apply_changes            — rebuild the bundle and reload the host
    • check_for_updates        — compare remote filter text with local snapshots
    • update_filters           — refetch + recompile filters, then apply
    • pipeline_status          — state snapshot + log tail

  Resources (read-only):
    • filters://catalog   — JSON catalog with selection flags
    • state://pipeline    — JSON pipeline state
    • logs://pipeline     — pipeline log (same text as logs.txt)
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Awaitable, Callable, Dict

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool

from .core.config import SyncConfig
from .core.errors import FilterSyncError
from .core.formatters import format_filters
from .core.orchestrator import Orchestrator, get_orchestrator, set_orchestrator
from .core.state import PipelineEvent
from .tools.filters import handle_enable_recommended, handle_list_filters, handle_toggle_filter
from .tools.sync import (
    handle_apply_changes,
    handle_check_for_updates,
    handle_check_missing,
    handle_pipeline_status,
    handle_resolve_missing,
    handle_update_filters,
)

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "WARNING").upper(), logging.WARNING),
    format="%(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

_NO_ARGS: Dict[str, Any] = {"type": "object", "properties": {}}

# ---------------------------------------------------------------------------
# Tool input schemas
# ---------------------------------------------------------------------------

TOOLS = [
    Tool(
        name="list_filters",
        description="List the filter-list catalog with each list's category and selection state.",
        inputSchema={
            "type": "object",
            "properties": {
                "category": {
                    "type": "string",
                    "enum": ["all", "ads", "privacy", "security", "multipurpose", "annoyances", "experimental"],
                    "description": "Restrict to one category (default all)",
                    "default": "all",
                },
                "output_format": {
                    "type": "string",
                    "enum": ["json", "markdown"],
                    "description": "json, or json plus a markdown table (default json)",
                    "default": "json",
                },
            },
        },
    ),
    Tool(
        name="toggle_filter",
        description=(
            "Flip the selection of one filter list. The change is persisted immediately "
            "but only deployed after apply_changes."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Exact filter list name"},
            },
            "required": ["name"],
        },
    ),
    Tool(
        name="enable_recommended",
        description="Select the recommended filter lists, then check which of them still need downloading.",
        inputSchema=_NO_ARGS,
    ),
    Tool(
        name="check_missing_filters",
        description=(
            "Report selected filter lists that have never been compiled. "
            "If none are missing, the bundle is rebuilt and the host reloaded right away."
        ),
        inputSchema=_NO_ARGS,
    ),
    Tool(
        name="resolve_missing_filters",
        description="Download and compile every missing filter list, then rebuild the bundle.",
        inputSchema=_NO_ARGS,
    ),
    Tool(
        name="apply_changes",
        description=(
            "Rebuild blockerList.json and advancedBlocking.json from every selected filter list "
            "(compiling any that are missing) and reload the host content blocker."
        ),
        inputSchema=_NO_ARGS,
    ),
    Tool(
        name="check_for_updates",
        description="Download every filter list and report those whose text changed since the last fetch.",
        inputSchema=_NO_ARGS,
    ),
    Tool(
        name="update_filters",
        description="Refetch and recompile filter lists (default: the pending updates), then rebuild the bundle.",
        inputSchema={
            "type": "object",
            "properties": {
                "names": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Filter list names to update (default: lists reported by check_for_updates)",
                },
            },
        },
    ),
    Tool(
        name="pipeline_status",
        description="Current pipeline state (phase, progress, missing/updated lists) and the log tail.",
        inputSchema={
            "type": "object",
            "properties": {
                "log_lines": {
                    "type": "integer",
                    "description": "Trailing log lines to include (default 50)",
                    "default": 50,
                },
            },
        },
    ),
]

HANDLERS: Dict[str, Callable[[dict[str, Any]], Awaitable[dict]]] = {
    "list_filters": handle_list_filters,
    "toggle_filter": handle_toggle_filter,
    "enable_recommended": handle_enable_recommended,
    "check_missing_filters": handle_check_missing,
    "resolve_missing_filters": handle_resolve_missing,
    "apply_changes": handle_apply_changes,
    "check_for_updates": handle_check_for_updates,
    "update_filters": handle_update_filters,
    "pipeline_status": handle_pipeline_status,
}

# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

RESOURCES = [
    Resource(
        uri="filters://catalog",
        name="Filter Catalog",
        description="JSON array of filter lists with name, url, category and selected flag.",
        mimeType="application/json",
    ),
    Resource(
        uri="state://pipeline",
        name="Pipeline State",
        description="JSON snapshot of the pipeline state.",
        mimeType="application/json",
    ),
    Resource(
        uri="logs://pipeline",
        name="Pipeline Log",
        description="Append-only pipeline log, one message per line.",
        mimeType="text/plain",
    ),
]

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

app = Server("filterlist-mcp")


async def dispatch_tool(name: str, arguments: dict[str, Any]) -> dict:
    handler = HANDLERS.get(name)
    if handler is None:
        return {"error": f"Unknown tool: {name}"}
    try:
        return await handler(arguments or {})
    except FilterSyncError as exc:
        return {"error": str(exc)}


@app.list_tools()
async def list_tools() -> list[Tool]:
    return TOOLS


@app.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    try:
        result = await dispatch_tool(name, arguments)
    except Exception as exc:
        logger.exception("Tool %r raised: %s", name, exc)
        result = {"error": str(exc)}
    return [TextContent(type="text", text=json.dumps(result, ensure_ascii=False, indent=2))]


@app.list_resources()
async def list_resources() -> list[Resource]:
    return RESOURCES


@app.read_resource()
async def read_resource(uri: Any) -> str:
    orch = get_orchestrator()
    key = str(uri)

    if key == "filters://catalog":
        return json.dumps(format_filters(orch.registry.all()), ensure_ascii=False, indent=2)
    if key == "state://pipeline":
        return json.dumps(orch.state.snapshot(), indent=2)
    if key == "logs://pipeline":
        return orch.state.log_text
    return json.dumps({"error": f"Unknown resource: {key}"})


# ---------------------------------------------------------------------------
# Progress forwarding
# ---------------------------------------------------------------------------

def _forward_event(event: PipelineEvent) -> None:
    if event.kind == "progress":
        logger.info("PROGRESS: %.0f%%", event.data["progress"] * 100)
    elif event.kind == "phase":
        logger.info("PHASE: %s", event.data["phase"])
    elif event.kind == "prompt" and event.data.get("value"):
        logger.info("ATTENTION: %s", event.data["prompt"])


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def _serve() -> None:
    config = SyncConfig.from_env()
    orch = Orchestrator.from_config(config)
    set_orchestrator(orch)
    orch.state.subscribe(_forward_event)

    logger.info("Starting filterlist-mcp server (shared dir %s)", config.shared_dir)
    await orch.startup(run_missing_check=config.check_on_start)

    async with stdio_server() as (read_stream, write_stream):
        await app.run(
            read_stream,
            write_stream,
            app.create_initialization_options(),
        )


def main() -> None:
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
