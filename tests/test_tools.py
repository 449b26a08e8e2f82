"""Tests for tools/ handlers and the server's tool dispatch."""
import json

import pytest

from filterlist_mcp.core.orchestrator import set_orchestrator
from filterlist_mcp.core.state import Phase, PipelineEvent, PipelineState
from filterlist_mcp.core.storage import StorageGateway
from filterlist_mcp.server import HANDLERS, TOOLS, dispatch_tool, read_resource
from filterlist_mcp.tools.filters import handle_list_filters, handle_toggle_filter
from filterlist_mcp.tools.sync import (
    handle_apply_changes,
    handle_check_for_updates,
    handle_check_missing,
    handle_pipeline_status,
    handle_resolve_missing,
    handle_update_filters,
)


@pytest.fixture
def installed(make_orchestrator):
    orch = make_orchestrator()
    set_orchestrator(orch)
    yield orch
    set_orchestrator(None)


def test_every_tool_has_a_handler():
    assert sorted(t.name for t in TOOLS) == sorted(HANDLERS)


@pytest.mark.asyncio
async def test_list_filters_by_category(make_orchestrator):
    orch = make_orchestrator()
    result = await handle_list_filters({"category": "privacy"}, orch)
    assert result["category"] == "privacy"
    assert [f["name"] for f in result["filters"]] == ["EasyPrivacy"]
    assert "table" not in result

    result = await handle_list_filters({"output_format": "markdown"}, orch)
    assert result["count"] == 3
    assert "| [x] | EasyPrivacy | privacy |" in result["table"]


@pytest.mark.asyncio
async def test_list_filters_rejects_unknown_category(make_orchestrator):
    result = await handle_list_filters({"category": "cookies"}, make_orchestrator())
    assert result == {"error": "Unknown category: cookies"}


@pytest.mark.asyncio
async def test_toggle_filter(make_orchestrator):
    orch = make_orchestrator()
    assert await handle_toggle_filter({}, orch) == {"error": "name is required"}

    result = await handle_toggle_filter({"name": "EasyPrivacy"}, orch)
    assert result["filter"]["selected"] is False
    assert result["has_unapplied_changes"] is True


@pytest.mark.asyncio
async def test_sync_handlers(make_orchestrator, remote):
    orch = make_orchestrator()

    result = await handle_check_missing({}, orch)
    assert result["applied"] is False
    assert len(result["missing"]) == 3
    assert result["status"]["show_missing_prompt"] is True

    result = await handle_resolve_missing({}, orch)
    assert result["still_missing"] == []

    result = await handle_apply_changes({}, orch)
    assert result["bundle_written"] is True
    assert result["status"]["phase"] == "idle"

    remote.set("EasyPrivacy", "||new.example^\n")
    result = await handle_check_for_updates({}, orch)
    assert result["available_updates"] == ["EasyPrivacy"]

    result = await handle_update_filters({}, orch)
    assert result["failed"] == []
    assert result["available_updates"] == []


@pytest.mark.asyncio
async def test_check_missing_reports_failed_apply(make_orchestrator, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    orch = make_orchestrator(gateway=StorageGateway(blocker / "shared"))

    result = await handle_check_missing({}, orch)

    assert result["missing"] == []
    assert result["applied"] is False


@pytest.mark.asyncio
async def test_update_filters_validates_names(make_orchestrator):
    result = await handle_update_filters({"names": "EasyPrivacy"}, make_orchestrator())
    assert "error" in result


@pytest.mark.asyncio
async def test_pipeline_status_log_tail(make_orchestrator):
    orch = make_orchestrator()
    await orch.apply_changes()
    result = await handle_pipeline_status({"log_lines": 1}, orch)
    assert len(result["log"]) == 1
    assert result["log"] == orch.state.logs[-1:]


@pytest.mark.asyncio
async def test_dispatch_reports_domain_errors(installed):
    assert await dispatch_tool("nope", {}) == {"error": "Unknown tool: nope"}

    result = await dispatch_tool("toggle_filter", {"name": "Nope"})
    assert result == {"error": "Unknown filter list: Nope"}

    result = await dispatch_tool("update_filters", {"names": ["Nope"]})
    assert "Nope" in result["error"]


@pytest.mark.asyncio
async def test_read_resources(installed):
    catalog = json.loads(await read_resource("filters://catalog"))
    assert catalog["count"] == 3

    await installed.apply_changes()
    state = json.loads(await read_resource("state://pipeline"))
    assert state["phase"] == "idle"
    assert await read_resource("logs://pipeline") == installed.state.log_text
    assert "error" in json.loads(await read_resource("nope://x"))


def test_state_listener_errors_do_not_break_notification():
    state = PipelineState()
    seen = []

    def broken(_event: PipelineEvent) -> None:
        raise RuntimeError("listener failed")

    state.subscribe(broken)
    unsubscribe = state.subscribe(seen.append)
    state.set_phase(Phase.APPLYING)
    unsubscribe()
    state.set_phase(Phase.IDLE)

    assert [e.kind for e in seen] == ["phase"]
    with pytest.raises(ValueError):
        state.set_prompt("bogus", True)
