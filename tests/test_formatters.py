"""Tests for core/formatters.py"""
from conftest import sample_catalog
from filterlist_mcp.core.formatters import (
    format_filters,
    format_filters_markdown,
    format_log_tail,
    format_status,
)
from filterlist_mcp.core.state import Phase, PipelineState


def test_format_filters_counts_selection():
    subs = sample_catalog()
    subs[1].selected = False
    output = format_filters(subs)
    assert output["count"] == 3
    assert output["selected"] == 2
    assert output["filters"][1] == {
        "name": "EasyPrivacy",
        "url": "https://lists.test/EasyPrivacy.txt",
        "category": "privacy",
        "selected": False,
    }


def test_format_filters_empty():
    assert format_filters([]) == {"count": 0, "selected": 0, "filters": []}


def test_format_filters_markdown():
    subs = sample_catalog()
    subs[0].selected = False
    table = format_filters_markdown(subs).splitlines()
    assert table[0] == "| Selected | Name | Category |"
    assert table[2] == "| [ ] | AdGuard Base filter | ads |"
    assert table[4] == "| [x] | Peter Lowe's Blocklist | multipurpose |"


def test_format_status():
    state = PipelineState()
    state.set_phase(Phase.APPLYING)
    state.set_missing(["EasyPrivacy"])
    status = format_status(state)
    assert status["phase"] == "applying"
    assert status["missing"] == ["EasyPrivacy"]
    assert status["show_missing_prompt"] is False


def test_format_log_tail():
    state = PipelineState()
    for n in range(5):
        state.append_log(f"line {n}")
    assert format_log_tail(state, 2) == ["line 3", "line 4"]
    assert format_log_tail(state, 0) == []
    assert format_log_tail(state) == [f"line {n}" for n in range(5)]
    assert state.log_text.endswith("line 4\n")
