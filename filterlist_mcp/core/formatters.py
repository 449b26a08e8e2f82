"""
core/formatters.py

Output formatters for tool responses: filter tables, status, log tails.
"""
from __future__ import annotations

from io import StringIO
from typing import List, Optional, Sequence

from .config import Subscription
from .state import PipelineState


def format_filters(subs: Sequence[Subscription]) -> dict:
    return {
        "count": len(subs),
        "selected": sum(1 for s in subs if s.selected),
        "filters": [s.to_dict() for s in subs],
    }


def format_status(state: PipelineState) -> dict:
    return state.snapshot()


def format_log_tail(state: PipelineState, limit: Optional[int] = None) -> List[str]:
    lines = state.logs
    if limit is not None and limit >= 0:
        lines = lines[-limit:] if limit else []
    return list(lines)


def format_filters_markdown(subs: Sequence[Subscription]) -> str:
    buf = StringIO()
    buf.write("| Selected | Name | Category |\n")
    buf.write("|---|---|---|\n")
    for s in subs:
        mark = "x" if s.selected else " "
        buf.write(f"| [{mark}] | {s.name} | {s.category.value} |\n")
    return buf.getvalue()
