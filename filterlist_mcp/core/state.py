"""
core/state.py

Observable pipeline state owned by the orchestrator.

Every mutation goes through a setter that notifies subscribers synchronously,
in order, on the event loop that drives the workflow, so an observer never
sees a half-applied transition.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    CHECKING_MISSING = "checkingMissing"
    APPLYING = "applying"
    CHECKING_UPDATES = "checkingUpdates"
    UPDATING_SELECTED = "updatingSelected"


@dataclass(frozen=True)
class PipelineEvent:
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[PipelineEvent], None]


class PipelineState:
    def __init__(self) -> None:
        self.phase: Phase = Phase.IDLE
        self.busy = False
        self.progress = 0.0
        self.missing: List[str] = []
        self.available_updates: List[str] = []
        self.has_unapplied_changes = False
        self.show_missing_prompt = False
        self.show_updates_prompt = False
        self.show_recommended_prompt = False
        self.logs: List[str] = []
        self._listeners: List[Listener] = []

    # -- observers ----------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, kind: str, **data: Any) -> None:
        event = PipelineEvent(kind, data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Pipeline listener failed on %s event", kind)

    # -- setters ------------------------------------------------------------

    def set_phase(self, phase: Phase) -> None:
        if phase is not self.phase:
            self.phase = phase
            self._emit("phase", phase=phase.value)

    def set_busy(self, busy: bool) -> None:
        if busy != self.busy:
            self.busy = busy
            self._emit("busy", busy=busy)

    def set_progress(self, value: float) -> None:
        self.progress = min(1.0, max(0.0, float(value)))
        self._emit("progress", progress=self.progress)

    def set_missing(self, names: Iterable[str]) -> None:
        self.missing = list(names)
        self._emit("missing", names=list(self.missing))

    def discard_missing(self, name: str) -> None:
        if name in self.missing:
            self.missing.remove(name)
            self._emit("missing", names=list(self.missing))

    def set_available_updates(self, names: Iterable[str]) -> None:
        self.available_updates = list(names)
        self._emit("updates", names=list(self.available_updates))

    def discard_available_update(self, name: str) -> None:
        if name in self.available_updates:
            self.available_updates.remove(name)
            self._emit("updates", names=list(self.available_updates))

    def set_unapplied_changes(self, value: bool) -> None:
        if value != self.has_unapplied_changes:
            self.has_unapplied_changes = value
            self._emit("unapplied", value=value)

    def set_prompt(self, name: str, value: bool) -> None:
        attr = f"show_{name}_prompt"
        if not hasattr(self, attr):
            raise ValueError(f"Unknown prompt: {name}")
        setattr(self, attr, value)
        self._emit("prompt", prompt=name, value=value)

    def append_log(self, message: str) -> None:
        self.logs.append(message)
        self._emit("log", message=message)

    def replace_logs(self, lines: Iterable[str]) -> None:
        self.logs = list(lines)
        self._emit("logs_reset", count=len(self.logs))

    @property
    def log_text(self) -> str:
        return "".join(f"{line}\n" for line in self.logs)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "busy": self.busy,
            "progress": self.progress,
            "missing": list(self.missing),
            "available_updates": list(self.available_updates),
            "has_unapplied_changes": self.has_unapplied_changes,
            "show_missing_prompt": self.show_missing_prompt,
            "show_updates_prompt": self.show_updates_prompt,
            "show_recommended_prompt": self.show_recommended_prompt,
            "log_lines": len(self.logs),
        }
