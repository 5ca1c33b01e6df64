"""Plan lifecycle events, the synchronous event bus, and a JSONL sink."""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, ClassVar

from .models import utc_now

EVENT_VERSION = 1

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanEvent:
    """Base of the closed event set. ``kind`` names the variant."""

    kind: ClassVar[str] = "plan.event"

    plan_id: str
    timestamp: datetime = field(default_factory=utc_now, kw_only=True)

    @property
    def payload(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("plan_id", "timestamp")
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "plan_id": self.plan_id,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
        }


@dataclass(frozen=True)
class PlanCreated(PlanEvent):
    kind: ClassVar[str] = "plan.created"

    goal: str
    step_count: int


@dataclass(frozen=True)
class PlanApproved(PlanEvent):
    kind: ClassVar[str] = "plan.approved"


@dataclass(frozen=True)
class PlanStarted(PlanEvent):
    kind: ClassVar[str] = "plan.started"


@dataclass(frozen=True)
class PlanRefined(PlanEvent):
    kind: ClassVar[str] = "plan.refined"

    version: int


@dataclass(frozen=True)
class StepStarted(PlanEvent):
    kind: ClassVar[str] = "step.started"

    step_id: str
    step_title: str


@dataclass(frozen=True)
class StepCompleted(PlanEvent):
    kind: ClassVar[str] = "step.completed"

    step_id: str
    success: bool = True
    output: str | None = None


@dataclass(frozen=True)
class StepFailed(PlanEvent):
    kind: ClassVar[str] = "step.failed"

    step_id: str
    error: str


@dataclass(frozen=True)
class StepSkipped(PlanEvent):
    kind: ClassVar[str] = "step.skipped"

    step_id: str


@dataclass(frozen=True)
class StepAdded(PlanEvent):
    kind: ClassVar[str] = "step.added"

    step_id: str


@dataclass(frozen=True)
class StepRemoved(PlanEvent):
    kind: ClassVar[str] = "step.removed"

    step_id: str


@dataclass(frozen=True)
class PlanCompleted(PlanEvent):
    kind: ClassVar[str] = "plan.completed"

    success: bool
    steps_completed: int
    duration_ms: int


@dataclass(frozen=True)
class PlanFailed(PlanEvent):
    kind: ClassVar[str] = "plan.failed"

    error: str
    failed_step_id: str | None = None


@dataclass(frozen=True)
class PlanCancelled(PlanEvent):
    kind: ClassVar[str] = "plan.cancelled"


EVENT_TYPES: tuple[type[PlanEvent], ...] = (
    PlanCreated,
    PlanApproved,
    PlanStarted,
    PlanRefined,
    StepStarted,
    StepCompleted,
    StepFailed,
    StepSkipped,
    StepAdded,
    StepRemoved,
    PlanCompleted,
    PlanFailed,
    PlanCancelled,
)

EVENT_KINDS = frozenset(event_type.kind for event_type in EVENT_TYPES)

Listener = Callable[[PlanEvent], None]


class EventBus:
    """Synchronous fan-out to registered listeners, in registration order."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def emit(self, event: PlanEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "listener %r failed on %s for plan %s",
                    listener,
                    event.kind,
                    event.plan_id,
                )


class JsonlEventSink:
    """Listener that appends each event as one JSON line."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def __call__(self, event: PlanEvent) -> None:
        record = {
            "v": EVENT_VERSION,
            "ts_ms": int(event.timestamp.timestamp() * 1000),
            "type": event.kind,
            "plan_id": event.plan_id,
            "payload": event.payload,
        }
        line = json.dumps(record, separators=(",", ":"), ensure_ascii=True, default=str)
        data = (line + "\n").encode("utf-8")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        # One os.write() per line so concurrent appenders do not interleave.
        fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
        try:
            written = 0
            while written < len(data):
                n = os.write(fd, data[written:])
                if n <= 0:
                    raise OSError("short write while appending event log")
                written += n
        finally:
            os.close(fd)

    def read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        rows: list[dict[str, Any]] = []
        with open(self.path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    rows.append(json.loads(line))
        return rows
