"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RoutingSource(str, Enum):
    EXPLICIT = "explicit"
    KEYWORD = "keyword"
    MODEL = "model"
    FALLBACK = "fallback"


class RunState(str, Enum):
    QUEUED = "queued"
    ROUTING = "routing"
    THINKING = "thinking"
    TOOL_EXECUTING = "tool_executing"
    COMPOSING = "composing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({RunState.DONE, RunState.FAILED, RunState.CANCELLED})


@dataclass(frozen=True, slots=True)
class RoutingDecision:
    """A single routing outcome. Never mutated; derive a new value instead."""

    capability: str
    confidence: float
    rationale: str
    source: RoutingSource

    def to_dict(self) -> dict[str, Any]:
        return {
            "capability": self.capability,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "source": self.source.value,
        }


@dataclass(slots=True)
class ToolExecution:
    """Client-side view of one tool call."""

    id: str
    tool: str
    args: dict[str, Any]
    status: str = "running"
    result: Any = None
    start_time: datetime = field(default_factory=utc_now)
    end_time: datetime | None = None
    duration_ms: float | None = None


@dataclass(slots=True)
class HandoffInfo:
    from_capability: str
    to_capability: str
    reason: str
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class RunMetadata:
    run_id: str
    state: RunState
    started_at: datetime
    updated_at: datetime
    ended_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunMetadata":
        ended = data.get("ended_at")
        return cls(
            run_id=str(data["run_id"]),
            state=RunState(data["state"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            ended_at=datetime.fromisoformat(ended) if ended else None,
        )


@dataclass(slots=True)
class ChatMessage:
    """A persisted or streaming conversation message."""

    id: str
    role: str
    content: str
    thread_id: str | None = None
    capability: str | None = None
    tool_executions: list[ToolExecution] = field(default_factory=list)
    run: RunMetadata | None = None
    handoff: HandoffInfo | None = None
    is_streaming: bool = False
    created_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    success: bool = True
