"""Versioned wire events exchanged between the run lifecycle and clients.

Events form a tagged union keyed by `type`. Every event leaving the server is
stamped with run-scoped metadata by `EventStamper`; consumers drop events
whose `event_version` they do not support and events of unknown type.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from relay_agent.types import RunState, utc_now

logger = logging.getLogger(__name__)

EVENT_VERSION = 1


class BaseEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_version: int = EVENT_VERSION
    run_id: str | None = None
    request_id: str | None = None
    correlation_id: str | None = None
    timestamp: datetime | None = None


class RunCreatedEvent(BaseEvent):
    type: Literal["run_created"] = "run_created"
    message_id: str
    state: RunState = RunState.QUEUED


class RunStateEvent(BaseEvent):
    type: Literal["run_state"] = "run_state"
    state: RunState
    previous: RunState | None = None


class ThreadCreatedEvent(BaseEvent):
    type: Literal["thread_created"] = "thread_created"
    thread_id: str


class RoutingEvent(BaseEvent):
    type: Literal["routing"] = "routing"
    capability: str
    confidence: float
    rationale: str
    source: str


class AgentStartEvent(BaseEvent):
    type: Literal["agent_start"] = "agent_start"
    capability: str


class HandoffEvent(BaseEvent):
    type: Literal["handoff"] = "handoff"
    from_capability: str
    to_capability: str
    reason: str


class ToolStartEvent(BaseEvent):
    type: Literal["tool_start"] = "tool_start"
    id: str | None = None
    tool: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolEndEvent(BaseEvent):
    type: Literal["tool_end"] = "tool_end"
    id: str | None = None
    tool: str
    success: bool
    result: Any = None
    duration_ms: float | None = None


class ContentEvent(BaseEvent):
    type: Literal["content"] = "content"
    delta: str


class DoneEvent(BaseEvent):
    type: Literal["done"] = "done"
    full_content: str
    capability: str
    thread_id: str | None = None


class ErrorEvent(BaseEvent):
    type: Literal["error"] = "error"
    message: str
    code: str = "unknown"
    recoverable: bool = False


Event = Annotated[
    Union[
        RunCreatedEvent,
        RunStateEvent,
        ThreadCreatedEvent,
        RoutingEvent,
        AgentStartEvent,
        HandoffEvent,
        ToolStartEvent,
        ToolEndEvent,
        ContentEvent,
        DoneEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)
KNOWN_EVENT_TYPES = frozenset(
    {
        "run_created",
        "run_state",
        "thread_created",
        "routing",
        "agent_start",
        "handoff",
        "tool_start",
        "tool_end",
        "content",
        "done",
        "error",
    }
)


class EventStamper:
    """Attaches run-scoped metadata to every outgoing event."""

    def __init__(
        self,
        *,
        run_id: str,
        request_id: str,
        correlation_id: str | None = None,
        version: int = EVENT_VERSION,
    ) -> None:
        self.run_id = run_id
        self.request_id = request_id
        self.correlation_id = correlation_id or request_id
        self.version = version

    def stamp(self, event: BaseEvent) -> BaseEvent:
        return event.model_copy(
            update={
                "event_version": self.version,
                "run_id": self.run_id,
                "request_id": self.request_id,
                "correlation_id": self.correlation_id,
                "timestamp": utc_now(),
            }
        )


def parse_event(payload: dict[str, Any], *, supported_version: int = EVENT_VERSION) -> BaseEvent | None:
    """Decode one wire payload; None for unsupported versions, unknown types or bad shapes."""

    if payload.get("event_version") != supported_version:
        logger.debug("Ignoring event with version %r", payload.get("event_version"))
        return None
    if payload.get("type") not in KNOWN_EVENT_TYPES:
        return None
    try:
        return _EVENT_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        logger.warning("Dropping malformed %s event: %s", payload.get("type"), exc)
        return None


def encode_sse(event: BaseEvent) -> str:
    return f"data: {event.model_dump_json()}\n\n"
