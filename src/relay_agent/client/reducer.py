"""Client-side view state rebuilt from the run event stream.

`reduce` applies one event to a `ChatState` in place and returns it. Rules:

- events of an unsupported version or unknown type are ignored;
- once a run is terminal, later non-terminal run states, content and tool
  events for it are ignored;
- once a run is cancelled, only `thread_created` still applies;
- terminal run metadata is written through the optional `RunMetadataCache`.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from relay_agent.client.run_cache import RunMetadataCache
from relay_agent.runtime.events import (
    EVENT_VERSION,
    AgentStartEvent,
    BaseEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    HandoffEvent,
    RoutingEvent,
    RunCreatedEvent,
    RunStateEvent,
    ThreadCreatedEvent,
    ToolEndEvent,
    ToolStartEvent,
    parse_event,
)
from relay_agent.types import (
    TERMINAL_STATES,
    ChatMessage,
    HandoffInfo,
    RunMetadata,
    RunState,
    ToolExecution,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatState:
    messages: list[ChatMessage] = field(default_factory=list)
    thread_id: str | None = None
    run_id: str | None = None
    run_state: RunState | None = None
    run_started_at: datetime | None = None
    run_updated_at: datetime | None = None
    run_ended_at: datetime | None = None
    current_capability: str | None = None
    routing_reason: str | None = None
    routing_confidence: float | None = None
    pending_handoff: HandoffInfo | None = None
    error: str | None = None
    error_code: str | None = None
    is_streaming: bool = False
    active_message_id: str | None = None

    @property
    def is_run_terminal(self) -> bool:
        return self.run_state in TERMINAL_STATES

    def find_message(self, message_id: str | None) -> ChatMessage | None:
        if message_id is None:
            return None
        return next((m for m in self.messages if m.id == message_id), None)

    @property
    def active_message(self) -> ChatMessage | None:
        return self.find_message(self.active_message_id)


def begin_turn(state: ChatState, text: str) -> str:
    """Append the user message and an empty assistant placeholder; return the placeholder id."""

    state.messages.append(
        ChatMessage(id=f"local_{uuid.uuid4().hex}", role="user", content=text, thread_id=state.thread_id)
    )
    placeholder = ChatMessage(
        id=f"pending_{uuid.uuid4().hex}",
        role="assistant",
        content="",
        thread_id=state.thread_id,
        is_streaming=True,
    )
    state.messages.append(placeholder)
    state.active_message_id = placeholder.id
    state.is_streaming = True
    state.error = None
    state.error_code = None
    state.pending_handoff = None
    state.run_id = None
    state.run_state = None
    state.run_started_at = None
    state.run_updated_at = None
    state.run_ended_at = None
    return placeholder.id


def reduce(
    state: ChatState,
    event: BaseEvent | dict[str, Any],
    *,
    cache: RunMetadataCache | None = None,
    supported_version: int = EVENT_VERSION,
) -> ChatState:
    if isinstance(event, dict):
        parsed = parse_event(event, supported_version=supported_version)
        if parsed is None:
            return state
        event = parsed
    elif event.event_version != supported_version:
        return state

    if state.run_id is not None and event.run_id is not None and event.run_id != state.run_id:
        logger.debug("Ignoring event for stale run %s", event.run_id)
        return state

    if state.run_state is RunState.CANCELLED and not isinstance(event, ThreadCreatedEvent):
        logger.debug("Ignoring %s for cancelled run %s", event.type, state.run_id)
        return state

    at = event.timestamp or utc_now()
    message = state.active_message

    if isinstance(event, RunCreatedEvent):
        if state.is_run_terminal:
            return state
        state.run_id = event.run_id
        state.run_started_at = at
        if message is not None:
            message.id = event.message_id
            state.active_message_id = event.message_id
        _set_run_state(state, event.state, at, cache)

    elif isinstance(event, RunStateEvent):
        if state.is_run_terminal:
            return state
        _set_run_state(state, event.state, at, cache)

    elif isinstance(event, ThreadCreatedEvent):
        state.thread_id = event.thread_id
        for item in state.messages:
            if item.thread_id is None:
                item.thread_id = event.thread_id

    elif isinstance(event, RoutingEvent):
        state.current_capability = event.capability
        state.routing_reason = event.rationale
        state.routing_confidence = event.confidence
        state.pending_handoff = None

    elif isinstance(event, AgentStartEvent):
        state.current_capability = event.capability
        state.pending_handoff = None
        if message is not None:
            message.capability = event.capability

    elif isinstance(event, HandoffEvent):
        handoff = HandoffInfo(
            from_capability=event.from_capability,
            to_capability=event.to_capability,
            reason=event.reason,
            timestamp=at,
        )
        state.pending_handoff = handoff
        if message is not None:
            message.handoff = handoff

    elif isinstance(event, ContentEvent):
        if message is not None and not state.is_run_terminal:
            message.content += event.delta

    elif isinstance(event, ToolStartEvent):
        if message is not None and not state.is_run_terminal:
            message.tool_executions.append(
                ToolExecution(
                    id=event.id or f"tool_{uuid.uuid4().hex[:12]}",
                    tool=event.tool,
                    args=dict(event.args),
                    status="running",
                    start_time=at,
                )
            )

    elif isinstance(event, ToolEndEvent):
        if message is not None and not state.is_run_terminal:
            _finish_tool(message, event, at)

    elif isinstance(event, DoneEvent):
        if message is not None:
            message.content = event.full_content
            message.capability = event.capability
            message.thread_id = event.thread_id or message.thread_id
            message.is_streaming = False
        state.current_capability = event.capability
        if event.thread_id:
            state.thread_id = event.thread_id
        state.is_streaming = False
        if not state.is_run_terminal:
            _set_run_state(state, RunState.DONE, at, cache)

    elif isinstance(event, ErrorEvent):
        state.error = event.message
        state.error_code = event.code
        state.is_streaming = False
        if message is not None:
            message.is_streaming = False
        if not state.is_run_terminal:
            _set_run_state(state, RunState.FAILED, at, cache)

    return state


def cancel_run(state: ChatState, *, cache: RunMetadataCache | None = None) -> ChatState:
    """Force the in-flight run to `cancelled`; later stream events no longer change it."""

    state.is_streaming = False
    message = state.active_message
    if message is not None:
        message.is_streaming = False
    if state.run_state is None or not state.is_run_terminal:
        _set_run_state(state, RunState.CANCELLED, utc_now(), cache)
    return state


def load_view(
    messages: list[ChatMessage],
    *,
    thread_id: str | None,
    run_metadata: dict[str, RunMetadata] | None = None,
) -> ChatState:
    """Build a fresh view from persisted history, filling run metadata from the cache."""

    cached = run_metadata or {}
    restored: list[ChatMessage] = []
    for message in messages:
        if message.run is None and message.id in cached:
            message.run = cached[message.id]
        message.is_streaming = False
        restored.append(message)

    state = ChatState(messages=restored, thread_id=thread_id)
    last_run = next((m.run for m in reversed(restored) if m.run is not None), None)
    if last_run is not None:
        state.run_id = last_run.run_id
        state.run_state = last_run.state
        state.run_started_at = last_run.started_at
        state.run_updated_at = last_run.updated_at
        state.run_ended_at = last_run.ended_at
    last_assistant = next((m for m in reversed(restored) if m.role == "assistant"), None)
    if last_assistant is not None:
        state.current_capability = last_assistant.capability
    return state


def _set_run_state(
    state: ChatState,
    target: RunState,
    at: datetime,
    cache: RunMetadataCache | None,
) -> None:
    state.run_state = target
    state.run_updated_at = at
    if state.run_started_at is None:
        state.run_started_at = at
    if target in TERMINAL_STATES:
        state.run_ended_at = at
        state.is_streaming = False

    message = state.active_message
    if message is None or state.run_id is None:
        return
    message.run = RunMetadata(
        run_id=state.run_id,
        state=target,
        started_at=state.run_started_at,
        updated_at=at,
        ended_at=state.run_ended_at if target in TERMINAL_STATES else None,
    )
    if target in TERMINAL_STATES:
        message.is_streaming = False
        if cache is not None and state.thread_id is not None:
            cache.save(state.thread_id, message.id, message.run)


def _finish_tool(message: ChatMessage, event: ToolEndEvent, at: datetime) -> None:
    execution = None
    if event.id is not None:
        execution = next((t for t in message.tool_executions if t.id == event.id), None)
    if execution is None:
        execution = next(
            (t for t in message.tool_executions if t.tool == event.tool and t.status == "running"),
            None,
        )
    if execution is None:
        logger.debug("tool_end for %s without a matching tool_start", event.tool)
        return
    execution.status = "completed" if event.success else "failed"
    execution.result = event.result
    execution.end_time = at
    if event.duration_ms is not None:
        execution.duration_ms = event.duration_ms
    else:
        execution.duration_ms = (at - execution.start_time).total_seconds() * 1000.0
