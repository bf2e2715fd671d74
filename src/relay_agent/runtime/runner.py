"""Run orchestration: validation, routing, runtime streaming and persistence.

`RunOrchestrator.stream_turn` is the only producer of wire events. It owns the
run state machine for one turn, translates raw runtime events into protocol
events and stamps each one on the way out. Once the run reaches a terminal
state the assistant message is persisted and a trace record is written.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import uuid
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from relay_agent.agent.capabilities import COORDINATOR, CapabilityRegistry
from relay_agent.agent.handoff import can_handoff, decide_handoff
from relay_agent.agent.preflight import check_availability
from relay_agent.agent.registry import ToolContext
from relay_agent.config import Settings
from relay_agent.obs.tracing import Timer, TraceStore
from relay_agent.resilience.errors import (
    ErrorCode,
    MissingCredentialError,
    ValidationFailure,
    classify_error,
    error_text,
)
from relay_agent.routing.router import CapabilityRouter
from relay_agent.runtime.events import (
    AgentStartEvent,
    BaseEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    EventStamper,
    HandoffEvent,
    RoutingEvent,
    RunCreatedEvent,
    RunStateEvent,
    ThreadCreatedEvent,
    ToolEndEvent,
    ToolStartEvent,
)
from relay_agent.runtime.hosted import (
    HostedRuntime,
    RawCompleted,
    RawHandoff,
    RawRuntimeEvent,
    RawTextDelta,
    RawToolCall,
    RawToolResult,
    RuntimeOptions,
)
from relay_agent.runtime.lifecycle import RunStateMachine
from relay_agent.runtime.validation import validate_message
from relay_agent.storage.threads import ThreadStore
from relay_agent.types import (
    ChatMessage,
    HandoffInfo,
    RoutingDecision,
    RoutingSource,
    RunState,
    ToolExecution,
    ToolTrace,
    utc_now,
)

logger = logging.getLogger(__name__)

_CANCELLED = object()
_EXHAUSTED = object()


@dataclass(slots=True)
class TurnRequest:
    message: str
    user_id: str = "anonymous"
    thread_id: str | None = None
    force_capability: str | None = None
    conversation_history: list[dict[str, str]] | None = None
    request_id: str | None = None
    correlation_id: str | None = None


@dataclass(slots=True)
class TurnResult:
    run_id: str | None
    message_id: str | None
    thread_id: str | None
    state: RunState
    content: str
    capability: str | None
    routing: dict[str, Any] | None
    tool_summary: dict[str, Any]
    failure: dict[str, Any] | None
    events: list[BaseEvent] = field(default_factory=list)


@dataclass(slots=True)
class _Turn:
    request: TurnRequest
    machine: RunStateMachine
    stamper: EventStamper
    message_id: str
    text: str = ""
    thread_id: str | None = None
    capability: str = COORDINATOR
    routing: RoutingDecision | None = None
    parts: list[str] = field(default_factory=list)
    final_text: str | None = None
    tools: dict[str, ToolExecution] = field(default_factory=dict)
    pending: list[str] = field(default_factory=list)
    tool_traces: list[ToolTrace] = field(default_factory=list)
    handoffs: list[HandoffInfo] = field(default_factory=list)
    runtime_handoffs: int = 0
    user_persisted: bool = False
    error_code: str | None = None

    @property
    def content(self) -> str:
        if self.final_text is not None:
            return self.final_text
        return "".join(self.parts)


class RunOrchestrator:
    """Drives one conversational turn end to end."""

    def __init__(
        self,
        *,
        capabilities: CapabilityRegistry,
        router: CapabilityRouter,
        runtime: HostedRuntime,
        thread_store: ThreadStore,
        trace_store: TraceStore | None = None,
        settings: Settings | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.capabilities = capabilities
        self.router = router
        self.runtime = runtime
        self.threads = thread_store
        self.traces = trace_store or TraceStore()
        self.settings = settings or Settings()
        self.environ = os.environ if environ is None else environ

    async def stream_turn(
        self,
        request: TurnRequest,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[BaseEvent]:
        machine = RunStateMachine()
        request_id = request.request_id or uuid.uuid4().hex
        turn = _Turn(
            request=request,
            machine=machine,
            stamper=EventStamper(
                run_id=machine.run_id,
                request_id=request_id,
                correlation_id=request.correlation_id,
            ),
            message_id=f"msg_{uuid.uuid4().hex}",
            thread_id=request.thread_id,
        )
        timer = Timer()
        logger.info("Run %s started (request %s)", machine.run_id, request_id)
        try:
            async for event in self._drive(turn, cancel):
                yield event
        except Exception as exc:
            if machine.is_terminal:
                raise
            classification = classify_error(exc)
            logger.exception("Run %s failed with %s", machine.run_id, classification.code.value)
            turn.error_code = classification.code.value
            yield self._move(turn, RunState.FAILED)
            yield self._emit(
                turn,
                ErrorEvent(
                    message=error_text(exc),
                    code=classification.code.value,
                    recoverable=classification.recoverable,
                ),
            )
        finally:
            if not machine.is_terminal:
                logger.info("Run %s abandoned by consumer", machine.run_id)
                machine.transition(RunState.CANCELLED)
            self._finalize(turn, timer.lap())

    async def run_turn(self, request: TurnRequest, cancel: asyncio.Event | None = None) -> TurnResult:
        """Collect a whole turn into a single result."""

        events = [event async for event in self.stream_turn(request, cancel)]
        return summarize_events(events, thread_id=request.thread_id)

    async def _drive(self, turn: _Turn, cancel: asyncio.Event | None) -> AsyncIterator[BaseEvent]:
        request = turn.request
        yield self._emit(turn, RunCreatedEvent(message_id=turn.message_id, state=RunState.QUEUED))

        if turn.thread_id is None:
            turn.thread_id = self.threads.create_thread(request.user_id)
            yield self._emit(turn, ThreadCreatedEvent(thread_id=turn.thread_id))

        try:
            turn.text = validate_message(request.message, self.settings.validation)
        except ValidationFailure as exc:
            logger.info("Run %s rejected: %s", turn.machine.run_id, exc)
            turn.error_code = ErrorCode.VALIDATION.value
            yield self._move(turn, RunState.FAILED)
            yield self._emit(turn, ErrorEvent(message=str(exc), code=ErrorCode.VALIDATION.value, recoverable=False))
            return

        history = self._history(turn)
        self.threads.append_message(
            ChatMessage(id=f"msg_{uuid.uuid4().hex}", role="user", content=turn.text, thread_id=turn.thread_id)
        )
        turn.user_persisted = True

        yield self._move(turn, RunState.ROUTING)
        decision = await self._route(turn)
        turn.routing = decision
        yield self._emit(
            turn,
            RoutingEvent(
                capability=decision.capability,
                confidence=decision.confidence,
                rationale=decision.rationale,
                source=decision.source.value,
            ),
        )

        proposal = await decide_handoff(turn.text, COORDINATOR, router=self.router, decision=decision)
        if proposal.should_handoff and proposal.handoff is not None:
            yield self._record_handoff(turn, COORDINATOR, proposal.handoff.target, proposal.handoff.reason)

        self._preflight(turn.capability)

        if cancel is not None and cancel.is_set():
            yield self._move(turn, RunState.CANCELLED)
            return

        yield self._emit(turn, AgentStartEvent(capability=turn.capability))
        yield self._move(turn, RunState.THINKING)

        run_config = self.settings.run
        options = RuntimeOptions(
            max_turns=run_config.max_turns,
            tool_timeout_seconds=run_config.tool_timeout_seconds,
            authorize_handoff=lambda source, target: self._may_handoff(turn, source, target),
            cancel=cancel,
        )
        context = ToolContext(
            user_id=request.user_id,
            thread_id=turn.thread_id,
            run_id=turn.machine.run_id,
            capability=turn.capability,
        )
        messages = history + [{"role": "user", "content": turn.text}]
        stream = self.runtime.stream(self.capabilities.get(turn.capability), messages, options, context)
        try:
            while True:
                raw = await _next_raw(stream, cancel)
                if raw is _CANCELLED:
                    logger.info("Run %s cancelled", turn.machine.run_id)
                    yield self._move(turn, RunState.CANCELLED)
                    return
                if raw is _EXHAUSTED:
                    break
                if isinstance(raw, RawCompleted):
                    turn.final_text = raw.final_text or "".join(turn.parts)
                    break
                for event in self._translate(turn, raw):
                    yield event
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if turn.machine.state is RunState.TOOL_EXECUTING:
            yield self._move(turn, RunState.THINKING)
        yield self._move(turn, RunState.DONE)
        yield self._emit(
            turn,
            DoneEvent(full_content=turn.content, capability=turn.capability, thread_id=turn.thread_id),
        )

    async def _route(self, turn: _Turn) -> RoutingDecision:
        forced = turn.request.force_capability
        if forced is None:
            return await self.router.route(turn.text)
        if forced not in self.capabilities:
            raise ValidationFailure(f"Unknown capability: {forced}")
        return RoutingDecision(
            capability=forced,
            confidence=1.0,
            rationale="Capability selected by caller",
            source=RoutingSource.EXPLICIT,
        )

    def _preflight(self, capability: str) -> None:
        availability = check_availability(self.capabilities.get(capability), self.environ)
        if availability.available:
            return
        missing = ", ".join(availability.missing_credentials)
        if self.settings.run.enforce_credentials:
            raise MissingCredentialError(f"{capability} is not configured (missing credential: {missing})")
        logger.warning("Capability %s running degraded, missing credentials: %s", capability, missing)

    def _history(self, turn: _Turn) -> list[dict[str, str]]:
        if turn.request.conversation_history is not None:
            history = list(turn.request.conversation_history)
        else:
            try:
                stored = self.threads.get_messages(turn.thread_id or "")
            except KeyError:
                stored = []
            history = [{"role": m.role, "content": m.content} for m in stored if m.content]
        limit = self.settings.run.history_limit
        return history[-limit:] if limit else []

    def _may_handoff(self, turn: _Turn, source: str, target: str) -> bool:
        if turn.runtime_handoffs >= self.settings.run.max_handoffs:
            return False
        return can_handoff(source, target, self.capabilities)

    def _record_handoff(self, turn: _Turn, source: str, target: str, reason: str) -> BaseEvent:
        info = HandoffInfo(from_capability=source, to_capability=target, reason=reason)
        turn.handoffs.append(info)
        turn.capability = target
        logger.info("Run %s handed off %s -> %s", turn.machine.run_id, source, target)
        return self._emit(turn, HandoffEvent(from_capability=source, to_capability=target, reason=reason))

    def _translate(self, turn: _Turn, raw: RawRuntimeEvent) -> list[BaseEvent]:
        show_tools = self.settings.run.show_tool_executions
        events: list[BaseEvent] = []
        state = turn.machine.state

        if isinstance(raw, RawTextDelta):
            if not raw.text:
                return events
            if state is RunState.TOOL_EXECUTING:
                events.append(self._move(turn, RunState.THINKING))
            if turn.machine.state is not RunState.COMPOSING:
                events.append(self._move(turn, RunState.COMPOSING))
            turn.parts.append(raw.text)
            events.append(self._emit(turn, ContentEvent(delta=raw.text)))

        elif isinstance(raw, RawToolCall):
            if state is RunState.COMPOSING:
                events.append(self._move(turn, RunState.THINKING))
            if turn.machine.state is not RunState.TOOL_EXECUTING:
                events.append(self._move(turn, RunState.TOOL_EXECUTING))
            call_id = raw.call_id or f"call_{uuid.uuid4().hex[:12]}"
            turn.tools[call_id] = ToolExecution(id=call_id, tool=raw.name, args=dict(raw.args))
            turn.pending.append(call_id)
            if show_tools:
                events.append(self._emit(turn, ToolStartEvent(id=call_id, tool=raw.name, args=dict(raw.args))))

        elif isinstance(raw, RawToolResult):
            execution = self._complete_tool(turn, raw)
            if show_tools:
                events.append(
                    self._emit(
                        turn,
                        ToolEndEvent(
                            id=execution.id,
                            tool=execution.tool,
                            success=raw.outcome.success,
                            result=raw.outcome.result,
                            duration_ms=execution.duration_ms,
                        ),
                    )
                )
            if not turn.pending and turn.machine.state is RunState.TOOL_EXECUTING:
                events.append(self._move(turn, RunState.THINKING))

        elif isinstance(raw, RawHandoff):
            source = turn.capability
            if not self._may_handoff(turn, source, raw.to_capability):
                logger.warning(
                    "Run %s dropped unauthorized handoff %s -> %s",
                    turn.machine.run_id,
                    source,
                    raw.to_capability,
                )
                return events
            turn.runtime_handoffs += 1
            if state is RunState.COMPOSING:
                events.append(self._move(turn, RunState.THINKING))
            events.append(self._record_handoff(turn, source, raw.to_capability, raw.reason))
            events.append(self._emit(turn, AgentStartEvent(capability=turn.capability)))

        return events

    def _complete_tool(self, turn: _Turn, raw: RawToolResult) -> ToolExecution:
        call_id = raw.call_id if raw.call_id in turn.pending else None
        if call_id is None:
            call_id = next((cid for cid in turn.pending if turn.tools[cid].tool == raw.name), None)
        if call_id is None:
            call_id = raw.call_id or f"call_{uuid.uuid4().hex[:12]}"
            turn.tools[call_id] = ToolExecution(id=call_id, tool=raw.name, args={})
        else:
            turn.pending.remove(call_id)

        outcome = raw.outcome
        execution = turn.tools[call_id]
        execution.status = "completed" if outcome.success else "failed"
        execution.result = outcome.result
        execution.end_time = utc_now()
        execution.duration_ms = outcome.latency_ms
        turn.tool_traces.append(
            ToolTrace(
                name=raw.name,
                input_payload=execution.args,
                output_preview=str(outcome.result)[:320],
                latency_ms=outcome.latency_ms,
                success=outcome.success,
            )
        )
        return execution

    def _emit(self, turn: _Turn, event: BaseEvent) -> BaseEvent:
        return turn.stamper.stamp(event)

    def _move(self, turn: _Turn, target: RunState) -> BaseEvent:
        previous = turn.machine.transition(target)
        logger.debug("Run %s: %s -> %s", turn.machine.run_id, previous.value, target.value)
        return self._emit(turn, RunStateEvent(state=target, previous=previous))

    def _finalize(self, turn: _Turn, latency_ms: float) -> None:
        machine = turn.machine
        if turn.user_persisted and turn.thread_id is not None:
            message = ChatMessage(
                id=turn.message_id,
                role="assistant",
                content=turn.content,
                thread_id=turn.thread_id,
                capability=turn.capability,
                tool_executions=list(turn.tools.values()),
                run=machine.metadata(),
                handoff=turn.handoffs[-1] if turn.handoffs else None,
            )
            try:
                self.threads.append_message(message)
            except Exception:
                logger.exception("Run %s: failed to persist assistant message", machine.run_id)

        self.traces.create_record(
            run_id=machine.run_id,
            message=turn.text or turn.request.message,
            response=turn.content,
            thread_id=turn.thread_id,
            capability=turn.capability if turn.routing is not None else None,
            routing=turn.routing.to_dict() if turn.routing is not None else None,
            handoffs=[
                {"from_capability": h.from_capability, "to_capability": h.to_capability, "reason": h.reason}
                for h in turn.handoffs
            ],
            tool_traces=turn.tool_traces,
            final_state=machine.state.value,
            error_code=turn.error_code,
            latency_ms=latency_ms,
            request_id=turn.stamper.request_id,
            states=[state.value for state in machine.history],
        )
        logger.info("Run %s finished: %s in %.0fms", machine.run_id, machine.state.value, latency_ms)


async def _next_raw(stream: AsyncIterator[RawRuntimeEvent], cancel: asyncio.Event | None) -> Any:
    """Next runtime event, `_EXHAUSTED` at the end or `_CANCELLED` once `cancel` fires."""

    if cancel is None:
        try:
            return await stream.__anext__()
        except StopAsyncIteration:
            return _EXHAUSTED
    if cancel.is_set():
        return _CANCELLED

    next_task = asyncio.ensure_future(stream.__anext__())
    cancel_task = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancel_task.cancel()

    if cancel.is_set():
        if not next_task.done():
            next_task.cancel()
        with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
            await next_task
        return _CANCELLED
    try:
        return next_task.result()
    except StopAsyncIteration:
        return _EXHAUSTED


def summarize_events(events: list[BaseEvent], *, thread_id: str | None = None) -> TurnResult:
    """Fold a finished event sequence into a `TurnResult`."""

    run_id: str | None = None
    message_id: str | None = None
    state = RunState.QUEUED
    parts: list[str] = []
    content: str | None = None
    capability: str | None = None
    routing: dict[str, Any] | None = None
    tools: list[dict[str, Any]] = []
    failure: dict[str, Any] | None = None

    for event in events:
        run_id = run_id or event.run_id
        if isinstance(event, RunCreatedEvent):
            message_id = event.message_id
        elif isinstance(event, ThreadCreatedEvent):
            thread_id = event.thread_id
        elif isinstance(event, RunStateEvent):
            state = event.state
        elif isinstance(event, RoutingEvent):
            routing = {
                "capability": event.capability,
                "confidence": event.confidence,
                "rationale": event.rationale,
                "source": event.source,
            }
            capability = event.capability if capability is None else capability
        elif isinstance(event, AgentStartEvent):
            capability = event.capability
        elif isinstance(event, ContentEvent):
            parts.append(event.delta)
        elif isinstance(event, ToolEndEvent):
            tools.append({"tool": event.tool, "success": event.success, "duration_ms": event.duration_ms})
        elif isinstance(event, DoneEvent):
            content = event.full_content
            capability = event.capability
            thread_id = event.thread_id or thread_id
        elif isinstance(event, ErrorEvent):
            failure = {"code": event.code, "recoverable": event.recoverable, "message": event.message}

    succeeded = sum(1 for tool in tools if tool["success"])
    return TurnResult(
        run_id=run_id,
        message_id=message_id,
        thread_id=thread_id,
        state=state,
        content=content if content is not None else "".join(parts),
        capability=capability,
        routing=routing,
        tool_summary={
            "total": len(tools),
            "succeeded": succeeded,
            "failed": len(tools) - succeeded,
            "tools": [tool["tool"] for tool in tools],
        },
        failure=failure,
        events=list(events),
    )
