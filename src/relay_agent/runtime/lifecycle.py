"""Run state machine."""

from __future__ import annotations

import uuid
from datetime import datetime

from relay_agent.types import TERMINAL_STATES, RunMetadata, RunState, utc_now

_FORWARD: dict[RunState, frozenset[RunState]] = {
    RunState.QUEUED: frozenset({RunState.ROUTING}),
    RunState.ROUTING: frozenset({RunState.THINKING}),
    RunState.THINKING: frozenset({RunState.TOOL_EXECUTING, RunState.COMPOSING, RunState.DONE}),
    RunState.TOOL_EXECUTING: frozenset({RunState.THINKING}),
    RunState.COMPOSING: frozenset({RunState.THINKING, RunState.DONE}),
}


class InvalidTransitionError(RuntimeError):
    pass


def can_transition(current: RunState, target: RunState) -> bool:
    if current in TERMINAL_STATES:
        return False
    if target in (RunState.FAILED, RunState.CANCELLED):
        return True
    return target in _FORWARD.get(current, frozenset())


def new_run_id() -> str:
    return f"run_{uuid.uuid4().hex}"


class RunStateMachine:
    """Owns the state of one run; terminal states are final."""

    def __init__(self, run_id: str | None = None, *, now: datetime | None = None) -> None:
        started = now or utc_now()
        self.run_id = run_id or new_run_id()
        self.state = RunState.QUEUED
        self.started_at = started
        self.updated_at = started
        self.ended_at: datetime | None = None
        self.history: list[RunState] = [RunState.QUEUED]

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, target: RunState) -> RunState:
        """Move to `target` and return the previous state."""
        if not can_transition(self.state, target):
            raise InvalidTransitionError(f"{self.run_id}: {self.state.value} -> {target.value} not allowed")
        previous = self.state
        self.state = target
        self.updated_at = utc_now()
        if target in TERMINAL_STATES:
            self.ended_at = self.updated_at
        self.history.append(target)
        return previous

    def metadata(self) -> RunMetadata:
        return RunMetadata(
            run_id=self.run_id,
            state=self.state,
            started_at=self.started_at,
            updated_at=self.updated_at,
            ended_at=self.ended_at,
        )
