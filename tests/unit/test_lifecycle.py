import pytest

from relay_agent.runtime.lifecycle import InvalidTransitionError, RunStateMachine, can_transition
from relay_agent.types import RunState


def test_happy_path_with_tool_loop() -> None:
    machine = RunStateMachine(run_id="run_1")
    for state in (
        RunState.ROUTING,
        RunState.THINKING,
        RunState.TOOL_EXECUTING,
        RunState.THINKING,
        RunState.COMPOSING,
        RunState.THINKING,
        RunState.COMPOSING,
        RunState.DONE,
    ):
        machine.transition(state)

    assert machine.is_terminal
    assert machine.ended_at is not None
    assert machine.history[0] is RunState.QUEUED
    assert machine.history[-1] is RunState.DONE


def test_transition_returns_previous_state() -> None:
    machine = RunStateMachine()
    assert machine.transition(RunState.ROUTING) is RunState.QUEUED
    assert machine.run_id.startswith("run_")


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (RunState.QUEUED, RunState.THINKING),
        (RunState.ROUTING, RunState.COMPOSING),
        (RunState.TOOL_EXECUTING, RunState.COMPOSING),
        (RunState.COMPOSING, RunState.TOOL_EXECUTING),
        (RunState.THINKING, RunState.ROUTING),
    ],
)
def test_disallowed_edges(current: RunState, target: RunState) -> None:
    assert not can_transition(current, target)


def test_any_non_terminal_state_may_fail_or_cancel() -> None:
    for state in RunState:
        if state.is_terminal:
            continue
        assert can_transition(state, RunState.FAILED)
        assert can_transition(state, RunState.CANCELLED)


def test_terminal_states_are_final() -> None:
    machine = RunStateMachine()
    machine.transition(RunState.FAILED)

    for target in RunState:
        with pytest.raises(InvalidTransitionError):
            machine.transition(target)
    assert machine.state is RunState.FAILED


def test_metadata_snapshot() -> None:
    machine = RunStateMachine(run_id="run_abc")
    machine.transition(RunState.CANCELLED)

    metadata = machine.metadata()

    assert metadata.run_id == "run_abc"
    assert metadata.state is RunState.CANCELLED
    assert metadata.ended_at == machine.ended_at
    assert metadata.started_at <= metadata.updated_at
