import json

from relay_agent.runtime.events import (
    EVENT_VERSION,
    ContentEvent,
    EventStamper,
    RunStateEvent,
    ToolEndEvent,
    encode_sse,
    parse_event,
)
from relay_agent.types import RunState


def test_stamper_sets_run_metadata_on_every_event() -> None:
    stamper = EventStamper(run_id="run_1", request_id="req_1")

    event = stamper.stamp(ContentEvent(delta="hi"))

    assert event.event_version == EVENT_VERSION
    assert event.run_id == "run_1"
    assert event.request_id == "req_1"
    assert event.correlation_id == "req_1"
    assert event.timestamp is not None
    assert event.delta == "hi"


def test_sse_encoding_round_trips_through_parser() -> None:
    stamper = EventStamper(run_id="run_1", request_id="req_1", correlation_id="corr_9")
    frame = encode_sse(stamper.stamp(RunStateEvent(state=RunState.THINKING, previous=RunState.ROUTING)))

    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")

    parsed = parse_event(json.loads(frame[len("data: ") :]))
    assert isinstance(parsed, RunStateEvent)
    assert parsed.state is RunState.THINKING
    assert parsed.correlation_id == "corr_9"


def test_version_mismatch_is_ignored() -> None:
    payload = {"type": "content", "delta": "x", "event_version": EVENT_VERSION + 1}
    assert parse_event(payload) is None
    assert parse_event({**payload, "event_version": EVENT_VERSION}) is not None


def test_unknown_type_and_malformed_payloads_are_ignored() -> None:
    assert parse_event({"type": "telemetry", "event_version": EVENT_VERSION}) is None
    assert parse_event({"type": "tool_end", "event_version": EVENT_VERSION, "tool": "x"}) is None


def test_tool_end_optional_fields() -> None:
    parsed = parse_event(
        {"type": "tool_end", "event_version": EVENT_VERSION, "tool": "calculate", "success": False}
    )
    assert isinstance(parsed, ToolEndEvent)
    assert parsed.id is None
    assert parsed.duration_ms is None
