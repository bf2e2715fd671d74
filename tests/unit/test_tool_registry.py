import asyncio
import time

import pytest
from pydantic import BaseModel, Field, ValidationError

from relay_agent.agent.registry import ToolContext, ToolRegistry, ToolSpec


class EchoInput(BaseModel):
    value: int = Field(ge=1)


def _echo_registry() -> ToolRegistry:
    registry = ToolRegistry()

    def _handler(data: EchoInput, context: ToolContext | None) -> str:
        return str(data.value)

    registry.register(
        ToolSpec(
            name="echo",
            description="echo positive int",
            args_schema=EchoInput,
            handler=_handler,
        )
    )
    return registry


def test_tool_registry_validation() -> None:
    registry = _echo_registry()

    assert registry.execute("echo", {"value": 3}) == "3"

    with pytest.raises(ValidationError):
        registry.execute("echo", {"value": 0})


def test_duplicate_tool_registration_rejected() -> None:
    registry = _echo_registry()

    with pytest.raises(ValueError):
        registry.register(registry.specs()[0])


def test_arun_turns_failures_into_outcomes() -> None:
    registry = _echo_registry()
    context = ToolContext(user_id="u1", run_id="run_1")

    ok = asyncio.run(registry.arun("echo", {"value": 2}, context))
    invalid = asyncio.run(registry.arun("echo", {"value": 0}, context))
    missing = asyncio.run(registry.arun("nope", {}, context))

    assert ok.success and ok.result == "2"
    assert not invalid.success
    assert invalid.error is not None and invalid.error["code"] == "validation"
    assert not missing.success
    assert missing.error == {"code": "validation", "message": "Tool 'nope' not found", "recoverable": False}


def test_arun_enforces_timeout() -> None:
    registry = ToolRegistry()

    def _slow(data: EchoInput, context: ToolContext | None) -> str:
        time.sleep(0.5)
        return "late"

    registry.register(
        ToolSpec(name="slow", description="sleeps", args_schema=EchoInput, handler=_slow, timeout_seconds=0.05)
    )

    outcome = asyncio.run(registry.arun("slow", {"value": 1}))

    assert not outcome.success
    assert outcome.error is not None
    assert outcome.error["code"] == "timeout"
    assert outcome.error["recoverable"] is True


def test_context_reaches_handler() -> None:
    registry = ToolRegistry()
    seen: list[str | None] = []

    def _handler(data: EchoInput, context: ToolContext | None) -> int:
        seen.append(context.thread_id if context else None)
        return data.value

    registry.register(ToolSpec(name="ctx", description="ctx", args_schema=EchoInput, handler=_handler))
    registry.execute("ctx", {"value": 1}, ToolContext(user_id="u1", thread_id="thread_9"))

    assert seen == ["thread_9"]


def test_langchain_export_filters_to_registered_tools() -> None:
    registry = _echo_registry()

    tools = registry.as_langchain_tools(["echo", "github_search_code"])

    assert [tool.name for tool in tools] == ["echo"]
    assert tools[0].invoke({"value": 5}) == "5"
