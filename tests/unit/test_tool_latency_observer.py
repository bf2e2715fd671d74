import asyncio

from pydantic import BaseModel

from relay_agent.agent.registry import ToolContext, ToolRegistry, ToolSpec


class EchoInput(BaseModel):
    text: str


def _registry() -> ToolRegistry:
    registry = ToolRegistry()

    def _handler(data: EchoInput, context: ToolContext | None) -> str:
        if data.text == "fail":
            raise RuntimeError("503 service unavailable")
        return data.text.upper()

    registry.register(
        ToolSpec(
            name="echo",
            description="uppercase",
            args_schema=EchoInput,
            handler=_handler,
        )
    )
    return registry


def test_tool_observer_captures_latency_and_payload() -> None:
    registry = _registry()

    observed = []
    result = registry.execute("echo", {"text": "hello"}, observer=observed.append)

    assert result == "HELLO"
    assert len(observed) == 1
    assert observed[0].name == "echo"
    assert observed[0].input_payload == {"text": "hello"}
    assert observed[0].latency_ms >= 0.0
    assert observed[0].success


def test_async_observer_records_failures() -> None:
    registry = _registry()

    observed = []
    outcome = asyncio.run(registry.arun("echo", {"text": "fail"}, observer=observed.append))

    assert not outcome.success
    assert outcome.error is not None and outcome.error["code"] == "server"
    assert len(observed) == 1
    assert observed[0].success is False
