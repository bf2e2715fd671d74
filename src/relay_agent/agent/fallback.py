"""Deterministic runtime used when no external LLM is configured."""

from __future__ import annotations

import re
from collections.abc import AsyncIterator
from typing import Any

from relay_agent.agent.capabilities import CapabilityDefinition
from relay_agent.agent.registry import ToolContext, ToolOutcome, ToolRegistry
from relay_agent.runtime.hosted import (
    RawCompleted,
    RawRuntimeEvent,
    RawTextDelta,
    RawToolCall,
    RawToolResult,
    RuntimeOptions,
)

_TIME_PATTERN = re.compile(r"\b(?:what(?:'s| is) the time|current time|what time)\b", re.IGNORECASE)
_EXPRESSION_PATTERN = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?(?:\s*[-+*/^%]\s*\(?\s*\d+(?:\.\d+)?\s*\)?)+)")


class DeterministicRuntime:
    """Offline runtime that keeps the same event contract as `LangChainRuntime`.

    It answers with the capability's name, runs `get_current_time` or
    `calculate` when the message plainly asks for them, and never hands off.
    Useful for local environments where `OPENAI_API_KEY` is not configured.
    """

    def __init__(self, *, tool_registry: ToolRegistry, chunk_size: int = 24) -> None:
        self.tool_registry = tool_registry
        self.chunk_size = chunk_size

    async def stream(
        self,
        capability: CapabilityDefinition,
        messages: list[dict[str, str]],
        options: RuntimeOptions,
        context: ToolContext,
    ) -> AsyncIterator[RawRuntimeEvent]:
        question = next((m.get("content", "") for m in reversed(messages) if m.get("role") == "user"), "")
        outcomes: list[tuple[str, ToolOutcome]] = []

        for index, (name, args) in enumerate(self._plan_tools(question, capability), start=1):
            call_id = f"call_{index}"
            yield RawToolCall(call_id, name, args)
            outcome = await self.tool_registry.arun(
                name, args, context, default_timeout=options.tool_timeout_seconds
            )
            outcomes.append((name, outcome))
            yield RawToolResult(call_id, name, outcome)

        answer = _build_answer(capability, question, outcomes)
        for start in range(0, len(answer), self.chunk_size):
            yield RawTextDelta(answer[start : start + self.chunk_size])
        yield RawCompleted(answer)

    def _plan_tools(self, question: str, capability: CapabilityDefinition) -> list[tuple[str, dict[str, Any]]]:
        permitted = [name for name in capability.tools if name in self.tool_registry]
        calls: list[tuple[str, dict[str, Any]]] = []
        if "get_current_time" in permitted and _TIME_PATTERN.search(question):
            calls.append(("get_current_time", {"timezone": "UTC"}))
        match = _EXPRESSION_PATTERN.search(question)
        if "calculate" in permitted and match:
            calls.append(("calculate", {"expression": match.group(1).strip()}))
        return calls


def _build_answer(
    capability: CapabilityDefinition,
    question: str,
    outcomes: list[tuple[str, ToolOutcome]],
) -> str:
    lines = [f"{capability.display_name} here."]
    for name, outcome in outcomes:
        if not outcome.success:
            detail = outcome.result if isinstance(outcome.result, dict) else {}
            lines.append(detail.get("message", f"{name} failed."))
        elif name == "calculate":
            lines.append(f"{outcome.result['expression']} = {outcome.result['result']}")
        elif name == "get_current_time":
            lines.append(f"It is {outcome.result['iso']} ({outcome.result['timezone']}).")
        else:
            lines.append(f"{name}: {outcome.result}")
    if not outcomes:
        lines.append(f"No language model is configured, so I can only acknowledge: {question}")
    return " ".join(lines)
