"""Hosted execution runtime boundary and a LangChain-backed implementation."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from relay_agent.agent.capabilities import CapabilityDefinition, CapabilityRegistry
from relay_agent.agent.registry import ToolContext, ToolOutcome, ToolRegistry
from relay_agent.config import RetryConfig
from relay_agent.resilience.retry import backoff_delay_ms, is_transient_error

logger = logging.getLogger(__name__)

HANDOFF_TOOL_PREFIX = "transfer_to_"


@dataclass(frozen=True, slots=True)
class RawTextDelta:
    text: str


@dataclass(frozen=True, slots=True)
class RawToolCall:
    call_id: str | None
    name: str
    args: dict[str, Any]


@dataclass(frozen=True, slots=True)
class RawToolResult:
    call_id: str | None
    name: str
    outcome: ToolOutcome


@dataclass(frozen=True, slots=True)
class RawHandoff:
    from_capability: str
    to_capability: str
    reason: str


@dataclass(frozen=True, slots=True)
class RawCompleted:
    final_text: str


RawRuntimeEvent = Union[RawTextDelta, RawToolCall, RawToolResult, RawHandoff, RawCompleted]


@dataclass(slots=True)
class RuntimeOptions:
    max_turns: int = 10
    tool_timeout_seconds: float = 30.0
    authorize_handoff: Callable[[str, str], bool] | None = None
    cancel: asyncio.Event | None = None


class HostedRuntime(Protocol):
    def stream(
        self,
        capability: CapabilityDefinition,
        messages: list[dict[str, str]],
        options: RuntimeOptions,
        context: ToolContext,
    ) -> AsyncIterator[RawRuntimeEvent]:
        """Chronological stream of model, tool and hand-off events for one turn."""


def to_langchain_messages(instructions: str, messages: list[dict[str, str]]) -> list[BaseMessage]:
    converted: list[BaseMessage] = [SystemMessage(content=instructions)]
    for message in messages:
        if message.get("role") == "assistant":
            converted.append(AIMessage(content=message.get("content", "")))
        else:
            converted.append(HumanMessage(content=message.get("content", "")))
    return converted


def chunk_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return ""


def handoff_tool_schema(target: CapabilityDefinition) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": f"{HANDOFF_TOOL_PREFIX}{target.id}",
            "description": f"Transfer the conversation to {target.display_name}: {target.handoff_description}",
            "parameters": {
                "type": "object",
                "properties": {"reason": {"type": "string", "description": "Why the transfer is needed"}},
                "required": ["reason"],
            },
        },
    }


class LangChainRuntime:
    """Drives a LangChain chat model through the tool and hand-off loop.

    Hand-offs are exposed to the model as `transfer_to_<capability>` tools.
    Transient model failures are retried only before the first chunk of a
    turn arrives, so no text is ever emitted twice.
    """

    def __init__(
        self,
        *,
        llm_factory: Callable[[str], Any],
        capabilities: CapabilityRegistry,
        tool_registry: ToolRegistry,
        retry: RetryConfig | None = None,
    ) -> None:
        self.llm_factory = llm_factory
        self.capabilities = capabilities
        self.tool_registry = tool_registry
        self.retry = retry or RetryConfig()
        self._models: dict[str, Any] = {}

    def _bound_model(self, capability: CapabilityDefinition) -> Any:
        key = capability.id
        if key not in self._models:
            llm = self.llm_factory(capability.model_tier)
            tools: list[Any] = list(self.tool_registry.as_langchain_tools(capability.tools))
            tools.extend(
                handoff_tool_schema(self.capabilities.get(target))
                for target in capability.handoff_targets
                if target in self.capabilities
            )
            self._models[key] = llm.bind_tools(tools) if tools else llm
        return self._models[key]

    async def _astream_with_retry(self, model: Any, messages: list[BaseMessage]) -> AsyncIterator[Any]:
        attempt = 0
        while True:
            received = False
            try:
                async for chunk in model.astream(messages):
                    received = True
                    yield chunk
                return
            except Exception as exc:
                if received or attempt >= self.retry.max_retries or not is_transient_error(exc):
                    raise
                delay = backoff_delay_ms(
                    attempt,
                    backoff_ms=self.retry.backoff_ms,
                    max_backoff_ms=self.retry.max_backoff_ms,
                )
                logger.warning("Model stream failed before first chunk, retrying in %.0fms: %s", delay, exc)
                await asyncio.sleep(delay / 1000.0)
                attempt += 1

    async def stream(
        self,
        capability: CapabilityDefinition,
        messages: list[dict[str, str]],
        options: RuntimeOptions,
        context: ToolContext,
    ) -> AsyncIterator[RawRuntimeEvent]:
        current = capability
        transcript = to_langchain_messages(current.instructions, messages)
        full_text = ""

        for turn in range(options.max_turns):
            logger.debug("Runtime turn %d for %s", turn + 1, current.id)
            aggregate: Any = None
            async for chunk in self._astream_with_retry(self._bound_model(current), transcript):
                aggregate = chunk if aggregate is None else aggregate + chunk
                delta = chunk_text(getattr(chunk, "content", ""))
                if delta:
                    full_text += delta
                    yield RawTextDelta(delta)

            tool_calls = list(getattr(aggregate, "tool_calls", None) or [])
            if not tool_calls:
                yield RawCompleted(full_text)
                return

            transcript.append(
                AIMessage(content=chunk_text(getattr(aggregate, "content", "")), tool_calls=tool_calls)
            )

            handoff_calls = [c for c in tool_calls if c["name"].startswith(HANDOFF_TOOL_PREFIX)]
            regular_calls = [c for c in tool_calls if not c["name"].startswith(HANDOFF_TOOL_PREFIX)]

            for call in regular_calls:
                yield RawToolCall(call.get("id"), call["name"], dict(call.get("args") or {}))

            context.capability = current.id
            outcomes = await asyncio.gather(
                *(
                    self.tool_registry.arun(
                        call["name"],
                        dict(call.get("args") or {}),
                        context,
                        default_timeout=options.tool_timeout_seconds,
                    )
                    for call in regular_calls
                )
            )
            for call, outcome in zip(regular_calls, outcomes, strict=True):
                yield RawToolResult(call.get("id"), call["name"], outcome)
                transcript.append(
                    ToolMessage(
                        content=json.dumps(
                            {"success": outcome.success, "result": outcome.result}, default=str
                        ),
                        tool_call_id=call.get("id") or call["name"],
                    )
                )

            for call in handoff_calls:
                target_id = call["name"][len(HANDOFF_TOOL_PREFIX):]
                reason = str((call.get("args") or {}).get("reason", ""))
                allowed = target_id in self.capabilities and (
                    options.authorize_handoff is None or options.authorize_handoff(current.id, target_id)
                )
                if allowed:
                    yield RawHandoff(current.id, target_id, reason)
                    current = self.capabilities.get(target_id)
                    transcript[0] = SystemMessage(content=current.instructions)
                    result = f"Transferred to {current.display_name}."
                else:
                    result = f"Transfer to {target_id} is not permitted; continue handling the request."
                transcript.append(ToolMessage(content=result, tool_call_id=call.get("id") or call["name"]))

        apology = "I exceeded the maximum number of tool calls. Please try a simpler request."
        yield RawTextDelta(apology)
        yield RawCompleted(full_text + apology)
