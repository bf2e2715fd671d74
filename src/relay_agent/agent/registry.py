"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field

from relay_agent.resilience.errors import tool_error_payload
from relay_agent.types import ToolTrace

logger = logging.getLogger(__name__)

ToolObserver = Callable[[ToolTrace], None]


@dataclass(slots=True)
class ToolContext:
    """Per-run context handed to every tool handler."""

    user_id: str
    thread_id: str | None = None
    run_id: str | None = None
    capability: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ToolOutcome:
    success: bool
    result: Any
    latency_ms: float
    error: dict[str, Any] | None = None


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel, ToolContext | None], Any]
    tags: list[str] = Field(default_factory=list)
    timeout_seconds: float | None = None

    def invoke(self, payload: dict[str, Any], context: ToolContext | None = None) -> Any:
        data = self.args_schema.model_validate(payload)
        return self.handler(data, context)


class ToolRegistry:
    """Stores tool specs, executes them uniformly and exports LangChain tools."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def execute(
        self,
        name: str,
        payload: dict[str, Any],
        context: ToolContext | None = None,
        *,
        observer: ToolObserver | None = None,
    ) -> Any:
        """Run a tool and return its raw result; validation and handler errors propagate."""
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        start = perf_counter()
        output = spec.invoke(payload, context)
        latency_ms = (perf_counter() - start) * 1000.0
        if observer is not None:
            observer(
                ToolTrace(
                    name=spec.name,
                    input_payload=payload,
                    output_preview=_preview(output),
                    latency_ms=latency_ms,
                )
            )
        return output

    async def arun(
        self,
        name: str,
        payload: dict[str, Any],
        context: ToolContext | None = None,
        *,
        default_timeout: float = 30.0,
        observer: ToolObserver | None = None,
    ) -> ToolOutcome:
        """Run a tool off the event loop; failures become an unsuccessful outcome."""

        spec = self._tools.get(name)
        start = perf_counter()
        if spec is None:
            outcome = ToolOutcome(
                success=False,
                result=None,
                latency_ms=0.0,
                error={"code": "validation", "message": f"Tool '{name}' not found", "recoverable": False},
            )
        else:
            timeout = spec.timeout_seconds or default_timeout
            try:
                result = await asyncio.wait_for(asyncio.to_thread(spec.invoke, payload, context), timeout=timeout)
                outcome = ToolOutcome(success=True, result=result, latency_ms=(perf_counter() - start) * 1000.0)
            except Exception as exc:
                if isinstance(exc, asyncio.TimeoutError):
                    exc = TimeoutError(f"Tool '{name}' timed out after {timeout:.0f}s")
                logger.error("Tool %s failed: %s", name, exc)
                failure = tool_error_payload(name, exc, include_technical=True)
                outcome = ToolOutcome(
                    success=False,
                    result=failure,
                    latency_ms=(perf_counter() - start) * 1000.0,
                    error=failure["error"],
                )

        if observer is not None:
            observer(
                ToolTrace(
                    name=name,
                    input_payload=payload,
                    output_preview=_preview(outcome.result),
                    latency_ms=outcome.latency_ms,
                    success=outcome.success,
                )
            )
        return outcome

    def as_langchain_tools(self, names: Iterable[str] | None = None) -> list[StructuredTool]:
        selected = self.specs() if names is None else [self._tools[n] for n in names if n in self._tools]
        tools: list[StructuredTool] = []
        for spec in selected:
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    func=self._build_function(spec),
                )
            )
        return tools

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def _build_function(self, spec: ToolSpec) -> Callable[..., Any]:
        def _callable(**kwargs: Any) -> Any:
            return self.execute(spec.name, kwargs)

        return _callable


def _preview(output: Any) -> str:
    text = output if isinstance(output, str) else json.dumps(output, default=str)
    return text[:320]
