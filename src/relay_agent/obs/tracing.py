"""Run tracing and cost accounting."""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from relay_agent.types import ToolTrace

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text or ""))


@dataclass(slots=True)
class RunTraceRecord:
    run_id: str
    timestamp_utc: str
    message: str
    response: str
    thread_id: str | None
    capability: str | None
    routing: dict[str, Any] | None
    handoffs: list[dict[str, str]]
    tool_traces: list[ToolTrace]
    final_state: str
    error_code: str | None
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    latency_ms: float
    request_id: str | None = None
    states: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CostModel:
    """Simple token pricing model (USD per 1K tokens)."""

    input_per_1k: float = 0.005
    output_per_1k: float = 0.015

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens / 1000.0) * self.input_per_1k + (
            output_tokens / 1000.0
        ) * self.output_per_1k


class TraceStore:
    """In-memory trace storage keyed by run id."""

    def __init__(self, *, cost_model: CostModel | None = None, max_records: int = 1000) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, RunTraceRecord] = {}
        self._cost_model = cost_model or CostModel()
        self._max_records = max_records

    def create_record(
        self,
        *,
        run_id: str,
        message: str,
        response: str,
        thread_id: str | None,
        capability: str | None,
        routing: dict[str, Any] | None,
        handoffs: list[dict[str, str]],
        tool_traces: list[ToolTrace],
        final_state: str,
        error_code: str | None,
        latency_ms: float,
        request_id: str | None = None,
        states: list[str] | None = None,
    ) -> RunTraceRecord:
        input_tokens = estimate_token_count(message)
        output_tokens = estimate_token_count(response)
        record = RunTraceRecord(
            run_id=run_id,
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            message=message,
            response=response,
            thread_id=thread_id,
            capability=capability,
            routing=routing,
            handoffs=handoffs,
            tool_traces=tool_traces,
            final_state=final_state,
            error_code=error_code,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=self._cost_model.estimate_cost(input_tokens, output_tokens),
            latency_ms=latency_ms,
            request_id=request_id,
            states=list(states or []),
        )
        with self._lock:
            self._records[run_id] = record
            while len(self._records) > self._max_records:
                self._records.pop(next(iter(self._records)))
        return record

    def get(self, run_id: str) -> RunTraceRecord:
        with self._lock:
            record = self._records.get(run_id)
        if record is None:
            raise KeyError(f"Run not found: {run_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[RunTraceRecord]:
        with self._lock:
            return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, Any]:
        """Aggregate core observability metrics for dashboard display."""
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_runs": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
                "total_estimated_cost_usd": 0.0,
                "tool_calls": 0,
                "tool_failures": 0,
                "states": {},
                "capabilities": {},
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        states: dict[str, int] = {}
        capabilities: dict[str, int] = {}
        for record in records:
            states[record.final_state] = states.get(record.final_state, 0) + 1
            if record.capability:
                capabilities[record.capability] = capabilities.get(record.capability, 0) + 1
        tool_traces = [trace for record in records for trace in record.tool_traces]

        return {
            "total_runs": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "total_input_tokens": sum(record.input_tokens for record in records),
            "total_output_tokens": sum(record.output_tokens for record in records),
            "total_estimated_cost_usd": sum(record.estimated_cost_usd for record in records),
            "tool_calls": len(tool_traces),
            "tool_failures": sum(1 for trace in tool_traces if not trace.success),
            "states": states,
            "capabilities": capabilities,
        }


class Timer:
    """Simple context timer used around a run."""

    def __init__(self) -> None:
        self._start = time.perf_counter()
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = self.lap()

    def lap(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0
