"""Tracing, cost accounting, and latency measurement."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from analyst_agent.obs.callbacks import AnalysisCallbacks
from analyst_agent.types import ExecutionState, ToolTrace

Clock = Callable[[], float]


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    agent_name: str
    status: str
    attempts: int
    max_attempts: int
    chunk_count: int
    vignette_count: int
    tool_traces: list[ToolTrace]
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    latency_ms: float
    error_codes: list[str] = field(default_factory=list)
    failure_reason: str | None = None


@dataclass(slots=True)
class CostModel:
    """Simple token pricing model (USD per 1K tokens)."""

    input_per_1k: float = 0.00015
    output_per_1k: float = 0.0006

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens / 1000.0) * self.input_per_1k + (
            output_tokens / 1000.0
        ) * self.output_per_1k


class TraceRecorder(AnalysisCallbacks):
    """Captures tool calls per attempt for the trace store."""

    def __init__(self, preview_chars: int = 320) -> None:
        self.preview_chars = preview_chars
        self.attempt = 0
        self.tool_traces: list[ToolTrace] = []
        self._pending: dict[str, dict[str, Any]] = {}

    def on_attempt_start(self, state: ExecutionState) -> None:
        self.attempt = state.attempt

    def on_tool_call(self, name: str, payload: dict[str, Any]) -> None:
        self._pending[name] = payload

    def on_tool_result(self, name: str, result: str) -> None:
        self.tool_traces.append(
            ToolTrace(
                name=name,
                attempt=self.attempt,
                input_payload=self._pending.pop(name, {}),
                output_preview=result[: self.preview_chars],
            )
        )


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, *, cost_model: CostModel | None = None) -> None:
        self._records: dict[str, TraceRecord] = {}
        self._cost_model = cost_model if cost_model is not None else CostModel()

    def create_record(
        self,
        *,
        agent_name: str,
        status: str,
        attempts: int,
        max_attempts: int,
        chunk_count: int,
        vignette_count: int,
        tool_traces: list[ToolTrace],
        input_tokens: int,
        output_tokens: int,
        latency_ms: float,
        error_codes: list[str] | None = None,
        failure_reason: str | None = None,
    ) -> TraceRecord:
        trace_id = str(uuid.uuid4())
        record = TraceRecord(
            trace_id=trace_id,
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            agent_name=agent_name,
            status=status,
            attempts=attempts,
            max_attempts=max_attempts,
            chunk_count=chunk_count,
            vignette_count=vignette_count,
            tool_traces=tool_traces,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=self._cost_model.estimate_cost(input_tokens, output_tokens),
            latency_ms=latency_ms,
            error_codes=list(error_codes or []),
            failure_reason=failure_reason,
        )
        self._records[trace_id] = record
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        return list(self._records.values())[-limit:]

    def __len__(self) -> int:
        return len(self._records)

    def summary(self) -> dict[str, float | int]:
        """Aggregate core observability metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "success_rate": 0.0,
                "avg_attempts": 0.0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
                "total_estimated_cost_usd": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        succeeded = sum(1 for record in records if record.status == "succeeded")

        return {
            "total_requests": total,
            "success_rate": succeeded / total,
            "avg_attempts": sum(record.attempts for record in records) / total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "total_input_tokens": sum(record.input_tokens for record in records),
            "total_output_tokens": sum(record.output_tokens for record in records),
            "total_estimated_cost_usd": sum(record.estimated_cost_usd for record in records),
        }


class Timer:
    """Context timer; `clock` returns seconds and is injectable for tests."""

    def __init__(self, clock: Clock = time.perf_counter) -> None:
        self._clock = clock
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = self._clock()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (self._clock() - self._start) * 1000.0
