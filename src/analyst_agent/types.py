"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from analyst_agent.errors import AgentError, ErrorCode, ValidationIssue


@dataclass(frozen=True, slots=True)
class Chunk:
    """A contiguous slice of raw input.

    `start` and `end` are offsets into the untrimmed source text.
    """

    content: str
    start: int
    end: int


@dataclass(frozen=True, slots=True)
class Vignette:
    """A chunk chosen by diversity sampling, with its embedding.

    `rank` is the 1-based position in selection order; `index` is the chunk's
    position in the chunk sequence.
    """

    content: str
    start: int
    end: int
    embedding: tuple[float, ...]
    rank: int
    index: int

    def to_prompt_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "start": self.start,
            "end": self.end,
            "rank": self.rank,
        }


@dataclass(frozen=True, slots=True)
class SamplingParameters:
    chunk_size: int
    overlap: int
    target_count: int
    metric: str


@dataclass(frozen=True, slots=True)
class SamplerState:
    """Snapshot of one sampling run, owned by the caller.

    Holds every chunk together with its embedding so follow-up sampling never
    has to re-embed. Never mutated; follow-up sampling returns a new state.
    """

    chunks: tuple[Chunk, ...]
    embeddings: tuple[tuple[float, ...], ...]
    provided_indices: frozenset[int]
    selection_order: tuple[int, ...]
    parameters: SamplingParameters
    source_size_bytes: int

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def has_more(self) -> bool:
        return len(self.provided_indices) < len(self.chunks)

    def summary(self) -> dict[str, Any]:
        return {
            "chunk_count": self.chunk_count,
            "provided_count": len(self.provided_indices),
            "size_kb": round(self.source_size_bytes / 1024.0, 2),
            "chunk_size": self.parameters.chunk_size,
            "overlap": self.parameters.overlap,
            "metric": self.parameters.metric,
        }


@dataclass(frozen=True, slots=True)
class SampleResult:
    vignettes: list[Vignette]
    state: SamplerState


@dataclass(frozen=True, slots=True)
class MoreSamplesResult:
    vignettes: list[Vignette]
    state: SamplerState
    has_more: bool


@dataclass(frozen=True, slots=True)
class ExecutionState:
    """Per-attempt loop counters exposed to prompts and callbacks."""

    attempt: int
    max_attempts: int

    def as_template_state(self) -> dict[str, int]:
        return {"attempt": self.attempt, "maxAttempts": self.max_attempts, "max_attempts": self.max_attempts}


@dataclass(slots=True)
class TokenUsage:
    """Running token totals for one run."""

    input: int = 0
    output: int = 0

    def add(self, input_tokens: int, output_tokens: int) -> None:
        self.input += max(0, input_tokens)
        self.output += max(0, output_tokens)

    def to_dict(self) -> dict[str, int]:
        return {"input": self.input, "output": self.output}


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A single tool invocation made by the model during one attempt."""

    name: str
    input: dict[str, Any]
    result: str
    call_id: str | None = None


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an observed tool call."""

    name: str
    attempt: int
    input_payload: dict[str, Any]
    output_preview: str


@dataclass(slots=True)
class ExecutionMetadata:
    latency_ms: float
    tokens: TokenUsage
    attempt_latencies_ms: list[float] = field(default_factory=list)
    callback_errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "latency_ms": self.latency_ms,
            "tokens": self.tokens.to_dict(),
            "attempt_latencies_ms": list(self.attempt_latencies_ms),
        }
        if self.callback_errors:
            payload["callback_errors"] = list(self.callback_errors)
        return payload


@dataclass(frozen=True, slots=True)
class ExecutionSuccess:
    output: Any
    attempts: int
    metadata: ExecutionMetadata


class FailureReason(str, Enum):
    MAX_ATTEMPTS_EXCEEDED = "max_attempts_exceeded"
    PROVIDER_ERROR = "provider_error"
    NO_TOOL_USE = "no_tool_use"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    PROMPT_ERROR = "prompt_error"
    INVALID_PARAMETERS = "invalid_parameters"

    @classmethod
    def from_error(cls, error: AgentError) -> "FailureReason":
        mapping = {
            ErrorCode.NO_TOOL_USE: cls.NO_TOOL_USE,
            ErrorCode.TIMEOUT: cls.TIMEOUT,
            ErrorCode.CANCELLED: cls.CANCELLED,
            ErrorCode.TEMPLATE_LOAD_ERROR: cls.PROMPT_ERROR,
            ErrorCode.TEMPLATE_SYNTAX_ERROR: cls.PROMPT_ERROR,
            ErrorCode.PROMPT_GENERATION_FAILED: cls.PROMPT_ERROR,
            ErrorCode.INVALID_PARAMETERS: cls.INVALID_PARAMETERS,
        }
        return mapping.get(error.code, cls.PROVIDER_ERROR)


@dataclass(frozen=True, slots=True)
class ExecutionFailure:
    """Terminal failure of a run.

    `errors` lists every attempt's validation error in attempt order, followed
    by the terminal provider/prompt/cancellation error when there is one.
    """

    reason: FailureReason
    errors: list[AgentError]
    attempts: int
    max_attempts: int
    metadata: ExecutionMetadata

    @property
    def validation_errors(self) -> list[tuple[ValidationIssue, ...]]:
        return [error.issues for error in self.errors if error.code is ErrorCode.VALIDATION_FAILED]

    def describe(self) -> str:
        if self.reason is FailureReason.MAX_ATTEMPTS_EXCEEDED:
            return f"could not produce a valid analysis after {self.attempts} attempts"
        terminal = self.errors[-1] if self.errors else None
        detail = f": {terminal.message}" if terminal else ""
        return f"analysis failed on attempt {self.attempts} ({self.reason.value}){detail}"
