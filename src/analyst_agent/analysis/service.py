"""End-to-end analysis: sample the input, run the analyser, record a trace."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from analyst_agent.agent.analyser import AnalysisOutput, build_analyser_input, create_analyser_agent
from analyst_agent.agent.definition import AgentDefinition
from analyst_agent.agent.provider import create_chat_model
from analyst_agent.agent.runner import AgentRunner
from analyst_agent.config import AgentConfig, EmbeddingSettings, ModelSettings, SamplerConfig
from analyst_agent.errors import AgentError, Err, ErrorCode, Ok, Result
from analyst_agent.obs.callbacks import AnalysisCallbacks, CallbackDispatcher, LoggingCallbacks
from analyst_agent.obs.tracing import Clock, Timer, TraceRecorder, TraceStore
from analyst_agent.prompts.compiler import PromptCompiler
from analyst_agent.sampling.embedder import create_embedder
from analyst_agent.sampling.sampler import DiversitySampler
from analyst_agent.types import ExecutionMetadata, SamplerState, Vignette

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AnalysisReport:
    trace_id: str
    output: AnalysisOutput
    attempts: int
    vignettes: list[Vignette]
    sampler_state: SamplerState
    metadata: ExecutionMetadata


@dataclass(frozen=True, slots=True)
class AnalysisFailure:
    """Why an analysis produced no output.

    `stage` is "sampling" or "execution"; `reason` is the failure reason of the
    run, or the error code when sampling failed.
    """

    trace_id: str
    stage: str
    reason: str
    message: str
    attempts: int
    errors: list[AgentError] = field(default_factory=list)

    @property
    def codes(self) -> list[str]:
        return [error.code.value for error in self.errors]


class AnalysisService:
    """Chains diversity sampling into the analyser agent."""

    def __init__(
        self,
        *,
        sampler: DiversitySampler,
        runner: AgentRunner,
        agent: AgentDefinition,
        trace_store: TraceStore | None = None,
        clock: Clock = time.perf_counter,
    ) -> None:
        self.sampler = sampler
        self.runner = runner
        self.agent = agent
        self.trace_store = trace_store if trace_store is not None else TraceStore()
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        *,
        model_settings: ModelSettings,
        embedding_settings: EmbeddingSettings,
        sampler_config: SamplerConfig | None = None,
        agent_config: AgentConfig | None = None,
        trace_store: TraceStore | None = None,
    ) -> Result["AnalysisService", list[AgentError]]:
        """Wire providers from settings; every configuration error surfaces here."""

        model = create_chat_model(model_settings)
        embedder = create_embedder(embedding_settings)
        compiler = PromptCompiler()
        agent_config = agent_config if agent_config is not None else AgentConfig()
        agent = create_analyser_agent(compiler, max_attempts=agent_config.max_attempts)

        errors: list[AgentError] = []
        for result in (model, embedder):
            if isinstance(result, Err):
                errors.append(result.error)
        if isinstance(agent, Err):
            errors.extend(agent.error)
        if errors:
            return Err(errors)

        return Ok(
            cls(
                sampler=DiversitySampler(embedder.value, sampler_config),
                runner=AgentRunner(model.value, compiler, config=agent_config),
                agent=agent.value,
                trace_store=trace_store,
            )
        )

    async def analyze(
        self,
        raw_text: str,
        *,
        sample_count: int | None = None,
        format_hint: str | None = None,
        callbacks: AnalysisCallbacks | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Result[AnalysisReport, AnalysisFailure]:
        recorder = TraceRecorder()
        targets: list[AnalysisCallbacks] = [LoggingCallbacks(), recorder]
        if callbacks is not None:
            targets.append(callbacks)
        dispatcher = CallbackDispatcher(targets)

        with Timer(self._clock) as timer:
            sampled = await self.sampler.sample(raw_text, sample_count, dispatcher, cancel_event=cancel_event)
            if isinstance(sampled, Ok) and not sampled.value.vignettes:
                sampled = Err(AgentError(code=ErrorCode.INVALID_PARAMETERS, message="raw data is empty"))
            if isinstance(sampled, Err):
                executed = None
            else:
                executed = await self.runner.execute(
                    self.agent,
                    input_data=build_analyser_input(sampled.value, format_hint),
                    callbacks=dispatcher,
                    cancel_event=cancel_event,
                )

        if isinstance(sampled, Err):
            return Err(self._sampling_failure(sampled.error, timer.elapsed_ms))

        sample = sampled.value
        match executed:
            case Ok(value=success):
                record = self.trace_store.create_record(
                    agent_name=self.agent.name,
                    status="succeeded",
                    attempts=success.attempts,
                    max_attempts=self.agent.max_attempts,
                    chunk_count=sample.state.chunk_count,
                    vignette_count=len(sample.vignettes),
                    tool_traces=list(recorder.tool_traces),
                    input_tokens=success.metadata.tokens.input,
                    output_tokens=success.metadata.tokens.output,
                    latency_ms=timer.elapsed_ms,
                )
                LOGGER.info("analysis %s finished in %.1f ms", record.trace_id, timer.elapsed_ms)
                return Ok(
                    AnalysisReport(
                        trace_id=record.trace_id,
                        output=success.output,
                        attempts=success.attempts,
                        vignettes=sample.vignettes,
                        sampler_state=sample.state,
                        metadata=success.metadata,
                    )
                )
            case Err(error=failure):
                record = self.trace_store.create_record(
                    agent_name=self.agent.name,
                    status="failed",
                    attempts=failure.attempts,
                    max_attempts=failure.max_attempts,
                    chunk_count=sample.state.chunk_count,
                    vignette_count=len(sample.vignettes),
                    tool_traces=list(recorder.tool_traces),
                    input_tokens=failure.metadata.tokens.input,
                    output_tokens=failure.metadata.tokens.output,
                    latency_ms=timer.elapsed_ms,
                    error_codes=[error.code.value for error in failure.errors],
                    failure_reason=failure.reason.value,
                )
                return Err(
                    AnalysisFailure(
                        trace_id=record.trace_id,
                        stage="execution",
                        reason=failure.reason.value,
                        message=failure.describe(),
                        attempts=failure.attempts,
                        errors=list(failure.errors),
                    )
                )
        raise TypeError(f"Unexpected execution result: {type(executed).__name__}")

    def _sampling_failure(self, error: AgentError, latency_ms: float) -> AnalysisFailure:
        record = self.trace_store.create_record(
            agent_name=self.agent.name,
            status="failed",
            attempts=0,
            max_attempts=self.agent.max_attempts,
            chunk_count=0,
            vignette_count=0,
            tool_traces=[],
            input_tokens=0,
            output_tokens=0,
            latency_ms=latency_ms,
            error_codes=[error.code.value],
            failure_reason=error.code.value,
        )
        return AnalysisFailure(
            trace_id=record.trace_id,
            stage="sampling",
            reason=error.code.value,
            message=error.message,
            attempts=0,
            errors=[error],
        )
