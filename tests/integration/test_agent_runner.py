import asyncio
from typing import Any

import pytest
from langchain_core.messages import BaseMessage
from pydantic import BaseModel

from analyst_agent.agent.analyser import AnalyserInput, AnalysisOutput, VignetteView, create_analyser_agent
from analyst_agent.agent.definition import AgentDefinition, AgentPrompts, define_agent
from analyst_agent.agent.provider import ModelResponse, ModelUsage, NoToolUse, ProviderFailure, ToolInvocation
from analyst_agent.agent.runner import AgentRunner
from analyst_agent.agent.tools import ToolSpec
from analyst_agent.config import AgentConfig
from analyst_agent.errors import AgentError, Err, ErrorCode, Ok, ValidationIssue
from analyst_agent.obs.callbacks import AnalysisCallbacks
from analyst_agent.prompts.compiler import PromptCompiler
from analyst_agent.types import ExecutionState, FailureReason

VALID = {
    "data_type": "User Records",
    "description": "Customer accounts with names and cities.",
    "key_fields": [{"path": "id", "label": "Identifier"}, {"path": "name", "label": "Full name"}],
    "recommended_visualisation": "table",
    "rationale": "Uniform flat rows read best as a table.",
}

INPUT = AnalyserInput(
    vignettes=[VignetteView(content="id,name,city\n1,Ada,London", start=0, end=25, rank=0)],
    chunk_count=1,
    provided_count=1,
    size_kb=0.02,
)


def _with(**changes: Any) -> dict[str, Any]:
    return {**VALID, **changes}


def _call(arguments: dict[str, Any], input_tokens: int = 100, output_tokens: int = 20) -> ToolInvocation:
    return ToolInvocation(
        name="submit_analysis",
        arguments=arguments,
        call_id="call",
        usage=ModelUsage(input_tokens, output_tokens),
    )


class ScriptedToolModel:
    def __init__(self, *responses: ModelResponse, delay: float = 0.0) -> None:
        self.responses = list(responses)
        self.delay = delay
        self.requests: list[list[BaseMessage]] = []

    async def call_tool(self, messages: list[BaseMessage], tool: ToolSpec) -> ModelResponse:
        self.requests.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.responses.pop(0)


class StepClock:
    def __init__(self, *ticks: float) -> None:
        self.ticks = list(ticks)

    def __call__(self) -> float:
        return self.ticks.pop(0)


class AttemptLog(AnalysisCallbacks):
    def __init__(self) -> None:
        self.started: list[ExecutionState] = []
        self.rejected: list[tuple[int, tuple[ValidationIssue, ...]]] = []
        self.outcome: list[str] = []

    def on_attempt_start(self, state: ExecutionState) -> None:
        self.started.append(state)

    def on_validation_failure(self, state: ExecutionState, issues: tuple[ValidationIssue, ...]) -> None:
        self.rejected.append((state.attempt, issues))

    def on_success(self, output: Any) -> None:
        self.outcome.append("success")

    def on_failure(self, errors: list[AgentError]) -> None:
        self.outcome.append("failure")


class ExplodingOnStart(AnalysisCallbacks):
    def on_attempt_start(self, state: ExecutionState) -> None:
        raise RuntimeError("dashboard offline")


def _analyser(compiler: PromptCompiler, max_attempts: int = 3) -> AgentDefinition:
    created = create_analyser_agent(compiler, max_attempts=max_attempts)
    assert isinstance(created, Ok)
    return created.value


def _runner(model: ScriptedToolModel, **kwargs: Any) -> tuple[AgentRunner, AgentDefinition]:
    compiler = PromptCompiler()
    agent = _analyser(compiler)
    return AgentRunner(model, compiler, **kwargs), agent


@pytest.mark.asyncio
async def test_recovers_after_one_rejected_attempt() -> None:
    model = ScriptedToolModel(_call(_with(data_type="X")), _call(VALID))
    log = AttemptLog()
    runner, agent = _runner(model, clock=StepClock(0.0, 0.1, 1.0, 1.25))

    result = await runner.execute(agent, input_data=INPUT, callbacks=log)

    assert isinstance(result, Ok)
    success = result.value
    assert success.attempts == 2
    assert isinstance(success.output, AnalysisOutput)
    assert success.output.data_type == "User Records"
    assert success.metadata.attempt_latencies_ms == pytest.approx([100.0, 250.0])
    assert success.metadata.latency_ms == pytest.approx(350.0)
    assert success.metadata.tokens.to_dict() == {"input": 200, "output": 40}
    assert [state.attempt for state in log.started] == [1, 2]
    assert [attempt for attempt, _ in log.rejected] == [1]
    assert log.outcome == ["success"]


@pytest.mark.asyncio
async def test_exhaustion_keeps_every_attempts_issues() -> None:
    duplicate_fields = [{"path": "id", "label": "Identifier"}, {"path": "id", "label": "Again"}]
    model = ScriptedToolModel(
        _call(_with(data_type="X")),
        _call(_with(recommended_visualisation="pie")),
        _call(_with(key_fields=duplicate_fields)),
    )
    log = AttemptLog()
    runner, agent = _runner(model)

    result = await runner.execute(agent, input_data=INPUT, callbacks=log)

    assert isinstance(result, Err)
    failure = result.error
    assert failure.reason is FailureReason.MAX_ATTEMPTS_EXCEEDED
    assert failure.attempts == 3
    assert failure.describe() == "could not produce a valid analysis after 3 attempts"
    assert [[issue.path for issue in issues] for issues in failure.validation_errors] == [
        ["data_type"],
        ["recommended_visualisation"],
        ["key_fields.1.path"],
    ]
    assert [error.attempt for error in failure.errors] == [1, 2, 3]
    assert [state.attempt for state in log.started] == [1, 2, 3]
    assert all(state.max_attempts == 3 for state in log.started)
    assert log.outcome == ["failure"]
    assert len(model.requests) == 3


@pytest.mark.asyncio
async def test_retry_prompt_feeds_back_issues_and_previous_output() -> None:
    model = ScriptedToolModel(_call(_with(data_type="X")), _call(VALID))
    runner, agent = _runner(model)

    await runner.execute(agent, input_data=INPUT)

    first, second = model.requests
    assert len(first) == 2
    assert "attempt 1 of 3" in first[0].content
    assert "id,name,city" in first[1].content
    assert len(second) == 3
    assert "attempt 2 of 3" in second[0].content
    correction = second[2].content
    assert "Attempt 1 of 3 was rejected" in correction
    assert "- data_type:" in correction
    assert '"data_type": "X"' in correction
    assert "submit_analysis" in correction


@pytest.mark.asyncio
async def test_default_correction_without_error_template() -> None:
    class Note(BaseModel):
        text: str

    compiler = PromptCompiler()
    compiler.register("sys", "Take notes.")
    compiler.register("user", "Topic: {{ data.topic }}")
    tool = ToolSpec(name="submit_note", description="submit a note", args_schema=Note)
    created = define_agent(name="Notes", output_tool=tool, prompts=AgentPrompts(system="sys", user="user"), compiler=compiler)
    assert isinstance(created, Ok)
    model = ScriptedToolModel(
        ToolInvocation(name="submit_note", arguments={}),
        ToolInvocation(name="submit_note", arguments={"text": "done"}),
    )

    result = await AgentRunner(model, compiler).execute(created.value, input_data={"topic": "csv"})

    assert isinstance(result, Ok)
    assert result.value.output == Note(text="done")
    correction = model.requests[1][2].content
    assert "Your previous call to submit_note failed validation" in correction
    assert "- text:" in correction


@pytest.mark.asyncio
async def test_provider_error_is_not_retried() -> None:
    model = ScriptedToolModel(
        ProviderFailure(error=AgentError(code=ErrorCode.API_ERROR, message="rate limited")),
        _call(VALID),
    )
    log = AttemptLog()
    runner, agent = _runner(model)

    result = await runner.execute(agent, input_data=INPUT, callbacks=log)

    assert isinstance(result, Err)
    assert result.error.reason is FailureReason.PROVIDER_ERROR
    assert result.error.attempts == 1
    assert result.error.errors[-1].attempt == 1
    assert len(model.requests) == 1
    assert log.rejected == []
    assert log.outcome == ["failure"]


@pytest.mark.asyncio
async def test_missing_tool_use_ends_the_run() -> None:
    model = ScriptedToolModel(NoToolUse(text="Looks like CSV to me."), _call(VALID))
    runner, agent = _runner(model)

    result = await runner.execute(agent, input_data=INPUT)

    assert isinstance(result, Err)
    assert result.error.reason is FailureReason.NO_TOOL_USE
    assert result.error.validation_errors == []
    assert len(model.requests) == 1


@pytest.mark.asyncio
async def test_timeout_and_cancellation_are_terminal() -> None:
    slow = ScriptedToolModel(_call(VALID), delay=5.0)
    runner, agent = _runner(slow, config=AgentConfig(timeout_seconds=0.01))

    timed_out = await runner.execute(agent, input_data=INPUT)

    cancel_event = asyncio.Event()
    cancel_event.set()
    idle = ScriptedToolModel(_call(VALID))
    runner, agent = _runner(idle)
    cancelled = await runner.execute(agent, input_data=INPUT, cancel_event=cancel_event)

    assert isinstance(timed_out, Err)
    assert timed_out.error.reason is FailureReason.TIMEOUT
    assert timed_out.error.errors[-1].code is ErrorCode.TIMEOUT
    assert isinstance(cancelled, Err)
    assert cancelled.error.reason is FailureReason.CANCELLED
    assert cancelled.error.attempts == 0
    assert idle.requests == []


@pytest.mark.asyncio
async def test_prompt_errors_are_fatal_before_any_request() -> None:
    compiler = PromptCompiler()
    compiler.register("sys", "System")
    compiler.register("user", "{{ data.missing_field }}")
    created = define_agent(
        name="Broken",
        output_tool=ToolSpec(name="submit_analysis", description="submit", args_schema=AnalysisOutput),
        prompts=AgentPrompts(system="sys", user="user"),
        compiler=compiler,
    )
    assert isinstance(created, Ok)
    model = ScriptedToolModel(_call(VALID))

    result = await AgentRunner(model, compiler).execute(created.value, input_data={})

    assert isinstance(result, Err)
    assert result.error.reason is FailureReason.PROMPT_ERROR
    assert result.error.errors[0].code is ErrorCode.PROMPT_GENERATION_FAILED
    assert model.requests == []


@pytest.mark.asyncio
async def test_callback_errors_never_change_the_outcome() -> None:
    model = ScriptedToolModel(_call(VALID))
    runner, agent = _runner(model)

    result = await runner.execute(agent, input_data=INPUT, callbacks=ExplodingOnStart())

    assert isinstance(result, Ok)
    assert result.value.metadata.callback_errors == ["on_attempt_start: RuntimeError: dashboard offline"]


@pytest.mark.asyncio
async def test_attempt_limit_override() -> None:
    model = ScriptedToolModel(_call(_with(data_type="X")), _call(VALID))
    runner, agent = _runner(model)

    single = await runner.execute(agent, input_data=INPUT, max_attempts=1)
    invalid = await runner.execute(agent, input_data=INPUT, max_attempts=0)

    assert isinstance(single, Err)
    assert single.error.reason is FailureReason.MAX_ATTEMPTS_EXCEEDED
    assert single.error.attempts == 1
    assert single.error.max_attempts == 1
    assert isinstance(invalid, Err)
    assert invalid.error.reason is FailureReason.INVALID_PARAMETERS
    assert invalid.error.attempts == 0
    assert len(model.requests) == 1


@pytest.mark.asyncio
async def test_raising_validator_is_retried_not_raised() -> None:
    def _strict(output: AnalysisOutput) -> list[ValidationIssue]:
        raise KeyError("missing")

    compiler = PromptCompiler()
    analyser = _analyser(compiler)
    agent = analyser.model_copy(update={"validators": (_strict,), "max_attempts": 2})
    model = ScriptedToolModel(_call(VALID), _call(VALID))

    result = await AgentRunner(model, compiler).execute(agent, input_data=INPUT)

    assert isinstance(result, Err)
    assert result.error.reason is FailureReason.MAX_ATTEMPTS_EXCEEDED
    assert [[issue.type for issue in issues] for issues in result.error.validation_errors] == [
        ["validator_error"],
        ["validator_error"],
    ]


@pytest.mark.asyncio
async def test_rendering_exception_ends_run_as_prompt_error() -> None:
    compiler = PromptCompiler()
    compiler.register("sys", "System")
    compiler.register("user", "{{ data.a - data.b }}")
    created = define_agent(
        name="Arith",
        output_tool=ToolSpec(name="submit_analysis", description="submit", args_schema=AnalysisOutput),
        prompts=AgentPrompts(system="sys", user="user"),
        compiler=compiler,
    )
    assert isinstance(created, Ok)
    model = ScriptedToolModel(_call(VALID))

    result = await AgentRunner(model, compiler).execute(created.value, input_data={"a": 1, "b": "x"})

    assert isinstance(result, Err)
    assert result.error.reason is FailureReason.PROMPT_ERROR
    assert model.requests == []
