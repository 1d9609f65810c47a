"""Validation and retry loop around forced tool calls."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

from analyst_agent.agent.definition import AgentDefinition
from analyst_agent.agent.executor import ToolCallExecutor
from analyst_agent.agent.provider import ToolCallingModel
from analyst_agent.agent.validation import format_issues_for_prompt, validate_output
from analyst_agent.config import AgentConfig
from analyst_agent.errors import AgentError, Err, ErrorCode, Ok, Result, ValidationIssue
from analyst_agent.obs.callbacks import AnalysisCallbacks, CallbackDispatcher
from analyst_agent.obs.tracing import Clock, Timer
from analyst_agent.prompts.compiler import PromptCompiler
from analyst_agent.types import (
    ExecutionFailure,
    ExecutionMetadata,
    ExecutionState,
    ExecutionSuccess,
    FailureReason,
    TokenUsage,
)

LOGGER = logging.getLogger(__name__)

ExecutionResult = Result[ExecutionSuccess, ExecutionFailure]


@dataclass(frozen=True, slots=True)
class _Feedback:
    issues: tuple[ValidationIssue, ...]
    previous_output: dict[str, Any]


class AgentRunner:
    """Drives an agent through bounded attempts until its output validates.

    Each attempt renders the prompts, makes exactly one forced tool call and
    validates the tool input. Only validation failures are retried, with the
    issues fed back to the model. Provider, prompt, timeout and cancellation
    errors end the run at once.
    """

    def __init__(
        self,
        model: ToolCallingModel,
        compiler: PromptCompiler,
        *,
        config: AgentConfig | None = None,
        clock: Clock = time.perf_counter,
    ) -> None:
        self.config = config or AgentConfig()
        self.compiler = compiler
        self.executor = ToolCallExecutor(model, timeout_seconds=self.config.timeout_seconds)
        self._clock = clock

    async def execute(
        self,
        agent: AgentDefinition,
        *,
        input_data: Mapping[str, Any] | BaseModel,
        callbacks: AnalysisCallbacks | None = None,
        max_attempts: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionResult:
        limit = agent.max_attempts if max_attempts is None else max_attempts
        dispatcher = callbacks if isinstance(callbacks, CallbackDispatcher) else CallbackDispatcher(callbacks)
        usage = TokenUsage()
        latencies: list[float] = []
        errors: list[AgentError] = []

        if limit < 1:
            errors.append(
                AgentError(
                    code=ErrorCode.INVALID_PARAMETERS,
                    message="max_attempts must be at least 1",
                    context={"max_attempts": limit},
                )
            )
            return self._fail(FailureReason.INVALID_PARAMETERS, errors, 0, limit, usage, latencies, dispatcher)

        feedback: _Feedback | None = None
        for attempt in range(1, limit + 1):
            state = ExecutionState(attempt=attempt, max_attempts=limit)
            if cancel_event is not None and cancel_event.is_set():
                errors.append(AgentError(code=ErrorCode.CANCELLED, message="run cancelled", attempt=attempt))
                return self._fail(FailureReason.CANCELLED, errors, attempt - 1, limit, usage, latencies, dispatcher)

            dispatcher.on_attempt_start(state)
            with Timer(self._clock) as timer:
                outcome, arguments = await self._attempt(agent, input_data, state, feedback, dispatcher, usage, cancel_event)
            latencies.append(timer.elapsed_ms)

            if isinstance(outcome, Ok):
                dispatcher.on_success(outcome.value)
                metadata = self._metadata(usage, latencies, dispatcher)
                LOGGER.info("%s succeeded on attempt %d/%d", agent.name, attempt, limit)
                return Ok(ExecutionSuccess(output=outcome.value, attempts=attempt, metadata=metadata))

            error = outcome.error
            errors.append(error)
            if error.code is not ErrorCode.VALIDATION_FAILED:
                return self._fail(FailureReason.from_error(error), errors, attempt, limit, usage, latencies, dispatcher)

            dispatcher.on_validation_failure(state, error.issues)
            feedback = _Feedback(issues=error.issues, previous_output=arguments or {})

        return self._fail(FailureReason.MAX_ATTEMPTS_EXCEEDED, errors, limit, limit, usage, latencies, dispatcher)

    async def _attempt(
        self,
        agent: AgentDefinition,
        input_data: Mapping[str, Any] | BaseModel,
        state: ExecutionState,
        feedback: _Feedback | None,
        dispatcher: CallbackDispatcher,
        usage: TokenUsage,
        cancel_event: asyncio.Event | None,
    ) -> tuple[Result[Any, AgentError], dict[str, Any] | None]:
        rendered = self._render_messages(agent, input_data, state, feedback)
        if isinstance(rendered, Err):
            return rendered, None

        invoked = await self.executor.invoke(
            rendered.value,
            agent.output_tool,
            state=state,
            callbacks=dispatcher,
            usage=usage,
            cancel_event=cancel_event,
        )
        if isinstance(invoked, Err):
            return invoked, None

        tool_call = invoked.value
        validated = validate_output(tool_call.input, agent.output_schema, agent.validators)
        if isinstance(validated, Err):
            issues = tuple(validated.error)
            return (
                Err(
                    AgentError(
                        code=ErrorCode.VALIDATION_FAILED,
                        message=f"{len(issues)} validation issue(s) in {tool_call.name} input",
                        attempt=state.attempt,
                        issues=issues,
                    )
                ),
                tool_call.input,
            )
        return validated, tool_call.input

    def _render_messages(
        self,
        agent: AgentDefinition,
        input_data: Mapping[str, Any] | BaseModel,
        state: ExecutionState,
        feedback: _Feedback | None,
    ) -> Result[list[BaseMessage], AgentError]:
        system = self.compiler.render(agent.prompts.system, input_data, state)
        if isinstance(system, Err):
            return system
        user = self.compiler.render(agent.prompts.user, input_data, state)
        if isinstance(user, Err):
            return user

        messages: list[BaseMessage] = [SystemMessage(content=system.value), HumanMessage(content=user.value)]
        if feedback is None:
            return Ok(messages)

        summary = format_issues_for_prompt(feedback.issues)
        if agent.prompts.error is None:
            correction = (
                f"Your previous call to {agent.output_tool.name} failed validation:\n{summary}\n"
                f"Call {agent.output_tool.name} again with every problem fixed."
            )
        else:
            rendered = self.compiler.render(
                agent.prompts.error,
                input_data,
                state,
                errors=[issue.to_dict() for issue in feedback.issues],
                error_summary=summary,
                previous_output=json.dumps(feedback.previous_output, indent=2, default=str, ensure_ascii=False),
                tool_name=agent.output_tool.name,
            )
            if isinstance(rendered, Err):
                return rendered
            correction = rendered.value
        messages.append(HumanMessage(content=correction))
        return Ok(messages)

    @staticmethod
    def _metadata(usage: TokenUsage, latencies: list[float], dispatcher: CallbackDispatcher) -> ExecutionMetadata:
        return ExecutionMetadata(
            latency_ms=sum(latencies),
            tokens=usage,
            attempt_latencies_ms=list(latencies),
            callback_errors=list(dispatcher.errors),
        )

    def _fail(
        self,
        reason: FailureReason,
        errors: list[AgentError],
        attempts: int,
        max_attempts: int,
        usage: TokenUsage,
        latencies: list[float],
        dispatcher: CallbackDispatcher,
    ) -> ExecutionResult:
        dispatcher.on_failure(list(errors))
        LOGGER.warning("run failed after %d attempt(s): %s", attempts, reason.value)
        return Err(
            ExecutionFailure(
                reason=reason,
                errors=list(errors),
                attempts=attempts,
                max_attempts=max_attempts,
                metadata=self._metadata(usage, latencies, dispatcher),
            )
        )
