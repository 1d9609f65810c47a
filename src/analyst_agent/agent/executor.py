"""One forced tool call per attempt."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from langchain_core.messages import BaseMessage

from analyst_agent.agent.provider import NoToolUse, ProviderFailure, ToolCallingModel, ToolInvocation
from analyst_agent.agent.tools import ToolSpec
from analyst_agent.concurrency import OperationCancelled, guarded
from analyst_agent.errors import AgentError, Err, ErrorCode, Ok, Result
from analyst_agent.obs.callbacks import AnalysisCallbacks
from analyst_agent.types import ExecutionState, TokenUsage, ToolCall

LOGGER = logging.getLogger(__name__)


class ToolCallExecutor:
    """Sends exactly one model request and extracts the tool's input.

    Never retries. A response without a tool call, a provider fault, a timeout
    or a cancellation all come back as `Err`; the attempt loop decides what
    to do with them.
    """

    def __init__(self, model: ToolCallingModel, *, timeout_seconds: float | None = None) -> None:
        self.model = model
        self.timeout_seconds = timeout_seconds

    async def invoke(
        self,
        messages: list[BaseMessage],
        tool: ToolSpec,
        *,
        state: ExecutionState,
        callbacks: AnalysisCallbacks | None = None,
        usage: TokenUsage | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Result[ToolCall, AgentError]:
        callbacks = callbacks if callbacks is not None else AnalysisCallbacks()
        try:
            response = await guarded(
                self.model.call_tool(messages, tool),
                timeout=self.timeout_seconds,
                cancel_event=cancel_event,
            )
        except OperationCancelled:
            return Err(AgentError(code=ErrorCode.CANCELLED, message="run cancelled during model request", attempt=state.attempt))
        except TimeoutError:
            return Err(
                AgentError(
                    code=ErrorCode.TIMEOUT,
                    message=f"model request exceeded {self.timeout_seconds}s",
                    attempt=state.attempt,
                    context={"timeout_seconds": self.timeout_seconds},
                )
            )
        except Exception as exc:
            LOGGER.warning("model request for tool %s raised", tool.name, exc_info=True)
            return Err(
                AgentError(
                    code=ErrorCode.API_ERROR,
                    message=f"model request failed: {exc}",
                    attempt=state.attempt,
                    context={"exception": type(exc).__name__},
                )
            )

        if usage is not None:
            usage.add(response.usage.input_tokens, response.usage.output_tokens)

        match response:
            case ToolInvocation(name=name, arguments=arguments, call_id=call_id):
                callbacks.on_tool_call(name, arguments)
                try:
                    result = tool.invoke(arguments)
                except Exception as exc:
                    LOGGER.warning("tool %s raised", name, exc_info=True)
                    return Err(
                        AgentError(
                            code=ErrorCode.API_ERROR,
                            message=f"tool {name} failed: {exc}",
                            attempt=state.attempt,
                            context={"exception": type(exc).__name__, "tool": name},
                        )
                    )
                callbacks.on_tool_result(name, result)
                return Ok(ToolCall(name=name, input=arguments, result=result, call_id=call_id))
            case NoToolUse(text=text):
                return Err(
                    AgentError(
                        code=ErrorCode.NO_TOOL_USE,
                        message=f"model did not call {tool.name}",
                        attempt=state.attempt,
                        context={"response_preview": text[:200]},
                    )
                )
            case ProviderFailure(error=error):
                return Err(replace(error, attempt=state.attempt))
        raise TypeError(f"Unexpected model response: {type(response).__name__}")
