"""Chat-model adapter that forces a single tool call per request."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage

from analyst_agent.agent.tools import ToolSpec
from analyst_agent.config import ModelSettings
from analyst_agent.errors import AgentError, Err, ErrorCode, Ok, Result

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ModelUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True, slots=True)
class ToolInvocation:
    """The model selected the tool and supplied structured arguments."""

    name: str
    arguments: dict[str, Any]
    call_id: str | None = None
    usage: ModelUsage = field(default_factory=ModelUsage)


@dataclass(frozen=True, slots=True)
class NoToolUse:
    """The model answered without invoking the tool."""

    text: str
    usage: ModelUsage = field(default_factory=ModelUsage)


@dataclass(frozen=True, slots=True)
class ProviderFailure:
    """Transport or API failure before a usable response arrived."""

    error: AgentError
    usage: ModelUsage = field(default_factory=ModelUsage)


ModelResponse = Union[ToolInvocation, NoToolUse, ProviderFailure]


class ToolCallingModel(Protocol):
    async def call_tool(self, messages: list[BaseMessage], tool: ToolSpec) -> ModelResponse:
        """Send one request that forces `tool`; never raises for provider faults."""


class LangChainToolModel:
    """Wraps a LangChain chat model with `bind_tools(..., tool_choice=name)`."""

    def __init__(self, llm: BaseChatModel) -> None:
        self.llm = llm

    async def call_tool(self, messages: list[BaseMessage], tool: ToolSpec) -> ModelResponse:
        try:
            bound = self.llm.bind_tools([tool.as_langchain_tool()], tool_choice=tool.name)
            message = await bound.ainvoke(messages)
        except Exception as exc:
            LOGGER.warning("model request for tool %s failed", tool.name, exc_info=True)
            return ProviderFailure(
                error=AgentError(
                    code=ErrorCode.API_ERROR,
                    message=f"model request failed: {exc}",
                    context={"exception": type(exc).__name__},
                )
            )

        usage = _usage(message)
        calls = [call for call in getattr(message, "tool_calls", None) or [] if call.get("name") == tool.name]
        if not calls:
            return NoToolUse(text=_text(message), usage=usage)
        call = calls[0]
        return ToolInvocation(
            name=call["name"],
            arguments=dict(call.get("args") or {}),
            call_id=call.get("id"),
            usage=usage,
        )


def create_chat_model(settings: ModelSettings) -> Result[ToolCallingModel, AgentError]:
    """Build the configured chat model, failing fast on missing credentials."""

    if settings.api_key is None:
        return Err(
            AgentError(
                code=ErrorCode.MISSING_CREDENTIALS,
                message="OPENAI_API_KEY is required for the chat model",
                context={"provider": settings.provider, "model": settings.model},
            )
        )

    from langchain_openai import ChatOpenAI

    llm = ChatOpenAI(
        model=settings.model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        api_key=settings.api_key,
    )
    return Ok(LangChainToolModel(llm))


def _usage(message: Any) -> ModelUsage:
    metadata = getattr(message, "usage_metadata", None) or {}
    return ModelUsage(
        input_tokens=int(metadata.get("input_tokens", 0) or 0),
        output_tokens=int(metadata.get("output_tokens", 0) or 0),
    )


def _text(message: Any) -> str:
    content = message.content if isinstance(message, AIMessage) else getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)
