"""Tool specifications exposed to the chat model."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field


def summarize_payload(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, default=str, ensure_ascii=False)


class ToolSpec(BaseModel):
    """Declarative tool the model is forced to call.

    `args_schema` is advertised to the model as the tool's input schema. The
    model's raw arguments are passed through unvalidated; schema validation
    happens in the attempt loop so that failures can be fed back as retries.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str = Field(min_length=1, pattern=r"^[a-zA-Z0-9_-]+$")
    description: str = Field(min_length=1)
    args_schema: type[BaseModel]
    handler: Callable[[dict[str, Any]], str] = summarize_payload

    def invoke(self, payload: dict[str, Any]) -> str:
        return self.handler(payload)

    def as_langchain_tool(self) -> StructuredTool:
        def _callable(**kwargs: Any) -> str:
            return self.invoke(kwargs)

        return StructuredTool.from_function(
            name=self.name,
            description=self.description,
            args_schema=self.args_schema,
            func=_callable,
        )
