"""Immutable agent definitions and their construction checks."""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from analyst_agent.agent.tools import ToolSpec
from analyst_agent.agent.validation import OutputValidator
from analyst_agent.errors import AgentError, Err, ErrorCode, Ok, Result
from analyst_agent.prompts.compiler import PromptCompiler


class AgentPrompts(BaseModel):
    """Template ids rendered by the prompt compiler."""

    model_config = ConfigDict(frozen=True)

    system: str
    user: str
    error: str | None = None

    def template_ids(self) -> list[str]:
        return [template_id for template_id in (self.system, self.user, self.error) if template_id]


class AgentDefinition(BaseModel):
    """Static description of one agent, shared across runs."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(min_length=1)
    description: str = ""
    output_tool: ToolSpec
    output_schema: type[BaseModel]
    prompts: AgentPrompts
    max_attempts: int = Field(default=3, ge=1)
    validators: tuple[OutputValidator, ...] = ()


def define_agent(
    *,
    name: str,
    output_tool: ToolSpec,
    prompts: AgentPrompts,
    description: str = "",
    output_schema: type[BaseModel] | None = None,
    max_attempts: int = 3,
    validators: Sequence[OutputValidator] = (),
    compiler: PromptCompiler | None = None,
) -> Result[AgentDefinition, list[AgentError]]:
    """Check and freeze an agent definition.

    `output_schema` defaults to the output tool's argument schema. When a
    compiler is given, every prompt template id must already be registered.
    All problems are reported together.
    """

    schema = output_schema if output_schema is not None else output_tool.args_schema
    errors: list[AgentError] = []

    if not name.strip():
        errors.append(_invalid("agent name must not be empty", field="name"))
    if not (isinstance(schema, type) and issubclass(schema, BaseModel)):
        errors.append(_invalid("output schema must be a pydantic model class", field="output_schema"))
    if max_attempts < 1:
        errors.append(_invalid("max_attempts must be at least 1", field="max_attempts", value=max_attempts))
    if compiler is not None:
        for template_id in prompts.template_ids():
            if not compiler.has(template_id):
                errors.append(_invalid(f"prompt template not registered: {template_id}", field="prompts", value=template_id))

    if errors:
        return Err(errors)
    return Ok(
        AgentDefinition(
            name=name,
            description=description,
            output_tool=output_tool,
            output_schema=schema,
            prompts=prompts,
            max_attempts=max_attempts,
            validators=tuple(validators),
        )
    )


def _invalid(message: str, **context: object) -> AgentError:
    return AgentError(code=ErrorCode.INVALID_DEFINITION, message=message, context=dict(context))
