import pytest
from pydantic import BaseModel, ValidationError

from analyst_agent.agent.analyser import ANALYSIS_TOOL, AnalysisOutput, create_analyser_agent
from analyst_agent.agent.definition import AgentPrompts, define_agent
from analyst_agent.agent.tools import ToolSpec
from analyst_agent.errors import Err, ErrorCode, Ok
from analyst_agent.prompts.compiler import PromptCompiler


class EchoInput(BaseModel):
    text: str


def _tool() -> ToolSpec:
    return ToolSpec(name="submit_echo", description="submit echo", args_schema=EchoInput)


def test_define_agent_defaults_schema_to_tool_args() -> None:
    result = define_agent(name="Echo", output_tool=_tool(), prompts=AgentPrompts(system="s", user="u"))

    assert isinstance(result, Ok)
    agent = result.value
    assert agent.output_schema is EchoInput
    assert agent.max_attempts == 3
    assert agent.prompts.error is None
    with pytest.raises(ValidationError):
        agent.max_attempts = 5  # type: ignore[misc]


def test_define_agent_reports_every_problem() -> None:
    compiler = PromptCompiler()
    compiler.register("s", "system")

    result = define_agent(
        name="  ",
        output_tool=_tool(),
        prompts=AgentPrompts(system="s", user="missing-user", error="missing-error"),
        max_attempts=0,
        compiler=compiler,
    )

    assert isinstance(result, Err)
    assert all(error.code is ErrorCode.INVALID_DEFINITION for error in result.error)
    assert [error.context.get("field") for error in result.error] == ["name", "max_attempts", "prompts", "prompts"]


def test_tool_spec_exports_structured_tool_and_summarizes() -> None:
    tool = _tool()

    structured = tool.as_langchain_tool()

    assert structured.name == "submit_echo"
    assert structured.args_schema is EchoInput
    assert structured.invoke({"text": "hi"}) == '{"text": "hi"}'
    assert tool.invoke({"text": "hi", "extra": 1}) == '{"extra": 1, "text": "hi"}'


def test_tool_spec_rejects_invalid_names() -> None:
    with pytest.raises(ValidationError):
        ToolSpec(name="has space", description="bad", args_schema=EchoInput)


def test_analyser_agent_registers_templates() -> None:
    compiler = PromptCompiler()

    result = create_analyser_agent(compiler, max_attempts=2)

    assert isinstance(result, Ok)
    agent = result.value
    assert agent.output_tool is ANALYSIS_TOOL
    assert agent.output_schema is AnalysisOutput
    assert agent.max_attempts == 2
    assert len(agent.validators) == 1
    assert all(compiler.has(template_id) for template_id in agent.prompts.template_ids())
