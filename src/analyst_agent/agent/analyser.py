"""Data analyser agent: classifies raw input and recommends a visualisation."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from analyst_agent.agent.definition import AgentDefinition, AgentPrompts, define_agent
from analyst_agent.agent.tools import ToolSpec
from analyst_agent.errors import AgentError, Err, Ok, Result, ValidationIssue
from analyst_agent.prompts.compiler import PromptCompiler
from analyst_agent.types import SampleResult

TEMPLATE_DIR = Path(__file__).parent / "templates" / "analyser"
TEMPLATE_PREFIX = "analyser/"
OUTPUT_TOOL_NAME = "submit_analysis"
MAX_VALIDATION_ATTEMPTS = 3


class KeyField(BaseModel):
    path: str = Field(min_length=1, description="Accessor key or path of the field, e.g. 'user.name' or 'items[0].id'")
    label: str = Field(min_length=1, description="Human-readable description of the field")


class AnalysisOutput(BaseModel):
    """Analysis of a data sample and the recommended way to display it."""

    data_type: str = Field(
        min_length=2,
        max_length=20,
        description="Concise label for the kind of data, e.g. 'User Records' or 'Transactions'",
    )
    description: str = Field(
        min_length=10,
        max_length=400,
        description="What the data represents, in one or two sentences",
    )
    key_fields: list[KeyField] = Field(
        default_factory=list,
        max_length=5,
        description="The most important fields and what they mean",
    )
    recommended_visualisation: Literal["table", "map", "tree", "cards", "chart"] = Field(
        description="Best way to visualise this data structure",
    )
    rationale: str = Field(
        min_length=10,
        max_length=500,
        description="Why the recommended visualisation fits this data",
    )


class VignetteView(BaseModel):
    content: str
    start: int
    end: int
    rank: int


class AnalyserInput(BaseModel):
    """Prompt input: vignettes in source order plus sampling summary."""

    vignettes: list[VignetteView]
    chunk_count: int = Field(ge=0)
    provided_count: int = Field(ge=0)
    size_kb: float = Field(ge=0.0)
    format_hint: str | None = None


def build_analyser_input(sample: SampleResult, format_hint: str | None = None) -> AnalyserInput:
    summary = sample.state.summary()
    return AnalyserInput(
        vignettes=[VignetteView(**vignette.to_prompt_dict()) for vignette in sample.vignettes],
        chunk_count=summary["chunk_count"],
        provided_count=summary["provided_count"],
        size_kb=summary["size_kb"],
        format_hint=format_hint,
    )


def unique_key_fields(output: AnalysisOutput) -> list[ValidationIssue]:
    seen: set[str] = set()
    issues: list[ValidationIssue] = []
    for position, key_field in enumerate(output.key_fields):
        if key_field.path in seen:
            issues.append(
                ValidationIssue(
                    path=f"key_fields.{position}.path",
                    message=f"duplicate key field path '{key_field.path}'",
                    type="duplicate",
                )
            )
        seen.add(key_field.path)
    return issues


ANALYSIS_TOOL = ToolSpec(
    name=OUTPUT_TOOL_NAME,
    description=(
        "Submit the complete analysis: data type label, description, up to five key "
        "fields, recommended visualisation and rationale."
    ),
    args_schema=AnalysisOutput,
)


def load_analyser_prompts(compiler: PromptCompiler) -> Result[AgentPrompts, AgentError]:
    loaded = compiler.load_directory(TEMPLATE_DIR, prefix=TEMPLATE_PREFIX)
    if isinstance(loaded, Err):
        return loaded
    return Ok(
        AgentPrompts(
            system=f"{TEMPLATE_PREFIX}system",
            user=f"{TEMPLATE_PREFIX}user",
            error=f"{TEMPLATE_PREFIX}error",
        )
    )


def create_analyser_agent(
    compiler: PromptCompiler,
    *,
    max_attempts: int = MAX_VALIDATION_ATTEMPTS,
) -> Result[AgentDefinition, list[AgentError]]:
    """Register the analyser templates on `compiler` and define the agent."""

    prompts = load_analyser_prompts(compiler)
    if isinstance(prompts, Err):
        return Err([prompts.error])
    return define_agent(
        name="AnalyserAgent",
        description="Classifies raw data and recommends how to visualise it",
        output_tool=ANALYSIS_TOOL,
        prompts=prompts.value,
        max_attempts=max_attempts,
        validators=[unique_key_fields],
        compiler=compiler,
    )
