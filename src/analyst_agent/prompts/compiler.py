"""Jinja prompt templates rendered against run data and execution state."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from jinja2 import StrictUndefined, Template, TemplateError, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment
from pydantic import BaseModel

from analyst_agent.errors import AgentError, Err, ErrorCode, Ok, Result
from analyst_agent.types import ExecutionState

LOGGER = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".jinja"


class PromptCompiler:
    """Registry of compiled templates keyed by id.

    Templates see `data.*` (the run input) and `state.attempt` /
    `state.maxAttempts`. Undefined variables are errors, never empty strings.
    """

    def __init__(self) -> None:
        self._env = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._templates: dict[str, Template] = {}

    def register(self, template_id: str, source: str) -> Result[str, AgentError]:
        try:
            self._templates[template_id] = self._env.from_string(source)
        except TemplateSyntaxError as exc:
            return Err(
                AgentError(
                    code=ErrorCode.TEMPLATE_SYNTAX_ERROR,
                    message=f"{template_id}: {exc.message} (line {exc.lineno})",
                    context={"template_id": template_id, "line": exc.lineno},
                )
            )
        return Ok(template_id)

    def load(self, template_id: str, path: str | Path) -> Result[str, AgentError]:
        try:
            source = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            return Err(
                AgentError(
                    code=ErrorCode.TEMPLATE_LOAD_ERROR,
                    message=f"could not read template {template_id} from {path}: {exc}",
                    context={"template_id": template_id, "path": str(path)},
                )
            )
        return self.register(template_id, source)

    def load_directory(self, directory: str | Path, prefix: str = "") -> Result[list[str], AgentError]:
        """Register every `*.jinja` file in `directory` as `<prefix><stem>`."""

        root = Path(directory)
        if not root.is_dir():
            return Err(
                AgentError(
                    code=ErrorCode.TEMPLATE_LOAD_ERROR,
                    message=f"template directory not found: {root}",
                    context={"path": str(root)},
                )
            )
        loaded: list[str] = []
        for path in sorted(root.glob(f"*{TEMPLATE_SUFFIX}")):
            result = self.load(f"{prefix}{path.stem}", path)
            if isinstance(result, Err):
                return result
            loaded.append(result.value)
        LOGGER.debug("loaded %d templates from %s", len(loaded), root)
        return Ok(loaded)

    def has(self, template_id: str) -> bool:
        return template_id in self._templates

    def render(
        self,
        template_id: str,
        data: Mapping[str, Any] | BaseModel,
        state: ExecutionState | None = None,
        **extra: Any,
    ) -> Result[str, AgentError]:
        template = self._templates.get(template_id)
        if template is None:
            return Err(
                AgentError(
                    code=ErrorCode.TEMPLATE_LOAD_ERROR,
                    message=f"unknown template: {template_id}",
                    context={"template_id": template_id},
                )
            )

        context = {
            **extra,
            "data": data.model_dump(mode="json") if isinstance(data, BaseModel) else dict(data),
            "state": state.as_template_state() if state is not None else {},
        }
        try:
            return Ok(template.render(**context).strip())
        except TemplateError as exc:
            return Err(_generation_failed(template_id, str(exc), state))
        except Exception as exc:
            LOGGER.warning("template %s raised while rendering", template_id, exc_info=True)
            return Err(_generation_failed(template_id, f"{type(exc).__name__}: {exc}", state))


def _generation_failed(template_id: str, detail: str, state: ExecutionState | None) -> AgentError:
    return AgentError(
        code=ErrorCode.PROMPT_GENERATION_FAILED,
        message=f"{template_id}: {detail}",
        attempt=state.attempt if state is not None else None,
        context={"template_id": template_id},
    )
