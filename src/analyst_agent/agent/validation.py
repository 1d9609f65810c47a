"""Schema and rule validation of tool output."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from pydantic import BaseModel, ValidationError

from analyst_agent.errors import Err, Ok, Result, ValidationIssue

LOGGER = logging.getLogger(__name__)

OutputValidator = Callable[[Any], list[ValidationIssue]]


def issues_from_error(exc: ValidationError) -> list[ValidationIssue]:
    return [
        ValidationIssue(
            path=".".join(str(part) for part in error["loc"]) or "$",
            message=error["msg"],
            type=error["type"],
        )
        for error in exc.errors()
    ]


def validate_output(
    payload: dict[str, Any],
    schema: type[BaseModel],
    validators: Sequence[OutputValidator] = (),
) -> Result[BaseModel, list[ValidationIssue]]:
    """Validate against `schema`, then run custom validators on the parsed model.

    Custom validators only run when the schema passes, since they may rely on
    typed fields.
    A validator that raises is reported as a `validator_error` issue at `$`.
    """

    try:
        output = schema.model_validate(payload)
    except ValidationError as exc:
        return Err(issues_from_error(exc))

    issues: list[ValidationIssue] = []
    for validator in validators:
        try:
            issues.extend(validator(output))
        except Exception as exc:
            name = getattr(validator, "__name__", type(validator).__name__)
            LOGGER.warning("output validator %s raised", name, exc_info=True)
            issues.append(
                ValidationIssue(
                    path="$",
                    message=f"validator {name} raised {type(exc).__name__}: {exc}",
                    type="validator_error",
                )
            )
    if issues:
        return Err(issues)
    return Ok(output)


def format_issues_for_prompt(issues: Iterable[ValidationIssue]) -> str:
    return "\n".join(f"- {issue.path}: {issue.message}" for issue in issues)
