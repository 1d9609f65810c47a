"""Result values and the structured error taxonomy shared by every component."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value."""

    value: T


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Failed outcome carrying a structured error."""

    error: E


Result = Union[Ok[T], Err[E]]


class ErrorCategory(str, Enum):
    CONFIGURATION = "configuration"
    PARAMETER = "parameter"
    PROVIDER = "provider"
    VALIDATION = "validation"
    SAMPLING = "sampling"
    PROMPT = "prompt"
    EXECUTION = "execution"


class ErrorCode(str, Enum):
    MISSING_CREDENTIALS = "MISSING_CREDENTIALS"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    INVALID_DEFINITION = "INVALID_DEFINITION"
    EMBEDDING_PROVIDER_ERROR = "EMBEDDING_PROVIDER_ERROR"
    API_ERROR = "API_ERROR"
    NO_TOOL_USE = "NO_TOOL_USE"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    TEMPLATE_LOAD_ERROR = "TEMPLATE_LOAD_ERROR"
    TEMPLATE_SYNTAX_ERROR = "TEMPLATE_SYNTAX_ERROR"
    PROMPT_GENERATION_FAILED = "PROMPT_GENERATION_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"


_CATEGORY_BY_CODE: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.MISSING_CREDENTIALS: ErrorCategory.CONFIGURATION,
    ErrorCode.INVALID_PARAMETERS: ErrorCategory.PARAMETER,
    ErrorCode.INVALID_DEFINITION: ErrorCategory.CONFIGURATION,
    ErrorCode.EMBEDDING_PROVIDER_ERROR: ErrorCategory.SAMPLING,
    ErrorCode.API_ERROR: ErrorCategory.PROVIDER,
    ErrorCode.NO_TOOL_USE: ErrorCategory.PROVIDER,
    ErrorCode.TIMEOUT: ErrorCategory.PROVIDER,
    ErrorCode.CANCELLED: ErrorCategory.EXECUTION,
    ErrorCode.TEMPLATE_LOAD_ERROR: ErrorCategory.PROMPT,
    ErrorCode.TEMPLATE_SYNTAX_ERROR: ErrorCategory.PROMPT,
    ErrorCode.PROMPT_GENERATION_FAILED: ErrorCategory.PROMPT,
    ErrorCode.VALIDATION_FAILED: ErrorCategory.VALIDATION,
}


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """One schema or rule violation, addressed by a dotted path."""

    path: str
    message: str
    type: str = "value_error"

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "message": self.message, "type": self.type}


@dataclass(frozen=True, slots=True)
class AgentError:
    """Structured failure detail with enough context to render a diagnostic."""

    code: ErrorCode
    message: str
    category: ErrorCategory | None = None
    attempt: int | None = None
    issues: tuple[ValidationIssue, ...] = ()
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.category is None:
            object.__setattr__(self, "category", _CATEGORY_BY_CODE[self.code])

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code.value,
            "category": self.category.value if self.category else None,
            "message": self.message,
        }
        if self.attempt is not None:
            payload["attempt"] = self.attempt
        if self.issues:
            payload["issues"] = [issue.to_dict() for issue in self.issues]
        if self.context:
            payload["context"] = dict(self.context)
        return payload
