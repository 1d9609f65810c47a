"""Observability callback interface and its standard implementations."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from analyst_agent.errors import AgentError, ValidationIssue
from analyst_agent.types import ExecutionState

LOGGER = logging.getLogger(__name__)


class AnalysisCallbacks:
    """No-op base for side-channel notifications.

    Subclasses override the events they care about. Return values are ignored
    and exceptions never change the outcome of a run.
    """

    def on_chunking_complete(self, chunk_count: int, size_kb: float) -> None:
        pass

    def on_embedding_progress(self, completed: int, total: int) -> None:
        pass

    def on_attempt_start(self, state: ExecutionState) -> None:
        pass

    def on_tool_call(self, name: str, payload: dict[str, Any]) -> None:
        pass

    def on_tool_result(self, name: str, result: str) -> None:
        pass

    def on_validation_failure(self, state: ExecutionState, issues: tuple[ValidationIssue, ...]) -> None:
        pass

    def on_success(self, output: Any) -> None:
        pass

    def on_failure(self, errors: list[AgentError]) -> None:
        pass


class CompositeCallbacks(AnalysisCallbacks):
    """Fans every event out to several callback sets, in order."""

    def __init__(self, *children: AnalysisCallbacks) -> None:
        self.children = list(children)

    def on_chunking_complete(self, chunk_count: int, size_kb: float) -> None:
        for child in self.children:
            child.on_chunking_complete(chunk_count, size_kb)

    def on_embedding_progress(self, completed: int, total: int) -> None:
        for child in self.children:
            child.on_embedding_progress(completed, total)

    def on_attempt_start(self, state: ExecutionState) -> None:
        for child in self.children:
            child.on_attempt_start(state)

    def on_tool_call(self, name: str, payload: dict[str, Any]) -> None:
        for child in self.children:
            child.on_tool_call(name, payload)

    def on_tool_result(self, name: str, result: str) -> None:
        for child in self.children:
            child.on_tool_result(name, result)

    def on_validation_failure(self, state: ExecutionState, issues: tuple[ValidationIssue, ...]) -> None:
        for child in self.children:
            child.on_validation_failure(state, issues)

    def on_success(self, output: Any) -> None:
        for child in self.children:
            child.on_success(output)

    def on_failure(self, errors: list[AgentError]) -> None:
        for child in self.children:
            child.on_failure(errors)


class LoggingCallbacks(AnalysisCallbacks):
    """Writes every event to the module logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or LOGGER

    def on_chunking_complete(self, chunk_count: int, size_kb: float) -> None:
        self.logger.info("chunking complete: %d chunks from %.2f KB", chunk_count, size_kb)

    def on_embedding_progress(self, completed: int, total: int) -> None:
        self.logger.debug("embedded %d/%d chunks", completed, total)

    def on_attempt_start(self, state: ExecutionState) -> None:
        self.logger.info("attempt %d/%d started", state.attempt, state.max_attempts)

    def on_tool_call(self, name: str, payload: dict[str, Any]) -> None:
        self.logger.debug("tool call %s with %d fields", name, len(payload))

    def on_tool_result(self, name: str, result: str) -> None:
        self.logger.debug("tool result %s: %s", name, result[:120])

    def on_validation_failure(self, state: ExecutionState, issues: tuple[ValidationIssue, ...]) -> None:
        self.logger.warning(
            "attempt %d/%d failed validation: %s",
            state.attempt,
            state.max_attempts,
            "; ".join(f"{issue.path}: {issue.message}" for issue in issues),
        )

    def on_success(self, output: Any) -> None:
        self.logger.info("analysis succeeded")

    def on_failure(self, errors: list[AgentError]) -> None:
        self.logger.error("analysis failed: %s", ", ".join(error.code.value for error in errors))


class CallbackDispatcher(AnalysisCallbacks):
    """Delivers events to user callbacks, isolating their failures.

    A raising callback is logged and recorded in `errors`; delivery continues
    with the next callback and the caller's control flow is unaffected.
    """

    def __init__(self, callbacks: AnalysisCallbacks | Iterable[AnalysisCallbacks] | None = None) -> None:
        if callbacks is None:
            targets: list[AnalysisCallbacks] = []
        elif isinstance(callbacks, AnalysisCallbacks):
            targets = [callbacks]
        else:
            targets = list(callbacks)
        self._targets = _flatten(targets)
        self.errors: list[str] = []

    def _emit(self, event: str, *args: Any) -> None:
        for target in self._targets:
            try:
                getattr(target, event)(*args)
            except Exception as exc:
                LOGGER.warning("callback %s.%s raised", type(target).__name__, event, exc_info=True)
                self.errors.append(f"{event}: {type(exc).__name__}: {exc}")

    def on_chunking_complete(self, chunk_count: int, size_kb: float) -> None:
        self._emit("on_chunking_complete", chunk_count, size_kb)

    def on_embedding_progress(self, completed: int, total: int) -> None:
        self._emit("on_embedding_progress", completed, total)

    def on_attempt_start(self, state: ExecutionState) -> None:
        self._emit("on_attempt_start", state)

    def on_tool_call(self, name: str, payload: dict[str, Any]) -> None:
        self._emit("on_tool_call", name, payload)

    def on_tool_result(self, name: str, result: str) -> None:
        self._emit("on_tool_result", name, result)

    def on_validation_failure(self, state: ExecutionState, issues: tuple[ValidationIssue, ...]) -> None:
        self._emit("on_validation_failure", state, issues)

    def on_success(self, output: Any) -> None:
        self._emit("on_success", output)

    def on_failure(self, errors: list[AgentError]) -> None:
        self._emit("on_failure", errors)


def _flatten(targets: list[AnalysisCallbacks]) -> list[AnalysisCallbacks]:
    flat: list[AnalysisCallbacks] = []
    for target in targets:
        if isinstance(target, CompositeCallbacks):
            flat.extend(_flatten(target.children))
        elif isinstance(target, CallbackDispatcher):
            flat.extend(target._targets)
        else:
            flat.append(target)
    return flat
