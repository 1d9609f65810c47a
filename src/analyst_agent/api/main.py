"""FastAPI entrypoint for analysis and trace endpoints."""

from __future__ import annotations

import os
from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from analyst_agent.analysis.service import AnalysisFailure, AnalysisService
from analyst_agent.config import AgentConfig, EmbeddingSettings, ModelSettings, SamplerConfig
from analyst_agent.errors import Err, ErrorCode
from analyst_agent.obs.log import configure_logging
from analyst_agent.obs.tracing import TraceStore
from analyst_agent.types import FailureReason

_UNAVAILABLE_CODES = {
    ErrorCode.MISSING_CREDENTIALS.value,
    ErrorCode.EMBEDDING_PROVIDER_ERROR.value,
    ErrorCode.CANCELLED.value,
}
_UNPROCESSABLE_REASONS = {
    FailureReason.MAX_ATTEMPTS_EXCEEDED.value,
    FailureReason.INVALID_PARAMETERS.value,
}


class AnalyzeRequest(BaseModel):
    data: str = Field(min_length=1)
    sample_count: int | None = Field(default=None, ge=1, le=100)
    format_hint: str | None = Field(default=None, max_length=40)


configure_logging()
app = FastAPI(title="Analyst Agent", version="0.1.0")

_trace_store = TraceStore()


def get_trace_store() -> TraceStore:
    return _trace_store


_service: AnalysisService | None = None


def get_analysis_service() -> AnalysisService:
    """Build the service on first use; configuration errors are not cached."""

    global _service
    if _service is None:
        built = AnalysisService.from_settings(
            model_settings=ModelSettings.from_env(),
            embedding_settings=EmbeddingSettings.from_env(),
            sampler_config=SamplerConfig(),
            agent_config=AgentConfig(),
            trace_store=_trace_store,
        )
        if isinstance(built, Err):
            raise HTTPException(status_code=503, detail={"errors": [error.to_dict() for error in built.error]})
        _service = built.value
    return _service


@app.get("/health")
def health(trace_store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": bool(os.getenv("OPENAI_API_KEY")),
        "embedding_provider": os.getenv("ANALYST_EMBEDDING_PROVIDER", "openai"),
        "trace_count": len(trace_store),
    }


@app.post("/analyze")
async def analyze(
    request: AnalyzeRequest,
    service: AnalysisService = Depends(get_analysis_service),
) -> dict[str, Any]:
    if not request.data.strip():
        raise HTTPException(status_code=422, detail={"code": ErrorCode.INVALID_PARAMETERS.value, "message": "data must not be blank"})

    result = await service.analyze(
        request.data,
        sample_count=request.sample_count,
        format_hint=request.format_hint,
    )
    if isinstance(result, Err):
        raise HTTPException(status_code=_status_for(result.error), detail=_failure_detail(result.error))

    report = result.value
    return {
        "trace_id": report.trace_id,
        "analysis": report.output.model_dump(mode="json"),
        "attempts": report.attempts,
        "vignettes": [vignette.to_prompt_dict() for vignette in report.vignettes],
        "sampling": report.sampler_state.summary(),
        "metadata": report.metadata.to_dict(),
    }


@app.get("/traces")
def traces(limit: int = 20, trace_store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
    records = [asdict(record) for record in trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str, trace_store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
    try:
        record = trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics(trace_store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
    return trace_store.summary()


def _status_for(failure: AnalysisFailure) -> int:
    if failure.stage == "sampling":
        return 503 if failure.reason in _UNAVAILABLE_CODES else 422
    if failure.reason in _UNPROCESSABLE_REASONS:
        return 422
    if failure.reason == FailureReason.PROMPT_ERROR.value:
        return 500
    return 503


def _failure_detail(failure: AnalysisFailure) -> dict[str, Any]:
    return {
        "message": failure.message,
        "stage": failure.stage,
        "reason": failure.reason,
        "attempts": failure.attempts,
        "trace_id": failure.trace_id,
        "errors": [error.to_dict() for error in failure.errors],
    }
