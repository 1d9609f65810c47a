"""Configuration models for sampling, agent execution and providers."""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, model_validator


class ChunkingConfig(BaseModel):
    """Configures fixed-size character windows."""

    chunk_size: int = Field(default=200, gt=0)
    overlap: int = Field(default=10, ge=0)

    @model_validator(mode="after")
    def _overlap_below_chunk_size(self) -> "ChunkingConfig":
        if self.overlap >= self.chunk_size:
            raise ValueError("overlap must be less than chunk_size")
        return self


class SamplerConfig(BaseModel):
    """Configures embedding fan-out and diversity selection."""

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    target_count: int = Field(default=20, ge=1)
    batch_size: int = Field(default=32, ge=1)
    max_concurrency: int = Field(default=4, ge=1)
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    metric: Literal["cosine", "euclidean"] = "cosine"


class AgentConfig(BaseModel):
    """Configures the attempt loop."""

    max_attempts: int = Field(default=3, ge=1)
    timeout_seconds: float = Field(default=60.0, gt=0.0)


class ModelSettings(BaseModel):
    """Chat model used for forced tool calls."""

    provider: Literal["openai"] = "openai"
    model: str = Field(default="gpt-4o-mini", min_length=1)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1)
    api_key: SecretStr | None = None

    @classmethod
    def from_env(cls) -> "ModelSettings":
        api_key = os.getenv("OPENAI_API_KEY")
        return cls(
            model=os.getenv("ANALYST_MODEL", "gpt-4o-mini"),
            api_key=SecretStr(api_key) if api_key else None,
        )


class EmbeddingSettings(BaseModel):
    """Embedding provider used by the sampler."""

    provider: Literal["openai", "hashing"] = "openai"
    model: str = Field(default="text-embedding-3-small", min_length=1)
    dimension: int = Field(default=256, ge=8)
    api_key: SecretStr | None = None

    @classmethod
    def from_env(cls) -> "EmbeddingSettings":
        api_key = os.getenv("OPENAI_API_KEY")
        provider = os.getenv("ANALYST_EMBEDDING_PROVIDER", "openai")
        return cls(
            provider=provider,  # type: ignore[arg-type]
            model=os.getenv("ANALYST_EMBEDDING_MODEL", "text-embedding-3-small"),
            api_key=SecretStr(api_key) if api_key else None,
        )
