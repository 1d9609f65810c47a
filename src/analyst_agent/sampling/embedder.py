"""Embedding abstractions, a deterministic baseline and the LangChain adapter."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt

from langchain_core.embeddings import Embeddings

from analyst_agent.config import EmbeddingSettings
from analyst_agent.errors import AgentError, Err, ErrorCode, Ok, Result


class Embedder(ABC):
    """Embedder interface used by the diversity sampler."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return await asyncio.to_thread(self.embed_documents, texts)


class HashingEmbedder(Embedder):
    """Deterministic signed feature-hashing embedding without external calls.

    Hashes whitespace tokens and character trigrams so that structured chunks
    (CSV rows, JSON fragments) with few spaces still get distinct vectors.
    Used by tests and when `ANALYST_EMBEDDING_PROVIDER=hashing`.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed_documents(texts)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        lowered = text.lower()
        features = lowered.split()
        features.extend(lowered[i : i + 3] for i in range(max(0, len(lowered) - 2)))
        if not features:
            return vector

        for feature in features:
            digest = blake2b(feature.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class LangChainEmbedder(Embedder):
    """Adapts any LangChain `Embeddings` implementation."""

    def __init__(self, embeddings: Embeddings) -> None:
        self.embeddings = embeddings

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embeddings.embed_documents(texts)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return await self.embeddings.aembed_documents(texts)


def create_embedder(settings: EmbeddingSettings) -> Result[Embedder, AgentError]:
    """Build the configured embedder, failing fast on missing credentials."""

    if settings.provider == "hashing":
        return Ok(HashingEmbedder(dimension=settings.dimension))

    if settings.api_key is None:
        return Err(
            AgentError(
                code=ErrorCode.MISSING_CREDENTIALS,
                message="OPENAI_API_KEY is required for the openai embedding provider",
                context={"provider": settings.provider},
            )
        )

    from langchain_openai import OpenAIEmbeddings

    return Ok(LangChainEmbedder(OpenAIEmbeddings(model=settings.model, api_key=settings.api_key)))
