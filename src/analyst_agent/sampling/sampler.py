"""Chunk, embed and diversity-select raw input into vignettes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from analyst_agent.concurrency import OperationCancelled, guarded
from analyst_agent.config import SamplerConfig
from analyst_agent.errors import AgentError, Err, ErrorCode, Ok, Result
from analyst_agent.obs.callbacks import AnalysisCallbacks, CallbackDispatcher
from analyst_agent.sampling.chunker import CharacterChunker
from analyst_agent.sampling.diversity import select_diverse
from analyst_agent.sampling.embedder import Embedder
from analyst_agent.types import (
    Chunk,
    MoreSamplesResult,
    SampleResult,
    SamplerState,
    SamplingParameters,
    Vignette,
)

LOGGER = logging.getLogger(__name__)

Vector = tuple[float, ...]


class DiversitySampler:
    """Reduces arbitrarily large input to a small, representative vignette set."""

    def __init__(self, embedder: Embedder, config: SamplerConfig | None = None) -> None:
        self.embedder = embedder
        self.config = config or SamplerConfig()
        self.chunker = CharacterChunker(self.config.chunking)

    async def sample(
        self,
        raw_text: str,
        target_count: int | None = None,
        callbacks: AnalysisCallbacks | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Result[SampleResult, AgentError]:
        """Select up to `target_count` diverse vignettes from `raw_text`.

        Fires `on_chunking_complete` once and `on_embedding_progress` after each
        embedding batch. Any embedding failure aborts the whole call; selection
        never runs on a partial set of vectors.
        """

        count = self.config.target_count if target_count is None else target_count
        if count < 1:
            return Err(
                AgentError(
                    code=ErrorCode.INVALID_PARAMETERS,
                    message="target_count must be at least 1",
                    context={"target_count": count},
                )
            )

        dispatcher = callbacks if isinstance(callbacks, CallbackDispatcher) else CallbackDispatcher(callbacks)
        chunked = self.chunker.chunk(raw_text)
        if isinstance(chunked, Err):
            return chunked
        chunks = chunked.value

        size_bytes = len(raw_text.encode("utf-8"))
        dispatcher.on_chunking_complete(len(chunks), round(size_bytes / 1024.0, 2))

        embedded = await self._embed_chunks(chunks, dispatcher, cancel_event)
        if isinstance(embedded, Err):
            return embedded
        embeddings = embedded.value

        selection = select_diverse(embeddings, count, metric=self.config.metric)
        state = SamplerState(
            chunks=tuple(chunks),
            embeddings=tuple(embeddings),
            provided_indices=frozenset(selection),
            selection_order=tuple(selection),
            parameters=SamplingParameters(
                chunk_size=self.config.chunking.chunk_size,
                overlap=self.config.chunking.overlap,
                target_count=count,
                metric=self.config.metric,
            ),
            source_size_bytes=size_bytes,
        )
        vignettes = _build_vignettes(state, selection, first_rank=1)
        LOGGER.info("sampled %d of %d chunks", len(vignettes), len(chunks))
        return Ok(SampleResult(vignettes=vignettes, state=state))

    def request_more_samples(self, state: SamplerState, count: int) -> Result[MoreSamplesResult, AgentError]:
        """Continue selection over chunks not yet provided.

        New picks are spread away from everything already provided. The given
        state is left untouched; the returned state records the new picks.
        """

        if count < 1:
            return Err(
                AgentError(
                    code=ErrorCode.INVALID_PARAMETERS,
                    message="count must be at least 1",
                    context={"count": count},
                )
            )
        if not state.has_more:
            return Ok(MoreSamplesResult(vignettes=[], state=state, has_more=False))

        selection = select_diverse(
            state.embeddings,
            count,
            already_selected=state.selection_order,
            metric=state.parameters.metric,  # type: ignore[arg-type]
        )
        new_state = replace(
            state,
            provided_indices=state.provided_indices | frozenset(selection),
            selection_order=state.selection_order + tuple(selection),
        )
        vignettes = _build_vignettes(new_state, selection, first_rank=len(state.selection_order) + 1)
        return Ok(MoreSamplesResult(vignettes=vignettes, state=new_state, has_more=new_state.has_more))

    async def _embed_chunks(
        self,
        chunks: list[Chunk],
        dispatcher: CallbackDispatcher,
        cancel_event: asyncio.Event | None,
    ) -> Result[list[Vector], AgentError]:
        if not chunks:
            return Ok([])

        # Identical chunk contents are embedded once.
        occurrences: dict[str, int] = {}
        for chunk in chunks:
            occurrences[chunk.content] = occurrences.get(chunk.content, 0) + 1
        unique = list(occurrences)
        size = self.config.batch_size
        batches = [unique[i : i + size] for i in range(0, len(unique), size)]
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def run_batch(batch: list[str]) -> tuple[list[str], list[list[float]]]:
            async with semaphore:
                vectors = await guarded(
                    self.embedder.aembed_documents(batch),
                    timeout=self.config.timeout_seconds,
                    cancel_event=cancel_event,
                )
            if len(vectors) != len(batch):
                raise ValueError(f"expected {len(batch)} embeddings, received {len(vectors)}")
            return batch, vectors

        tasks = [asyncio.ensure_future(run_batch(batch)) for batch in batches]
        cache: dict[str, Vector] = {}
        completed = 0
        try:
            for next_done in asyncio.as_completed(tasks):
                batch, vectors = await next_done
                for text, vector in zip(batch, vectors, strict=True):
                    cache[text] = tuple(float(value) for value in vector)
                    completed += occurrences[text]
                dispatcher.on_embedding_progress(completed, len(chunks))
        except OperationCancelled as exc:
            return Err(AgentError(code=ErrorCode.CANCELLED, message=str(exc)))
        except TimeoutError as exc:
            return Err(
                AgentError(
                    code=ErrorCode.EMBEDDING_PROVIDER_ERROR,
                    message=f"embedding request timed out: {exc}",
                    context={"timeout_seconds": self.config.timeout_seconds},
                )
            )
        except Exception as exc:
            LOGGER.warning("embedding failed after %d/%d chunks", completed, len(chunks), exc_info=True)
            return Err(
                AgentError(
                    code=ErrorCode.EMBEDDING_PROVIDER_ERROR,
                    message=f"embedding provider failed: {exc}",
                    context={"completed": completed, "total": len(chunks)},
                )
            )
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        return Ok([cache[chunk.content] for chunk in chunks])


def _build_vignettes(state: SamplerState, selection: list[int], *, first_rank: int) -> list[Vignette]:
    rank_by_index = {index: first_rank + offset for offset, index in enumerate(selection)}
    vignettes: list[Vignette] = []
    for index in sorted(selection):
        chunk = state.chunks[index]
        vignettes.append(
            Vignette(
                content=chunk.content,
                start=chunk.start,
                end=chunk.end,
                embedding=state.embeddings[index],
                rank=rank_by_index[index],
                index=index,
            )
        )
    return vignettes
