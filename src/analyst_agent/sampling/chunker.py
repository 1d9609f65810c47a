"""Character-window chunking for diversity sampling."""

from __future__ import annotations

from analyst_agent.config import ChunkingConfig
from analyst_agent.errors import AgentError, Err, ErrorCode, Ok, Result
from analyst_agent.types import Chunk


def chunk_text(text: str, chunk_size: int = 200, overlap: int = 10) -> Result[list[Chunk], AgentError]:
    """Split `text` into overlapping fixed-width character windows.

    Design notes:
    1. Purely character based.
       Structured payloads (CSV rows, JSON objects, XML) and prose are cut the
       same way, so behaviour never depends on detecting the input format.

    2. Offsets refer to the untrimmed input.
       Leading and trailing whitespace is stripped before windowing, but every
       `Chunk.start`/`Chunk.end` is shifted by the leading whitespace so that
       `text[chunk.start:chunk.end] == chunk.content`.

    3. Sliding window.
       Windows of width `chunk_size` advance by `chunk_size - overlap`. The last
       window is clamped to the end of the text and chunking stops as soon as a
       window reaches the end, so there is never a duplicate trailing chunk.

    Returns:
        `Ok` with the ordered chunks (empty for blank input), or
        `Err(INVALID_PARAMETERS)` when the window parameters are invalid.
    """

    if chunk_size <= 0:
        return Err(_invalid("chunk_size must be greater than 0", chunk_size, overlap))
    if overlap < 0:
        return Err(_invalid("overlap must be non-negative", chunk_size, overlap))
    if overlap >= chunk_size:
        return Err(_invalid("overlap must be less than chunk_size", chunk_size, overlap))

    leading = len(text) - len(text.lstrip())
    trimmed = text.strip()
    if not trimmed:
        return Ok([])

    if len(trimmed) <= chunk_size:
        return Ok([Chunk(content=trimmed, start=leading, end=leading + len(trimmed))])

    chunks: list[Chunk] = []
    step = chunk_size - overlap
    position = 0
    while position < len(trimmed):
        end = min(position + chunk_size, len(trimmed))
        chunks.append(
            Chunk(
                content=trimmed[position:end],
                start=leading + position,
                end=leading + end,
            )
        )
        if end == len(trimmed):
            break
        position += step

    return Ok(chunks)


class CharacterChunker:
    """Applies `chunk_text` with a fixed `ChunkingConfig`."""

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(self, text: str) -> Result[list[Chunk], AgentError]:
        return chunk_text(text, self.config.chunk_size, self.config.overlap)


def _invalid(message: str, chunk_size: int, overlap: int) -> AgentError:
    return AgentError(
        code=ErrorCode.INVALID_PARAMETERS,
        message=message,
        context={"chunk_size": chunk_size, "overlap": overlap},
    )
