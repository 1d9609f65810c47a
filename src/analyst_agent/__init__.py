"""Analyst Agent package."""

from .config import AgentConfig, ChunkingConfig, SamplerConfig
from .errors import AgentError, Err, ErrorCode, Ok

__all__ = ["AgentConfig", "AgentError", "ChunkingConfig", "Err", "ErrorCode", "Ok", "SamplerConfig"]
