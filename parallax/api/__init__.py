"""Generation server access: HTTP client, stream decoding, error taxonomy."""

from __future__ import annotations

from parallax.api.ollama import (
    GenerationConnectionError,
    GenerationError,
    ModelInfo,
    ModelNotFoundError,
    OllamaClient,
    ProtocolError,
    UnexpectedGenerationError,
)
from parallax.api.streaming import NdjsonStreamDecoder, StreamEvent

__all__ = [
    "GenerationConnectionError",
    "GenerationError",
    "ModelInfo",
    "ModelNotFoundError",
    "NdjsonStreamDecoder",
    "OllamaClient",
    "ProtocolError",
    "StreamEvent",
    "UnexpectedGenerationError",
]
