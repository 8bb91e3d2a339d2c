"""Model client abstractions."""

from workstream_engine.models.embedding_clients import (
    JinaEmbeddingClient,
    OpenAIEmbeddingClient,
    TextEmbeddingClient,
    build_embedding_client,
)
from workstream_engine.models.llm_client import LLMJsonClient, OpenAIJsonClient, build_llm_client

__all__ = [
    "JinaEmbeddingClient",
    "LLMJsonClient",
    "OpenAIEmbeddingClient",
    "OpenAIJsonClient",
    "TextEmbeddingClient",
    "build_embedding_client",
    "build_llm_client",
]
