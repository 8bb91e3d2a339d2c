"""Embedding provider clients."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any, Protocol

import httpx
from openai import OpenAI

from workstream_engine.config import Settings
from workstream_engine.models.retry import build_retryer, is_retryable_openai_error

logger = logging.getLogger(__name__)

JINA_EMBEDDINGS_URL = "https://api.jina.ai/v1/embeddings"


class TextEmbeddingClient(Protocol):
    """Protocol for text embedding clients."""

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Return one embedding vector per input text."""


def _vectors_in_input_order(items: Iterable[tuple[Any, Any]], expected: int) -> list[list[float]]:
    """Arrange ``(index, vector)`` pairs by index and check that every input got one."""

    by_position: dict[int, list[float]] = {}
    for position, vector in items:
        if not isinstance(position, int) or isinstance(position, bool):
            raise ValueError(f"Embedding item has a non-integer index: {position!r}.")
        if not isinstance(vector, list):
            raise ValueError(f"Embedding item {position} has no vector.")
        by_position[position] = [float(value) for value in vector]

    if sorted(by_position) != list(range(expected)):
        raise ValueError(
            "Embeddings response count does not match input count: "
            f"{len(by_position)} != {expected}."
        )
    return [by_position[position] for position in range(expected)]


class _RetryingEmbeddingClient:
    """Shared retry loop; subclasses implement one raw provider call."""

    def __init__(self, *, model: str, max_retries: int, backoff_seconds: float) -> None:
        self._model = model
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds

    _retryable: Callable[[BaseException], bool] = staticmethod(lambda exc: False)

    def _request(self, texts: list[str]) -> list[list[float]]:
        raise NotImplementedError

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        retryer = build_retryer(
            max_retries=self._max_retries,
            backoff_seconds=self._backoff_seconds,
            predicate=self._retryable,
        )
        return retryer(self._request, texts)


class OpenAIEmbeddingClient(_RetryingEmbeddingClient):
    """Embeddings through the OpenAI (or compatible) embeddings endpoint."""

    _retryable = staticmethod(is_retryable_openai_error)

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_retries: int = 4,
        backoff_seconds: float = 1.0,
    ) -> None:
        super().__init__(model=model, max_retries=max_retries, backoff_seconds=backoff_seconds)
        self._client = OpenAI(api_key=api_key, base_url=base_url or None, max_retries=0)

    def _request(self, texts: list[str]) -> list[list[float]]:
        response = self._client.embeddings.create(model=self._model, input=texts)
        return _vectors_in_input_order(
            ((item.index, list(item.embedding)) for item in response.data),
            len(texts),
        )


def _is_retryable_http_error(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return isinstance(exc, httpx.TransportError)


class JinaEmbeddingClient(_RetryingEmbeddingClient):
    """Embeddings through Jina's HTTP API."""

    _retryable = staticmethod(_is_retryable_http_error)

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = JINA_EMBEDDINGS_URL,
        timeout_seconds: float = 60.0,
        max_retries: int = 4,
        backoff_seconds: float = 1.0,
    ) -> None:
        super().__init__(model=model, max_retries=max_retries, backoff_seconds=backoff_seconds)
        self._base_url = base_url
        self._http = httpx.Client(timeout=timeout_seconds, headers={"Authorization": f"Bearer {api_key}"})

    def close(self) -> None:
        self._http.close()

    def _request(self, texts: list[str]) -> list[list[float]]:
        response = self._http.post(self._base_url, json={"model": self._model, "input": texts})
        response.raise_for_status()
        payload = response.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise ValueError("Jina embeddings response has no 'data' list.")
        return _vectors_in_input_order(
            ((item.get("index"), item.get("embedding")) for item in data if isinstance(item, dict)),
            len(texts),
        )


def build_embedding_client(settings: Settings) -> TextEmbeddingClient:
    """Construct the embedding client selected by ``settings.embedding_provider``."""

    provider = settings.embedding_provider.strip().lower()
    api_key = settings.resolved_embedding_api_key()
    logger.debug("Using %s embeddings with model %s", provider, settings.embedding_model)
    if provider == "jina":
        return JinaEmbeddingClient(
            api_key=api_key,
            model=settings.embedding_model,
            max_retries=settings.client_max_retries,
            backoff_seconds=settings.client_backoff_seconds,
        )
    if provider == "openai":
        return OpenAIEmbeddingClient(
            api_key=api_key,
            model=settings.embedding_model,
            base_url=settings.resolved_openai_base_url() or None,
            max_retries=settings.client_max_retries,
            backoff_seconds=settings.client_backoff_seconds,
        )
    raise ValueError(f"Unsupported embedding_provider '{settings.embedding_provider}'.")
