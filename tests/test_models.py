"""Tests for provider clients."""

from __future__ import annotations

import httpx
import pytest

from workstream_engine.config import Settings
from workstream_engine.models import JinaEmbeddingClient, build_llm_client
from workstream_engine.models.llm_client import _parse_object, _response_format
from workstream_engine.models.retry import build_retryer


def _jina_client(handler) -> JinaEmbeddingClient:
    client = JinaEmbeddingClient(api_key="k", model="jina-embeddings-v3", max_retries=3, backoff_seconds=0.0)
    client._http = httpx.Client(transport=httpx.MockTransport(handler))
    return client


class TestJinaEmbeddingClient:
    def test_orders_vectors_by_index(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"data": [{"index": 1, "embedding": [0.0, 1.0]}, {"index": 0, "embedding": [1.0, 0.0]}]},
            )

        assert _jina_client(handler).embed_texts(["a", "b"]) == [[1.0, 0.0], [0.0, 1.0]]

    def test_retries_server_errors(self):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            if calls["count"] == 1:
                return httpx.Response(503, json={"error": "busy"})
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.5]}]})

        assert _jina_client(handler).embed_texts(["a"]) == [[0.5]]
        assert calls["count"] == 2

    def test_client_errors_are_not_retried(self):
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(400, json={"error": "bad input"})

        with pytest.raises(httpx.HTTPStatusError):
            _jina_client(handler).embed_texts(["a"])
        assert calls["count"] == 1

    def test_count_mismatch_is_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.5]}]})

        with pytest.raises(ValueError, match="count does not match"):
            _jina_client(handler).embed_texts(["a", "b"])


def test_retryer_stops_after_max_attempts():
    attempts = {"count": 0}

    def flaky():
        attempts["count"] += 1
        raise ConnectionError("down")

    retryer = build_retryer(max_retries=3, backoff_seconds=0.0, predicate=lambda exc: True)
    with pytest.raises(ConnectionError):
        retryer(flaky)
    assert attempts["count"] == 3


def test_llm_client_requires_key_and_enabled_naming():
    assert build_llm_client(Settings(openai_api_key="")) is None
    assert build_llm_client(Settings(openai_api_key="k", workstream_naming_enabled=False)) is None
    assert build_llm_client(Settings(openai_api_key="k")) is not None


def test_response_format_uses_schema_when_given():
    assert _response_format(None, None) == {"type": "json_object"}
    schema_format = _response_format("names", {"type": "object"})
    assert schema_format["json_schema"]["name"] == "names"


def test_parse_object_rejects_non_objects():
    assert _parse_object('{"a": 1}') == {"a": 1}
    with pytest.raises(ValueError, match="Expected JSON object"):
        _parse_object("[1, 2]")
    with pytest.raises(ValueError, match="not valid JSON"):
        _parse_object("nope")
