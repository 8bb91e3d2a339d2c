"""Chat-completion client returning JSON objects, used to name workstreams."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

from openai import OpenAI

from workstream_engine.config import Settings
from workstream_engine.models.retry import build_retryer, is_retryable_openai_error

logger = logging.getLogger(__name__)


class LLMJsonClient(Protocol):
    """Anything that turns a system/user prompt pair into a JSON object."""

    def complete_json(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        schema_name: str | None = None,
        json_schema: dict | None = None,
    ) -> dict:
        """Generate a JSON object for the given prompts."""


@dataclass(frozen=True, slots=True)
class UsageTotals:
    requests: int
    total_tokens: int
    model: str


def _response_format(schema_name: str | None, json_schema: dict | None) -> dict[str, Any]:
    if json_schema is None:
        return {"type": "json_object"}
    return {
        "type": "json_schema",
        "json_schema": {
            "name": schema_name or "structured_output",
            "schema": json_schema,
            "strict": False,
        },
    }


def _parse_object(content: str | None) -> dict:
    if content is None:
        raise ValueError("Model returned empty content for JSON response.")
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Model response was not valid JSON: {content[:200]}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Expected JSON object, got {type(payload).__name__}.")
    return payload


class OpenAIJsonClient:
    """OpenAI (or compatible) chat completions constrained to JSON output."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str | None = None,
        temperature: float = 0.7,
        max_retries: int = 4,
        backoff_seconds: float = 1.0,
    ) -> None:
        self._client = OpenAI(api_key=api_key, base_url=base_url or None, max_retries=0)
        self._model = model
        self._temperature = temperature
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._usage_lock = threading.Lock()
        self._requests = 0
        self._total_tokens = 0

    def complete_json(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        schema_name: str | None = None,
        json_schema: dict | None = None,
    ) -> dict:
        """Request one completion and return its content parsed as a JSON object.

        Transient API failures are retried with backoff; malformed content
        raises ``ValueError`` so callers can fall back.
        """

        retryer = build_retryer(
            max_retries=self._max_retries,
            backoff_seconds=self._backoff_seconds,
            predicate=is_retryable_openai_error,
        )
        response = retryer(
            self._client.chat.completions.create,
            model=self._model,
            temperature=self._temperature,
            response_format=_response_format(schema_name, json_schema),
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )

        usage = getattr(response, "usage", None)
        with self._usage_lock:
            self._requests += 1
            self._total_tokens += int(getattr(usage, "total_tokens", 0) or 0)
        logger.debug("Completion from %s used %s tokens", self._model, getattr(usage, "total_tokens", "?"))

        return _parse_object(response.choices[0].message.content)

    def usage(self) -> UsageTotals:
        with self._usage_lock:
            return UsageTotals(requests=self._requests, total_tokens=self._total_tokens, model=self._model)


def build_llm_client(settings: Settings) -> OpenAIJsonClient | None:
    """Construct the naming client, or None when naming is disabled or no key is set."""

    api_key = settings.openai_api_key.strip()
    if not settings.workstream_naming_enabled or not api_key:
        return None
    return OpenAIJsonClient(
        api_key=api_key,
        model=settings.openai_model,
        base_url=settings.resolved_openai_base_url() or None,
        temperature=settings.openai_temperature,
        max_retries=settings.client_max_retries,
        backoff_seconds=settings.client_backoff_seconds,
    )
