"""Retry policy shared by the provider clients."""

from __future__ import annotations

from collections.abc import Callable

from openai import APIError, APITimeoutError, BadRequestError, RateLimitError
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential, wait_random


def is_retryable_openai_error(exc: BaseException) -> bool:
    """Rate limits, timeouts and server-side API errors retry; bad requests do not."""

    if isinstance(exc, (RateLimitError, APITimeoutError)):
        return True
    if isinstance(exc, BadRequestError):
        return False
    return isinstance(exc, APIError)


def build_retryer(
    *,
    max_retries: int,
    backoff_seconds: float,
    predicate: Callable[[BaseException], bool],
) -> Retrying:
    """Exponential backoff with jitter, capped at eight times the base delay."""

    wait_strategy = wait_exponential(
        multiplier=backoff_seconds,
        min=backoff_seconds,
        max=max(backoff_seconds, backoff_seconds * 8),
    ) + wait_random(0.0, 0.25)
    return Retrying(
        retry=retry_if_exception(predicate),
        wait=wait_strategy,
        stop=stop_after_attempt(max(1, max_retries)),
        reraise=True,
    )
