"""Embedding completion for achievements that lack a current vector."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from workstream_engine.models import TextEmbeddingClient
from workstream_engine.schemas import Achievement
from workstream_engine.store import WorkstreamStore

logger = logging.getLogger(__name__)

_MAX_DETAILS_LENGTH = 500


class EmbeddingCompletionError(ValueError):
    """Raised when embedding completion is misconfigured."""


@dataclass(frozen=True, slots=True)
class EmbeddingOutcome:
    """Outcome for one achievement: a vector on success, an error message otherwise."""

    achievement_id: str
    vector: list[float] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.vector is not None


def format_achievement_for_embedding(
    achievement: Achievement,
    project_name: str | None = None,
) -> str:
    """Combine project context, title, summary and short details into one text."""

    parts: list[str] = []
    if project_name:
        parts.append(f"Project: {project_name}")
    if achievement.title:
        parts.append(achievement.title)
    if achievement.summary:
        parts.append(achievement.summary)
    if achievement.details and len(achievement.details) < _MAX_DETAILS_LENGTH:
        parts.append(achievement.details)
    return ". ".join(parts).strip()


def _check_vector(vector: list[float], dimensions: int | None) -> str | None:
    if not vector:
        return "empty embedding vector"
    if dimensions is not None and len(vector) != dimensions:
        return f"invalid embedding dimension: expected {dimensions}, got {len(vector)}"
    return None


def _embed_one_batch(
    batch: list[tuple[str, str]],
    client: TextEmbeddingClient,
    dimensions: int | None,
) -> list[EmbeddingOutcome]:
    """Embed one batch; if the batch call fails, fall back to one call per item."""

    texts = [text for _, text in batch]
    try:
        vectors = client.embed_texts(texts)
        if len(vectors) != len(texts):
            raise ValueError(f"Embedding count mismatch: {len(vectors)} != {len(texts)}.")
    except Exception as exc:
        if len(batch) == 1:
            return [EmbeddingOutcome(achievement_id=batch[0][0], error=str(exc))]
        logger.warning("Embedding batch of %d failed, retrying per item: %s", len(batch), exc)
        outcomes: list[EmbeddingOutcome] = []
        for item in batch:
            outcomes.extend(_embed_one_batch([item], client, dimensions))
        return outcomes

    outcomes = []
    for (achievement_id, _), vector in zip(batch, vectors, strict=True):
        problem = _check_vector(vector, dimensions)
        if problem is not None:
            outcomes.append(EmbeddingOutcome(achievement_id=achievement_id, error=problem))
        else:
            outcomes.append(EmbeddingOutcome(achievement_id=achievement_id, vector=list(vector)))
    return outcomes


def embed_items(
    items: list[tuple[str, str]],
    client: TextEmbeddingClient,
    *,
    batch_size: int = 16,
    max_concurrency: int = 4,
    dimensions: int | None = None,
    progress_callback: Callable[[int, int], None] | None = None,
) -> dict[str, EmbeddingOutcome]:
    """Embed ``(achievement_id, text)`` pairs and return one outcome per id.

    Never raises for provider failures; each failure becomes an outcome with
    ``error`` set.
    """

    if batch_size <= 0:
        raise EmbeddingCompletionError(f"batch_size must be positive, got {batch_size}.")
    if max_concurrency <= 0:
        raise EmbeddingCompletionError(f"max_concurrency must be positive, got {max_concurrency}.")

    outcomes: dict[str, EmbeddingOutcome] = {}
    pending: list[tuple[str, str]] = []
    for achievement_id, text in items:
        if not text:
            outcomes[achievement_id] = EmbeddingOutcome(
                achievement_id=achievement_id,
                error="achievement has no text content",
            )
        else:
            pending.append((achievement_id, text))

    batches = [pending[i : i + batch_size] for i in range(0, len(pending), batch_size)]
    total = len(items)
    done = len(outcomes)

    with ThreadPoolExecutor(max_workers=max_concurrency) as pool:
        futures = [pool.submit(_embed_one_batch, batch, client, dimensions) for batch in batches]
        for future in as_completed(futures):
            for outcome in future.result():
                outcomes[outcome.achievement_id] = outcome
                done += 1
            if progress_callback is not None:
                progress_callback(done, total)

    return outcomes


def complete_missing_embeddings(
    store: WorkstreamStore,
    client: TextEmbeddingClient,
    user_id: str,
    *,
    embedding_model: str,
    batch_size: int = 16,
    max_concurrency: int = 4,
    dimensions: int | None = None,
) -> int:
    """Embed and persist vectors for the user's achievements lacking a current one.

    Achievements embedded by a different model are re-embedded. Returns the
    number of achievements successfully embedded; failures are logged and
    skipped.
    """

    candidates = store.achievements_needing_embedding(user_id, embedding_model=embedding_model)
    if not candidates:
        return 0

    logger.info(
        "Embedding %d achievements for user %s with model %s",
        len(candidates),
        user_id,
        embedding_model,
    )
    items = [
        (achievement.id, format_achievement_for_embedding(achievement, project_name))
        for achievement, project_name in candidates
    ]
    outcomes = embed_items(
        items,
        client,
        batch_size=batch_size,
        max_concurrency=max_concurrency,
        dimensions=dimensions,
    )

    completed = 0
    for achievement_id, _ in items:
        outcome = outcomes[achievement_id]
        if not outcome.ok:
            logger.warning(
                "Failed to generate embedding for achievement %s: %s",
                achievement_id,
                outcome.error,
            )
            continue
        store.save_embedding(achievement_id, outcome.vector, embedding_model=embedding_model)
        completed += 1

    if completed < len(items):
        logger.warning(
            "Embedded %d/%d achievements for user %s",
            completed,
            len(items),
            user_id,
        )
    return completed
