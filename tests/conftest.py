"""Shared fixtures: a temporary store and deterministic topic embeddings."""

from __future__ import annotations

import zlib
from datetime import UTC, datetime, timedelta

import numpy as np
import pytest

from workstream_engine.schemas import Achievement, Project
from workstream_engine.store import WorkstreamStore

DIMENSIONS = 8
TOPICS = ("alpha", "beta", "gamma", "delta", "epsilon", "zeta", "eta", "theta")
BASE_DATE = datetime(2024, 6, 1, tzinfo=UTC)


def topic_vector(topic: str, seed_text: str, *, noise: float = 0.02) -> list[float]:
    """Unit basis vector for ``topic`` plus small noise seeded by ``seed_text``."""

    vector = np.zeros(DIMENSIONS)
    vector[TOPICS.index(topic)] = 1.0
    rng = np.random.default_rng(zlib.crc32(seed_text.encode("utf-8")))
    vector = vector + rng.normal(scale=noise, size=DIMENSIONS)
    return vector.tolist()


class TopicEmbeddingClient:
    """Fake embedding client: the first topic word in the text picks the direction."""

    def __init__(self, *, fail_on: set[str] | None = None) -> None:
        self.calls: list[list[str]] = []
        self._fail_on = fail_on or set()

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        for text in texts:
            if any(marker in text for marker in self._fail_on):
                raise RuntimeError("provider rejected input")
        vectors = []
        for text in texts:
            words = text.lower().replace(".", " ").split()
            topic = next((word for word in words if word in TOPICS), "theta")
            vectors.append(topic_vector(topic, text))
        return vectors


@pytest.fixture
def store(tmp_path) -> WorkstreamStore:
    db = WorkstreamStore(path=tmp_path / "workstreams.sqlite3")
    db.create_user("user-1", level="free", credits=5)
    db.upsert_project(Project(id="proj-1", user_id="user-1", name="Platform"))
    db.upsert_project(Project(id="proj-2", user_id="user-1", name="Billing"))
    yield db
    db.close()


def add_achievement(
    store: WorkstreamStore,
    achievement_id: str,
    topic: str,
    *,
    user_id: str = "user-1",
    days_ago: int = 0,
    project_id: str | None = "proj-1",
    embedded: bool = True,
    workstream_id: str | None = None,
    workstream_source: str | None = None,
) -> Achievement:
    title = f"{topic} work item {achievement_id}"
    achievement = Achievement(
        id=achievement_id,
        user_id=user_id,
        title=title,
        summary=f"Shipped {topic} improvements",
        event_start=BASE_DATE - timedelta(days=days_ago),
        project_id=project_id,
        workstream_id=workstream_id,
        workstream_source=workstream_source,
        embedding=topic_vector(topic, achievement_id) if embedded else None,
        embedding_model="test-model" if embedded else None,
    )
    store.insert_achievement(achievement)
    return achievement


def add_topic_groups(
    store: WorkstreamStore,
    *,
    per_topic: int = 8,
    topics: tuple[str, ...] = ("alpha", "beta", "gamma"),
    outlier_topics: tuple[str, ...] = ("delta", "epsilon"),
    embedded: bool = True,
) -> list[Achievement]:
    """Tight groups along separate axes plus one achievement per outlier axis."""

    created: list[Achievement] = []
    for topic in topics:
        for index in range(per_topic):
            created.append(add_achievement(store, f"{topic}-{index}", topic, days_ago=index, embedded=embedded))
    for topic in outlier_topics:
        created.append(add_achievement(store, f"{topic}-solo", topic, days_ago=3, embedded=embedded))
    return created
