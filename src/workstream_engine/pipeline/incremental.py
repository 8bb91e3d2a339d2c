"""Incremental assignment of new achievements to existing workstreams."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from workstream_engine.filters import achievement_matches
from workstream_engine.pipeline.clustering import as_matrix, calculate_centroid, nearest_centroids
from workstream_engine.pipeline.parameters import ClusteringParams
from workstream_engine.schemas import WorkstreamFilters
from workstream_engine.store import WorkstreamStore
from workstream_engine.streaming import EventSink, progress

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AssignmentResult:
    """Links written by one incremental pass and the achievements left alone."""

    assignments: dict[str, str] = field(default_factory=dict)
    unassigned_ids: list[str] = field(default_factory=list)

    @property
    def assigned(self) -> int:
        return len(self.assignments)

    @property
    def unassigned(self) -> int:
        return len(self.unassigned_ids)


def workstream_centroids(
    store: WorkstreamStore,
    user_id: str,
) -> tuple[list[str], np.ndarray | None]:
    """Centroids of the user's live workstreams from their members' current embeddings.

    Workstreams without embedded members are skipped.
    """

    by_workstream: dict[str, list[list[float]]] = {}
    live_ids = {workstream.id for workstream in store.list_workstreams(user_id)}
    for achievement in store.list_achievements(user_id, embedded=True, unassigned=False):
        if achievement.workstream_id in live_ids and achievement.embedding:
            by_workstream.setdefault(achievement.workstream_id, []).append(achievement.embedding)

    workstream_ids = sorted(by_workstream)
    if not workstream_ids:
        return [], None
    centroids = np.vstack(
        [calculate_centroid(as_matrix(by_workstream[workstream_id])) for workstream_id in workstream_ids]
    )
    return workstream_ids, centroids


def run_incremental_assignment(
    store: WorkstreamStore,
    user_id: str,
    params: ClusteringParams,
    filters: WorkstreamFilters | None,
    sink: EventSink,
) -> AssignmentResult:
    """Attach filtered, unassigned, embedded achievements to their nearest workstream.

    An achievement is linked only when its cosine distance to the centroid is
    below ``1 - outlier_threshold``. Existing links are never moved and no
    workstream is created.
    """

    candidates = [
        achievement
        for achievement in store.list_achievements(user_id, embedded=True, unassigned=True)
        if achievement_matches(achievement, filters)
    ]
    sink.emit(progress("assigning_achievements", f"Assigning {len(candidates)} new achievements"))
    if not candidates:
        return AssignmentResult()

    workstream_ids, centroids = workstream_centroids(store, user_id)
    if centroids is None:
        logger.info("User %s has no workstreams with embedded members; nothing to assign", user_id)
        return AssignmentResult(unassigned_ids=[achievement.id for achievement in candidates])

    comparable = [a for a in candidates if len(a.embedding or []) == centroids.shape[1]]
    proposed: dict[str, str] = {}
    if comparable:
        nearest, distances = nearest_centroids(
            as_matrix([achievement.embedding for achievement in comparable]),
            centroids,
        )
        for achievement, index, distance in zip(comparable, nearest, distances, strict=True):
            if float(distance) < params.max_assignment_distance:
                proposed[achievement.id] = workstream_ids[int(index)]

    linked = set(store.link_achievements(user_id, proposed, only_unassigned=True))
    assignments = {
        achievement_id: workstream_id
        for achievement_id, workstream_id in proposed.items()
        if achievement_id in linked
    }
    store.refresh_workstream_counts(sorted(set(assignments.values())))

    unassigned_ids = [achievement.id for achievement in candidates if achievement.id not in assignments]
    logger.info(
        "Incremental pass for user %s: %d assigned, %d left unassigned",
        user_id,
        len(assignments),
        len(unassigned_ids),
    )
    return AssignmentResult(assignments=assignments, unassigned_ids=unassigned_ids)
