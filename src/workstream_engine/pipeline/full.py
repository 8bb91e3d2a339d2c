"""Full re-clustering of a user's filtered achievements into fresh workstreams."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import numpy as np

from workstream_engine.filters import achievement_matches
from workstream_engine.pipeline.clustering import (
    ClusteringError,
    as_matrix,
    calculate_centroid,
    cluster_embeddings,
    nearest_centroids,
)
from workstream_engine.pipeline.naming import WorkstreamName, name_workstreams
from workstream_engine.pipeline.parameters import ClusteringParams
from workstream_engine.schemas import (
    Achievement,
    ClusteringRunMetadata,
    Workstream,
    WorkstreamFilters,
)
from workstream_engine.store import WorkstreamStore
from workstream_engine.streaming import EventSink, progress

logger = logging.getLogger(__name__)

WORKSTREAM_PALETTE = (
    "#3B82F6",
    "#10B981",
    "#F59E0B",
    "#EF4444",
    "#8B5CF6",
    "#06B6D4",
    "#F97316",
    "#84CC16",
    "#EC4899",
)

DEFAULT_MAX_ITEMS = 5000

WorkstreamNamer = Callable[[list[list[Achievement]]], list[WorkstreamName]]


@dataclass(frozen=True, slots=True)
class FullClusteringResult:
    """Outcome of one full clustering run.

    ``members`` maps each new workstream id to the filtered achievements linked
    into it. Together with ``outliers`` and ``pinned`` (achievements the user
    placed by hand, left where they are) it partitions the clustered input.
    """

    workstreams: list[Workstream]
    members: dict[str, list[str]]
    outliers: list[str]
    outside_filter_assignments: dict[str, str]
    metadata: ClusteringRunMetadata
    epsilon: float
    linked: list[str] = field(default_factory=list)
    pinned: list[str] = field(default_factory=list)

    @property
    def achievements_assigned(self) -> int:
        return sum(len(ids) for ids in self.members.values())

    @property
    def auto_assigned_outside_filters(self) -> int:
        return len(self.outside_filter_assignments)


def _fallback_namer(clusters: list[list[Achievement]]) -> list[WorkstreamName]:
    return name_workstreams(clusters, None)


def _reconcile_outside_filters(
    store: WorkstreamStore,
    user_id: str,
    filters: WorkstreamFilters | None,
    workstreams: list[Workstream],
    centroids: np.ndarray,
    params: ClusteringParams,
) -> dict[str, str]:
    """Attach unlinked embedded achievements outside the filter to the nearest new workstream."""

    if filters is None or not workstreams:
        return {}

    candidates = [
        achievement
        for achievement in store.list_achievements(user_id, embedded=True, unassigned=True)
        if not achievement_matches(achievement, filters)
        and len(achievement.embedding or []) == centroids.shape[1]
    ]
    if not candidates:
        return {}

    nearest, distances = nearest_centroids(
        as_matrix([achievement.embedding for achievement in candidates]),
        centroids,
    )
    proposed = {
        achievement.id: workstreams[int(index)].id
        for achievement, index, distance in zip(candidates, nearest, distances, strict=True)
        if float(distance) < params.max_assignment_distance
    }
    linked = set(store.link_achievements(user_id, proposed, only_unassigned=True))
    return {achievement_id: ws_id for achievement_id, ws_id in proposed.items() if achievement_id in linked}


def run_full_clustering(
    store: WorkstreamStore,
    user_id: str,
    filters: WorkstreamFilters | None,
    params: ClusteringParams,
    sink: EventSink,
    *,
    namer: WorkstreamNamer | None = None,
    minimum_epsilon: float = 0.7,
    max_items: int = DEFAULT_MAX_ITEMS,
    now: datetime | None = None,
) -> FullClusteringResult:
    """Rebuild the user's workstreams from their filtered, embedded achievements.

    Grouping and naming touch nothing in the store. The new workstreams then
    replace the old ones in a single transaction, so a failure or cancellation
    before that point leaves the previous workstreams and links in place.
    Achievements the user placed by hand keep their link and are reported as
    ``pinned`` rather than as members or outliers.
    """

    achievements = [
        achievement
        for achievement in store.list_achievements(user_id, embedded=True)
        if achievement_matches(achievement, filters)
    ]
    if not achievements:
        raise ClusteringError("No embedded achievements match the requested filters.")
    if len(achievements) > max_items:
        raise ClusteringError(
            f"Too many achievements to cluster in one run: {len(achievements)} > {max_items}."
        )

    sink.emit(progress("computing_groups", f"Grouping {len(achievements)} achievements"))
    embeddings = as_matrix([achievement.embedding for achievement in achievements])
    grouping = cluster_embeddings(embeddings, params, minimum_epsilon=minimum_epsilon)
    logger.info(
        "Clustered %d achievements for user %s into %d groups (eps=%.3f, outliers=%d)",
        len(achievements),
        user_id,
        len(grouping.groups),
        grouping.epsilon,
        grouping.outlier_count,
    )

    pinned = [achievement.id for achievement in achievements if achievement.workstream_source == "user"]
    pinned_ids = set(pinned)
    groups = [
        rows
        for rows in grouping.groups
        if any(achievements[int(row)].id not in pinned_ids for row in rows)
    ]
    clusters = [
        [achievements[int(row)] for row in rows if achievements[int(row)].id not in pinned_ids]
        for rows in groups
    ]
    outliers = [
        achievements[int(row)].id
        for row in np.flatnonzero(grouping.labels < 0)
        if achievements[int(row)].id not in pinned_ids
    ]

    sink.emit(progress("naming_workstreams", f"Naming {len(clusters)} workstreams"))
    names = (namer or _fallback_namer)(clusters)
    if len(names) != len(clusters):
        raise ClusteringError(f"Expected {len(clusters)} workstream names, got {len(names)}.")

    workstreams: list[Workstream] = []
    assignments: dict[str, str] = {}
    for index, (cluster, chosen) in enumerate(zip(clusters, names, strict=True)):
        workstream = Workstream(
            id=uuid.uuid4().hex,
            user_id=user_id,
            name=chosen.name,
            description=chosen.description,
            color=WORKSTREAM_PALETTE[index % len(WORKSTREAM_PALETTE)],
        )
        workstreams.append(workstream)
        for achievement in cluster:
            assignments[achievement.id] = workstream.id

    time_range = filters.time_range if filters is not None else None
    metadata = ClusteringRunMetadata(
        user_id=user_id,
        last_full_clustering_at=now or datetime.now(UTC),
        achievement_count_at_last_clustering=store.count_achievements(user_id),
        filtered_achievement_count=len(achievements),
        time_range_start=time_range.start_date if time_range is not None else None,
        time_range_end=time_range.end_date if time_range is not None else None,
        project_ids=sorted(filters.project_ids) if filters is not None and filters.project_ids else None,
        epsilon=grouping.epsilon,
        min_pts=params.min_pts,
        workstream_count=len(workstreams),
        outlier_count=len(outliers),
    )

    sink.emit(progress("saving_workstreams", f"Saving {len(workstreams)} workstreams"))
    linked = store.replace_workstreams(user_id, workstreams, assignments, metadata)
    linked_ids = set(linked)
    members = {workstream.id: [] for workstream in workstreams}
    for achievement_id, workstream_id in assignments.items():
        if achievement_id in linked_ids:
            members[workstream_id].append(achievement_id)
    sink.emit(
        progress(
            "achievements_assigned",
            f"Assigned {len(linked)} achievements to {len(workstreams)} workstreams",
        )
    )

    centroids = (
        np.vstack([calculate_centroid(embeddings[rows]) for rows in groups])
        if groups
        else np.empty((0, embeddings.shape[1]))
    )
    sink.emit(progress("reconciling_outside_filters", "Placing achievements outside the filters"))
    outside = _reconcile_outside_filters(store, user_id, filters, workstreams, centroids, params)
    if outside:
        store.refresh_workstream_counts(sorted(set(outside.values())))

    return FullClusteringResult(
        workstreams=store.get_workstreams([workstream.id for workstream in workstreams]),
        members=members,
        outliers=outliers,
        outside_filter_assignments=outside,
        metadata=metadata,
        epsilon=grouping.epsilon,
        linked=linked,
        pinned=pinned,
    )
