"""Achievement-count bands mapped to clustering parameters."""

from __future__ import annotations

from dataclasses import dataclass

from workstream_engine.config import ParameterBand, default_parameter_bands

MINIMUM_ACHIEVEMENTS = 20


@dataclass(frozen=True, slots=True)
class ClusteringParams:
    """Parameters controlling grouping and assignment.

    ``outlier_threshold`` is a cosine similarity cutoff: an achievement joins a
    workstream only when its cosine distance to the centroid is below
    ``1 - outlier_threshold``.
    """

    min_pts: int
    min_cluster_size: int
    outlier_threshold: float

    @property
    def max_assignment_distance(self) -> float:
        return 1.0 - self.outlier_threshold


DEFAULT_BANDS: tuple[ParameterBand, ...] = tuple(default_parameter_bands())


def select_clustering_parameters(
    achievement_count: int,
    *,
    bands: list[ParameterBand] | tuple[ParameterBand, ...] | None = None,
    minimum_achievements: int = MINIMUM_ACHIEVEMENTS,
) -> ClusteringParams | None:
    """Return parameters for ``achievement_count``, or None below the minimum."""

    if achievement_count < minimum_achievements:
        return None

    ordered = sorted(
        bands or DEFAULT_BANDS,
        key=lambda band: float("inf") if band.upper_bound is None else band.upper_bound,
    )
    for band in ordered:
        if band.upper_bound is None or achievement_count < band.upper_bound:
            return ClusteringParams(
                min_pts=band.min_pts,
                min_cluster_size=band.min_cluster_size,
                outlier_threshold=band.outlier_threshold,
            )
    last = ordered[-1]
    return ClusteringParams(
        min_pts=last.min_pts,
        min_cluster_size=last.min_cluster_size,
        outlier_threshold=last.outlier_threshold,
    )
