"""Density-based grouping of achievement embeddings."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from sklearn.cluster import DBSCAN
from sklearn.metrics.pairwise import cosine_distances

from workstream_engine.pipeline.parameters import ClusteringParams

DEFAULT_EPSILON = 0.5


class ClusteringError(ValueError):
    """Raised when clustering inputs are invalid."""


@dataclass(frozen=True, slots=True)
class GroupingResult:
    """Structured grouping result.

    ``labels`` holds one contiguous group id per input row, or -1 for outliers.
    ``groups`` lists the member row indexes of each group in label order.
    """

    labels: np.ndarray
    groups: list[np.ndarray]
    epsilon: float
    calculated_epsilon: float
    outlier_count: int


def _validate_embeddings(embeddings: np.ndarray) -> None:
    """Validate embedding matrix shape."""

    if embeddings.ndim != 2:
        raise ClusteringError(f"Embeddings must be 2D, got ndim={embeddings.ndim}.")
    if embeddings.shape[0] == 0:
        raise ClusteringError("Embeddings cannot be empty.")


def as_matrix(vectors: list[list[float]]) -> np.ndarray:
    """Stack equal-length vectors into a float matrix."""

    if not vectors:
        raise ClusteringError("Embeddings cannot be empty.")
    dims = {len(vector) for vector in vectors}
    if len(dims) != 1:
        raise ClusteringError(f"Inconsistent embedding dimensions: {sorted(dims)}.")
    return np.asarray(vectors, dtype=float)


def cosine_distance_matrix(left: np.ndarray, right: np.ndarray | None = None) -> np.ndarray:
    """Pairwise cosine distances in [0, 2]."""

    distances = cosine_distances(left, left if right is None else right)
    return np.clip(distances, 0.0, 2.0)


def calculate_centroid(embeddings: np.ndarray) -> np.ndarray:
    """Mean vector of a non-empty set of embeddings."""

    _validate_embeddings(embeddings)
    return np.mean(embeddings, axis=0)


def find_optimal_epsilon(distances: np.ndarray, k: int) -> float:
    """Estimate a DBSCAN radius from the knee of the sorted k-distance curve.

    The knee is the value just below the largest jump between consecutive
    sorted k-th-neighbour distances.
    """

    sample_count = distances.shape[0]
    if sample_count < k or sample_count < 2:
        return DEFAULT_EPSILON

    neighbour_distances = np.sort(distances + np.diag(np.full(sample_count, np.inf)), axis=1)
    kth = min(k, sample_count - 1) - 1
    k_distances = np.sort(neighbour_distances[:, kth])
    if k_distances.size < 2:
        return max(0.0001, float(k_distances[0]))

    gaps = np.diff(k_distances)
    knee_index = int(np.argmax(gaps))
    return max(0.0001, float(k_distances[knee_index]))


def cluster_embeddings(
    embeddings: np.ndarray,
    params: ClusteringParams,
    *,
    minimum_epsilon: float = 0.7,
) -> GroupingResult:
    """Group embeddings with DBSCAN over cosine distance.

    Groups smaller than ``params.min_cluster_size`` are dissolved into outliers.
    """

    _validate_embeddings(embeddings)
    if params.min_pts <= 0:
        raise ClusteringError(f"min_pts must be positive, got {params.min_pts}.")

    distances = cosine_distance_matrix(embeddings)
    calculated_epsilon = find_optimal_epsilon(distances, params.min_pts)
    epsilon = max(calculated_epsilon, minimum_epsilon)

    model = DBSCAN(eps=epsilon, min_samples=params.min_pts, metric="precomputed")
    raw_labels = model.fit_predict(distances).astype(int)

    labels = np.full(raw_labels.shape[0], -1, dtype=int)
    groups: list[np.ndarray] = []
    for raw_label in sorted({int(label) for label in raw_labels.tolist() if label >= 0}):
        members = np.flatnonzero(raw_labels == raw_label)
        if members.size < params.min_cluster_size:
            continue
        labels[members] = len(groups)
        groups.append(members)

    return GroupingResult(
        labels=labels,
        groups=groups,
        epsilon=float(epsilon),
        calculated_epsilon=float(calculated_epsilon),
        outlier_count=int(np.count_nonzero(labels < 0)),
    )


def nearest_centroids(
    vectors: np.ndarray,
    centroids: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Return the index of and distance to the nearest centroid for each vector."""

    _validate_embeddings(vectors)
    _validate_embeddings(centroids)
    if vectors.shape[1] != centroids.shape[1]:
        raise ClusteringError(
            "Embedding and centroid dimensions differ: "
            f"{vectors.shape[1]} != {centroids.shape[1]}."
        )
    distances = cosine_distance_matrix(vectors, centroids)
    nearest = np.argmin(distances, axis=1)
    return nearest, distances[np.arange(vectors.shape[0]), nearest]
