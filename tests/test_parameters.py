"""Tests for clustering parameter bands."""

from workstream_engine.config import ParameterBand
from workstream_engine.pipeline.parameters import ClusteringParams, select_clustering_parameters


def test_below_minimum_returns_none():
    assert select_clustering_parameters(19) is None
    assert select_clustering_parameters(0) is None


def test_default_bands():
    assert select_clustering_parameters(20) == ClusteringParams(3, 3, 0.7)
    assert select_clustering_parameters(99) == ClusteringParams(3, 3, 0.7)
    assert select_clustering_parameters(100) == ClusteringParams(3, 3, 0.75)
    assert select_clustering_parameters(299) == ClusteringParams(3, 3, 0.75)
    assert select_clustering_parameters(300) == ClusteringParams(5, 5, 0.65)
    assert select_clustering_parameters(10_000) == ClusteringParams(5, 5, 0.65)


def test_assignment_distance_is_one_minus_threshold():
    params = select_clustering_parameters(50)
    assert abs(params.max_assignment_distance - 0.3) < 1e-9


def test_custom_bands_are_sorted_by_bound():
    bands = [
        ParameterBand(upper_bound=None, min_pts=4, min_cluster_size=6, outlier_threshold=0.6),
        ParameterBand(upper_bound=50, min_pts=2, min_cluster_size=2, outlier_threshold=0.8),
    ]
    assert select_clustering_parameters(10, bands=bands, minimum_achievements=5) == ClusteringParams(2, 2, 0.8)
    assert select_clustering_parameters(60, bands=bands, minimum_achievements=5) == ClusteringParams(4, 6, 0.6)
