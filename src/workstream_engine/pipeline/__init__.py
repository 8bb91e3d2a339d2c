"""Pipeline stage implementations."""

from workstream_engine.pipeline.breakdown import build_assignment_breakdown, build_workstream_breakdown
from workstream_engine.pipeline.clustering import ClusteringError, cluster_embeddings, find_optimal_epsilon
from workstream_engine.pipeline.decision import decide_strategy
from workstream_engine.pipeline.embedding import (
    EmbeddingCompletionError,
    complete_missing_embeddings,
    embed_items,
    format_achievement_for_embedding,
)
from workstream_engine.pipeline.full import FullClusteringResult, run_full_clustering
from workstream_engine.pipeline.incremental import AssignmentResult, run_incremental_assignment
from workstream_engine.pipeline.manual import AssignmentError, ManualAssignment, assign_achievement
from workstream_engine.pipeline.naming import WorkstreamName, name_workstreams
from workstream_engine.pipeline.parameters import ClusteringParams, select_clustering_parameters

__all__ = [
    "AssignmentError",
    "AssignmentResult",
    "ClusteringError",
    "ClusteringParams",
    "EmbeddingCompletionError",
    "FullClusteringResult",
    "ManualAssignment",
    "WorkstreamName",
    "assign_achievement",
    "build_assignment_breakdown",
    "build_workstream_breakdown",
    "cluster_embeddings",
    "complete_missing_embeddings",
    "decide_strategy",
    "embed_items",
    "find_optimal_epsilon",
    "format_achievement_for_embedding",
    "name_workstreams",
    "run_full_clustering",
    "run_incremental_assignment",
    "select_clustering_parameters",
]
