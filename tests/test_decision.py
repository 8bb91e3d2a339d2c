"""Tests for the full-versus-incremental decision."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from workstream_engine.pipeline.decision import decide_strategy
from workstream_engine.schemas import ClusteringRunMetadata, TimeRange, WorkstreamFilters

NOW = datetime(2024, 6, 30, 12, 0, tzinfo=UTC)


def _metadata(
    *,
    filtered: int = 100,
    days_ago: float = 10,
    project_ids: list[str] | None = None,
    time_range: tuple[date, date] | None = None,
) -> ClusteringRunMetadata:
    return ClusteringRunMetadata(
        user_id="user-1",
        last_full_clustering_at=NOW - timedelta(days=days_ago),
        achievement_count_at_last_clustering=filtered,
        filtered_achievement_count=filtered,
        project_ids=project_ids,
        time_range_start=time_range[0] if time_range else None,
        time_range_end=time_range[1] if time_range else None,
    )


def test_no_metadata_means_initial_full_clustering():
    decision = decide_strategy(40, None, None, now=NOW)
    assert decision.strategy == "full"
    assert decision.reason == "Initial clustering"


def test_ten_percent_growth_triggers_full():
    decision = decide_strategy(110, _metadata(filtered=100), None, now=NOW)
    assert decision.strategy == "full"
    assert decision.reason == "10.0% growth in achievements"


def test_small_recent_growth_stays_incremental():
    decision = decide_strategy(105, _metadata(filtered=100, days_ago=10), None, now=NOW)
    assert decision.strategy == "incremental"
    assert decision.reason == "Growth is below thresholds and recent"


def test_absolute_growth_triggers_full_below_percentage():
    decision = decide_strategy(1050, _metadata(filtered=1000), None, now=NOW)
    assert decision.strategy == "full"
    assert decision.reason == "50 new achievements since last clustering"


def test_stale_clustering_triggers_full():
    decision = decide_strategy(100, _metadata(filtered=100, days_ago=31), None, now=NOW)
    assert decision.strategy == "full"
    assert decision.reason == "31.0 days since last clustering"


def test_exactly_thirty_days_is_not_stale():
    decision = decide_strategy(100, _metadata(filtered=100, days_ago=30), None, now=NOW)
    assert decision.strategy == "incremental"


def test_reordered_project_ids_are_the_same_filter():
    filters = WorkstreamFilters(project_ids=("p2", "p1"))
    decision = decide_strategy(101, _metadata(filtered=100, project_ids=["p1", "p2"]), filters, now=NOW)
    assert decision.strategy == "incremental"


def test_removed_filters_trigger_full():
    metadata = _metadata(filtered=100, project_ids=["p1"])
    decision = decide_strategy(100, metadata, None, now=NOW)
    assert decision.strategy == "full"
    assert decision.reason == "Filter parameters changed from previous clustering"


def test_changed_time_range_triggers_full_before_growth_rules():
    metadata = _metadata(filtered=100, time_range=(date(2024, 1, 1), date(2024, 6, 30)))
    filters = WorkstreamFilters(time_range=TimeRange(start_date=date(2024, 2, 1), end_date=date(2024, 6, 30)))
    decision = decide_strategy(200, metadata, filters, now=NOW)
    assert decision.reason == "Filter parameters changed from previous clustering"


def test_previous_zero_count_never_divides_by_zero():
    decision = decide_strategy(10, _metadata(filtered=0), None, now=NOW)
    assert decision.strategy == "incremental"


def test_decision_is_pure():
    metadata = _metadata(filtered=100, days_ago=5)
    first = decide_strategy(104, metadata, None, now=NOW)
    second = decide_strategy(104, metadata, None, now=NOW)
    assert first == second


def test_negative_count_is_rejected():
    with pytest.raises(ValueError, match="current_filtered_count"):
        decide_strategy(-1, None, None, now=NOW)
