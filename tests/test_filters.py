"""Tests for request filter parsing and matching."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from workstream_engine.filters import (
    FilterValidationError,
    achievement_matches,
    filters_equivalent,
    months_between,
    parse_generate_request,
)
from workstream_engine.schemas import Achievement, TimeRange, WorkstreamFilters


def _body(start: str | None = None, end: str | None = None, projects: list[str] | None = None) -> dict:
    filters: dict = {}
    if start is not None or end is not None:
        filters["timeRange"] = {"startDate": start, "endDate": end}
    if projects is not None:
        filters["projectIds"] = projects
    return {"filters": filters}


class TestParseGenerateRequest:
    def test_empty_body_means_no_filters(self):
        assert parse_generate_request(None) is None
        assert parse_generate_request({}) is None
        assert parse_generate_request({"filters": {}}) is None

    def test_empty_project_list_means_no_filters(self):
        assert parse_generate_request(_body(projects=[])) is None

    def test_twenty_four_months_is_accepted(self):
        filters = parse_generate_request(_body("2022-01-01", "2024-01-31"))
        assert filters is not None
        assert filters.time_range == TimeRange(start_date=date(2022, 1, 1), end_date=date(2024, 1, 31))

    def test_twenty_five_months_is_rejected(self):
        with pytest.raises(FilterValidationError, match="cannot exceed 24 months"):
            parse_generate_request(_body("2022-01-01", "2024-02-01"))

    def test_equal_dates_are_accepted(self):
        filters = parse_generate_request(_body("2024-03-15", "2024-03-15"))
        assert filters is not None
        assert filters.time_range.start_date == filters.time_range.end_date

    def test_inverted_dates_are_rejected(self):
        with pytest.raises(FilterValidationError, match="less than or equal"):
            parse_generate_request(_body("2024-03-16", "2024-03-15"))

    def test_single_date_is_rejected(self):
        with pytest.raises(FilterValidationError, match="Both startDate and endDate"):
            parse_generate_request(_body(start="2024-03-15"))

    def test_unknown_filter_key_is_rejected(self):
        with pytest.raises(FilterValidationError):
            parse_generate_request({"filters": {"tags": ["x"]}})

    def test_non_object_body_is_rejected(self):
        with pytest.raises(FilterValidationError, match="JSON object"):
            parse_generate_request(["not", "an", "object"])

    def test_project_ids_are_deduplicated_in_order(self):
        filters = parse_generate_request(_body(projects=["p2", "p1", "p2"]))
        assert filters.project_ids == ("p2", "p1")

    def test_full_datetimes_are_accepted(self):
        filters = parse_generate_request(_body("2025-05-10T10:30:00Z", "2025-11-10T23:59:59Z"))
        assert filters.time_range == TimeRange(start_date=date(2025, 5, 10), end_date=date(2025, 11, 10))

    def test_mixed_date_and_datetime_are_accepted(self):
        filters = parse_generate_request(_body("2025-05-10", "2025-11-10T23:59:59.999Z"))
        assert filters.time_range == TimeRange(start_date=date(2025, 5, 10), end_date=date(2025, 11, 10))

    def test_offset_datetimes_use_the_utc_day(self):
        filters = parse_generate_request(_body("2025-05-10T23:30:00-02:00", "2025-06-01T00:00:00+00:00"))
        assert filters.time_range.start_date == date(2025, 5, 11)

    def test_malformed_date_is_rejected(self):
        with pytest.raises(FilterValidationError, match="Invalid filters"):
            parse_generate_request(_body("not-a-date", "2025-06-01"))

    def test_custom_range_limit(self):
        with pytest.raises(FilterValidationError, match="cannot exceed 6 months"):
            parse_generate_request(_body("2024-01-01", "2024-08-01"), max_range_months=6)


def test_months_between_ignores_days():
    assert months_between(date(2022, 1, 31), date(2024, 1, 1)) == 24
    assert months_between(date(2024, 5, 1), date(2024, 5, 31)) == 0


def test_filters_equivalent_ignores_project_order():
    left = WorkstreamFilters(project_ids=("p1", "p2"))
    right = WorkstreamFilters(project_ids=("p2", "p1"))
    assert filters_equivalent(left, right)
    assert not filters_equivalent(left, None)
    assert filters_equivalent(None, None)


def test_achievement_matches_inclusive_window_and_projects():
    filters = WorkstreamFilters(
        time_range=TimeRange(start_date=date(2024, 1, 1), end_date=date(2024, 1, 31)),
        project_ids=("p1",),
    )
    inside = Achievement(
        id="a",
        user_id="u",
        title="t",
        event_start=datetime(2024, 1, 31, 23, 0, tzinfo=UTC),
        project_id="p1",
    )
    wrong_project = inside.model_copy(update={"project_id": "p2"})
    undated = inside.model_copy(update={"event_start": None})
    late = inside.model_copy(update={"event_start": datetime(2024, 2, 1, tzinfo=UTC)})

    assert achievement_matches(inside, filters)
    assert not achievement_matches(wrong_project, filters)
    assert not achievement_matches(undated, filters)
    assert not achievement_matches(late, filters)
    assert achievement_matches(late, None)
