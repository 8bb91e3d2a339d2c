"""Request filter parsing, validation, and comparison."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from workstream_engine.schemas import Achievement, TimeRange, WorkstreamFilters


class FilterValidationError(ValueError):
    """Raised when request filters are malformed or out of bounds."""


class _TimeRangeInput(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    start_date: datetime | date | None = Field(default=None, alias="startDate")
    end_date: datetime | date | None = Field(default=None, alias="endDate")

    @field_validator("start_date", "end_date")
    @classmethod
    def _calendar_day(cls, value: datetime | date | None) -> date | None:
        """Full timestamps are accepted; only their UTC calendar day is kept."""

        if isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(UTC)
            return value.date()
        return value


class _FiltersInput(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    time_range: _TimeRangeInput | None = Field(default=None, alias="timeRange")
    project_ids: list[str] | None = Field(default=None, alias="projectIds")


class GenerateRequest(BaseModel):
    """Body of a workstream generation request."""

    model_config = ConfigDict(extra="ignore")

    filters: _FiltersInput | None = None


def months_between(start: date, end: date) -> int:
    """Return the calendar month difference between two dates, ignoring days."""

    return (end.year - start.year) * 12 + (end.month - start.month)


def validate_time_range(
    start_date: date | None,
    end_date: date | None,
    *,
    max_range_months: int = 24,
) -> TimeRange | None:
    """Validate a raw time range and return it, or None when both bounds are absent."""

    if start_date is None and end_date is None:
        return None
    if start_date is None or end_date is None:
        raise FilterValidationError(
            "Both startDate and endDate must be provided together for timeRange."
        )
    if start_date > end_date:
        raise FilterValidationError(
            f"startDate must be less than or equal to endDate: {start_date} > {end_date}."
        )
    span = months_between(start_date, end_date)
    if span > max_range_months:
        raise FilterValidationError(
            f"Time range cannot exceed {max_range_months} months, got {span} months."
        )
    return TimeRange(start_date=start_date, end_date=end_date)


def parse_generate_request(
    payload: Any,
    *,
    max_range_months: int = 24,
) -> WorkstreamFilters | None:
    """Parse and validate a generation request body into filters.

    An empty body, an empty ``filters`` object, or an empty project list all mean
    "no restriction" and yield None.
    """

    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise FilterValidationError(
            f"Request body must be a JSON object, got {type(payload).__name__}."
        )
    try:
        request = GenerateRequest.model_validate(payload)
    except ValidationError as exc:
        raise FilterValidationError(f"Invalid filters: {exc.errors(include_url=False)}") from exc

    raw = request.filters
    if raw is None:
        return None

    time_range = None
    if raw.time_range is not None:
        time_range = validate_time_range(
            raw.time_range.start_date,
            raw.time_range.end_date,
            max_range_months=max_range_months,
        )

    project_ids: tuple[str, ...] | None = None
    if raw.project_ids:
        if any(not project_id.strip() for project_id in raw.project_ids):
            raise FilterValidationError("projectIds cannot contain empty identifiers.")
        project_ids = tuple(dict.fromkeys(project_id.strip() for project_id in raw.project_ids))

    filters = WorkstreamFilters(time_range=time_range, project_ids=project_ids)
    return None if filters.is_empty() else filters


def _normalized(filters: WorkstreamFilters | None) -> tuple[tuple[date, date] | None, frozenset[str] | None]:
    if filters is None:
        return None, None
    time_key = None
    if filters.time_range is not None:
        time_key = (filters.time_range.start_date, filters.time_range.end_date)
    project_key = frozenset(filters.project_ids) if filters.project_ids else None
    return time_key, project_key


def filters_equivalent(left: WorkstreamFilters | None, right: WorkstreamFilters | None) -> bool:
    """Compare filters dimension by dimension; project ids compare as sets."""

    return _normalized(left) == _normalized(right)


def achievement_matches(achievement: Achievement, filters: WorkstreamFilters | None) -> bool:
    """Return whether an achievement falls inside the filter window."""

    if filters is None:
        return True
    if filters.time_range is not None:
        if achievement.event_start is None:
            return False
        event_day = achievement.event_start.date()
        if event_day < filters.time_range.start_date or event_day > filters.time_range.end_date:
            return False
    if filters.project_ids:
        if achievement.project_id is None or achievement.project_id not in filters.project_ids:
            return False
    return True
