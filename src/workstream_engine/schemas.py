"""Core data schemas for the workstream engine."""

from datetime import date, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class Achievement(BaseModel):
    """A single dated accomplishment record."""

    id: str
    user_id: str
    title: str
    summary: str | None = None
    details: str | None = None
    impact: int | None = None
    event_start: datetime | None = None
    project_id: str | None = None
    company_id: str | None = None
    workstream_id: str | None = None
    workstream_source: str | None = None
    embedding: list[float] | None = None
    embedding_model: str | None = None


class Project(BaseModel):
    """A project an achievement may belong to."""

    id: str
    user_id: str
    name: str
    company_id: str | None = None


class Workstream(BaseModel):
    """A named cluster of achievements sharing a theme."""

    id: str
    user_id: str
    name: str
    description: str = ""
    color: str | None = None
    is_archived: bool = False
    achievement_count: int = 0
    created_at: datetime | None = None


class TimeRange(BaseModel):
    """Inclusive calendar window applied to achievement event dates."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    start_date: date = Field(alias="startDate")
    end_date: date = Field(alias="endDate")


class WorkstreamFilters(BaseModel):
    """Time window and project subset restricting a clustering request."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    time_range: TimeRange | None = Field(default=None, alias="timeRange")
    project_ids: tuple[str, ...] | None = Field(default=None, alias="projectIds")

    def is_empty(self) -> bool:
        return self.time_range is None and not self.project_ids


class ClusteringRunMetadata(BaseModel):
    """Persisted record of the last full clustering run for one user."""

    user_id: str
    last_full_clustering_at: datetime
    achievement_count_at_last_clustering: int
    filtered_achievement_count: int | None = None
    time_range_start: date | None = None
    time_range_end: date | None = None
    project_ids: list[str] | None = None
    epsilon: float | None = None
    min_pts: int | None = None
    workstream_count: int = 0
    outlier_count: int = 0

    def stored_filters(self) -> WorkstreamFilters | None:
        """Rebuild the filters that were active for the recorded run."""

        time_range = None
        if self.time_range_start is not None and self.time_range_end is not None:
            time_range = TimeRange(start_date=self.time_range_start, end_date=self.time_range_end)
        project_ids = tuple(self.project_ids) if self.project_ids else None
        if time_range is None and project_ids is None:
            return None
        return WorkstreamFilters(time_range=time_range, project_ids=project_ids)


class Decision(BaseModel):
    """Choice between a full re-clustering and an incremental pass."""

    model_config = ConfigDict(frozen=True)

    strategy: Literal["full", "incremental"]
    reason: str


class AchievementSummary(BaseModel):
    """Lightweight achievement view used in breakdowns."""

    id: str
    title: str
    event_start: datetime | None = None
    impact: int | None = None
    summary: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    company_id: str | None = None
    company_name: str | None = None


class WorkstreamBreakdown(BaseModel):
    """One workstream and the achievements placed into it by a run."""

    workstream_id: str
    workstream_name: str
    workstream_color: str | None = None
    is_new: bool = False
    achievements: list[AchievementSummary] = Field(default_factory=list)


class FullStrategyOutcome(BaseModel):
    """Terminal result of a full re-clustering request."""

    strategy: Literal["full"] = "full"
    reason: str
    embeddings_generated: int
    workstreams_created: int
    achievements_assigned: int
    outliers: int
    auto_assigned_outside_filters: int
    pinned: int = 0
    metadata: ClusteringRunMetadata
    workstream_details: list[WorkstreamBreakdown] = Field(default_factory=list)
    outlier_achievements: list[AchievementSummary] = Field(default_factory=list)


class IncrementalStrategyOutcome(BaseModel):
    """Terminal result of an incremental assignment request."""

    strategy: Literal["incremental"] = "incremental"
    reason: str
    embeddings_generated: int
    assigned: int
    unassigned: int
    assignments_by_workstream: list[WorkstreamBreakdown] = Field(default_factory=list)
    unassigned_achievements: list[AchievementSummary] = Field(default_factory=list)


StrategyOutcome = Annotated[
    FullStrategyOutcome | IncrementalStrategyOutcome,
    Field(discriminator="strategy"),
]
