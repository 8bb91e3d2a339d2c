"""Full re-clustering versus incremental assignment decision."""

from __future__ import annotations

from datetime import UTC, datetime

from workstream_engine.filters import filters_equivalent
from workstream_engine.schemas import ClusteringRunMetadata, Decision, WorkstreamFilters

RECLUSTER_PERCENTAGE_THRESHOLD = 0.10
RECLUSTER_ABSOLUTE_THRESHOLD = 50
RECLUSTER_TIME_THRESHOLD_DAYS = 30.0

_SECONDS_PER_DAY = 60 * 60 * 24


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def decide_strategy(
    current_filtered_count: int,
    metadata: ClusteringRunMetadata | None,
    filters: WorkstreamFilters | None,
    *,
    now: datetime | None = None,
    percentage_threshold: float = RECLUSTER_PERCENTAGE_THRESHOLD,
    absolute_threshold: int = RECLUSTER_ABSOLUTE_THRESHOLD,
    time_threshold_days: float = RECLUSTER_TIME_THRESHOLD_DAYS,
) -> Decision:
    """Choose between a full re-clustering and an incremental pass.

    Rules are checked in order and the first match wins:

    1. never clustered -> full
    2. filters differ from the previous run's filters -> full
    3. filtered count grew by at least ``percentage_threshold`` -> full
    4. at least ``absolute_threshold`` new filtered achievements -> full
    5. more than ``time_threshold_days`` since the last full run -> full
    6. otherwise -> incremental

    The filter check precedes the growth checks because the stored count only
    means something under the filters it was recorded with.
    """

    if current_filtered_count < 0:
        raise ValueError(f"current_filtered_count must be >= 0, got {current_filtered_count}.")

    if metadata is None:
        return Decision(strategy="full", reason="Initial clustering")

    if not filters_equivalent(filters, metadata.stored_filters()):
        return Decision(
            strategy="full",
            reason="Filter parameters changed from previous clustering",
        )

    previous_count = metadata.filtered_achievement_count
    if previous_count is None:
        previous_count = metadata.achievement_count_at_last_clustering

    new_count = current_filtered_count - previous_count
    growth = new_count / previous_count if previous_count > 0 else 0.0
    if growth >= percentage_threshold:
        return Decision(
            strategy="full",
            reason=f"{growth * 100:.1f}% growth in achievements",
        )

    if new_count >= absolute_threshold:
        return Decision(
            strategy="full",
            reason=f"{new_count} new achievements since last clustering",
        )

    reference = _as_utc(now) if now is not None else datetime.now(UTC)
    elapsed_days = (
        reference - _as_utc(metadata.last_full_clustering_at)
    ).total_seconds() / _SECONDS_PER_DAY
    if elapsed_days > time_threshold_days:
        return Decision(
            strategy="full",
            reason=f"{elapsed_days:.1f} days since last clustering",
        )

    return Decision(strategy="incremental", reason="Growth is below thresholds and recent")
