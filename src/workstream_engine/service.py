"""Request orchestration: embeddings, strategy decision, and the chosen run."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

from workstream_engine.config import Settings
from workstream_engine.filters import achievement_matches
from workstream_engine.models import LLMJsonClient, TextEmbeddingClient
from workstream_engine.pipeline.breakdown import build_assignment_breakdown, build_workstream_breakdown
from workstream_engine.pipeline.decision import decide_strategy
from workstream_engine.pipeline.embedding import complete_missing_embeddings
from workstream_engine.pipeline.full import WorkstreamNamer, run_full_clustering
from workstream_engine.pipeline.incremental import AssignmentResult, run_incremental_assignment
from workstream_engine.pipeline.naming import WorkstreamName, name_workstreams
from workstream_engine.pipeline.parameters import ClusteringParams, select_clustering_parameters
from workstream_engine.schemas import (
    Achievement,
    Decision,
    FullStrategyOutcome,
    IncrementalStrategyOutcome,
    WorkstreamFilters,
)
from workstream_engine.store import WorkstreamStore
from workstream_engine.streaming import (
    CompleteEvent,
    ErrorEvent,
    EventSink,
    PipelineCancelledError,
    progress,
)

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Failed to generate workstreams"


class InsufficientAchievementsError(ValueError):
    """Raised when too few embedded achievements match the request."""

    def __init__(self, count: int, threshold: int) -> None:
        super().__init__(
            f"Need at least {threshold} achievements with embeddings to generate workstreams, "
            f"found {count}."
        )
        self.count = count
        self.threshold = threshold


class RunInProgressError(RuntimeError):
    """Raised when a full clustering run is already active for the user."""


class NoWorkstreamsError(ValueError):
    """Raised when auto-assignment is requested before any workstream exists."""


_active_runs: set[str] = set()
_active_runs_guard = threading.Lock()


@contextmanager
def user_run_lock(user_id: str) -> Iterator[None]:
    """Mark a full run active for the user; fail fast if one already is."""

    with _active_runs_guard:
        if user_id in _active_runs:
            raise RunInProgressError(f"A workstream clustering run is already in progress for user {user_id}.")
        _active_runs.add(user_id)
    try:
        yield
    finally:
        with _active_runs_guard:
            _active_runs.discard(user_id)


class WorkstreamService:
    """Run one generate or auto-assign request and report it through an event sink.

    Every public entry point ends with exactly one terminal event unless the
    consumer cancelled, in which case nothing further is emitted.
    """

    def __init__(
        self,
        settings: Settings,
        store: WorkstreamStore,
        embedding_client: TextEmbeddingClient,
        llm_client: LLMJsonClient | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.embedding_client = embedding_client
        self.llm_client = llm_client

    # ------------------------------------------------------------------
    # Shared phases
    # ------------------------------------------------------------------

    def _namer(self) -> WorkstreamNamer:
        client = self.llm_client if self.settings.workstream_naming_enabled else None
        sample_size = self.settings.workstream_name_sample_size

        def namer(clusters: list[list[Achievement]]) -> list[WorkstreamName]:
            return name_workstreams(clusters, client, sample_size=sample_size)

        return namer

    def _complete_embeddings(self, user_id: str, sink: EventSink) -> int:
        sink.emit(progress("generating_embeddings", "Generating embeddings for achievements"))
        generated = complete_missing_embeddings(
            self.store,
            self.embedding_client,
            user_id,
            embedding_model=self.settings.embedding_model,
            batch_size=self.settings.embedding_batch_size,
            max_concurrency=self.settings.embedding_max_concurrency,
            dimensions=self.settings.embedding_dimensions,
        )
        sink.emit(progress("embeddings_complete", f"Generated {generated} embeddings"))
        return generated

    def _filtered_embedded_count(self, user_id: str, filters: WorkstreamFilters | None) -> int:
        return sum(
            1
            for achievement in self.store.list_achievements(user_id, embedded=True)
            if achievement_matches(achievement, filters)
        )

    def _select_params(self, count: int) -> ClusteringParams:
        threshold = self.settings.minimum_achievements
        if count < threshold:
            raise InsufficientAchievementsError(count, threshold)
        params = select_clustering_parameters(
            count,
            bands=self.settings.parameter_bands,
            minimum_achievements=threshold,
        )
        if params is None:
            raise RuntimeError(f"No clustering parameters for {count} achievements.")
        return params

    def _incremental_outcome(
        self,
        user_id: str,
        reason: str,
        embeddings_generated: int,
        result: AssignmentResult,
    ) -> IncrementalStrategyOutcome:
        return IncrementalStrategyOutcome(
            reason=reason,
            embeddings_generated=embeddings_generated,
            assigned=result.assigned,
            unassigned=result.unassigned,
            assignments_by_workstream=build_assignment_breakdown(self.store, user_id, result.assignments),
            unassigned_achievements=self.store.achievement_summaries(user_id, result.unassigned_ids),
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def decide(
        self,
        user_id: str,
        filters: WorkstreamFilters | None,
        *,
        now: datetime | None = None,
    ) -> Decision:
        """Preview the strategy a generate request would take right now."""

        return decide_strategy(
            self._filtered_embedded_count(user_id, filters),
            self.store.get_metadata(user_id),
            filters,
            now=now,
            percentage_threshold=self.settings.recluster_percentage_threshold,
            absolute_threshold=self.settings.recluster_absolute_threshold,
            time_threshold_days=self.settings.recluster_time_threshold_days,
        )

    def generate(
        self,
        user_id: str,
        filters: WorkstreamFilters | None,
        sink: EventSink,
        *,
        now: datetime | None = None,
    ) -> None:
        """Complete embeddings, pick a strategy, run it, and emit the outcome."""

        self._run(lambda: self._generate(user_id, filters, sink, now=now), user_id, sink)

    def auto_assign(
        self,
        user_id: str,
        filters: WorkstreamFilters | None,
        sink: EventSink,
    ) -> None:
        """Assign new achievements to the existing workstreams without re-clustering."""

        self._run(lambda: self._auto_assign(user_id, filters, sink), user_id, sink)

    def _run(
        self,
        body: Callable[[], FullStrategyOutcome | IncrementalStrategyOutcome],
        user_id: str,
        sink: EventSink,
    ) -> None:
        try:
            outcome = body()
            sink.emit(CompleteEvent(result=outcome))
        except PipelineCancelledError:
            logger.info("Request for user %s cancelled by the client", user_id)
        except InsufficientAchievementsError as exc:
            self._emit_error(
                sink,
                ErrorEvent(message=str(exc), details={"count": exc.count, "threshold": exc.threshold}),
            )
        except (RunInProgressError, NoWorkstreamsError) as exc:
            self._emit_error(sink, ErrorEvent(message=str(exc)))
        except Exception:
            logger.exception("Workstream request failed for user %s", user_id)
            self._emit_error(sink, ErrorEvent(message=GENERIC_FAILURE_MESSAGE))

    @staticmethod
    def _emit_error(sink: EventSink, event: ErrorEvent) -> None:
        try:
            sink.emit(event)
        except PipelineCancelledError:
            logger.debug("Dropping error event after cancellation: %s", event.message)

    def _generate(
        self,
        user_id: str,
        filters: WorkstreamFilters | None,
        sink: EventSink,
        *,
        now: datetime | None,
    ) -> FullStrategyOutcome | IncrementalStrategyOutcome:
        generated = self._complete_embeddings(user_id, sink)
        count = self._filtered_embedded_count(user_id, filters)
        params = self._select_params(count)

        decision = decide_strategy(
            count,
            self.store.get_metadata(user_id),
            filters,
            now=now,
            percentage_threshold=self.settings.recluster_percentage_threshold,
            absolute_threshold=self.settings.recluster_absolute_threshold,
            time_threshold_days=self.settings.recluster_time_threshold_days,
        )
        logger.info("User %s: %s strategy (%s)", user_id, decision.strategy, decision.reason)
        sink.emit(progress("strategy_selected", f"Running {decision.strategy} clustering: {decision.reason}"))

        if decision.strategy == "incremental":
            result = run_incremental_assignment(self.store, user_id, params, filters, sink)
            return self._incremental_outcome(user_id, decision.reason, generated, result)

        with user_run_lock(user_id):
            full = run_full_clustering(
                self.store,
                user_id,
                filters,
                params,
                sink,
                namer=self._namer(),
                minimum_epsilon=self.settings.minimum_epsilon,
                max_items=self.settings.max_full_clustering_items,
                now=now,
            )
        return FullStrategyOutcome(
            reason=decision.reason,
            embeddings_generated=generated,
            workstreams_created=len(full.workstreams),
            achievements_assigned=full.achievements_assigned,
            outliers=len(full.outliers),
            auto_assigned_outside_filters=full.auto_assigned_outside_filters,
            pinned=len(full.pinned),
            metadata=full.metadata,
            workstream_details=build_workstream_breakdown(
                self.store, user_id, full.workstreams, full.members, is_new=True
            ),
            outlier_achievements=self.store.achievement_summaries(user_id, full.outliers),
        )

    def _auto_assign(
        self,
        user_id: str,
        filters: WorkstreamFilters | None,
        sink: EventSink,
    ) -> IncrementalStrategyOutcome:
        if not self.store.list_workstreams(user_id):
            raise NoWorkstreamsError("No workstreams exist yet; generate workstreams first.")
        generated = self._complete_embeddings(user_id, sink)
        count = self._filtered_embedded_count(user_id, filters)
        params = select_clustering_parameters(
            max(count, self.settings.minimum_achievements),
            bands=self.settings.parameter_bands,
            minimum_achievements=self.settings.minimum_achievements,
        )
        result = run_incremental_assignment(self.store, user_id, params, filters, sink)
        return self._incremental_outcome(user_id, "Auto-assign to existing workstreams", generated, result)
