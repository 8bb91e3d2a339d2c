"""Per-workstream achievement breakdowns attached to run results."""

from __future__ import annotations

from workstream_engine.schemas import Workstream, WorkstreamBreakdown
from workstream_engine.store import WorkstreamStore


def build_workstream_breakdown(
    store: WorkstreamStore,
    user_id: str,
    workstreams: list[Workstream],
    members: dict[str, list[str]],
    *,
    is_new: bool,
) -> list[WorkstreamBreakdown]:
    """Summaries per workstream, largest first; empty workstreams are omitted."""

    breakdowns: list[WorkstreamBreakdown] = []
    for workstream in workstreams:
        achievement_ids = members.get(workstream.id, [])
        if not achievement_ids:
            continue
        breakdowns.append(
            WorkstreamBreakdown(
                workstream_id=workstream.id,
                workstream_name=workstream.name,
                workstream_color=workstream.color,
                is_new=is_new,
                achievements=store.achievement_summaries(user_id, achievement_ids),
            )
        )
    breakdowns.sort(key=lambda item: (-len(item.achievements), item.workstream_name))
    return breakdowns


def build_assignment_breakdown(
    store: WorkstreamStore,
    user_id: str,
    assignments: dict[str, str],
) -> list[WorkstreamBreakdown]:
    """Group ``{achievement_id: workstream_id}`` into per-workstream summaries."""

    members: dict[str, list[str]] = {}
    for achievement_id, workstream_id in assignments.items():
        members.setdefault(workstream_id, []).append(achievement_id)
    workstreams = store.get_workstreams(sorted(members))
    return build_workstream_breakdown(store, user_id, workstreams, members, is_new=False)
