"""Hand placement of single achievements into workstreams."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from workstream_engine.store import WorkstreamStore

logger = logging.getLogger(__name__)


class AssignmentError(ValueError):
    """Raised when the achievement or target workstream is not the caller's."""


@dataclass(frozen=True, slots=True)
class ManualAssignment:
    achievement_id: str
    workstream_id: str | None
    previous_workstream_id: str | None
    archived: list[str] = field(default_factory=list)


def assign_achievement(
    store: WorkstreamStore,
    user_id: str,
    achievement_id: str,
    workstream_id: str | None,
) -> ManualAssignment:
    """Pin an achievement to a live workstream, or unpin it with ``None``.

    Pinned achievements are marked as user-placed, so later clustering runs
    leave them where they are. Member counts of both workstreams are refreshed
    and a workstream left without embedded members is archived, which drops it
    from incremental assignment.
    """

    if workstream_id is not None:
        found = store.get_workstreams([workstream_id])
        if not found or found[0].user_id != user_id or found[0].is_archived:
            raise AssignmentError(f"Workstream {workstream_id} not found")

    try:
        previous = store.set_user_link(user_id, achievement_id, workstream_id)
    except LookupError as exc:
        raise AssignmentError(f"Achievement {achievement_id} not found") from exc

    touched = [item for item in dict.fromkeys((previous, workstream_id)) if item is not None]
    store.refresh_workstream_counts(touched)
    emptied = [
        item
        for item in touched
        if item != workstream_id and store.embedded_member_count(item) == 0
    ]
    if emptied:
        store.archive_workstreams(user_id, emptied)
        logger.info("Archived emptied workstreams %s for user %s", ", ".join(emptied), user_id)

    return ManualAssignment(
        achievement_id=achievement_id,
        workstream_id=workstream_id,
        previous_workstream_id=previous,
        archived=emptied,
    )
