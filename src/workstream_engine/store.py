"""SQLite-backed repository for achievements, workstreams, run metadata, and credits."""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

from workstream_engine.schemas import (
    Achievement,
    AchievementSummary,
    ClusteringRunMetadata,
    Project,
    Workstream,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

DEFAULT_FREE_CREDITS = 10


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _to_iso(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    return date.fromisoformat(value)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class WorkstreamStore:
    """User-scoped persistence for the workstream engine.

    Each instance owns one SQLite connection. Open one store per request or
    worker thread; concurrent stores on the same file coordinate through
    SQLite's own locking (``BEGIN IMMEDIATE`` for writes).
    """

    def __init__(self, *, path: Path | str) -> None:
        self._path = Path(path)
        if str(self._path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            str(self._path),
            timeout=30,
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def path(self) -> Path:
        return self._path

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "WorkstreamStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        cur = self._conn.cursor()
        cur.execute("BEGIN IMMEDIATE")
        try:
            yield cur
        except BaseException:
            cur.execute("ROLLBACK")
            raise
        cur.execute("COMMIT")

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------

    def _ensure_schema(self) -> None:
        with self._transaction() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  k TEXT PRIMARY KEY,
                  v TEXT NOT NULL
                );
                """
            )
            row = cur.execute("SELECT v FROM meta WHERE k = 'schema_version'").fetchone()
            if row is not None:
                version = int(row["v"])
                if version != SCHEMA_VERSION:
                    raise RuntimeError(
                        f"Unsupported workstream store schema_version={version}, "
                        f"expected={SCHEMA_VERSION}"
                    )
                return
            self._create_tables(cur)
            cur.execute(
                "INSERT INTO meta(k, v) VALUES('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )

    def _create_tables(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
              id TEXT PRIMARY KEY,
              level TEXT NOT NULL DEFAULT 'free',
              credits INTEGER NOT NULL DEFAULT 10,
              created_at TEXT NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS api_tokens (
              token_hash TEXT PRIMARY KEY,
              user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS companies (
              id TEXT PRIMARY KEY,
              user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
              name TEXT NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS projects (
              id TEXT PRIMARY KEY,
              user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
              name TEXT NOT NULL,
              company_id TEXT REFERENCES companies(id) ON DELETE SET NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workstreams (
              id TEXT PRIMARY KEY,
              user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
              name TEXT NOT NULL,
              description TEXT NOT NULL DEFAULT '',
              color TEXT,
              is_archived INTEGER NOT NULL DEFAULT 0,
              achievement_count INTEGER NOT NULL DEFAULT 0,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS achievements (
              id TEXT PRIMARY KEY,
              user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
              title TEXT NOT NULL,
              summary TEXT,
              details TEXT,
              impact INTEGER,
              event_start TEXT,
              project_id TEXT REFERENCES projects(id) ON DELETE SET NULL,
              company_id TEXT REFERENCES companies(id) ON DELETE SET NULL,
              workstream_id TEXT REFERENCES workstreams(id) ON DELETE SET NULL,
              workstream_source TEXT,
              embedding_json TEXT,
              embedding_model TEXT,
              updated_at TEXT NOT NULL
            );
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_achievements_user ON achievements(user_id)")
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_achievements_workstream ON achievements(workstream_id)"
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workstream_metadata (
              user_id TEXT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
              last_full_clustering_at TEXT NOT NULL,
              achievement_count_at_last_clustering INTEGER NOT NULL,
              filtered_achievement_count INTEGER,
              time_range_start TEXT,
              time_range_end TEXT,
              project_ids_json TEXT,
              epsilon REAL,
              min_pts INTEGER,
              workstream_count INTEGER NOT NULL DEFAULT 0,
              outlier_count INTEGER NOT NULL DEFAULT 0,
              updated_at TEXT NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS credit_ledger (
              id INTEGER PRIMARY KEY,
              user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
              amount INTEGER NOT NULL,
              operation TEXT NOT NULL,
              remaining INTEGER,
              created_at TEXT NOT NULL
            );
            """
        )

    # ------------------------------------------------------------------
    # Users, tokens, credits
    # ------------------------------------------------------------------

    def create_user(
        self,
        user_id: str,
        *,
        level: str = "free",
        credits: int = DEFAULT_FREE_CREDITS,
    ) -> None:
        self._conn.execute(
            """
            INSERT INTO users(id, level, credits, created_at) VALUES(?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET level = excluded.level, credits = excluded.credits
            """,
            (user_id, level, credits, _to_iso(_utc_now())),
        )

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            "SELECT id, level, credits FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
        return dict(row) if row is not None else None

    def add_api_token(self, user_id: str, token: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO api_tokens(token_hash, user_id) VALUES(?, ?)",
            (hash_token(token), user_id),
        )

    def user_id_for_token(self, token: str) -> str | None:
        row = self._conn.execute(
            "SELECT user_id FROM api_tokens WHERE token_hash = ?",
            (hash_token(token),),
        ).fetchone()
        return str(row["user_id"]) if row is not None else None

    def deduct_credits(self, user_id: str, amount: int) -> int | None:
        """Atomically deduct credits; return the remaining balance, or None if insufficient.

        The balance check and the decrement are one conditional UPDATE, so two
        concurrent callers can never both spend the same credits.
        """

        with self._transaction() as cur:
            cur.execute(
                "UPDATE users SET credits = credits - ? WHERE id = ? AND credits >= ?",
                (amount, user_id, amount),
            )
            if cur.rowcount != 1:
                return None
            row = cur.execute("SELECT credits FROM users WHERE id = ?", (user_id,)).fetchone()
        return int(row["credits"])

    def refund_credits(self, user_id: str, amount: int) -> int | None:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE users SET credits = credits + ? WHERE id = ?",
                (amount, user_id),
            )
            if cur.rowcount != 1:
                return None
            row = cur.execute("SELECT credits FROM users WHERE id = ?", (user_id,)).fetchone()
        return int(row["credits"])

    def record_ledger_entry(
        self,
        *,
        user_id: str,
        amount: int,
        operation: str,
        remaining: int | None,
    ) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO credit_ledger(user_id, amount, operation, remaining, created_at)
            VALUES(?, ?, ?, ?, ?)
            """,
            (user_id, amount, operation, remaining, _to_iso(_utc_now())),
        )
        return int(cur.lastrowid)

    def ledger_entries(self, user_id: str) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            """
            SELECT id, user_id, amount, operation, remaining, created_at
            FROM credit_ledger WHERE user_id = ? ORDER BY id
            """,
            (user_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Companies and projects
    # ------------------------------------------------------------------

    def upsert_company(self, *, company_id: str, user_id: str, name: str) -> None:
        self._conn.execute(
            """
            INSERT INTO companies(id, user_id, name) VALUES(?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name
            """,
            (company_id, user_id, name),
        )

    def upsert_project(self, project: Project) -> None:
        self._conn.execute(
            """
            INSERT INTO projects(id, user_id, name, company_id) VALUES(?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name, company_id = excluded.company_id
            """,
            (project.id, project.user_id, project.name, project.company_id),
        )

    def owned_project_ids(self, user_id: str, project_ids: Iterable[str]) -> set[str]:
        """Return the subset of ``project_ids`` that exist and belong to the user."""

        ids = list(project_ids)
        if not ids:
            return set()
        placeholders = ",".join("?" for _ in ids)
        rows = self._conn.execute(
            f"SELECT id FROM projects WHERE user_id = ? AND id IN ({placeholders})",
            [user_id, *ids],
        ).fetchall()
        return {str(row["id"]) for row in rows}

    # ------------------------------------------------------------------
    # Achievements
    # ------------------------------------------------------------------

    @staticmethod
    def _achievement_from_row(row: sqlite3.Row) -> Achievement:
        embedding_json = row["embedding_json"]
        return Achievement(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            summary=row["summary"],
            details=row["details"],
            impact=row["impact"],
            event_start=_parse_datetime(row["event_start"]),
            project_id=row["project_id"],
            company_id=row["company_id"],
            workstream_id=row["workstream_id"],
            workstream_source=row["workstream_source"],
            embedding=json.loads(embedding_json) if embedding_json else None,
            embedding_model=row["embedding_model"],
        )

    def insert_achievement(self, achievement: Achievement) -> None:
        self._conn.execute(
            """
            INSERT INTO achievements(
              id, user_id, title, summary, details, impact, event_start,
              project_id, company_id, workstream_id, workstream_source,
              embedding_json, embedding_model, updated_at
            ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                achievement.id,
                achievement.user_id,
                achievement.title,
                achievement.summary,
                achievement.details,
                achievement.impact,
                _to_iso(achievement.event_start),
                achievement.project_id,
                achievement.company_id,
                achievement.workstream_id,
                achievement.workstream_source,
                json.dumps(achievement.embedding) if achievement.embedding is not None else None,
                achievement.embedding_model,
                _to_iso(_utc_now()),
            ),
        )

    def get_achievement(self, achievement_id: str) -> Achievement | None:
        row = self._conn.execute(
            "SELECT * FROM achievements WHERE id = ?",
            (achievement_id,),
        ).fetchone()
        return self._achievement_from_row(row) if row is not None else None

    def list_achievements(
        self,
        user_id: str,
        *,
        embedded: bool | None = None,
        unassigned: bool | None = None,
    ) -> list[Achievement]:
        """List a user's achievements, newest event first."""

        clauses = ["user_id = ?"]
        if embedded is True:
            clauses.append("embedding_json IS NOT NULL")
        elif embedded is False:
            clauses.append("embedding_json IS NULL")
        if unassigned is True:
            clauses.append("workstream_id IS NULL")
        elif unassigned is False:
            clauses.append("workstream_id IS NOT NULL")
        rows = self._conn.execute(
            f"""
            SELECT * FROM achievements
            WHERE {' AND '.join(clauses)}
            ORDER BY event_start DESC, id
            """,
            (user_id,),
        ).fetchall()
        return [self._achievement_from_row(row) for row in rows]

    def count_achievements(self, user_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM achievements WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        return int(row["n"])

    def achievements_needing_embedding(
        self,
        user_id: str,
        *,
        embedding_model: str,
    ) -> list[tuple[Achievement, str | None]]:
        """Return achievements lacking a current-model embedding, with their project names."""

        rows = self._conn.execute(
            """
            SELECT a.*, p.name AS project_name
            FROM achievements a
            LEFT JOIN projects p ON p.id = a.project_id
            WHERE a.user_id = ?
              AND (a.embedding_json IS NULL OR COALESCE(a.embedding_model, '') != ?)
            ORDER BY a.id
            """,
            (user_id, embedding_model),
        ).fetchall()
        return [(self._achievement_from_row(row), row["project_name"]) for row in rows]

    def save_embedding(
        self,
        achievement_id: str,
        vector: list[float],
        *,
        embedding_model: str,
    ) -> None:
        self._conn.execute(
            """
            UPDATE achievements SET embedding_json = ?, embedding_model = ?, updated_at = ?
            WHERE id = ?
            """,
            (json.dumps(vector), embedding_model, _to_iso(_utc_now()), achievement_id),
        )

    def achievement_summaries(self, user_id: str, achievement_ids: list[str]) -> list[AchievementSummary]:
        """Fetch display summaries for the given ids, keeping the input order."""

        if not achievement_ids:
            return []
        placeholders = ",".join("?" for _ in achievement_ids)
        rows = self._conn.execute(
            f"""
            SELECT a.id, a.title, a.event_start, a.impact, a.summary,
                   a.project_id, p.name AS project_name,
                   a.company_id, c.name AS company_name
            FROM achievements a
            LEFT JOIN projects p ON p.id = a.project_id
            LEFT JOIN companies c ON c.id = a.company_id
            WHERE a.user_id = ? AND a.id IN ({placeholders})
            """,
            [user_id, *achievement_ids],
        ).fetchall()
        by_id = {
            row["id"]: AchievementSummary(
                id=row["id"],
                title=row["title"],
                event_start=_parse_datetime(row["event_start"]),
                impact=row["impact"],
                summary=row["summary"],
                project_id=row["project_id"],
                project_name=row["project_name"],
                company_id=row["company_id"],
                company_name=row["company_name"],
            )
            for row in rows
        }
        return [by_id[item] for item in achievement_ids if item in by_id]

    # ------------------------------------------------------------------
    # Workstreams
    # ------------------------------------------------------------------

    @staticmethod
    def _workstream_from_row(row: sqlite3.Row) -> Workstream:
        return Workstream(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            description=row["description"],
            color=row["color"],
            is_archived=bool(row["is_archived"]),
            achievement_count=int(row["achievement_count"]),
            created_at=_parse_datetime(row["created_at"]),
        )

    @staticmethod
    def _insert_workstream(cur: sqlite3.Cursor, workstream: Workstream, now: str) -> None:
        cur.execute(
            """
            INSERT INTO workstreams(
              id, user_id, name, description, color, is_archived,
              achievement_count, created_at, updated_at
            ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                workstream.id,
                workstream.user_id,
                workstream.name,
                workstream.description,
                workstream.color,
                int(workstream.is_archived),
                workstream.achievement_count,
                _to_iso(workstream.created_at) or now,
                now,
            ),
        )

    @staticmethod
    def _link(
        cur: sqlite3.Cursor,
        user_id: str,
        assignments: dict[str, str],
        *,
        source: str,
        only_unassigned: bool,
        now: str,
    ) -> list[str]:
        query = """
            UPDATE achievements SET workstream_id = ?, workstream_source = ?, updated_at = ?
            WHERE id = ? AND user_id = ?
              AND EXISTS (SELECT 1 FROM workstreams w WHERE w.id = ? AND w.user_id = ?)
        """
        if only_unassigned:
            query += " AND workstream_id IS NULL"
        linked: list[str] = []
        for achievement_id, workstream_id in assignments.items():
            cur.execute(
                query,
                (workstream_id, source, now, achievement_id, user_id, workstream_id, user_id),
            )
            if cur.rowcount == 1:
                linked.append(achievement_id)
        return linked

    @staticmethod
    def _refresh_counts(cur: sqlite3.Cursor, workstream_ids: Iterable[str], now: str) -> None:
        for workstream_id in workstream_ids:
            cur.execute(
                """
                UPDATE workstreams SET
                  achievement_count = (SELECT COUNT(*) FROM achievements WHERE workstream_id = ?),
                  updated_at = ?
                WHERE id = ?
                """,
                (workstream_id, now, workstream_id),
            )

    def create_workstream(self, workstream: Workstream) -> Workstream:
        with self._transaction() as cur:
            self._insert_workstream(cur, workstream, _to_iso(_utc_now()))
        return workstream

    def list_workstreams(self, user_id: str, *, include_archived: bool = False) -> list[Workstream]:
        query = "SELECT * FROM workstreams WHERE user_id = ?"
        if not include_archived:
            query += " AND is_archived = 0"
        rows = self._conn.execute(
            query + " ORDER BY achievement_count DESC, created_at, id",
            (user_id,),
        ).fetchall()
        return [self._workstream_from_row(row) for row in rows]

    def get_workstreams(self, workstream_ids: list[str]) -> list[Workstream]:
        if not workstream_ids:
            return []
        placeholders = ",".join("?" for _ in workstream_ids)
        rows = self._conn.execute(
            f"SELECT * FROM workstreams WHERE id IN ({placeholders})",
            workstream_ids,
        ).fetchall()
        return [self._workstream_from_row(row) for row in rows]

    def archive_workstreams(self, user_id: str, workstream_ids: Iterable[str] | None = None) -> int:
        """Archive the given live workstreams of the user, or all of them."""

        query = "UPDATE workstreams SET is_archived = 1, updated_at = ? WHERE user_id = ? AND is_archived = 0"
        params: list[Any] = [_to_iso(_utc_now()), user_id]
        if workstream_ids is not None:
            ids = list(workstream_ids)
            if not ids:
                return 0
            query += f" AND id IN ({','.join('?' for _ in ids)})"
            params.extend(ids)
        with self._transaction() as cur:
            cur.execute(query, params)
            return cur.rowcount

    def replace_workstreams(
        self,
        user_id: str,
        workstreams: list[Workstream],
        assignments: dict[str, str],
        metadata: ClusteringRunMetadata,
    ) -> list[str]:
        """Swap the user's AI-built workstreams for a new set in one transaction.

        Live workstreams are archived unless a member was placed there by the
        user, every AI-made link is cleared, the new workstreams are inserted,
        ``{achievement_id: workstream_id}`` links are written for achievements
        without a link, counts are refreshed and the run metadata is stored.
        Returns the ids that were actually linked.
        """

        now = _to_iso(_utc_now())
        with self._transaction() as cur:
            cur.execute(
                """
                UPDATE workstreams SET is_archived = 1, updated_at = ?
                WHERE user_id = ? AND is_archived = 0
                  AND NOT EXISTS (
                    SELECT 1 FROM achievements a
                    WHERE a.workstream_id = workstreams.id AND a.workstream_source = 'user'
                  )
                """,
                (now, user_id),
            )
            archived = cur.rowcount
            cur.execute(
                """
                UPDATE achievements SET workstream_id = NULL, workstream_source = NULL, updated_at = ?
                WHERE user_id = ? AND workstream_id IS NOT NULL
                  AND COALESCE(workstream_source, 'ai') = 'ai'
                """,
                (now, user_id),
            )
            cleared = cur.rowcount
            for workstream in workstreams:
                self._insert_workstream(cur, workstream, now)
            linked = self._link(cur, user_id, assignments, source="ai", only_unassigned=True, now=now)
            live = cur.execute(
                "SELECT id FROM workstreams WHERE user_id = ? AND is_archived = 0",
                (user_id,),
            ).fetchall()
            self._refresh_counts(cur, [str(row["id"]) for row in live], now)
            self._write_metadata(cur, metadata)
        logger.debug(
            "Replaced workstreams for user %s: archived=%d cleared=%d created=%d linked=%d",
            user_id,
            archived,
            cleared,
            len(workstreams),
            len(linked),
        )
        return linked

    def link_achievements(
        self,
        user_id: str,
        assignments: dict[str, str],
        *,
        source: str = "ai",
        only_unassigned: bool = False,
    ) -> list[str]:
        """Write workstream links for ``{achievement_id: workstream_id}``.

        Links are only written when the workstream belongs to the same user.
        With ``only_unassigned`` an achievement that already has a link is left
        untouched. Returns the ids that were actually linked.
        """

        if not assignments:
            return []
        with self._transaction() as cur:
            return self._link(
                cur,
                user_id,
                assignments,
                source=source,
                only_unassigned=only_unassigned,
                now=_to_iso(_utc_now()),
            )

    def set_user_link(self, user_id: str, achievement_id: str, workstream_id: str | None) -> str | None:
        """Place one achievement by hand, or clear its link; returns the previous workstream id.

        Raises LookupError when the achievement does not belong to the user.
        """

        now = _to_iso(_utc_now())
        with self._transaction() as cur:
            row = cur.execute(
                "SELECT workstream_id FROM achievements WHERE id = ? AND user_id = ?",
                (achievement_id, user_id),
            ).fetchone()
            if row is None:
                raise LookupError(f"Achievement {achievement_id} not found for user {user_id}")
            cur.execute(
                """
                UPDATE achievements SET workstream_id = ?, workstream_source = ?, updated_at = ?
                WHERE id = ?
                """,
                (workstream_id, "user" if workstream_id is not None else None, now, achievement_id),
            )
        return row["workstream_id"]

    def refresh_workstream_counts(self, workstream_ids: Iterable[str]) -> None:
        ids = list(workstream_ids)
        if not ids:
            return
        with self._transaction() as cur:
            self._refresh_counts(cur, ids, _to_iso(_utc_now()))

    def embedded_member_count(self, workstream_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM achievements WHERE workstream_id = ? AND embedding_json IS NOT NULL",
            (workstream_id,),
        ).fetchone()
        return int(row["n"])

    def member_ids(self, workstream_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT id FROM achievements WHERE workstream_id = ? ORDER BY event_start DESC, id",
            (workstream_id,),
        ).fetchall()
        return [str(row["id"]) for row in rows]

    # ------------------------------------------------------------------
    # Clustering run metadata
    # ------------------------------------------------------------------

    def get_metadata(self, user_id: str) -> ClusteringRunMetadata | None:
        row = self._conn.execute(
            "SELECT * FROM workstream_metadata WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        if row is None:
            return None
        project_ids_json = row["project_ids_json"]
        return ClusteringRunMetadata(
            user_id=row["user_id"],
            last_full_clustering_at=_parse_datetime(row["last_full_clustering_at"]),
            achievement_count_at_last_clustering=int(row["achievement_count_at_last_clustering"]),
            filtered_achievement_count=row["filtered_achievement_count"],
            time_range_start=_parse_date(row["time_range_start"]),
            time_range_end=_parse_date(row["time_range_end"]),
            project_ids=json.loads(project_ids_json) if project_ids_json else None,
            epsilon=row["epsilon"],
            min_pts=row["min_pts"],
            workstream_count=int(row["workstream_count"]),
            outlier_count=int(row["outlier_count"]),
        )

    def upsert_metadata(self, metadata: ClusteringRunMetadata) -> None:
        with self._transaction() as cur:
            self._write_metadata(cur, metadata)

    @staticmethod
    def _write_metadata(cur: sqlite3.Cursor, metadata: ClusteringRunMetadata) -> None:
        cur.execute(
            """
            INSERT INTO workstream_metadata(
              user_id, last_full_clustering_at, achievement_count_at_last_clustering,
              filtered_achievement_count, time_range_start, time_range_end, project_ids_json,
              epsilon, min_pts, workstream_count, outlier_count, updated_at
            ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
              last_full_clustering_at = excluded.last_full_clustering_at,
              achievement_count_at_last_clustering = excluded.achievement_count_at_last_clustering,
              filtered_achievement_count = excluded.filtered_achievement_count,
              time_range_start = excluded.time_range_start,
              time_range_end = excluded.time_range_end,
              project_ids_json = excluded.project_ids_json,
              epsilon = excluded.epsilon,
              min_pts = excluded.min_pts,
              workstream_count = excluded.workstream_count,
              outlier_count = excluded.outlier_count,
              updated_at = excluded.updated_at
            """,
            (
                metadata.user_id,
                _to_iso(metadata.last_full_clustering_at),
                metadata.achievement_count_at_last_clustering,
                metadata.filtered_achievement_count,
                _to_iso(metadata.time_range_start),
                _to_iso(metadata.time_range_end),
                json.dumps(sorted(metadata.project_ids)) if metadata.project_ids else None,
                metadata.epsilon,
                metadata.min_pts,
                metadata.workstream_count,
                metadata.outlier_count,
                _to_iso(_utc_now()),
            ),
        )
