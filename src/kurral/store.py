"""Versioned storage for per-author KurralScore records.

Both stores implement optimistic concurrency: ``load`` returns the record with
its version and ``save`` only succeeds if that version is still current,
raising :class:`StaleScoreError` otherwise. Version 0 means "no record yet".
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path

from kurral.models import KurralScore

logger = logging.getLogger(__name__)


class StaleScoreError(RuntimeError):
    """Another writer updated the author's score since it was loaded."""

    def __init__(self, author_id: str, expected_version: int) -> None:
        super().__init__(
            f"KurralScore for {author_id!r} changed since version {expected_version}"
        )
        self.author_id = author_id
        self.expected_version = expected_version


class ScoreStore:
    """Interface shared by the in-memory and SQLite stores."""

    def load(self, author_id: str) -> tuple[KurralScore | None, int]:
        raise NotImplementedError

    def save(self, author_id: str, score: KurralScore, expected_version: int) -> int:
        """Persist *score*; return the new version."""
        raise NotImplementedError


class MemoryScoreStore(ScoreStore):
    """Process-local store; the default for tests and single-process callers."""

    def __init__(self) -> None:
        self._records: dict[str, tuple[KurralScore, int]] = {}
        self._lock = threading.Lock()

    def load(self, author_id: str) -> tuple[KurralScore | None, int]:
        with self._lock:
            score, version = self._records.get(author_id, (None, 0))
        return score, version

    def save(self, author_id: str, score: KurralScore, expected_version: int) -> int:
        with self._lock:
            _, current = self._records.get(author_id, (None, 0))
            if current != expected_version:
                raise StaleScoreError(author_id, expected_version)
            self._records[author_id] = (score, current + 1)
            return current + 1


_SCHEMA = """
CREATE TABLE IF NOT EXISTS kurral_scores (
    author_id  TEXT PRIMARY KEY,
    version    INTEGER NOT NULL,
    score      REAL NOT NULL,
    payload    TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class SQLiteScoreStore(ScoreStore):
    """KurralScore records backed by SQLite, safe across processes."""

    def __init__(self, db_path: Path) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._init_db()

    # ── public ──────────────────────────────────────────────────────────

    def load(self, author_id: str) -> tuple[KurralScore | None, int]:
        con = self._connect()
        try:
            row = con.execute(
                "SELECT payload, version FROM kurral_scores WHERE author_id = ?",
                (author_id,),
            ).fetchone()
        finally:
            con.close()
        if row is None:
            return None, 0
        return KurralScore.model_validate_json(row[0]), int(row[1])

    def save(self, author_id: str, score: KurralScore, expected_version: int) -> int:
        payload = score.model_dump_json()
        now = datetime.now(UTC).isoformat()
        con = self._connect()
        try:
            if expected_version == 0:
                try:
                    con.execute(
                        """
                        INSERT INTO kurral_scores
                            (author_id, version, score, payload, updated_at)
                        VALUES (?, 1, ?, ?, ?)
                        """,
                        (author_id, score.score, payload, now),
                    )
                except sqlite3.IntegrityError as exc:
                    raise StaleScoreError(author_id, expected_version) from exc
            else:
                cur = con.execute(
                    """
                    UPDATE kurral_scores
                       SET version = version + 1, score = ?, payload = ?, updated_at = ?
                     WHERE author_id = ? AND version = ?
                    """,
                    (score.score, payload, now, author_id, expected_version),
                )
                if cur.rowcount == 0:
                    raise StaleScoreError(author_id, expected_version)
            con.commit()
        finally:
            con.close()
        logger.debug("Saved KurralScore for %s (v%d)", author_id, expected_version + 1)
        return expected_version + 1

    def top_scores(self, limit: int = 10) -> list[tuple[str, float]]:
        """Return ``(author_id, score)`` pairs, highest first."""
        con = self._connect()
        try:
            cur = con.execute(
                "SELECT author_id, score FROM kurral_scores ORDER BY score DESC, author_id LIMIT ?",
                (limit,),
            )
            return [(row[0], float(row[1])) for row in cur.fetchall()]
        finally:
            con.close()

    # ── private ─────────────────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._db_path))

    def _init_db(self) -> None:
        con = self._connect()
        con.executescript(_SCHEMA)
        con.close()
