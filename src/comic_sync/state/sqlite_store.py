from __future__ import annotations

import json
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from comic_sync.core.errors import ConcurrencyError, PersistenceError
from comic_sync.core.models import Item, Progress, RunState
from comic_sync.state.base import RunRecord
from comic_sync.state.schema import decode_progress, encode_progress
from comic_sync.utils.time import utc_now_iso

# SQLite caps host parameters per statement; stay well below it.
_MAX_VARIABLES = 500
_TABLE_NAME = re.compile(r"^comics_[a-z_]+$")


class _SQLiteBase:
    def __init__(self, path: str):
        self.path = path
        self._ensure_parent_dir(path)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        raise NotImplementedError

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self):
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _ensure_parent_dir(self, path: str) -> None:
        parent = Path(path).parent
        if str(parent) not in {"", "."}:
            parent.mkdir(parents=True, exist_ok=True)


class SQLiteProgressStore(_SQLiteBase):
    """SQLite-backed progress store: one JSON blob per source."""

    def get(self, source_key: str) -> Optional[Progress]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT payload_json FROM progress WHERE source_key = ?",
                (source_key,),
            ).fetchone()

        if not row:
            return None
        return decode_progress(source_key, json.loads(row["payload_json"]))

    def put(self, source_key: str, progress: Progress, expected_version: Optional[int] = None) -> None:
        payload = json.dumps(encode_progress(progress), ensure_ascii=False, sort_keys=True)
        now = utc_now_iso()
        with self._session() as conn:
            if expected_version is None:
                conn.execute(
                    """
                    INSERT INTO progress (source_key, version, payload_json, updated_at_utc)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(source_key) DO UPDATE SET
                        version = excluded.version,
                        payload_json = excluded.payload_json,
                        updated_at_utc = excluded.updated_at_utc
                    """,
                    (source_key, progress.version, payload, now),
                )
                return

            cur = conn.execute(
                """
                UPDATE progress
                SET version = ?, payload_json = ?, updated_at_utc = ?
                WHERE source_key = ? AND version = ?
                """,
                (progress.version, payload, now, source_key, expected_version),
            )
            if cur.rowcount == 1:
                return

            if expected_version == 0:
                cur = conn.execute(
                    """
                    INSERT OR IGNORE INTO progress (source_key, version, payload_json, updated_at_utc)
                    VALUES (?, ?, ?, ?)
                    """,
                    (source_key, progress.version, payload, now),
                )
                if cur.rowcount == 1:
                    return

            raise ConcurrencyError(
                f"Progress for {source_key} changed concurrently (expected version {expected_version})"
            )

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS progress (
                    source_key TEXT PRIMARY KEY,
                    version INTEGER NOT NULL DEFAULT 0,
                    payload_json TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL
                )
                """
            )


class SQLiteDedupIndex(_SQLiteBase):
    """Per-language comics table, doubling as the dedup index for that source."""

    def __init__(self, path: str, table: str):
        if not _TABLE_NAME.match(table):
            raise ValueError(f"Invalid comics table name: {table}")
        self.table = table
        super().__init__(path)

    def contains_any(self, ids: Iterable[int]) -> Set[int]:
        wanted = sorted({int(i) for i in ids})
        found: Set[int] = set()
        if not wanted:
            return found

        with self._session() as conn:
            for chunk in _chunks(wanted, _MAX_VARIABLES):
                marks = ", ".join("?" for _ in chunk)
                rows = conn.execute(f"SELECT id FROM {self.table} WHERE id IN ({marks})", chunk).fetchall()
                found.update(int(r["id"]) for r in rows)
        return found

    def contains_origins(self, urls: Iterable[str]) -> Set[str]:
        """Which of these page URLs were already ingested, whatever comic id they carry."""
        wanted = sorted({str(u) for u in urls if u})
        found: Set[str] = set()
        if not wanted:
            return found

        with self._session() as conn:
            for chunk in _chunks(wanted, _MAX_VARIABLES):
                marks = ", ".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT source_url FROM {self.table} WHERE source_url IN ({marks})",
                    chunk,
                ).fetchall()
                found.update(r["source_url"] for r in rows)
        return found

    def insert_batch(self, items: List[Item]) -> None:
        if not items:
            return
        # five columns per row
        rows_per_statement = _MAX_VARIABLES // 5
        try:
            with self._session() as conn:
                for chunk in _chunks(items, rows_per_statement):
                    values = ", ".join("(?, ?, ?, ?, ?, datetime('now'), datetime('now'))" for _ in chunk)
                    params: List[Any] = []
                    for item in chunk:
                        params.extend(self._row(item))
                    conn.execute(
                        f"""
                        INSERT OR REPLACE INTO {self.table} (id, title, img, alt, source_url, created_at, updated_at)
                        VALUES {values}
                        """,
                        params,
                    )
        except sqlite3.Error as e:
            raise PersistenceError(f"Batch insert into {self.table} failed: {e}") from e

    def insert_one(self, item: Item) -> None:
        try:
            with self._session() as conn:
                conn.execute(
                    f"""
                    INSERT OR REPLACE INTO {self.table} (id, title, img, alt, source_url, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, datetime('now'), datetime('now'))
                    """,
                    self._row(item),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Insert of comic {item.id} into {self.table} failed: {e}") from e

    def count(self) -> int:
        with self._session() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS n FROM {self.table}").fetchone()
            return int(row["n"])

    def get(self, item_id: int) -> Optional[Item]:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT id, title, img, alt, source_url FROM {self.table} WHERE id = ?",
                (item_id,),
            ).fetchone()
        if not row:
            return None
        return Item(
            id=int(row["id"]),
            title=row["title"],
            image_ref=row["img"],
            alt_text=row["alt"] or "",
            origin_url=row["source_url"] or "",
        )

    def _row(self, item: Item) -> tuple:
        return (item.id, item.title, item.image_ref, item.alt_text, item.origin_url)

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    id INTEGER PRIMARY KEY,
                    title TEXT NOT NULL,
                    alt TEXT,
                    img TEXT NOT NULL,
                    transcript TEXT,
                    source_url TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{self.table}_source_url ON {self.table} (source_url)")


class SQLiteStepJournal(_SQLiteBase):
    """SQLite-backed journal of runs and their memoized step results."""

    def open_run(self, source_key: str, max_attempts: int) -> RunRecord:
        now = utc_now_iso()
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT run_id, seq, state, attempts
                FROM runs
                WHERE source_key = ?
                ORDER BY seq DESC
                LIMIT 1
                """,
                (source_key,),
            ).fetchone()

            seq = 0
            if row:
                seq = int(row["seq"])
                state = RunState(row["state"])
                if state not in (RunState.DONE, RunState.ABANDONED):
                    if int(row["attempts"]) < max_attempts:
                        conn.execute(
                            "UPDATE runs SET attempts = attempts + 1, updated_at_utc = ? WHERE run_id = ?",
                            (now, row["run_id"]),
                        )
                        return self._load_run(conn, row["run_id"], resumed=True)

                    conn.execute(
                        "UPDATE runs SET state = ?, updated_at_utc = ? WHERE run_id = ?",
                        (RunState.ABANDONED.value, now, row["run_id"]),
                    )

            run_id = f"{source_key}:{seq + 1}"
            conn.execute(
                """
                INSERT INTO runs (run_id, source_key, seq, state, attempts, started_at_utc, updated_at_utc)
                VALUES (?, ?, ?, ?, 1, ?, ?)
                """,
                (run_id, source_key, seq + 1, RunState.PENDING.value, now, now),
            )
            return self._load_run(conn, run_id, resumed=False)

    def load_run(self, run_id: str) -> Optional[RunRecord]:
        with self._session() as conn:
            return self._load_run(conn, run_id, resumed=False)

    def load_step(self, run_id: str, step: str) -> Optional[Dict[str, Any]]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT payload_json FROM run_steps WHERE run_id = ? AND step = ?",
                (run_id, step),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["payload_json"])

    def save_step(self, run_id: str, step: str, payload: Dict[str, Any]) -> None:
        payload_json = json.dumps(payload, ensure_ascii=False, sort_keys=True)
        with self._session() as conn:
            # first successful result wins
            conn.execute(
                """
                INSERT OR IGNORE INTO run_steps (run_id, step, payload_json, completed_at_utc)
                VALUES (?, ?, ?, ?)
                """,
                (run_id, step, payload_json, utc_now_iso()),
            )

    def set_state(
        self,
        run_id: str,
        state: RunState,
        failed_step: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._session() as conn:
            conn.execute(
                """
                UPDATE runs
                SET state = ?, failed_step = ?, error = ?, updated_at_utc = ?
                WHERE run_id = ?
                """,
                (state.value, failed_step, error, utc_now_iso(), run_id),
            )

    def _load_run(self, conn: sqlite3.Connection, run_id: str, resumed: bool) -> Optional[RunRecord]:
        row = conn.execute(
            """
            SELECT run_id, source_key, state, attempts, started_at_utc, updated_at_utc, failed_step, error
            FROM runs
            WHERE run_id = ?
            """,
            (run_id,),
        ).fetchone()
        if not row:
            return None
        return RunRecord(
            run_id=row["run_id"],
            source_key=row["source_key"],
            state=RunState(row["state"]),
            attempts=int(row["attempts"]),
            started_at_utc=row["started_at_utc"],
            updated_at_utc=row["updated_at_utc"],
            failed_step=row["failed_step"],
            error=row["error"],
            resumed=resumed,
        )

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    run_id TEXT PRIMARY KEY,
                    source_key TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    state TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    failed_step TEXT,
                    error TEXT,
                    started_at_utc TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_runs_source_seq
                ON runs (source_key, seq)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS run_steps (
                    run_id TEXT NOT NULL,
                    step TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    completed_at_utc TEXT NOT NULL,
                    PRIMARY KEY (run_id, step)
                )
                """
            )


def _chunks(seq: List[Any], size: int):
    for i in range(0, len(seq), size):
        yield seq[i:i + size]
