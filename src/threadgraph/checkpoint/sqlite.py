"""SQLite-backed checkpoint store.

Checkpoints are stored one row each; ``seq`` preserves insertion order, which
defines the tip and the history order of a thread.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Sequence
from pathlib import Path

from threadgraph.checkpoint.base import CheckpointStore
from threadgraph.checkpoint.models import Checkpoint, TaskRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS checkpoints (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    thread_id TEXT NOT NULL,
    checkpoint_id TEXT NOT NULL,
    parent_checkpoint_id TEXT,
    created_at TEXT NOT NULL,
    payload TEXT NOT NULL,
    UNIQUE (thread_id, checkpoint_id)
);
CREATE INDEX IF NOT EXISTS idx_checkpoints_thread ON checkpoints (thread_id, seq);
CREATE TABLE IF NOT EXISTS task_records (
    thread_id TEXT NOT NULL,
    checkpoint_id TEXT NOT NULL,
    node TEXT NOT NULL,
    payload TEXT NOT NULL,
    PRIMARY KEY (thread_id, checkpoint_id, node)
);
"""


class SQLiteCheckpointStore(CheckpointStore):
    """Stores checkpoints in a SQLite database file (or ``:memory:``)."""

    def __init__(self, path: str | Path = ":memory:", busy_timeout: int = 5000) -> None:
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute(f"PRAGMA busy_timeout={int(busy_timeout)}")
        self._lock = threading.RLock()
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        logger.info("SQLite checkpoint store initialized", extra={"path": self._path})

    def put(self, checkpoint: Checkpoint) -> str:
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO checkpoints "
                    "(thread_id, checkpoint_id, parent_checkpoint_id, created_at, payload) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        checkpoint.thread_id,
                        checkpoint.checkpoint_id,
                        checkpoint.parent_checkpoint_id,
                        checkpoint.created_at.isoformat(),
                        checkpoint.model_dump_json(),
                    ),
                )
                self._conn.commit()
            except sqlite3.IntegrityError as e:
                self._conn.rollback()
                raise ValueError(f"Checkpoint {checkpoint.checkpoint_id} already exists") from e
        return checkpoint.checkpoint_id

    def put_many(
        self,
        checkpoints: Sequence[Checkpoint],
        records: Sequence[TaskRecord] = (),
    ) -> None:
        if not checkpoints:
            return
        last = checkpoints[-1]
        with self._lock:
            try:
                self._conn.executemany(
                    "INSERT INTO checkpoints "
                    "(thread_id, checkpoint_id, parent_checkpoint_id, created_at, payload) "
                    "VALUES (?, ?, ?, ?, ?)",
                    [
                        (
                            c.thread_id,
                            c.checkpoint_id,
                            c.parent_checkpoint_id,
                            c.created_at.isoformat(),
                            c.model_dump_json(),
                        )
                        for c in checkpoints
                    ],
                )
                self._conn.executemany(
                    "INSERT OR REPLACE INTO task_records "
                    "(thread_id, checkpoint_id, node, payload) VALUES (?, ?, ?, ?)",
                    [
                        (last.thread_id, last.checkpoint_id, r.node, r.model_dump_json())
                        for r in records
                    ],
                )
                self._conn.commit()
            except sqlite3.IntegrityError as e:
                self._conn.rollback()
                raise ValueError("Checkpoint already exists") from e
            except sqlite3.Error:
                self._conn.rollback()
                raise

    def get(self, thread_id: str, checkpoint_id: str) -> Checkpoint | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload FROM checkpoints WHERE thread_id = ? AND checkpoint_id = ?",
                (thread_id, checkpoint_id),
            ).fetchone()
        return Checkpoint.model_validate_json(row["payload"]) if row else None

    def get_latest(self, thread_id: str) -> Checkpoint | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload FROM checkpoints WHERE thread_id = ? ORDER BY seq DESC LIMIT 1",
                (thread_id,),
            ).fetchone()
        return Checkpoint.model_validate_json(row["payload"]) if row else None

    def list_history(
        self,
        thread_id: str,
        before: str | None = None,
        limit: int | None = None,
    ) -> list[Checkpoint]:
        sql = "SELECT payload FROM checkpoints WHERE thread_id = ?"
        params: list[object] = [thread_id]
        if before is not None:
            sql += (
                " AND seq < (SELECT seq FROM checkpoints "
                "WHERE thread_id = ? AND checkpoint_id = ?)"
            )
            params.extend([thread_id, before])
        sql += " ORDER BY seq DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(max(limit, 0))
        with self._lock:
            rows = self._conn.execute(sql, tuple(params)).fetchall()
        return [Checkpoint.model_validate_json(r["payload"]) for r in rows]

    def put_writes(
        self, thread_id: str, checkpoint_id: str, records: Sequence[TaskRecord]
    ) -> None:
        with self._lock:
            try:
                self._conn.executemany(
                    "INSERT OR REPLACE INTO task_records "
                    "(thread_id, checkpoint_id, node, payload) VALUES (?, ?, ?, ?)",
                    [(thread_id, checkpoint_id, r.node, r.model_dump_json()) for r in records],
                )
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise

    def get_writes(self, thread_id: str, checkpoint_id: str) -> list[TaskRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT payload FROM task_records WHERE thread_id = ? AND checkpoint_id = ?",
                (thread_id, checkpoint_id),
            ).fetchall()
        return [TaskRecord.model_validate_json(r["payload"]) for r in rows]

    def list_threads(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT thread_id FROM checkpoints GROUP BY thread_id ORDER BY MIN(seq)"
            ).fetchall()
        return [r["thread_id"] for r in rows]

    def delete_thread(self, thread_id: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM checkpoints WHERE thread_id = ?", (thread_id,))
            self._conn.execute("DELETE FROM task_records WHERE thread_id = ?", (thread_id,))
            self._conn.commit()
        logger.info("Thread deleted", extra={"thread_id": thread_id})

    def close(self) -> None:
        with self._lock:
            self._conn.close()
