"""In-memory checkpoint store, suitable for tests and short-lived processes."""

from __future__ import annotations

import copy
import threading
from collections.abc import Sequence

from threadgraph.checkpoint.base import CheckpointStore, slice_history
from threadgraph.checkpoint.models import Checkpoint, TaskRecord


class InMemoryCheckpointStore(CheckpointStore):
    """Keeps checkpoints in process memory. Values are deep-copied in and out."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._checkpoints: dict[str, list[Checkpoint]] = {}
        self._writes: dict[tuple[str, str], dict[str, TaskRecord]] = {}

    def put(self, checkpoint: Checkpoint) -> str:
        with self._lock:
            lineage = self._checkpoints.setdefault(checkpoint.thread_id, [])
            if any(c.checkpoint_id == checkpoint.checkpoint_id for c in lineage):
                raise ValueError(f"Checkpoint {checkpoint.checkpoint_id} already exists")
            lineage.append(copy.deepcopy(checkpoint))
            return checkpoint.checkpoint_id

    def put_many(
        self,
        checkpoints: Sequence[Checkpoint],
        records: Sequence[TaskRecord] = (),
    ) -> None:
        with self._lock:
            seen: set[tuple[str, str]] = set()
            for checkpoint in checkpoints:
                key = (checkpoint.thread_id, checkpoint.checkpoint_id)
                lineage = self._checkpoints.get(checkpoint.thread_id, [])
                if key in seen or any(c.checkpoint_id == key[1] for c in lineage):
                    raise ValueError(f"Checkpoint {checkpoint.checkpoint_id} already exists")
                seen.add(key)
            for checkpoint in checkpoints:
                self._checkpoints.setdefault(checkpoint.thread_id, []).append(
                    copy.deepcopy(checkpoint)
                )
            if records and checkpoints:
                last = checkpoints[-1]
                bucket = self._writes.setdefault((last.thread_id, last.checkpoint_id), {})
                for record in records:
                    bucket[record.node] = copy.deepcopy(record)

    def get(self, thread_id: str, checkpoint_id: str) -> Checkpoint | None:
        with self._lock:
            for checkpoint in self._checkpoints.get(thread_id, []):
                if checkpoint.checkpoint_id == checkpoint_id:
                    return copy.deepcopy(checkpoint)
            return None

    def get_latest(self, thread_id: str) -> Checkpoint | None:
        with self._lock:
            lineage = self._checkpoints.get(thread_id)
            if not lineage:
                return None
            return copy.deepcopy(lineage[-1])

    def list_history(
        self,
        thread_id: str,
        before: str | None = None,
        limit: int | None = None,
    ) -> list[Checkpoint]:
        with self._lock:
            lineage = self._checkpoints.get(thread_id, [])
            return [copy.deepcopy(c) for c in slice_history(lineage, before, limit)]

    def put_writes(
        self, thread_id: str, checkpoint_id: str, records: Sequence[TaskRecord]
    ) -> None:
        with self._lock:
            bucket = self._writes.setdefault((thread_id, checkpoint_id), {})
            for record in records:
                bucket[record.node] = copy.deepcopy(record)

    def get_writes(self, thread_id: str, checkpoint_id: str) -> list[TaskRecord]:
        with self._lock:
            bucket = self._writes.get((thread_id, checkpoint_id), {})
            return [copy.deepcopy(r) for r in bucket.values()]

    def list_threads(self) -> list[str]:
        with self._lock:
            return list(self._checkpoints)

    def delete_thread(self, thread_id: str) -> None:
        with self._lock:
            self._checkpoints.pop(thread_id, None)
            for key in [k for k in self._writes if k[0] == thread_id]:
                del self._writes[key]
