"""JSON-file backed checkpoint store.

One file per thread under ``root``. Each write rewrites the thread file via a
temporary file and an atomic rename, so a crash leaves either the previous or
the new content on disk.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from pydantic import BaseModel, Field

from threadgraph.checkpoint.base import CheckpointStore, slice_history
from threadgraph.checkpoint.models import Checkpoint, TaskRecord

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


class ThreadFile(BaseModel):
    """On-disk layout of one thread."""

    thread_id: str
    checkpoints: list[Checkpoint] = Field(default_factory=list)
    writes: dict[str, dict[str, TaskRecord]] = Field(default_factory=dict)


@dataclass
class JsonFileCheckpointStore(CheckpointStore):
    root: Path

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self._lock = threading.Lock()

    def _path(self, thread_id: str) -> Path:
        return self.root / (quote(thread_id, safe="") + _SUFFIX)

    def _load_unlocked(self, thread_id: str) -> ThreadFile:
        path = self._path(thread_id)
        if not path.exists():
            return ThreadFile(thread_id=thread_id)
        raw = json.loads(path.read_text(encoding="utf-8"))
        return ThreadFile.model_validate(raw)

    def _save_unlocked(self, data: ThreadFile) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(data.thread_id)
        tmp = path.with_suffix(path.suffix + ".tmp")
        payload: dict[str, Any] = data.model_dump(mode="json")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        os.replace(tmp, path)

    def put(self, checkpoint: Checkpoint) -> str:
        with self._lock:
            data = self._load_unlocked(checkpoint.thread_id)
            if any(c.checkpoint_id == checkpoint.checkpoint_id for c in data.checkpoints):
                raise ValueError(f"Checkpoint {checkpoint.checkpoint_id} already exists")
            data.checkpoints.append(checkpoint)
            self._save_unlocked(data)
        logger.debug(
            "Checkpoint written",
            extra={"thread_id": checkpoint.thread_id, "checkpoint_id": checkpoint.checkpoint_id},
        )
        return checkpoint.checkpoint_id

    def put_many(
        self,
        checkpoints: Sequence[Checkpoint],
        records: Sequence[TaskRecord] = (),
    ) -> None:
        if not checkpoints:
            return
        thread_id = checkpoints[0].thread_id
        if any(c.thread_id != thread_id for c in checkpoints):
            raise ValueError("put_many expects checkpoints of a single thread")
        with self._lock:
            data = self._load_unlocked(thread_id)
            existing = {c.checkpoint_id for c in data.checkpoints}
            for checkpoint in checkpoints:
                if checkpoint.checkpoint_id in existing:
                    raise ValueError(f"Checkpoint {checkpoint.checkpoint_id} already exists")
                existing.add(checkpoint.checkpoint_id)
                data.checkpoints.append(checkpoint)
            if records:
                bucket = data.writes.setdefault(checkpoints[-1].checkpoint_id, {})
                for record in records:
                    bucket[record.node] = record
            self._save_unlocked(data)
        logger.debug(
            "Checkpoints written",
            extra={"thread_id": thread_id, "checkpoint_ids": [c.checkpoint_id for c in checkpoints]},
        )

    def get(self, thread_id: str, checkpoint_id: str) -> Checkpoint | None:
        with self._lock:
            for checkpoint in self._load_unlocked(thread_id).checkpoints:
                if checkpoint.checkpoint_id == checkpoint_id:
                    return checkpoint
            return None

    def get_latest(self, thread_id: str) -> Checkpoint | None:
        with self._lock:
            checkpoints = self._load_unlocked(thread_id).checkpoints
            return checkpoints[-1] if checkpoints else None

    def list_history(
        self,
        thread_id: str,
        before: str | None = None,
        limit: int | None = None,
    ) -> list[Checkpoint]:
        with self._lock:
            return slice_history(self._load_unlocked(thread_id).checkpoints, before, limit)

    def put_writes(
        self, thread_id: str, checkpoint_id: str, records: Sequence[TaskRecord]
    ) -> None:
        with self._lock:
            data = self._load_unlocked(thread_id)
            bucket = data.writes.setdefault(checkpoint_id, {})
            for record in records:
                bucket[record.node] = record
            self._save_unlocked(data)

    def get_writes(self, thread_id: str, checkpoint_id: str) -> list[TaskRecord]:
        with self._lock:
            return list(self._load_unlocked(thread_id).writes.get(checkpoint_id, {}).values())

    def list_threads(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(unquote(p.name[: -len(_SUFFIX)]) for p in self.root.glob("*" + _SUFFIX))

    def delete_thread(self, thread_id: str) -> None:
        with self._lock:
            path = self._path(thread_id)
            if path.exists():
                path.unlink()
                logger.info("Thread deleted", extra={"thread_id": thread_id})
