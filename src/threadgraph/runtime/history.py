"""Thread history over a checkpoint store.

Wraps every store call so that failures surface as
:class:`~threadgraph.errors.CheckpointStoreError`, retries writes, and
implements the history operations that derive new checkpoints from old ones:
fork, state update and replay.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

from threadgraph.checkpoint.base import CheckpointStore
from threadgraph.checkpoint.models import Checkpoint, StateSnapshot, TaskRecord
from threadgraph.errors import CheckpointNotFoundError, CheckpointStoreError, ThreadConflictError
from threadgraph.graph.reducers import ReducerRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

INPUT_WRITER = "__input__"
UPDATE_WRITER = "__update__"


class ThreadHistory:
    """Checkpoint lineage operations for one compiled graph."""

    def __init__(
        self,
        checkpointer: CheckpointStore,
        reducers: ReducerRegistry,
        *,
        write_retries: int = 2,
    ) -> None:
        self.checkpointer = checkpointer
        self.reducers = reducers
        self.write_retries = write_retries

    # -- store access ------------------------------------------------------

    def _read(self, thread_id: str, op: Callable[[], T]) -> T:
        try:
            return op()
        except Exception as e:
            raise CheckpointStoreError(
                f"Checkpoint read failed: {e}", thread_id=thread_id
            ) from e

    def _write(
        self,
        thread_id: str,
        what: str,
        op: Callable[[], object],
        confirmed: Callable[[], bool] | None = None,
    ) -> None:
        last_error: Exception | None = None
        for attempt in range(self.write_retries + 1):
            try:
                if attempt and confirmed is not None and confirmed():
                    return
                op()
                return
            except Exception as e:
                last_error = e
                logger.warning(
                    "Checkpoint store write failed",
                    extra={"thread_id": thread_id, "write": what, "attempt": attempt + 1},
                )
        raise CheckpointStoreError(
            f"Could not write {what}: {last_error}", thread_id=thread_id
        ) from last_error

    def latest(self, thread_id: str) -> Checkpoint | None:
        return self._read(thread_id, lambda: self.checkpointer.get_latest(thread_id))

    def get(self, thread_id: str, checkpoint_id: str) -> Checkpoint:
        """Load a checkpoint that must exist."""

        checkpoint = self._read(thread_id, lambda: self.checkpointer.get(thread_id, checkpoint_id))
        if checkpoint is None:
            raise CheckpointNotFoundError(
                f"Unknown checkpoint {checkpoint_id!r}",
                thread_id=thread_id,
                checkpoint_id=checkpoint_id,
            )
        return checkpoint

    def resolve(self, thread_id: str, checkpoint_id: str | None) -> Checkpoint:
        """Load ``checkpoint_id``, or the tip of the thread when it is None."""

        if checkpoint_id is not None:
            return self.get(thread_id, checkpoint_id)
        checkpoint = self.latest(thread_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(f"Unknown thread {thread_id!r}", thread_id=thread_id)
        return checkpoint

    def records(self, checkpoint: Checkpoint) -> list[TaskRecord]:
        return self._read(
            checkpoint.thread_id,
            lambda: self.checkpointer.get_writes(checkpoint.thread_id, checkpoint.checkpoint_id),
        )

    def commit(self, checkpoint: Checkpoint) -> None:
        """Write a checkpoint, retrying until it is confirmed.

        Raises:
            CheckpointStoreError: If no attempt could be confirmed.
        """

        self._write(
            checkpoint.thread_id,
            f"checkpoint {checkpoint.checkpoint_id}",
            lambda: self.checkpointer.put(checkpoint),
            confirmed=lambda: self.checkpointer.get(
                checkpoint.thread_id, checkpoint.checkpoint_id
            ) is not None,
        )
        logger.info(
            "Checkpoint committed",
            extra={
                "thread_id": checkpoint.thread_id,
                "checkpoint_id": checkpoint.checkpoint_id,
                "step": checkpoint.step,
                "source": checkpoint.source,
                "pending": checkpoint.pending_nodes,
            },
        )

    def commit_many(
        self, checkpoints: Sequence[Checkpoint], records: Sequence[TaskRecord] = ()
    ) -> None:
        """Write checkpoints of one thread, and task records of the last one, together.

        Either all of them are stored or none is.

        Raises:
            CheckpointStoreError: If no attempt could be confirmed.
        """

        last = checkpoints[-1]
        self._write(
            last.thread_id,
            "checkpoints " + ", ".join(c.checkpoint_id for c in checkpoints),
            lambda: self.checkpointer.put_many(checkpoints, records),
            confirmed=lambda: self.checkpointer.get(last.thread_id, last.checkpoint_id)
            is not None,
        )
        for checkpoint in checkpoints:
            logger.info(
                "Checkpoint committed",
                extra={
                    "thread_id": checkpoint.thread_id,
                    "checkpoint_id": checkpoint.checkpoint_id,
                    "step": checkpoint.step,
                    "source": checkpoint.source,
                    "pending": checkpoint.pending_nodes,
                },
            )

    def save_records(self, checkpoint: Checkpoint, records: Sequence[TaskRecord]) -> None:
        self._write(
            checkpoint.thread_id,
            f"task records of {checkpoint.checkpoint_id}",
            lambda: self.checkpointer.put_writes(
                checkpoint.thread_id, checkpoint.checkpoint_id, records
            ),
        )

    # -- snapshots ---------------------------------------------------------

    def snapshot(self, checkpoint: Checkpoint) -> StateSnapshot:
        return StateSnapshot.from_checkpoint(checkpoint, self.records(checkpoint))

    def history(
        self, thread_id: str, before: str | None = None, limit: int | None = None
    ) -> list[StateSnapshot]:
        checkpoints = self._read(
            thread_id, lambda: self.checkpointer.list_history(thread_id, before, limit)
        )
        return [self.snapshot(c) for c in checkpoints]

    def lineage(self, checkpoint: Checkpoint) -> list[Checkpoint]:
        """Checkpoints from the root of ``checkpoint``'s branch to itself."""

        chain = [checkpoint]
        current = checkpoint
        while current.parent_checkpoint_id is not None:
            current = self.get(current.thread_id, current.parent_checkpoint_id)
            chain.append(current)
        chain.reverse()
        return chain

    # -- derived checkpoints -----------------------------------------------

    def fork(
        self, thread_id: str, checkpoint_id: str, new_thread_id: str | None = None
    ) -> Checkpoint:
        """Make a copy of a past checkpoint the tip of a thread.

        On the same thread the copy is a child of the forked checkpoint. On a
        new thread it becomes the root, with ``forked_from`` in its metadata.

        Raises:
            ThreadConflictError: If ``new_thread_id`` already has checkpoints.
        """

        source = self.get(thread_id, checkpoint_id)
        target = new_thread_id or thread_id
        metadata: dict[str, Any] = {
            "step": source.step,
            "source": "fork",
            "writes": {},
            "forked_from": {"thread_id": thread_id, "checkpoint_id": checkpoint_id},
        }
        if target == thread_id:
            forked = Checkpoint(
                thread_id=thread_id,
                parent_checkpoint_id=source.checkpoint_id,
                state=source.state,
                pending_nodes=source.pending_nodes,
                metadata=metadata,
            )
        else:
            if self.latest(target) is not None:
                raise ThreadConflictError(
                    f"Cannot fork into existing thread {target!r}", thread_id=target
                )
            forked = Checkpoint(
                thread_id=target,
                state=source.state,
                pending_nodes=source.pending_nodes,
                metadata=metadata,
            )
        self.commit(forked)
        logger.info(
            "Thread forked",
            extra={"thread_id": thread_id, "checkpoint_id": checkpoint_id, "target": target},
        )
        return forked

    def update(
        self, thread_id: str, checkpoint_id: str | None, values: Mapping[str, Any]
    ) -> Checkpoint:
        """Merge ``values`` into a checkpoint's state as a new child (the new tip)."""

        source = self.resolve(thread_id, checkpoint_id)
        updated = Checkpoint(
            thread_id=thread_id,
            parent_checkpoint_id=source.checkpoint_id,
            state=self.reducers.apply(source.state, values),
            pending_nodes=source.pending_nodes,
            metadata={
                "step": source.step + 1,
                "source": "update",
                "writes": {UPDATE_WRITER: [dict(values)]},
            },
        )
        self.commit(updated)
        return updated

    def replay(self, thread_id: str, checkpoint_id: str | None = None) -> dict[str, Any]:
        """Recompute a checkpoint's state from the recorded writes of its lineage.

        A root created by forking into a new thread starts from its stored
        state; any other root starts from an empty state.
        """

        chain = self.lineage(self.resolve(thread_id, checkpoint_id))
        root = chain[0]
        state: dict[str, Any] = dict(root.state) if root.source == "fork" else {}
        for checkpoint in chain:
            for updates in checkpoint.writes.values():
                state = self.reducers.apply_all(state, updates)
        return state
