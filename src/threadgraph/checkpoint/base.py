"""Abstract base class for checkpoint stores."""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from threadgraph.checkpoint.models import Checkpoint, TaskRecord


class CheckpointStore(ABC):
    """Durable, append-only storage of checkpoints keyed by (thread, checkpoint).

    Implementations never modify a stored checkpoint. The latest checkpoint of
    a thread is the one most recently put. Any exception raised by a method is
    treated by the scheduler as an unconfirmed operation.
    """

    @abstractmethod
    def put(self, checkpoint: Checkpoint) -> str:
        """Persist a checkpoint.

        Args:
            checkpoint: The checkpoint to append to its thread.

        Returns:
            The checkpoint identifier.

        Raises:
            ValueError: If the identifier already exists in the thread.
        """
        pass

    def put_many(
        self,
        checkpoints: Sequence[Checkpoint],
        records: Sequence[TaskRecord] = (),
    ) -> None:
        """Persist several checkpoints of one thread, and optionally task records
        of the last one, as a single write.

        Backends make this all-or-nothing. The default implementation writes
        one item after the other and is not atomic.

        Raises:
            ValueError: If an identifier already exists in the thread.
        """

        for checkpoint in checkpoints:
            self.put(checkpoint)
        if records and checkpoints:
            last = checkpoints[-1]
            self.put_writes(last.thread_id, last.checkpoint_id, records)

    @abstractmethod
    def get(self, thread_id: str, checkpoint_id: str) -> Checkpoint | None:
        """Load one checkpoint, or None if unknown."""
        pass

    @abstractmethod
    def get_latest(self, thread_id: str) -> Checkpoint | None:
        """Load the tip of a thread, or None for a new thread."""
        pass

    @abstractmethod
    def list_history(
        self,
        thread_id: str,
        before: str | None = None,
        limit: int | None = None,
    ) -> list[Checkpoint]:
        """List checkpoints of a thread, most recent first.

        Args:
            thread_id: Thread to list.
            before: Only return checkpoints stored before this checkpoint id.
            limit: Maximum number of checkpoints to return.
        """
        pass

    @abstractmethod
    def put_writes(
        self, thread_id: str, checkpoint_id: str, records: Sequence[TaskRecord]
    ) -> None:
        """Record node outcomes of an uncommitted superstep, one per node.

        A record for a node replaces any earlier record for the same node.
        """
        pass

    @abstractmethod
    def get_writes(self, thread_id: str, checkpoint_id: str) -> list[TaskRecord]:
        """Load the task records stored against a checkpoint."""
        pass

    @abstractmethod
    def list_threads(self) -> list[str]:
        """List known thread identifiers."""
        pass

    @abstractmethod
    def delete_thread(self, thread_id: str) -> None:
        """Remove a thread and everything stored for it (administrative cleanup)."""
        pass

    def close(self) -> None:
        """Release resources held by the store."""
        return None


def slice_history(
    checkpoints: Sequence[Checkpoint], before: str | None, limit: int | None
) -> list[Checkpoint]:
    """Apply ``before``/``limit`` to checkpoints ordered oldest first."""

    ordered = list(reversed(checkpoints))
    if before is not None:
        for idx, checkpoint in enumerate(ordered):
            if checkpoint.checkpoint_id == before:
                ordered = ordered[idx + 1 :]
                break
        else:
            ordered = []
    if limit is not None:
        ordered = ordered[: max(limit, 0)]
    return ordered
