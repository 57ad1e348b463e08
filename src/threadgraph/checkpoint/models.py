"""Persisted records: checkpoints and the task records of suspended supersteps."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from threadgraph.graph.types import Interrupt

CheckpointSource = Literal["input", "loop", "update", "fork"]


def new_checkpoint_id() -> str:
    return uuid.uuid4().hex


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class Checkpoint(BaseModel):
    """Complete snapshot of a thread after one superstep.

    ``pending_nodes`` is the frontier that runs next; empty means the run is
    finished. ``metadata`` carries ``step``, ``source`` and ``writes`` (the
    updates each node contributed, recorded before the merge).
    """

    model_config = ConfigDict(frozen=True)

    thread_id: str
    checkpoint_id: str = Field(default_factory=new_checkpoint_id)
    parent_checkpoint_id: str | None = None
    state: dict[str, Any] = Field(default_factory=dict)
    pending_nodes: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)

    @property
    def step(self) -> int:
        return int(self.metadata.get("step", -1))

    @property
    def source(self) -> str:
        return str(self.metadata.get("source", "input"))

    @property
    def writes(self) -> dict[str, list[dict[str, Any]]]:
        return dict(self.metadata.get("writes") or {})


TaskStatus = Literal["completed", "interrupted"]


class TaskRecord(BaseModel):
    """Outcome of one node within a superstep that has not been committed yet.

    Stored against the checkpoint the superstep started from when a sibling
    node suspends, so completed nodes are not re-run on resume.
    """

    node: str
    status: TaskStatus
    updates: list[dict[str, Any]] = Field(default_factory=list)
    goto: list[str] | None = None
    interrupts: list[Interrupt] = Field(default_factory=list)
    resume_values: list[Any] = Field(default_factory=list)


class StateSnapshot(BaseModel):
    """What ``get_state`` returns for a thread."""

    model_config = ConfigDict(frozen=True)

    thread_id: str
    values: dict[str, Any] = Field(default_factory=dict)
    next: list[str] = Field(default_factory=list)
    checkpoint_id: str | None = None
    parent_checkpoint_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    interrupts: list[Interrupt] = Field(default_factory=list)

    @classmethod
    def from_checkpoint(
        cls, checkpoint: Checkpoint, records: list[TaskRecord] | None = None
    ) -> StateSnapshot:
        interrupts = [
            interrupt
            for record in records or []
            if record.status == "interrupted"
            for interrupt in record.interrupts
        ]
        return cls(
            thread_id=checkpoint.thread_id,
            values=dict(checkpoint.state),
            next=list(checkpoint.pending_nodes),
            checkpoint_id=checkpoint.checkpoint_id,
            parent_checkpoint_id=checkpoint.parent_checkpoint_id,
            metadata=dict(checkpoint.metadata),
            created_at=checkpoint.created_at,
            interrupts=interrupts,
        )
