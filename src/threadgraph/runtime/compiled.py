"""Executable graph: the superstep loop and the caller-facing thread API."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field, computed_field

from threadgraph.checkpoint.base import CheckpointStore
from threadgraph.checkpoint.factory import create_checkpoint_store
from threadgraph.checkpoint.models import Checkpoint, StateSnapshot, TaskRecord
from threadgraph.core.config import EngineSettings
from threadgraph.errors import (
    GraphRecursionError,
    RunCancelledError,
    SuspensionMisuseError,
    ThreadGraphError,
)
from threadgraph.graph.types import Interrupt, NodeOutcome
from threadgraph.runtime.context import NodeContext
from threadgraph.runtime.history import INPUT_WRITER, ThreadHistory
from threadgraph.runtime.scheduler import Scheduler

if TYPE_CHECKING:
    from threadgraph.graph.builder import GraphSpec
    from threadgraph.store import BaseStore

logger = logging.getLogger(__name__)

RunStatus = Literal["done", "suspended"]


class RunResult(BaseModel):
    """What ``advance`` and ``resume`` return.

    ``state`` is the last committed state. For a suspended run it does not
    include any update of the suspended superstep.
    """

    status: RunStatus
    thread_id: str
    checkpoint_id: str | None = None
    state: dict[str, Any] = Field(default_factory=dict)
    interrupts: list[Interrupt] = Field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.status == "done"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def payload(self) -> Any:
        """Value of the first pending interrupt, if the run is suspended."""

        return self.interrupts[0].value if self.interrupts else None


@dataclass
class _ThreadLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


@dataclass
class _Run:
    thread_id: str
    config: Mapping[str, Any] = field(default_factory=dict)
    cancel_event: threading.Event | None = None
    committed_id: str | None = None

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RunCancelledError("Run cancelled")


class CompiledGraph:
    """A validated graph bound to a checkpoint store.

    Supersteps of one thread run strictly one after the other; concurrent
    calls for the same thread id are serialised within this process. Different
    threads are independent.
    """

    def __init__(
        self,
        spec: GraphSpec,
        *,
        checkpointer: CheckpointStore | None = None,
        store: BaseStore | None = None,
        settings: EngineSettings | None = None,
        name: str = "graph",
    ) -> None:
        self.spec = spec
        self.name = name
        self.settings = settings or EngineSettings()
        self.store = store
        self._checkpointer = (
            checkpointer if checkpointer is not None else create_checkpoint_store(self.settings)
        )
        self.scheduler = Scheduler(spec, store=store, max_workers=self.settings.max_workers)
        self.history = ThreadHistory(
            self._checkpointer,
            spec.reducers,
            write_retries=self.settings.checkpoint_write_retries,
        )
        self._locks: dict[str, _ThreadLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def checkpointer(self) -> CheckpointStore:
        return self._checkpointer

    @property
    def nodes(self) -> list[str]:
        return list(self.spec.nodes)

    @contextmanager
    def _thread_lock(self, thread_id: str) -> Iterator[None]:
        """Hold the lock of ``thread_id``; the entry is dropped once nobody uses it."""

        with self._locks_guard:
            entry = self._locks.get(thread_id)
            if entry is None:
                entry = self._locks[thread_id] = _ThreadLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if not entry.users:
                    del self._locks[thread_id]

    # -- execution ---------------------------------------------------------

    def advance(
        self,
        thread_id: str,
        input: Mapping[str, Any] | None = None,
        config: Mapping[str, Any] | None = None,
        *,
        checkpoint_id: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RunResult:
        """Run the graph on a thread until it finishes or suspends.

        Args:
            thread_id: Thread to run. A new id starts a new thread.
            input: State delta merged through the reducers before the run
                starts at the entry point. Pending interrupts are abandoned.
                Without input, pending nodes of the thread are continued; a
                finished thread is returned unchanged.
            config: Run configuration, available to nodes as ``ctx.config``.
            checkpoint_id: Start from this past checkpoint instead of the
                latest one (time travel). New checkpoints become the tip.
            cancel_event: Cancels the run when set; nothing is written for
                the superstep in progress.

        Raises:
            NodeExecutionError: A node raised. Nothing was written for the
                failing superstep.
            CheckpointStoreError: The store failed; the run did not advance
                past the last confirmed checkpoint.
            GraphRecursionError: ``recursion_limit`` supersteps ran without
                finishing.
        """

        with self._thread_lock(thread_id):
            base: Checkpoint | None = None
            try:
                if checkpoint_id is not None:
                    base = self.history.get(thread_id, checkpoint_id)
                else:
                    base = self.history.latest(thread_id)
                run = _Run(
                    thread_id=thread_id,
                    config=dict(config or {}),
                    cancel_event=cancel_event,
                    committed_id=base.checkpoint_id if base is not None else None,
                )

                if input:
                    staged = Checkpoint(
                        thread_id=thread_id,
                        parent_checkpoint_id=base.checkpoint_id if base is not None else None,
                        state=self.spec.reducers.apply(base.state if base else {}, input),
                        pending_nodes=[self.spec.entry_point],
                        metadata={
                            "step": base.step + 1 if base is not None else -1,
                            "source": "input",
                            "writes": {INPUT_WRITER: [dict(input)]},
                        },
                    )
                    return self._run(run, staged, {}, staged=True)

                if base is None:
                    staged = Checkpoint(
                        thread_id=thread_id,
                        pending_nodes=[self.spec.entry_point],
                        metadata={"step": -1, "source": "input", "writes": {}},
                    )
                    return self._run(run, staged, {}, staged=True)

                if not base.pending_nodes:
                    logger.info(
                        "Nothing to run",
                        extra={"thread_id": thread_id, "checkpoint_id": base.checkpoint_id},
                    )
                    return RunResult(
                        status="done",
                        thread_id=thread_id,
                        checkpoint_id=base.checkpoint_id,
                        state=base.state,
                    )

                records = {r.node: r for r in self.history.records(base)}
                return self._run(run, base, records, staged=False)
            except ThreadGraphError as e:
                raise e.bind(
                    thread_id=thread_id,
                    checkpoint_id=base.checkpoint_id if base is not None else None,
                )

    def resume(
        self,
        thread_id: str,
        value: Any = None,
        *,
        node: str | None = None,
        config: Mapping[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RunResult:
        """Answer a pending interrupt and continue the run.

        ``value`` becomes the return value of the pending ``interrupt()`` call
        of ``node``, or of the first suspended node in declaration order.
        Nodes that completed in the suspended superstep are not run again.

        Raises:
            SuspensionMisuseError: Nothing is suspended on the thread, or
                ``node`` is not one of the suspended nodes.
        """

        with self._thread_lock(thread_id):
            tip: Checkpoint | None = None
            try:
                tip = self.history.latest(thread_id)
                if tip is None:
                    raise SuspensionMisuseError("Nothing to resume on an unknown thread")
                records = {r.node: r for r in self.history.records(tip)}
                waiting = self.spec.order(
                    [
                        r.node
                        for r in records.values()
                        if r.status == "interrupted" and r.node in self.spec.nodes
                    ]
                )
                if not waiting:
                    raise SuspensionMisuseError("No pending interrupt to resume")
                target = node or waiting[0]
                if target not in waiting:
                    raise SuspensionMisuseError(
                        f"Node {target!r} is not suspended; waiting: {waiting}"
                    )
                record = records[target]
                records[target] = record.model_copy(
                    update={"resume_values": [*record.resume_values, value]}
                )
                logger.info(
                    "Resuming thread",
                    extra={"thread_id": thread_id, "checkpoint_id": tip.checkpoint_id, "node": target},
                )
                run = _Run(
                    thread_id=thread_id,
                    config=dict(config or {}),
                    cancel_event=cancel_event,
                    committed_id=tip.checkpoint_id,
                )
                return self._run(run, tip, records, staged=False)
            except ThreadGraphError as e:
                raise e.bind(
                    thread_id=thread_id,
                    checkpoint_id=tip.checkpoint_id if tip is not None else None,
                )

    def _run(
        self,
        run: _Run,
        current: Checkpoint,
        records: dict[str, TaskRecord],
        *,
        staged: bool,
    ) -> RunResult:
        """Run supersteps from ``current`` until the frontier is empty.

        A ``staged`` checkpoint has not been written yet; it is committed
        together with the outcome of the first superstep.
        """

        limit = self.settings.recursion_limit
        steps = 0
        try:
            while current.pending_nodes:
                if steps >= limit:
                    raise GraphRecursionError(
                        f"Recursion limit of {limit} supersteps reached without finishing",
                        limit=limit,
                    )
                run.check_cancelled()
                step = current.step + 1
                outcome = self.scheduler.run_superstep(
                    current.state,
                    current.pending_nodes,
                    thread_id=run.thread_id,
                    step=step,
                    config=run.config,
                    records=records,
                    cancel_event=run.cancel_event,
                )
                run.check_cancelled()

                if outcome.interrupted:
                    if staged:
                        self.history.commit_many([current], outcome.records)
                    else:
                        self.history.save_records(current, outcome.records)
                    run.committed_id = current.checkpoint_id
                    logger.info(
                        "Run suspended",
                        extra={
                            "thread_id": run.thread_id,
                            "checkpoint_id": current.checkpoint_id,
                            "step": step,
                            "nodes": [i.node for i in outcome.interrupts],
                        },
                    )
                    return RunResult(
                        status="suspended",
                        thread_id=run.thread_id,
                        checkpoint_id=current.checkpoint_id,
                        state=current.state,
                        interrupts=outcome.interrupts,
                    )

                committed = Checkpoint(
                    thread_id=run.thread_id,
                    parent_checkpoint_id=current.checkpoint_id,
                    state=outcome.state,
                    pending_nodes=outcome.frontier,
                    metadata={"step": step, "source": "loop", "writes": outcome.writes},
                )
                if staged:
                    self.history.commit_many([current, committed])
                    staged = False
                else:
                    self.history.commit(committed)
                run.committed_id = committed.checkpoint_id
                current = committed
                records = {}
                steps += 1
        except ThreadGraphError as e:
            raise e.bind(thread_id=run.thread_id, checkpoint_id=run.committed_id)

        logger.info(
            "Run finished",
            extra={
                "thread_id": run.thread_id,
                "checkpoint_id": current.checkpoint_id,
                "supersteps": steps,
            },
        )
        return RunResult(
            status="done",
            thread_id=run.thread_id,
            checkpoint_id=current.checkpoint_id,
            state=current.state,
        )

    def run_nested(self, state: Mapping[str, Any], ctx: NodeContext) -> NodeOutcome:
        """Run this graph to completion as a node of an enclosing graph.

        Nothing is checkpointed. The writes of every inner node are returned
        in order so the enclosing graph merges them through its own reducers.
        """

        current = dict(state)
        frontier = [self.spec.entry_point]
        writes: list[dict[str, Any]] = []
        limit = self.settings.recursion_limit
        steps = 0
        while frontier:
            if steps >= limit:
                raise GraphRecursionError(
                    f"Nested graph {self.name!r} reached the recursion limit of {limit}",
                    limit=limit,
                )
            outcome = self.scheduler.run_superstep(
                current,
                frontier,
                thread_id=ctx.thread_id,
                step=steps,
                config=ctx.config,
                parent_ctx=ctx,
            )
            writes.extend(outcome.ordered_updates())
            current = outcome.state
            frontier = outcome.frontier
            steps += 1
        return NodeOutcome(node=ctx.node, updates=writes)

    # -- thread API --------------------------------------------------------

    def get_state(self, thread_id: str, checkpoint_id: str | None = None) -> StateSnapshot:
        """Latest (or the given) snapshot of a thread; empty for an unknown thread."""

        try:
            if checkpoint_id is None:
                checkpoint = self.history.latest(thread_id)
                if checkpoint is None:
                    return StateSnapshot(thread_id=thread_id)
            else:
                checkpoint = self.history.get(thread_id, checkpoint_id)
            return self.history.snapshot(checkpoint)
        except ThreadGraphError as e:
            raise e.bind(thread_id=thread_id, checkpoint_id=checkpoint_id)

    def get_history(
        self,
        thread_id: str,
        *,
        before: str | None = None,
        limit: int | None = None,
    ) -> list[StateSnapshot]:
        """Snapshots of a thread, most recent first."""

        return self.history.history(thread_id, before=before, limit=limit)

    def fork(
        self, thread_id: str, checkpoint_id: str, new_thread_id: str | None = None
    ) -> StateSnapshot:
        """Make a past checkpoint the tip of ``thread_id`` or of a new thread.

        The original lineage is not modified. Pending interrupts of the forked
        checkpoint are not carried over; ``advance`` without input runs its
        pending nodes again.
        """

        target = new_thread_id or thread_id
        with self._thread_lock(target):
            forked = self.history.fork(thread_id, checkpoint_id, new_thread_id)
        return self.history.snapshot(forked)

    def update_state(
        self,
        thread_id: str,
        checkpoint_id: str | None,
        values: Mapping[str, Any],
    ) -> StateSnapshot:
        """Merge ``values`` into a checkpoint's state, producing the new tip.

        The new checkpoint is a child of ``checkpoint_id`` (the tip when None)
        and keeps its pending nodes.
        """

        with self._thread_lock(thread_id):
            updated = self.history.update(thread_id, checkpoint_id, values)
        logger.info(
            "State updated",
            extra={
                "thread_id": thread_id,
                "checkpoint_id": updated.checkpoint_id,
                "fields": sorted(values),
            },
        )
        return self.history.snapshot(updated)

    def replay_state(self, thread_id: str, checkpoint_id: str | None = None) -> dict[str, Any]:
        """Recompute a checkpoint's state from the recorded writes of its lineage."""

        return self.history.replay(thread_id, checkpoint_id)
