"""Superstep execution: run a frontier of nodes, merge their updates, route.

One call to :meth:`Scheduler.run_superstep` runs every pending node against
its own read-only snapshot of the state, then either

- merges the updates in node declaration order and computes the next
  frontier, or
- reports the suspension of one or more nodes together with the outcomes of
  the siblings that completed, without touching the state.

Persistence is left to the caller (:class:`threadgraph.runtime.compiled.CompiledGraph`).
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import threading
from collections.abc import Mapping, Sequence
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from threadgraph.checkpoint.models import TaskRecord
from threadgraph.errors import (
    InvalidRouteError,
    NodeExecutionError,
    NodeInterrupt,
    ParentCommand,
    RunCancelledError,
    SuspensionMisuseError,
    ThreadGraphError,
)
from threadgraph.graph.builder import ConditionalEdge, GraphSpec, NodeSpec
from threadgraph.graph.types import END, Command, Interrupt, NodeOutcome
from threadgraph.runtime.context import InterruptScratchpad, NodeContext

if TYPE_CHECKING:
    from threadgraph.store import BaseStore

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05


@dataclass
class StepOutcome:
    """Result of one superstep.

    When ``interrupts`` is empty, ``state`` is the merged state and
    ``frontier`` the next pending nodes. Otherwise ``records`` holds one task
    record per node of the superstep and the state is unchanged.
    """

    state: dict[str, Any]
    frontier: list[str] = field(default_factory=list)
    writes: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    records: list[TaskRecord] = field(default_factory=list)
    interrupts: list[Interrupt] = field(default_factory=list)

    @property
    def interrupted(self) -> bool:
        return bool(self.interrupts)

    def ordered_updates(self) -> list[dict[str, Any]]:
        return [update for updates in self.writes.values() for update in updates]


def snapshot(state: Mapping[str, Any]) -> Mapping[str, Any]:
    """Read-only view over a private copy of ``state``."""

    return MappingProxyType(copy.deepcopy(dict(state)))


class Scheduler:
    """Runs supersteps of one compiled graph."""

    def __init__(
        self,
        spec: GraphSpec,
        *,
        store: BaseStore | None = None,
        max_workers: int = 8,
    ) -> None:
        self.spec = spec
        self.store = store
        self.max_workers = max_workers

    # -- single node -------------------------------------------------------

    def normalize(self, node: str, result: Any) -> NodeOutcome:
        """Turn a node's return value into a :class:`NodeOutcome`.

        Raises:
            ParentCommand: The node addressed the enclosing graph.
            TypeError: The return value has an unsupported type.
        """

        if result is None:
            return NodeOutcome(node=node)
        if isinstance(result, NodeOutcome):
            return dataclasses.replace(result, node=node)
        if isinstance(result, Command):
            if result.graph == Command.PARENT:
                raise ParentCommand(result)
            if result.graph is not None:
                raise InvalidRouteError(f"Node {node!r} addressed unknown graph {result.graph!r}")
            updates = [dict(result.update)] if result.update else []
            return NodeOutcome(node=node, updates=updates, goto=result.targets())
        if isinstance(result, Mapping):
            return NodeOutcome(node=node, updates=[dict(result)] if result else [])
        raise TypeError(
            f"Node {node!r} returned {type(result).__name__}; expected a dict, a Command or None"
        )

    def invoke(
        self,
        node: NodeSpec,
        state: Mapping[str, Any],
        ctx: NodeContext,
        *,
        check_replay: bool = True,
    ) -> NodeOutcome:
        """Call one node and normalise its result.

        ``check_replay`` verifies that a resumed node consumed every recorded
        resume value. Nested graphs share the outer node's positions and
        leave the check to the outer node.
        """

        view = snapshot(state)
        try:
            if node.accepts_context:
                result = node.func(view, ctx)
            else:
                result = node.func(view)
        except ParentCommand as e:
            if node.subgraph is None:
                raise
            result = dataclasses.replace(e.command, graph=None)

        outcome = self.normalize(node.name, result)

        pad = ctx.scratchpad
        if check_replay and pad is not None and pad.unconsumed:
            raise SuspensionMisuseError(
                f"Node {node.name!r} finished with {pad.unconsumed} unused resume value(s); "
                "its interrupt calls did not replay in the same order",
                thread_id=ctx.thread_id,
            )
        return outcome

    # -- superstep ---------------------------------------------------------

    def run_superstep(
        self,
        state: Mapping[str, Any],
        frontier: Sequence[str],
        *,
        thread_id: str,
        step: int,
        config: Mapping[str, Any] | None = None,
        records: Mapping[str, TaskRecord] | None = None,
        cancel_event: threading.Event | None = None,
        parent_ctx: NodeContext | None = None,
    ) -> StepOutcome:
        """Run every node of ``frontier`` once and merge or suspend.

        Args:
            state: State committed before this superstep.
            frontier: Nodes to run.
            thread_id: Thread the run belongs to.
            step: Number of this superstep.
            config: Run configuration handed to nodes.
            records: Task records of an earlier, suspended attempt of this
                superstep. Completed nodes are not run again; interrupted
                nodes replay their recorded resume values.
            cancel_event: Stops waiting for nodes once set.
            parent_ctx: Set for nested graphs. Nodes then run sequentially
                and share the interrupt positions of the outer node.

        Raises:
            NodeExecutionError: A node raised.
            InvalidRouteError: A node or decision function routed to an
                undeclared target.
            RunCancelledError: ``cancel_event`` was set.
        """

        records = records or {}
        nodes = [self.spec.nodes[name] for name in self.spec.order(frontier)]
        config = config or {}

        outcomes: dict[str, NodeOutcome] = {}
        to_run: list[tuple[NodeSpec, NodeContext]] = []
        for node in nodes:
            record = records.get(node.name)
            if record is not None and record.status == "completed":
                outcomes[node.name] = NodeOutcome(
                    node=node.name, updates=list(record.updates), goto=record.goto
                )
                continue
            to_run.append((node, self._context(node, thread_id, step, config, record, parent_ctx)))

        logger.debug(
            "Running superstep",
            extra={
                "thread_id": thread_id,
                "step": step,
                "nodes": [n.name for n, _ in to_run],
                "reused": sorted(outcomes),
            },
        )

        interrupted: dict[str, tuple[Interrupt, list[Any]]] = {}
        if parent_ctx is not None or len(to_run) <= 1:
            for node, ctx in to_run:
                self._check_cancelled(cancel_event, thread_id)
                try:
                    outcomes[node.name] = self._call(node, state, ctx, nested=parent_ctx is not None)
                except NodeInterrupt as e:
                    if parent_ctx is not None:
                        raise
                    interrupted[node.name] = (e.interrupt, self._resume_values(ctx))
        else:
            self._run_parallel(state, to_run, outcomes, interrupted, thread_id, cancel_event)

        if interrupted:
            return self._suspended(state, nodes, outcomes, interrupted)

        merged, writes = self.merge(state, nodes, outcomes)
        frontier = self.route(nodes, outcomes, merged)
        return StepOutcome(state=merged, frontier=frontier, writes=writes)

    def _context(
        self,
        node: NodeSpec,
        thread_id: str,
        step: int,
        config: Mapping[str, Any],
        record: TaskRecord | None,
        parent_ctx: NodeContext | None,
    ) -> NodeContext:
        if parent_ctx is not None:
            return parent_ctx.child(node.name, step)
        resume_values = list(record.resume_values) if record is not None else []
        return NodeContext(
            thread_id=thread_id,
            node=node.name,
            step=step,
            config=config,
            store=self.store,
            scratchpad=InterruptScratchpad(node=node.name, resume_values=resume_values),
        )

    @staticmethod
    def _resume_values(ctx: NodeContext) -> list[Any]:
        return list(ctx.scratchpad.resume_values) if ctx.scratchpad is not None else []

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None, thread_id: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelledError("Run cancelled", thread_id=thread_id)

    def _call(
        self, node: NodeSpec, state: Mapping[str, Any], ctx: NodeContext, *, nested: bool
    ) -> NodeOutcome:
        try:
            return self.invoke(node, state, ctx, check_replay=not nested)
        except (NodeInterrupt, ThreadGraphError):
            raise
        except ParentCommand:
            if nested:
                raise
            raise InvalidRouteError(
                f"Node {node.name!r} returned Command.PARENT outside a nested graph",
                thread_id=ctx.thread_id,
            ) from None
        except Exception as e:
            raise NodeExecutionError(
                f"Node {node.name!r} failed: {e}", node=node.name, thread_id=ctx.thread_id
            ) from e

    def _run_parallel(
        self,
        state: Mapping[str, Any],
        to_run: list[tuple[NodeSpec, NodeContext]],
        outcomes: dict[str, NodeOutcome],
        interrupted: dict[str, tuple[Interrupt, list[Any]]],
        thread_id: str,
        cancel_event: threading.Event | None,
    ) -> None:
        executor = ThreadPoolExecutor(
            max_workers=min(len(to_run), self.max_workers),
            thread_name_prefix="threadgraph-node",
        )
        futures: dict[Future[NodeOutcome], tuple[NodeSpec, NodeContext]] = {
            executor.submit(self._call, node, state, ctx, nested=False): (node, ctx)
            for node, ctx in to_run
        }
        try:
            pending = set(futures)
            while pending:
                done, pending = wait(pending, timeout=_POLL_INTERVAL, return_when=FIRST_EXCEPTION)
                failures = [
                    f for f in done if f.exception() is not None
                    and not isinstance(f.exception(), NodeInterrupt)
                ]
                if failures:
                    for future in pending:
                        future.cancel()
                    first = min(failures, key=lambda f: futures[f][0].index)
                    raise first.exception()  # type: ignore[misc]
                if pending and cancel_event is not None and cancel_event.is_set():
                    for future in pending:
                        future.cancel()
                    raise RunCancelledError("Run cancelled", thread_id=thread_id)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        for future, (node, ctx) in futures.items():
            error = future.exception()
            if isinstance(error, NodeInterrupt):
                interrupted[node.name] = (error.interrupt, self._resume_values(ctx))
            else:
                outcomes[node.name] = future.result()

    def _suspended(
        self,
        state: Mapping[str, Any],
        nodes: list[NodeSpec],
        outcomes: dict[str, NodeOutcome],
        interrupted: dict[str, tuple[Interrupt, list[Any]]],
    ) -> StepOutcome:
        records: list[TaskRecord] = []
        interrupts: list[Interrupt] = []
        for node in nodes:
            if node.name in interrupted:
                interrupt, resume_values = interrupted[node.name]
                interrupts.append(interrupt)
                records.append(
                    TaskRecord(
                        node=node.name,
                        status="interrupted",
                        interrupts=[interrupt],
                        resume_values=resume_values,
                    )
                )
            else:
                outcome = outcomes[node.name]
                records.append(
                    TaskRecord(
                        node=node.name,
                        status="completed",
                        updates=outcome.updates,
                        goto=outcome.goto,
                    )
                )
        return StepOutcome(state=dict(state), records=records, interrupts=interrupts)

    # -- merge and routing -------------------------------------------------

    def merge(
        self,
        state: Mapping[str, Any],
        nodes: Sequence[NodeSpec],
        outcomes: Mapping[str, NodeOutcome],
    ) -> tuple[dict[str, Any], dict[str, list[dict[str, Any]]]]:
        """Fold every node's updates into ``state`` in declaration order."""

        writes: dict[str, list[dict[str, Any]]] = {}
        for node in nodes:
            updates = outcomes[node.name].updates
            if updates:
                writes[node.name] = [copy.deepcopy(u) for u in updates]
        merged = self.spec.reducers.apply_all(
            state, (u for updates in writes.values() for u in updates)
        )
        return merged, writes

    def route(
        self,
        nodes: Sequence[NodeSpec],
        outcomes: Mapping[str, NodeOutcome],
        state: Mapping[str, Any],
    ) -> list[str]:
        """Compute the next frontier from directives, edges and decisions."""

        targets: list[str] = []
        for node in nodes:
            goto = outcomes[node.name].goto
            if goto is not None:
                for target in goto:
                    if target != END and target not in self.spec.nodes:
                        raise InvalidRouteError(
                            f"Node {node.name!r} routed to unknown node {target!r}"
                        )
                targets.extend(goto)
                continue
            targets.extend(self.spec.edges.get(node.name, []))
            for branch in self.spec.branches.get(node.name, []):
                targets.extend(self._decide(branch, state))
        return self.spec.order(targets)

    def _decide(self, branch: ConditionalEdge, state: Mapping[str, Any]) -> list[str]:
        try:
            labels = branch.decide(snapshot(state))
        except ThreadGraphError:
            raise
        except Exception as e:
            raise NodeExecutionError(
                f"Decision function after {branch.source!r} failed: {e}", node=branch.source
            ) from e
        if isinstance(labels, str):
            labels = [labels]
        if not isinstance(labels, Sequence) or not all(isinstance(x, str) for x in labels):
            raise InvalidRouteError(
                f"Decision after {branch.source!r} returned {labels!r}; "
                "expected a label or a list of labels"
            )
        resolved = []
        for label in labels:
            target = branch.resolve(label)
            if target is None:
                raise InvalidRouteError(
                    f"Decision after {branch.source!r} returned undeclared label {label!r}"
                )
            resolved.append(target)
        return resolved
