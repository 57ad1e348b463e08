"""Execution context handed explicitly to every node invocation."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from threadgraph.errors import NodeInterrupt
from threadgraph.graph.types import Interrupt

if TYPE_CHECKING:
    from threadgraph.store import BaseStore


@dataclass
class InterruptScratchpad:
    """Positional record of the interrupt calls made by one node invocation.

    ``resume_values[i]`` answers the i-th ``interrupt()`` call. Calls beyond
    the recorded values suspend the node.
    """

    node: str
    resume_values: list[Any] = field(default_factory=list)
    counter: int = 0

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def next_position(self) -> int:
        with self._lock:
            index = self.counter
            self.counter += 1
            return index

    @property
    def unconsumed(self) -> int:
        return max(len(self.resume_values) - self.counter, 0)


@dataclass(frozen=True)
class NodeContext:
    """Ambient metadata for a node: thread, run config, store and suspension.

    Nodes that declare a second positional parameter receive this object.
    """

    thread_id: str
    node: str
    step: int
    config: Mapping[str, Any] = field(default_factory=dict)
    store: BaseStore | None = None
    scratchpad: InterruptScratchpad | None = None

    def interrupt(self, value: Any = None) -> Any:
        """Suspend the node and surface ``value`` to the caller.

        On resume the node runs again from the top; this call then returns the
        value supplied to ``resume``. Interrupt calls must happen in the same
        order on every run of the node.
        """

        pad = self.scratchpad
        if pad is None:
            pad = InterruptScratchpad(node=self.node)
            object.__setattr__(self, "scratchpad", pad)
        index = pad.next_position()
        if index < len(pad.resume_values):
            return pad.resume_values[index]
        raise NodeInterrupt(Interrupt(value=value, node=pad.node, index=index))

    def child(self, node: str, step: int) -> NodeContext:
        """Context for a node of a nested graph; suspension positions are shared."""

        if self.scratchpad is None:
            object.__setattr__(self, "scratchpad", InterruptScratchpad(node=self.node))
        return NodeContext(
            thread_id=self.thread_id,
            node=node,
            step=step,
            config=self.config,
            store=self.store,
            scratchpad=self.scratchpad,
        )
