"""Error taxonomy for graph definition, execution and persistence.

Every error raised by the engine derives from :class:`ThreadGraphError` and
carries the thread identifier and the last committed checkpoint identifier when
they are known, so callers can inspect the thread history before retrying.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from threadgraph.graph.types import Command, Interrupt


class ThreadGraphError(Exception):
    """Base class for engine errors."""

    def __init__(
        self,
        message: str,
        *,
        thread_id: str | None = None,
        checkpoint_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.thread_id = thread_id
        self.checkpoint_id = checkpoint_id

    def __str__(self) -> str:
        context = []
        if self.thread_id is not None:
            context.append(f"thread_id={self.thread_id}")
        if self.checkpoint_id is not None:
            context.append(f"checkpoint_id={self.checkpoint_id}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"

    def bind(self, *, thread_id: str | None, checkpoint_id: str | None) -> ThreadGraphError:
        """Attach thread context if it is not set yet, returning self."""

        if self.thread_id is None:
            self.thread_id = thread_id
        if self.checkpoint_id is None:
            self.checkpoint_id = checkpoint_id
        return self


class GraphDefinitionError(ThreadGraphError, ValueError):
    """The graph references unknown nodes, lacks an entry point, or is otherwise invalid."""


class InvalidRouteError(GraphDefinitionError):
    """A decision function or a Command routed to a target that is not declared."""


class ReducerConflictError(ThreadGraphError, TypeError):
    """A reducer was invoked with incompatible value shapes."""

    def __init__(self, message: str, *, field: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.field = field


class NodeExecutionError(ThreadGraphError):
    """A node raised while running; the superstep was discarded."""

    def __init__(self, message: str, *, node: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.node = node


class CheckpointStoreError(ThreadGraphError):
    """A checkpoint read or write did not complete."""


class CheckpointNotFoundError(ThreadGraphError, LookupError):
    """The requested thread or checkpoint does not exist."""


class ThreadConflictError(ThreadGraphError, ValueError):
    """A fork targeted a thread that already has checkpoints."""


class SuspensionMisuseError(ThreadGraphError):
    """The replay contract of suspension and resume was violated."""


class GraphRecursionError(ThreadGraphError):
    """Too many supersteps ran without reaching an empty frontier."""

    def __init__(self, message: str, *, limit: int, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.limit = limit


class RunCancelledError(ThreadGraphError):
    """The run was cancelled before the current superstep was committed."""


class NodeInterrupt(Exception):
    """Raised by ``NodeContext.interrupt`` to suspend the running node.

    Not a :class:`ThreadGraphError`: the scheduler always handles it and turns
    it into a suspended run result.
    """

    def __init__(self, interrupt: Interrupt) -> None:
        super().__init__(f"Node {interrupt.node!r} suspended at position {interrupt.index}")
        self.interrupt = interrupt


class ParentCommand(Exception):
    """Carries a ``Command(graph=Command.PARENT)`` out of a nested graph run."""

    def __init__(self, command: Command) -> None:
        super().__init__("Command addressed to the enclosing graph")
        self.command = command
