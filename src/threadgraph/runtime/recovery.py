"""Local recovery: turn a node's exceptions into a state update."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from threadgraph.errors import NodeInterrupt, ParentCommand
from threadgraph.graph.builder import takes_context
from threadgraph.runtime.context import NodeContext

logger = logging.getLogger(__name__)

RecoveryHandler = Callable[[Exception, Mapping[str, Any]], Any]


def recover(
    node: Callable[..., Any],
    handler: RecoveryHandler,
    *,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Mapping[str, Any], NodeContext], Any]:
    """Wrap ``node`` so that ``exceptions`` become ``handler(error, state)``.

    The handler returns what the node would have returned: a delta, a
    ``Command`` or None. Suspension is never intercepted.

    Example:
        graph.add_node("fetch", recover(fetch, lambda e, s: {"error": str(e)}))
    """

    wants_context = takes_context(node)

    def wrapper(state: Mapping[str, Any], ctx: NodeContext) -> Any:
        try:
            return node(state, ctx) if wants_context else node(state)
        except (NodeInterrupt, ParentCommand):
            raise
        except exceptions as e:
            logger.warning(
                "Node failed, recovering",
                extra={"node": ctx.node, "thread_id": ctx.thread_id, "error": repr(e)},
            )
            return handler(e, state)

    wrapper.__name__ = getattr(node, "__name__", "recovered")
    wrapper.__doc__ = node.__doc__
    return wrapper
