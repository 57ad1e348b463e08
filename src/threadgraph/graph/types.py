"""Routing markers, the Command control directive and the suspension token."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict

START = "__start__"
END = "__end__"

RESERVED_NODE_NAMES = frozenset({START, END})


@dataclass(frozen=True, slots=True)
class Command:
    """Returned by a node instead of a plain update to also choose the next step.

    Attributes:
        update: State delta, merged through the reducers like a plain return value.
        goto: A node name, several node names (they run together in the next
            superstep), or ``END``. ``None`` falls back to the declared edges.
        graph: ``None`` for the current graph, ``Command.PARENT`` to hand the
            directive to the graph that embeds the current one.
    """

    PARENT: ClassVar[str] = "__parent__"

    update: Mapping[str, Any] | None = None
    goto: str | Sequence[str] | None = None
    graph: str | None = None

    def targets(self) -> list[str] | None:
        if self.goto is None:
            return None
        if isinstance(self.goto, str):
            return [self.goto]
        return list(self.goto)


class Interrupt(BaseModel):
    """Suspension token surfaced to the caller.

    ``index`` is the position of the interrupt call within one invocation of
    ``node``; resume values are matched to calls by this position.
    """

    model_config = ConfigDict(frozen=True)

    value: Any = None
    node: str
    index: int = 0


@dataclass(frozen=True, slots=True)
class NodeOutcome:
    """Normalised result of one node invocation."""

    node: str
    updates: list[dict[str, Any]] = field(default_factory=list)
    goto: list[str] | None = None
