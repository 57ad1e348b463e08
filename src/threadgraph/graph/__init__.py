"""Graph definition: builder, reducers and the Command directive."""

from threadgraph.graph.builder import StateGraph
from threadgraph.graph.reducers import (
    MISSING,
    Reducer,
    ReducerRegistry,
    append,
    custom,
    maximum,
    minimum,
    overwrite,
    union,
)
from threadgraph.graph.types import END, START, Command, Interrupt

__all__ = [
    "END",
    "MISSING",
    "START",
    "Command",
    "Interrupt",
    "Reducer",
    "ReducerRegistry",
    "StateGraph",
    "append",
    "custom",
    "maximum",
    "minimum",
    "overwrite",
    "union",
]
