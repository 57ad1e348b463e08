"""Execution runtime: scheduler, compiled graphs and the node context."""

from threadgraph.runtime.compiled import CompiledGraph, RunResult
from threadgraph.runtime.context import NodeContext
from threadgraph.runtime.recovery import recover

__all__ = ["CompiledGraph", "NodeContext", "RunResult", "recover"]
