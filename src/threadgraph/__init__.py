"""threadgraph: a stateful graph-execution engine with durable checkpoints."""

from threadgraph.checkpoint import (
    Checkpoint,
    CheckpointStore,
    InMemoryCheckpointStore,
    JsonFileCheckpointStore,
    SQLiteCheckpointStore,
    StateSnapshot,
)
from threadgraph.core.config import EngineSettings
from threadgraph.errors import (
    CheckpointNotFoundError,
    CheckpointStoreError,
    GraphDefinitionError,
    GraphRecursionError,
    InvalidRouteError,
    NodeExecutionError,
    ReducerConflictError,
    RunCancelledError,
    SuspensionMisuseError,
    ThreadConflictError,
    ThreadGraphError,
)
from threadgraph.graph import END, START, Command, Interrupt, StateGraph
from threadgraph.runtime import CompiledGraph, NodeContext, RunResult, recover
from threadgraph.store import BaseStore, InMemoryStore, Item

__version__ = "0.1.0"

__all__ = [
    "END",
    "START",
    "BaseStore",
    "Checkpoint",
    "CheckpointNotFoundError",
    "CheckpointStore",
    "CheckpointStoreError",
    "Command",
    "CompiledGraph",
    "EngineSettings",
    "GraphDefinitionError",
    "GraphRecursionError",
    "InMemoryCheckpointStore",
    "InMemoryStore",
    "Interrupt",
    "InvalidRouteError",
    "Item",
    "JsonFileCheckpointStore",
    "NodeContext",
    "NodeExecutionError",
    "ReducerConflictError",
    "RunCancelledError",
    "RunResult",
    "SQLiteCheckpointStore",
    "StateGraph",
    "StateSnapshot",
    "SuspensionMisuseError",
    "ThreadConflictError",
    "ThreadGraphError",
    "__version__",
]
