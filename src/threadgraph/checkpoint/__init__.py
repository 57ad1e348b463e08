"""Checkpoint persistence: models, the store contract and its backends."""

from threadgraph.checkpoint.base import CheckpointStore
from threadgraph.checkpoint.factory import create_checkpoint_store
from threadgraph.checkpoint.json_store import JsonFileCheckpointStore
from threadgraph.checkpoint.memory import InMemoryCheckpointStore
from threadgraph.checkpoint.models import Checkpoint, StateSnapshot, TaskRecord
from threadgraph.checkpoint.sqlite import SQLiteCheckpointStore

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "JsonFileCheckpointStore",
    "SQLiteCheckpointStore",
    "StateSnapshot",
    "TaskRecord",
    "create_checkpoint_store",
]
