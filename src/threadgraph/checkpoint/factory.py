"""Factory for creating checkpoint stores."""

import logging

from threadgraph.checkpoint.base import CheckpointStore
from threadgraph.checkpoint.json_store import JsonFileCheckpointStore
from threadgraph.checkpoint.memory import InMemoryCheckpointStore
from threadgraph.checkpoint.sqlite import SQLiteCheckpointStore
from threadgraph.core.config import EngineSettings

logger = logging.getLogger(__name__)


def create_checkpoint_store(settings: EngineSettings) -> CheckpointStore:
    """Create a checkpoint store based on configuration.

    Args:
        settings: Engine settings selecting the backend and its location.

    Returns:
        Configured checkpoint store instance.

    Raises:
        ValueError: If the backend is not supported.
    """
    logger.info(f"Creating checkpoint store: {settings.checkpoint_backend}")

    if settings.checkpoint_backend == "memory":
        return InMemoryCheckpointStore()
    elif settings.checkpoint_backend == "json":
        return JsonFileCheckpointStore(settings.json_root)
    elif settings.checkpoint_backend == "sqlite":
        return SQLiteCheckpointStore(settings.sqlite_path)
    else:
        raise ValueError(f"Unsupported checkpoint backend: {settings.checkpoint_backend}")
