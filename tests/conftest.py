"""Test configuration and fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, TypedDict

import pytest

from threadgraph.checkpoint import (
    CheckpointStore,
    InMemoryCheckpointStore,
    JsonFileCheckpointStore,
    SQLiteCheckpointStore,
)
from threadgraph.core.config import EngineSettings
from threadgraph.graph import END, StateGraph, append


class CounterState(TypedDict, total=False):
    log: Annotated[list[str], append]
    count: int


@pytest.fixture
def settings() -> EngineSettings:
    """Provide test engine settings."""
    return EngineSettings(recursion_limit=10, max_workers=4, checkpoint_write_retries=2)


@pytest.fixture
def checkpointer() -> InMemoryCheckpointStore:
    """Provide an empty in-memory checkpoint store."""
    return InMemoryCheckpointStore()


@pytest.fixture(params=["memory", "json", "sqlite"])
def any_checkpointer(request: pytest.FixtureRequest, tmp_path: Path) -> CheckpointStore:
    """Provide each checkpoint store backend in turn."""
    if request.param == "memory":
        store: CheckpointStore = InMemoryCheckpointStore()
    elif request.param == "json":
        store = JsonFileCheckpointStore(tmp_path / "threads")
    else:
        store = SQLiteCheckpointStore(tmp_path / "checkpoints.sqlite")
    yield store
    store.close()


@pytest.fixture
def counter_graph(checkpointer: InMemoryCheckpointStore, settings: EngineSettings):
    """inc -> inc -> ... until count reaches 3."""

    def inc(state):
        return {"count": state.get("count", 0) + 1, "log": ["inc"]}

    graph = StateGraph(CounterState)
    graph.add_node("inc", inc)
    graph.set_entry_point("inc")
    graph.add_conditional_edges(
        "inc",
        lambda s: "again" if s["count"] < 3 else "stop",
        {"again": "inc", "stop": END},
    )
    return graph.compile(checkpointer, settings=settings, name="counter")
