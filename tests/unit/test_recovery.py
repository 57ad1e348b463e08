"""Unit tests for local recovery of failing nodes."""

from __future__ import annotations

from threadgraph.checkpoint import InMemoryCheckpointStore
from threadgraph.core.config import EngineSettings
from threadgraph.graph import StateGraph
from threadgraph.runtime import recover


def _compile(node):
    graph = StateGraph()
    graph.add_node("work", node)
    graph.set_entry_point("work")
    return graph.compile(InMemoryCheckpointStore(), settings=EngineSettings())


def test_exception_becomes_delta() -> None:
    def fetch(state):
        raise ConnectionError("offline")

    app = _compile(recover(fetch, lambda e, s: {"error": str(e), "retry": s["attempt"] + 1}))

    result = app.advance("t1", {"attempt": 1})

    assert result.status == "done"
    assert result.state == {"attempt": 1, "error": "offline", "retry": 2}


def test_interrupt_is_not_recovered() -> None:
    def ask(state, ctx):
        return {"answer": ctx.interrupt("name?")}

    app = _compile(recover(ask, lambda e, s: {"error": "should not happen"}))

    suspended = app.advance("t1", {"attempt": 1})
    assert suspended.payload == "name?"

    assert app.resume("t1", "ada").state["answer"] == "ada"
