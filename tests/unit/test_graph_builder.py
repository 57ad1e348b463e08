"""Unit tests for graph definition and validation."""

from __future__ import annotations

import pytest

from threadgraph.checkpoint import InMemoryCheckpointStore
from threadgraph.core.config import EngineSettings
from threadgraph.errors import GraphDefinitionError
from threadgraph.graph import END, START, StateGraph, append
from threadgraph.graph.builder import takes_context


def noop(state):
    return None


def with_context(state, ctx):
    return None


def test_valid_graph_compiles() -> None:
    graph = StateGraph(reducers={"log": append})
    graph.add_node("a", noop)
    graph.add_node("b", with_context)
    graph.add_edge(START, "a")
    graph.add_edge("a", "b")
    graph.set_finish_point("b")

    spec = graph.validate()

    assert spec.entry_point == "a"
    assert spec.edges == {"a": ["b"], "b": [END]}
    assert spec.nodes["b"].accepts_context is True
    assert spec.nodes["a"].accepts_context is False
    assert spec.reducers.get("log") is append


def test_missing_entry_point_is_rejected() -> None:
    graph = StateGraph()
    graph.add_node("a", noop)

    with pytest.raises(GraphDefinitionError, match="no entry point"):
        graph.validate()


def test_more_than_one_entry_point_is_rejected() -> None:
    graph = StateGraph()
    graph.add_node("a", noop)
    graph.add_node("b", noop)
    graph.set_entry_point("a")
    graph.set_entry_point("b")

    with pytest.raises(GraphDefinitionError, match="exactly one entry point"):
        graph.validate()


def test_dangling_edges_are_reported_together() -> None:
    graph = StateGraph()
    graph.add_node("a", noop)
    graph.set_entry_point("a")
    graph.add_edge("a", "missing")
    graph.add_edge("ghost", "a")

    with pytest.raises(GraphDefinitionError) as exc_info:
        graph.validate()

    message = str(exc_info.value)
    assert "'missing'" in message
    assert "'ghost'" in message


def test_conditional_edge_targets_must_exist() -> None:
    graph = StateGraph()
    graph.add_node("a", noop)
    graph.set_entry_point("a")
    graph.add_conditional_edges("a", lambda s: "x", {"x": "nowhere", "done": END})

    with pytest.raises(GraphDefinitionError, match="nowhere"):
        graph.validate()


@pytest.mark.parametrize("name", [START, END])
def test_reserved_node_names(name: str) -> None:
    with pytest.raises(GraphDefinitionError, match="reserved"):
        StateGraph().add_node(name, noop)


def test_duplicate_node_is_rejected() -> None:
    graph = StateGraph()
    graph.add_node("a", noop)

    with pytest.raises(GraphDefinitionError, match="already exists"):
        graph.add_node("a", noop)


def test_edges_into_start_or_out_of_end_are_rejected() -> None:
    graph = StateGraph()

    with pytest.raises(GraphDefinitionError):
        graph.add_edge("a", START)
    with pytest.raises(GraphDefinitionError):
        graph.add_edge(END, "a")


def test_definition_errors_are_value_errors() -> None:
    assert issubclass(GraphDefinitionError, ValueError)


def test_takes_context_inspects_arity() -> None:
    assert takes_context(noop) is False
    assert takes_context(with_context) is True
    assert takes_context(lambda *args: None) is True
    assert takes_context(lambda state, *, flag=False: None) is False


def test_compile_uses_configured_backend() -> None:
    graph = StateGraph()
    graph.add_node("a", noop)
    graph.set_entry_point("a")

    app = graph.compile(settings=EngineSettings(checkpoint_backend="memory"), name="tiny")

    assert isinstance(app.checkpointer, InMemoryCheckpointStore)
    assert app.name == "tiny"
    assert app.nodes == ["a"]
