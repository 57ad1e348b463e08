"""Unit tests for interrupt and resume."""

from __future__ import annotations

from typing import Annotated, Any, TypedDict

import pytest

from threadgraph.checkpoint import InMemoryCheckpointStore
from threadgraph.core.config import EngineSettings
from threadgraph.errors import SuspensionMisuseError
from threadgraph.graph import StateGraph, append


class State(TypedDict, total=False):
    log: Annotated[list[str], append]
    topic: str
    confirmed: Any
    answers: list[Any]


class Calls:
    def __init__(self) -> None:
        self.counts: dict[str, int] = {}

    def hit(self, name: str) -> None:
        self.counts[name] = self.counts.get(name, 0) + 1


def confirm_graph(checkpointer, settings, calls: Calls):
    """D -> E (asks "confirm?") -> F."""

    def d(state):
        calls.hit("D")
        return {"log": ["D"]}

    def e(state, ctx):
        calls.hit("E")
        answer = ctx.interrupt("confirm?")
        return {"confirmed": answer, "log": ["E"]}

    def f(state):
        calls.hit("F")
        return {"log": ["F"]}

    graph = StateGraph(State)
    graph.add_node("D", d)
    graph.add_node("E", e)
    graph.add_node("F", f)
    graph.set_entry_point("D")
    graph.add_edge("D", "E")
    graph.add_edge("E", "F")
    graph.set_finish_point("F")
    return graph.compile(checkpointer, settings=settings)


def test_suspend_and_resume(checkpointer: InMemoryCheckpointStore, settings: EngineSettings) -> None:
    calls = Calls()
    app = confirm_graph(checkpointer, settings, calls)

    suspended = app.advance("t1", {"topic": "deploy"})

    assert suspended.status == "suspended"
    assert suspended.payload == "confirm?"
    assert suspended.interrupts[0].node == "E"
    assert suspended.interrupts[0].index == 0
    assert "confirmed" not in suspended.state

    snapshot = app.get_state("t1")
    assert snapshot.next == ["E"]
    assert [i.value for i in snapshot.interrupts] == ["confirm?"]

    result = app.resume("t1", True)

    assert result.status == "done"
    assert result.state["confirmed"] is True
    assert result.state["log"] == ["D", "E", "F"]
    assert calls.counts == {"D": 1, "E": 2, "F": 1}
    assert app.get_state("t1").interrupts == []


def test_suspension_is_all_or_nothing(
    checkpointer: InMemoryCheckpointStore, settings: EngineSettings
) -> None:
    calls = Calls()

    def start(state):
        return {"log": ["start"]}

    def b(state):
        calls.hit("B")
        return {"log": ["B"]}

    def e(state, ctx):
        calls.hit("E")
        answer = ctx.interrupt("confirm?")
        return {"log": [f"E:{answer}"]}

    graph = StateGraph(State)
    graph.add_node("start", start)
    graph.add_node("B", b)
    graph.add_node("E", e)
    graph.set_entry_point("start")
    graph.add_edge("start", "B")
    graph.add_edge("start", "E")
    app = graph.compile(checkpointer, settings=settings)

    app.advance("t1", {"topic": "x"})
    history_before = len(checkpointer.list_history("t1"))

    assert app.get_state("t1").values["log"] == ["start"]
    assert history_before == 2

    result = app.resume("t1", "yes")

    assert result.state["log"] == ["start", "B", "E:yes"]
    assert calls.counts == {"B": 1, "E": 2}
    assert len(checkpointer.list_history("t1")) == history_before + 1


def test_several_interrupts_in_one_node(
    checkpointer: InMemoryCheckpointStore, settings: EngineSettings
) -> None:
    def ask(state, ctx):
        first = ctx.interrupt("first?")
        second = ctx.interrupt("second?")
        return {"answers": [first, second]}

    graph = StateGraph(State)
    graph.add_node("ask", ask)
    graph.set_entry_point("ask")
    app = graph.compile(checkpointer, settings=settings)

    assert app.advance("t1", {"topic": "x"}).payload == "first?"

    second = app.resume("t1", 1)
    assert second.status == "suspended"
    assert second.payload == "second?"
    assert second.interrupts[0].index == 1

    done = app.resume("t1", 2)
    assert done.state["answers"] == [1, 2]


def test_parallel_interrupts_are_resumed_by_node(
    checkpointer: InMemoryCheckpointStore, settings: EngineSettings
) -> None:
    calls = Calls()

    def asking(name):
        def node(state, ctx):
            calls.hit(name)
            return {"log": [f"{name}:{ctx.interrupt(name + '?')}"]}

        return node

    graph = StateGraph(State)
    graph.add_node("start", lambda s: None)
    graph.add_node("X", asking("X"))
    graph.add_node("Y", asking("Y"))
    graph.set_entry_point("start")
    graph.add_edge("start", "X")
    graph.add_edge("start", "Y")
    app = graph.compile(checkpointer, settings=settings)

    first = app.advance("t1", {"topic": "x"})
    assert [i.node for i in first.interrupts] == ["X", "Y"]

    partial = app.resume("t1", "y", node="Y")
    assert partial.status == "suspended"
    assert [i.node for i in partial.interrupts] == ["X"]

    done = app.resume("t1", "x")
    assert done.state["log"] == ["X:x", "Y:y"]
    assert calls.counts == {"X": 3, "Y": 2}


def test_advance_without_input_surfaces_pending_interrupt(
    checkpointer: InMemoryCheckpointStore, settings: EngineSettings
) -> None:
    app = confirm_graph(checkpointer, settings, Calls())
    first = app.advance("t1", {"topic": "x"})

    again = app.advance("t1")

    assert again.status == "suspended"
    assert again.payload == "confirm?"
    assert again.checkpoint_id == first.checkpoint_id


def test_new_input_abandons_suspension(
    checkpointer: InMemoryCheckpointStore, settings: EngineSettings
) -> None:
    calls = Calls()
    app = confirm_graph(checkpointer, settings, calls)
    first = app.advance("t1", {"topic": "x"})

    second = app.advance("t1", {"topic": "y"})

    assert second.status == "suspended"
    assert second.checkpoint_id != first.checkpoint_id
    assert second.state["topic"] == "y"
    assert calls.counts["D"] == 2


def test_resume_without_pending_interrupt(
    checkpointer: InMemoryCheckpointStore, settings: EngineSettings
) -> None:
    app = confirm_graph(checkpointer, settings, Calls())

    with pytest.raises(SuspensionMisuseError):
        app.resume("unknown", True)

    app.advance("t1", {"topic": "x"})
    app.resume("t1", True)

    with pytest.raises(SuspensionMisuseError) as exc_info:
        app.resume("t1", True)

    assert exc_info.value.thread_id == "t1"
    assert exc_info.value.checkpoint_id == checkpointer.get_latest("t1").checkpoint_id


def test_resume_named_node_must_be_suspended(
    checkpointer: InMemoryCheckpointStore, settings: EngineSettings
) -> None:
    app = confirm_graph(checkpointer, settings, Calls())
    app.advance("t1", {"topic": "x"})

    with pytest.raises(SuspensionMisuseError, match="'D' is not suspended"):
        app.resume("t1", True, node="D")


def test_position_drift_is_a_usage_error(
    checkpointer: InMemoryCheckpointStore, settings: EngineSettings
) -> None:
    runs = []

    def fickle(state, ctx):
        runs.append(1)
        if len(runs) == 1:
            ctx.interrupt("first run asks")
        return {"topic": "skipped the question"}

    graph = StateGraph(State)
    graph.add_node("fickle", fickle)
    graph.set_entry_point("fickle")
    app = graph.compile(checkpointer, settings=settings)
    app.advance("t1", {"topic": "x"})

    with pytest.raises(SuspensionMisuseError, match="unused resume value"):
        app.resume("t1", "answer")

    assert app.get_state("t1").values["topic"] == "x"


def test_interrupt_inside_nested_graph(
    checkpointer: InMemoryCheckpointStore, settings: EngineSettings
) -> None:
    def approve(state, ctx):
        return {"confirmed": ctx.interrupt("approve?")}

    inner = StateGraph(State)
    inner.add_node("prep", lambda s: {"log": ["prep"]})
    inner.add_node("approve", approve)
    inner.set_entry_point("prep")
    inner.add_edge("prep", "approve")

    outer = StateGraph(State)
    outer.add_node("review", inner.compile(settings=settings))
    outer.set_entry_point("review")
    app = outer.compile(checkpointer, settings=settings)

    suspended = app.advance("t1", {"topic": "x"})

    assert suspended.interrupts[0].node == "review"
    assert suspended.payload == "approve?"

    done = app.resume("t1", "ok")

    assert done.state["confirmed"] == "ok"
    assert done.state["log"] == ["prep"]
