"""Unit tests for the thread history API: fork, update_state, replay, time travel."""

from __future__ import annotations

import pytest

from threadgraph.errors import CheckpointNotFoundError, ThreadConflictError


def test_get_state_of_unknown_thread_is_empty(counter_graph) -> None:
    snapshot = counter_graph.get_state("nobody")

    assert snapshot.values == {}
    assert snapshot.next == []
    assert snapshot.checkpoint_id is None


def test_get_state_of_unknown_checkpoint(counter_graph) -> None:
    counter_graph.advance("t1", {"count": 0})

    with pytest.raises(CheckpointNotFoundError) as exc_info:
        counter_graph.get_state("t1", "missing")

    assert exc_info.value.checkpoint_id == "missing"


def test_history_pagination(counter_graph) -> None:
    counter_graph.advance("t1", {"count": 0})
    history = counter_graph.get_history("t1")

    assert [s.metadata["step"] for s in history] == [2, 1, 0, -1]
    assert counter_graph.get_history("t1", limit=1) == history[:1]
    assert counter_graph.get_history("t1", before=history[1].checkpoint_id) == history[2:]


def test_fork_leaves_original_lineage_untouched(counter_graph) -> None:
    counter_graph.advance("t1", {"count": 0})
    original = counter_graph.get_history("t1")
    after_first_inc = original[-2]
    assert after_first_inc.values["count"] == 1

    forked = counter_graph.fork("t1", after_first_inc.checkpoint_id)

    assert forked.parent_checkpoint_id == after_first_inc.checkpoint_id
    assert forked.metadata["source"] == "fork"
    assert counter_graph.get_state("t1").checkpoint_id == forked.checkpoint_id

    result = counter_graph.advance("t1")

    assert result.state["count"] == 3
    history = {s.checkpoint_id: s for s in counter_graph.get_history("t1")}
    for snapshot in original:
        assert history[snapshot.checkpoint_id] == snapshot
    assert len(history) == len(original) + 3


def test_fork_into_new_thread(counter_graph) -> None:
    counter_graph.advance("t1", {"count": 0})
    source = counter_graph.get_history("t1")[-2]

    forked = counter_graph.fork("t1", source.checkpoint_id, "t2")

    assert forked.thread_id == "t2"
    assert forked.parent_checkpoint_id is None
    assert forked.metadata["forked_from"] == {
        "thread_id": "t1",
        "checkpoint_id": source.checkpoint_id,
    }
    assert counter_graph.advance("t2").state["count"] == 3
    assert len(counter_graph.get_history("t1")) == 4
    assert len(counter_graph.get_history("t2")) == 3


def test_fork_into_existing_thread_is_rejected(counter_graph) -> None:
    counter_graph.advance("t1", {"count": 0})
    counter_graph.advance("t2", {"count": 0})
    source = counter_graph.get_history("t1")[-1]

    with pytest.raises(ThreadConflictError):
        counter_graph.fork("t1", source.checkpoint_id, "t2")


def test_update_state_creates_child_tip(counter_graph) -> None:
    counter_graph.advance("t1", {"count": 0})
    target = counter_graph.get_history("t1")[1]

    updated = counter_graph.update_state("t1", target.checkpoint_id, {"count": 10, "log": ["fix"]})

    assert updated.parent_checkpoint_id == target.checkpoint_id
    assert updated.metadata["source"] == "update"
    assert updated.values["count"] == 10
    assert updated.values["log"] == target.values["log"] + ["fix"]
    assert updated.next == target.next
    assert counter_graph.get_state("t1").checkpoint_id == updated.checkpoint_id


def test_update_state_then_continue(counter_graph) -> None:
    counter_graph.advance("t1", {"count": 0})
    target = counter_graph.get_history("t1")[-2]

    counter_graph.update_state("t1", target.checkpoint_id, {"count": 2})
    result = counter_graph.advance("t1")

    assert result.state["count"] == 3
    assert result.state["log"] == ["inc", "inc"]


def test_update_state_of_unknown_thread(counter_graph) -> None:
    with pytest.raises(CheckpointNotFoundError):
        counter_graph.update_state("nobody", None, {"count": 1})


def test_time_travel_from_past_checkpoint(counter_graph) -> None:
    counter_graph.advance("t1", {"count": 0})
    past = counter_graph.get_history("t1")[-2]

    result = counter_graph.advance("t1", {"count": 1}, checkpoint_id=past.checkpoint_id)

    assert result.state["count"] == 3
    lineage = counter_graph.history.lineage(counter_graph.checkpointer.get_latest("t1"))
    assert past.checkpoint_id in [c.checkpoint_id for c in lineage]


def test_replay_matches_committed_state(counter_graph) -> None:
    counter_graph.advance("t1", {"count": 0})
    counter_graph.update_state("t1", None, {"log": ["manual"]})
    counter_graph.advance("t1", {"count": 1})

    assert counter_graph.replay_state("t1") == counter_graph.get_state("t1").values

    source = counter_graph.get_history("t1")[2]
    counter_graph.fork("t1", source.checkpoint_id, "copy")
    counter_graph.advance("copy")

    assert counter_graph.replay_state("copy") == counter_graph.get_state("copy").values


def test_replay_of_past_checkpoint(counter_graph) -> None:
    counter_graph.advance("t1", {"count": 0})
    past = counter_graph.get_history("t1")[1]

    assert counter_graph.replay_state("t1", past.checkpoint_id) == past.values
