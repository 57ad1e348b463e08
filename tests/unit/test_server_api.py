"""Unit tests for the HTTP thread API."""

from __future__ import annotations

from typing import Annotated, Any, TypedDict

import pytest
from fastapi.testclient import TestClient

from threadgraph.checkpoint import InMemoryCheckpointStore
from threadgraph.core.config import EngineSettings
from threadgraph.graph import StateGraph, append
from threadgraph.server import create_app
from threadgraph.server.config import ServerSettings


class State(TypedDict, total=False):
    log: Annotated[list[str], append]
    topic: str
    confirmed: Any


@pytest.fixture
def client() -> TestClient:
    def prepare(state):
        return {"log": ["prepare"]}

    def confirm(state, ctx):
        return {"confirmed": ctx.interrupt("confirm?"), "log": ["confirm"]}

    graph = StateGraph(State)
    graph.add_node("prepare", prepare)
    graph.add_node("confirm", confirm)
    graph.set_entry_point("prepare")
    graph.add_edge("prepare", "confirm")
    app = graph.compile(InMemoryCheckpointStore(), settings=EngineSettings(), name="deploy")
    return TestClient(create_app(app, ServerSettings(history_page_size=2)))


def test_health(client: TestClient) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "graph": "deploy"}


def test_run_suspend_and_resume(client: TestClient) -> None:
    response = client.post("/api/threads/t1/runs", json={"input": {"topic": "release"}})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "suspended"
    assert body["payload"] == "confirm?"
    assert body["interrupts"][0]["value"] == "confirm?"
    assert body["interrupts"][0]["node"] == "confirm"

    state = client.get("/api/threads/t1/state").json()
    assert state["next"] == ["confirm"]
    assert state["values"] == {"topic": "release", "log": ["prepare"]}

    done = client.post("/api/threads/t1/resume", json={"value": True})

    assert done.status_code == 200
    assert done.json()["status"] == "done"
    assert done.json()["state"]["confirmed"] is True
    assert client.get("/api/threads").json() == {"threads": ["t1"]}


def test_second_resume_conflicts(client: TestClient) -> None:
    client.post("/api/threads/t1/runs", json={"input": {"topic": "release"}})
    client.post("/api/threads/t1/resume", json={"value": True})

    response = client.post("/api/threads/t1/resume", json={"value": True})

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["error"] == "SuspensionMisuseError"
    assert detail["thread_id"] == "t1"


def test_history_uses_page_size(client: TestClient) -> None:
    client.post("/api/threads/t1/runs", json={"input": {"topic": "release"}})
    client.post("/api/threads/t1/resume", json={"value": True})

    page = client.get("/api/threads/t1/history").json()
    everything = client.get("/api/threads/t1/history", params={"limit": 10}).json()

    assert len(page) == 2
    assert [s["metadata"]["step"] for s in everything] == [1, 0, -1]
    older = client.get(
        "/api/threads/t1/history", params={"before": page[-1]["checkpoint_id"]}
    ).json()
    assert [s["metadata"]["step"] for s in older] == [-1]


def test_unknown_checkpoint_is_not_found(client: TestClient) -> None:
    client.post("/api/threads/t1/runs", json={"input": {"topic": "release"}})

    response = client.get("/api/threads/t1/state", params={"checkpoint_id": "nope"})

    assert response.status_code == 404
    assert response.json()["detail"]["checkpoint_id"] == "nope"


def test_fork_and_update_state(client: TestClient) -> None:
    client.post("/api/threads/t1/runs", json={"input": {"topic": "release"}})
    client.post("/api/threads/t2/runs", json={"input": {"topic": "other"}})
    source = client.get("/api/threads/t1/state").json()["checkpoint_id"]

    forked = client.post(
        "/api/threads/t1/fork", json={"checkpoint_id": source, "new_thread_id": "t3"}
    )
    assert forked.status_code == 200
    assert forked.json()["thread_id"] == "t3"
    assert forked.json()["next"] == ["confirm"]

    conflict = client.post(
        "/api/threads/t1/fork", json={"checkpoint_id": source, "new_thread_id": "t2"}
    )
    assert conflict.status_code == 409

    updated = client.post("/api/threads/t3/state", json={"values": {"topic": "hotfix"}})
    assert updated.status_code == 200
    assert updated.json()["values"]["topic"] == "hotfix"
    assert updated.json()["metadata"]["source"] == "update"


def test_reducer_conflict_is_unprocessable(client: TestClient) -> None:
    response = client.post("/api/threads/t1/runs", json={"input": {"log": "x"}})

    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "ReducerConflictError"


def test_delete_thread(client: TestClient) -> None:
    client.post("/api/threads/t1/runs", json={"input": {"topic": "release"}})

    assert client.delete("/api/threads/t1").json() == {"status": "deleted", "thread_id": "t1"}
    assert client.get("/api/threads").json() == {"threads": []}
