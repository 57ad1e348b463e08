#!/usr/bin/env python3
"""Approval workflow example.

This demonstrates the thread API directly:

* load settings from `.env` (``THREADGRAPH_*`` variables)
* run a graph until a node asks for approval
* resume the thread with the answer, possibly from a later process

Checkpoints go to the backend selected by ``THREADGRAPH_CHECKPOINT_BACKEND``;
use ``json`` or ``sqlite`` to resume across invocations.
"""

from __future__ import annotations

import argparse
from typing import Annotated, Any, Sequence, TypedDict

from threadgraph import CompiledGraph, EngineSettings, StateGraph
from threadgraph.graph import END, append


class ReleaseState(TypedDict, total=False):
    version: str
    notes: Annotated[list[str], append]
    approved: bool


def draft_notes(state):
    return {"notes": [f"Release {state['version']}"]}


def approve(state, ctx):
    answer = ctx.interrupt({"question": "Publish this release?", "notes": state["notes"]})
    return {"approved": str(answer).lower() in ("y", "yes", "true", "1")}


def publish(state):
    return {"notes": ["published"]}


def build_graph(settings: EngineSettings) -> CompiledGraph:
    graph = StateGraph(ReleaseState)
    graph.add_node("draft_notes", draft_notes)
    graph.add_node("approve", approve)
    graph.add_node("publish", publish)
    graph.set_entry_point("draft_notes")
    graph.add_edge("draft_notes", "approve")
    graph.add_conditional_edges(
        "approve",
        lambda s: "yes" if s["approved"] else "no",
        {"yes": "publish", "no": END},
    )
    graph.set_finish_point("publish")
    return graph.compile(settings=settings, name="release")


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run or resume the release workflow.")
    parser.add_argument("--thread", required=True, help="Thread id, e.g. release-1.4")
    parser.add_argument("--version", help="Start a new run for this version")
    parser.add_argument("--answer", help="Resume the pending approval with this answer")
    return parser.parse_args(argv)


def _print(result: Any) -> None:
    if result.done:
        print(f"Done: {result.state}")
    else:
        print(f"Waiting for input: {result.payload}")
        print(f"Checkpoint: {result.checkpoint_id}")


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = EngineSettings()
    settings.setup_logging()
    app = build_graph(settings)

    if args.answer is not None:
        _print(app.resume(args.thread, args.answer))
    elif args.version:
        _print(app.advance(args.thread, {"version": args.version}))
    else:
        snapshot = app.get_state(args.thread)
        print(f"State: {snapshot.values}")
        print(f"Next: {snapshot.next}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
