"""Graph definition: nodes, fixed edges and conditional edges.

Example:
    graph = StateGraph(PipelineState)
    graph.add_node("plan", plan)
    graph.add_node("act", act)
    graph.add_edge("plan", "act")
    graph.add_conditional_edges("act", should_retry, {"retry": "plan", "done": END})
    graph.set_entry_point("plan")

    app = graph.compile(checkpointer=InMemoryCheckpointStore())
    result = app.advance("thread-1", {"goal": "ship"})
"""

from __future__ import annotations

import inspect
import logging
import typing
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from threadgraph.errors import GraphDefinitionError
from threadgraph.graph.reducers import Reducer, ReducerRegistry, as_reducer
from threadgraph.graph.types import END, RESERVED_NODE_NAMES, START

if TYPE_CHECKING:
    from threadgraph.checkpoint.base import CheckpointStore
    from threadgraph.core.config import EngineSettings
    from threadgraph.runtime.compiled import CompiledGraph
    from threadgraph.store import BaseStore

logger = logging.getLogger(__name__)

Decision = Callable[[Mapping[str, Any]], "str | Sequence[str]"]


@dataclass(frozen=True, slots=True)
class NodeSpec:
    """A registered node. ``index`` is its declaration order."""

    name: str
    func: Callable[..., Any]
    index: int
    accepts_context: bool = False
    subgraph: CompiledGraph | None = None


@dataclass(frozen=True, slots=True)
class ConditionalEdge:
    source: str
    decide: Decision
    path_map: dict[str, str]

    def resolve(self, label: str) -> str | None:
        return self.path_map.get(label)


@dataclass
class GraphSpec:
    """The validated, immutable-by-convention content of a compiled graph."""

    nodes: dict[str, NodeSpec]
    edges: dict[str, list[str]]
    branches: dict[str, list[ConditionalEdge]]
    entry_point: str
    reducers: ReducerRegistry = field(default_factory=ReducerRegistry)

    def order(self, names: Sequence[str]) -> list[str]:
        """De-duplicate node names and sort them by declaration order."""

        unique = {name for name in names if name != END}
        return sorted(unique, key=lambda n: self.nodes[n].index)


def takes_context(func: Callable[..., Any]) -> bool:
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return False
    positional = [
        p
        for p in signature.parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    ]
    has_varargs = any(p.kind == p.VAR_POSITIONAL for p in signature.parameters.values())
    return len(positional) >= 2 or has_varargs


def reducers_from_schema(schema: type[Any]) -> dict[str, Reducer]:
    """Read reducers declared as ``Annotated[..., reducer]`` on a schema class."""

    hints = typing.get_type_hints(schema, include_extras=True)
    found: dict[str, Reducer] = {}
    for name, hint in hints.items():
        if typing.get_origin(hint) is not typing.Annotated:
            continue
        for meta in hint.__metadata__:
            if isinstance(meta, Reducer) or callable(meta):
                found[name] = as_reducer(meta)
                break
    return found


class StateGraph:
    """Builder for a graph of nodes that share one state.

    Args:
        state_schema: Optional class (typically a ``TypedDict``) whose fields
            may declare a reducer in ``Annotated`` metadata.
        reducers: Explicit ``field -> reducer`` mapping; wins over the schema.
    """

    def __init__(
        self,
        state_schema: type[Any] | None = None,
        *,
        reducers: Mapping[str, Reducer | Callable[[Any, Any], Any]] | None = None,
    ) -> None:
        self._state_schema = state_schema
        self._registry = ReducerRegistry()
        if state_schema is not None:
            for name, reducer in reducers_from_schema(state_schema).items():
                self._registry.register(name, reducer)
        for name, reducer in (reducers or {}).items():
            self._registry.register(name, reducer)

        self._nodes: dict[str, NodeSpec] = {}
        self._edges: dict[str, list[str]] = {}
        self._branches: dict[str, list[ConditionalEdge]] = {}
        self._entry_points: list[str] = []

    @property
    def reducers(self) -> ReducerRegistry:
        return self._registry

    def add_node(self, name: str, action: Callable[..., Any] | CompiledGraph) -> StateGraph:
        """Register a node.

        ``action`` is a callable ``(state)`` or ``(state, ctx)``, or a compiled
        graph that runs as a nested scope.

        Raises:
            GraphDefinitionError: If the name is reserved or already used.
        """

        from threadgraph.runtime.compiled import CompiledGraph

        if name in RESERVED_NODE_NAMES:
            raise GraphDefinitionError(f"Node name {name!r} is reserved")
        if name in self._nodes:
            raise GraphDefinitionError(f"Node {name!r} already exists")

        if isinstance(action, CompiledGraph):
            spec = NodeSpec(
                name=name,
                func=action.run_nested,
                index=len(self._nodes),
                accepts_context=True,
                subgraph=action,
            )
        elif callable(action):
            spec = NodeSpec(
                name=name,
                func=action,
                index=len(self._nodes),
                accepts_context=takes_context(action),
            )
        else:
            raise GraphDefinitionError(f"Node {name!r} must be callable")

        self._nodes[name] = spec
        logger.debug("Added node", extra={"node": name})
        return self

    def add_edge(self, source: str, target: str) -> StateGraph:
        """Add a fixed transition. ``add_edge(START, node)`` sets the entry point."""

        if source == END:
            raise GraphDefinitionError("END cannot be the source of an edge")
        if target == START:
            raise GraphDefinitionError("START cannot be the target of an edge")
        if source == START:
            self._entry_points.append(target)
            return self
        targets = self._edges.setdefault(source, [])
        if target not in targets:
            targets.append(target)
        logger.debug("Added edge", extra={"source": source, "target": target})
        return self

    def add_conditional_edges(
        self,
        source: str,
        decide: Decision,
        path_map: Mapping[str, str] | Sequence[str],
    ) -> StateGraph:
        """Route from ``source`` by calling ``decide(state)``.

        ``decide`` returns a label (or several labels for fan-out) that must be
        a key of ``path_map``. A sequence ``path_map`` uses node names as labels.
        """

        if isinstance(path_map, Mapping):
            mapping = dict(path_map)
        else:
            mapping = {target: target for target in path_map}
        if not mapping:
            raise GraphDefinitionError(f"Conditional edge from {source!r} declares no targets")
        self._branches.setdefault(source, []).append(
            ConditionalEdge(source=source, decide=decide, path_map=mapping)
        )
        return self

    def set_entry_point(self, name: str) -> StateGraph:
        return self.add_edge(START, name)

    def set_finish_point(self, name: str) -> StateGraph:
        return self.add_edge(name, END)

    def validate(self) -> GraphSpec:
        """Check the definition and freeze it into a :class:`GraphSpec`.

        Raises:
            GraphDefinitionError: Listing every problem found.
        """

        errors: list[str] = []

        if not self._nodes:
            errors.append("graph has no nodes")

        entries = list(dict.fromkeys(self._entry_points))
        if not entries:
            errors.append("no entry point set")
        elif len(entries) > 1:
            errors.append(f"exactly one entry point is allowed, got {entries}")
        elif entries[0] not in self._nodes:
            errors.append(f"entry point {entries[0]!r} is not a node")

        for source, targets in self._edges.items():
            if source not in self._nodes:
                errors.append(f"edge source {source!r} is not a node")
            for target in targets:
                if target != END and target not in self._nodes:
                    errors.append(f"edge target {target!r} (from {source!r}) is not a node")

        for source, branches in self._branches.items():
            if source not in self._nodes:
                errors.append(f"conditional edge source {source!r} is not a node")
            for branch in branches:
                for label, target in branch.path_map.items():
                    if target != END and target not in self._nodes:
                        errors.append(
                            f"conditional target {target!r} (label {label!r}, "
                            f"from {source!r}) is not a node"
                        )

        if errors:
            raise GraphDefinitionError("Invalid graph: " + "; ".join(errors))

        return GraphSpec(
            nodes=dict(self._nodes),
            edges={k: list(v) for k, v in self._edges.items()},
            branches={k: list(v) for k, v in self._branches.items()},
            entry_point=entries[0],
            reducers=self._registry.copy(),
        )

    def compile(
        self,
        checkpointer: CheckpointStore | None = None,
        *,
        store: BaseStore | None = None,
        settings: EngineSettings | None = None,
        name: str | None = None,
    ) -> CompiledGraph:
        """Validate the graph and return an executable :class:`CompiledGraph`.

        Without a ``checkpointer`` an in-memory store is used.
        """

        from threadgraph.runtime.compiled import CompiledGraph

        spec = self.validate()
        logger.info(
            "Compiled graph",
            extra={"graph": name or "graph", "nodes": list(spec.nodes), "entry": spec.entry_point},
        )
        return CompiledGraph(
            spec,
            checkpointer=checkpointer,
            store=store,
            settings=settings,
            name=name or "graph",
        )
