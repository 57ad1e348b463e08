"""Per-field reducers that merge proposed updates into state.

A reducer combines the prior value of a field with a delta proposed by a node.
Fields without a registered reducer are overwritten. Reducers must be pure and
deterministic: they are replayed when the history of a thread is folded again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from threadgraph.errors import ReducerConflictError

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel for a field that has no prior value."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


@dataclass(frozen=True, slots=True)
class Reducer:
    """A named merge function.

    ``commutative`` declares that merging concurrent deltas in any order gives
    the same value. Non-commutative reducers are applied in node declaration
    order.
    """

    name: str
    fn: Callable[[Any, Any], Any]
    commutative: bool = False

    def __call__(self, prior: Any, delta: Any) -> Any:
        return self.fn(prior, delta)


def _overwrite(_prior: Any, delta: Any) -> Any:
    return delta


def _append(prior: Any, delta: Any) -> list[Any]:
    if not isinstance(delta, (list, tuple)):
        raise TypeError(f"append expects a list update, got {type(delta).__name__}")
    if prior is MISSING or prior is None:
        return list(delta)
    if not isinstance(prior, (list, tuple)):
        raise TypeError(f"append expects a list value, got {type(prior).__name__}")
    return [*prior, *delta]


def _sort_key(value: Any) -> tuple[str, str]:
    return (type(value).__name__, repr(value))


def _union(prior: Any, delta: Any) -> list[Any]:
    if not isinstance(delta, (list, tuple, set, frozenset)):
        raise TypeError(f"union expects a collection update, got {type(delta).__name__}")
    items: list[Any] = []
    if prior is not MISSING and prior is not None:
        if not isinstance(prior, (list, tuple, set, frozenset)):
            raise TypeError(f"union expects a collection value, got {type(prior).__name__}")
        items.extend(prior)
    items.extend(delta)
    unique = []
    for item in items:
        if item not in unique:
            unique.append(item)
    try:
        return sorted(unique)
    except TypeError:
        return sorted(unique, key=_sort_key)


def _maximum(prior: Any, delta: Any) -> Any:
    if prior is MISSING or prior is None:
        return delta
    return max(prior, delta)


def _minimum(prior: Any, delta: Any) -> Any:
    if prior is MISSING or prior is None:
        return delta
    return min(prior, delta)


overwrite = Reducer("overwrite", _overwrite)
append = Reducer("append", _append)
union = Reducer("union", _union, commutative=True)
maximum = Reducer("maximum", _maximum, commutative=True)
minimum = Reducer("minimum", _minimum, commutative=True)


def custom(fn: Callable[[Any, Any], Any], *, commutative: bool = False) -> Reducer:
    """Wrap a user function ``(prior, delta) -> merged`` as a reducer.

    The prior value passed to ``fn`` is ``None`` when the field is unset.
    """

    def _call(prior: Any, delta: Any) -> Any:
        return fn(None if prior is MISSING else prior, delta)

    name = getattr(fn, "__name__", "custom")
    return Reducer(name, _call, commutative=commutative)


def as_reducer(value: Reducer | Callable[[Any, Any], Any]) -> Reducer:
    """Coerce a reducer declaration (a Reducer or a plain callable).

    A plain callable such as ``operator.add`` is only called once the field
    has a value; the first delta is stored as is.
    """

    if isinstance(value, Reducer):
        return value
    if callable(value):
        fn = value

        def _call(prior: Any, delta: Any) -> Any:
            return delta if prior is MISSING else fn(prior, delta)

        return Reducer(getattr(fn, "__name__", "custom"), _call)
    raise TypeError(f"Not a reducer: {value!r}")


@dataclass
class ReducerRegistry:
    """Maps state fields to reducers; unknown fields are overwritten."""

    reducers: dict[str, Reducer] = field(default_factory=dict)

    def register(self, field_name: str, reducer: Reducer | Callable[[Any, Any], Any]) -> None:
        self.reducers[field_name] = as_reducer(reducer)
        logger.debug("Registered reducer", extra={"field": field_name})

    def get(self, field_name: str) -> Reducer:
        return self.reducers.get(field_name, overwrite)

    def is_commutative(self, field_name: str) -> bool:
        return self.get(field_name).commutative

    def merge(self, field_name: str, prior: Any, delta: Any) -> Any:
        """Merge one field.

        Raises:
            ReducerConflictError: If the reducer rejects the value shapes.
        """

        reducer = self.get(field_name)
        try:
            return reducer(prior, delta)
        except (TypeError, ValueError) as e:
            raise ReducerConflictError(
                f"Reducer {reducer.name!r} cannot merge field {field_name!r}: {e}",
                field=field_name,
            ) from e

    def apply(self, state: Mapping[str, Any], delta: Mapping[str, Any]) -> dict[str, Any]:
        """Return a new state with ``delta`` merged in; ``state`` is not mutated."""

        merged = dict(state)
        for key, value in delta.items():
            merged[key] = self.merge(key, merged.get(key, MISSING), value)
        return merged

    def apply_all(
        self, state: Mapping[str, Any], deltas: Iterable[Mapping[str, Any]]
    ) -> dict[str, Any]:
        merged = dict(state)
        for delta in deltas:
            merged = self.apply(merged, delta)
        return merged

    def copy(self) -> ReducerRegistry:
        return ReducerRegistry(reducers=dict(self.reducers))
