"""Namespaced key/value store shared across threads.

Nodes reach the store through ``ctx.store``. Its content is not part of any
checkpoint unless a node copies values into its state update.
"""

from __future__ import annotations

import copy
import json
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

Namespace = tuple[str, ...]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class Item(BaseModel):
    """One stored value."""

    model_config = ConfigDict(frozen=True)

    namespace: Namespace
    key: str
    value: Any = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    score: float | None = None


class BaseStore(ABC):
    """Interface of the namespaced store."""

    @abstractmethod
    def get(self, namespace: Sequence[str], key: str) -> Item | None:
        """Return the item stored under ``(namespace, key)``, or None."""
        pass

    @abstractmethod
    def put(self, namespace: Sequence[str], key: str, value: Any) -> Item:
        """Create or replace an item."""
        pass

    @abstractmethod
    def search(
        self,
        namespace_prefix: Sequence[str],
        query: str | None = None,
        limit: int = 10,
    ) -> list[Item]:
        """Find items whose namespace starts with ``namespace_prefix``.

        Args:
            namespace_prefix: Leading namespace components to match.
            query: Optional text; items are ranked by how often it occurs in
                their value and items without a match are dropped.
            limit: Maximum number of items returned.
        """
        pass

    @abstractmethod
    def delete(self, namespace: Sequence[str], key: str) -> bool:
        """Delete an item. Returns whether it existed."""
        pass


def _validate_namespace(namespace: Sequence[str]) -> Namespace:
    ns = tuple(namespace)
    if not ns or any(not isinstance(part, str) or not part for part in ns):
        raise ValueError(f"Namespace must be a non-empty tuple of non-empty strings: {ns!r}")
    return ns


class InMemoryStore(BaseStore):
    """Process-local implementation of :class:`BaseStore`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[tuple[Namespace, str], Item] = {}

    def get(self, namespace: Sequence[str], key: str) -> Item | None:
        with self._lock:
            item = self._items.get((_validate_namespace(namespace), key))
            return copy.deepcopy(item)

    def put(self, namespace: Sequence[str], key: str, value: Any) -> Item:
        ns = _validate_namespace(namespace)
        with self._lock:
            existing = self._items.get((ns, key))
            now = _utc_now()
            item = Item(
                namespace=ns,
                key=key,
                value=copy.deepcopy(value),
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self._items[(ns, key)] = item
            return copy.deepcopy(item)

    def search(
        self,
        namespace_prefix: Sequence[str],
        query: str | None = None,
        limit: int = 10,
    ) -> list[Item]:
        prefix = tuple(namespace_prefix)
        with self._lock:
            candidates = [
                item for (ns, _key), item in self._items.items() if ns[: len(prefix)] == prefix
            ]

        if query:
            needle = query.lower()
            scored = []
            for item in candidates:
                text = json.dumps(item.value, default=str, ensure_ascii=False).lower()
                hits = text.count(needle)
                if hits:
                    scored.append(item.model_copy(update={"score": float(hits)}))
            scored.sort(key=lambda i: (-(i.score or 0.0), -i.updated_at.timestamp()))
            return [copy.deepcopy(i) for i in scored[: max(limit, 0)]]

        candidates.sort(key=lambda i: i.updated_at, reverse=True)
        return [copy.deepcopy(i) for i in candidates[: max(limit, 0)]]

    def delete(self, namespace: Sequence[str], key: str) -> bool:
        with self._lock:
            return self._items.pop((_validate_namespace(namespace), key), None) is not None
