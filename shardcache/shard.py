"""A single partition of the sharded map."""

from __future__ import annotations

import random
import threading
from typing import Generic, Protocol, TypeVar


class Weighted(Protocol):
    def weight(self) -> int: ...


V = TypeVar("V", bound=Weighted)


class Shard(Generic[V]):
    """Thread-safe dict of values keyed by 64-bit integers, tracking total weight."""

    def __init__(self, shard_id: int) -> None:
        self._id = shard_id
        self._items: dict[int, V] = {}
        self._mem = 0
        self._lock = threading.Lock()

    @property
    def id(self) -> int:
        return self._id

    def clear(self) -> None:
        """Remove every value."""
        with self._lock:
            self._items.clear()
            self._mem = 0

    def weight(self) -> int:
        """Return the summed weight of all stored values."""
        return self._mem

    def __len__(self) -> int:
        return len(self._items)

    def set(self, key: int, value: V) -> None:
        """Insert or replace the value stored under ``key``."""
        with self._lock:
            old = self._items.get(key)
            self._items[key] = value
            self._mem += value.weight() - (old.weight() if old is not None else 0)

    def get(self, key: int) -> V | None:
        """Return the value under ``key``, or None."""
        with self._lock:
            return self._items.get(key)

    def get_rand(self) -> V | None:
        """Return an arbitrary stored value, or None when empty."""
        with self._lock:
            if not self._items:
                return None
            return random.choice(list(self._items.values()))

    def remove(self, key: int) -> int | None:
        """Remove ``key``; return the freed weight, or None if it was absent."""
        with self._lock:
            value = self._items.pop(key, None)
            if value is None:
                return None
            freed = value.weight()
            self._mem -= freed
            return freed

    def items(self) -> list[tuple[int, V]]:
        """Return a snapshot of the stored (key, value) pairs."""
        with self._lock:
            return list(self._items.items())