"""Per-shard LRU lists and ordering of shards by weight for eviction."""

from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Iterator
from typing import Protocol

from shardcache.shard import Shard
from shardcache.shardmap import TOTAL_SHARDS, ShardedMap

_PTR_SIZE = 8
# Approximate footprint of the balancer itself and of one shard node.
_BALANCER_SIZE = TOTAL_SHARDS * _PTR_SIZE + 4 * _PTR_SIZE
_NODE_SIZE = 3 * _PTR_SIZE


class LruEntry(Protocol):
    """What the balancer needs from a cached entry."""

    map_key: int
    shard_key: int

    def weight(self) -> int: ...


class ShardNode:
    """A shard together with its LRU list; most recently used entries at the front."""

    def __init__(self, shard: Shard) -> None:
        self.shard = shard
        self._lru: OrderedDict[int, LruEntry] = OrderedDict()
        self._lock = threading.Lock()

    def weight(self) -> int:
        """Return the current weight of the underlying shard."""
        return self.shard.weight()

    def __len__(self) -> int:
        return len(self._lru)

    def push_front(self, entry: LruEntry) -> None:
        """Put ``entry`` at the front of the LRU list."""
        with self._lock:
            self._lru[entry.map_key] = entry
            self._lru.move_to_end(entry.map_key)

    def move_to_front(self, key: int) -> None:
        """Mark the entry under ``key`` as most recently used."""
        with self._lock:
            if key in self._lru:
                self._lru.move_to_end(key)

    def remove(self, key: int) -> LruEntry | None:
        """Drop ``key`` from the LRU list; return the removed entry, if any."""
        with self._lock:
            return self._lru.pop(key, None)

    def back(self) -> LruEntry | None:
        """Return the least recently used entry, or None when empty."""
        with self._lock:
            return next(iter(self._lru.values()), None)

    def iter_from_back(self) -> Iterator[LruEntry]:
        """Yield a snapshot of the entries from least to most recently used."""
        with self._lock:
            snapshot = list(self._lru.values())
        yield from snapshot


class Balancer:
    """Tracks shard nodes, ordered by weight, and their LRU lists."""

    def __init__(self, shard_map: ShardedMap) -> None:
        self.shard_map = shard_map
        self._nodes: list[ShardNode | None] = [None] * TOTAL_SHARDS
        self._mem_list: list[ShardNode] = []
        self._lock = threading.Lock()

    def register(self, shard: Shard) -> ShardNode:
        """Create the node for ``shard`` and add it to the weight ordering."""
        node = ShardNode(shard)
        with self._lock:
            self._mem_list.append(node)
            self._nodes[shard.id] = node
        return node

    def rebalance(self) -> None:
        """Order the nodes by weight, heaviest first."""
        with self._lock:
            self._mem_list.sort(key=lambda node: node.weight(), reverse=True)

    def mem(self) -> int:
        """Return an approximate memory footprint of the balancer."""
        mem = _BALANCER_SIZE + TOTAL_SHARDS * _PTR_SIZE + len(self._mem_list) * _PTR_SIZE
        if self._nodes[0] is not None:
            mem += _NODE_SIZE * TOTAL_SHARDS
        return mem

    def _node(self, shard_key: int) -> ShardNode:
        node = self._nodes[shard_key]
        if node is None:
            raise KeyError(f"shard {shard_key} is not registered")
        return node

    def push(self, entry: LruEntry) -> None:
        """Insert ``entry`` at the front of its shard's LRU list."""
        self._node(entry.shard_key).push_front(entry)

    def update(self, entry: LruEntry) -> None:
        """Mark ``entry`` as most recently used."""
        self._node(entry.shard_key).move_to_front(entry.map_key)

    def remove(self, shard_key: int, map_key: int) -> None:
        """Drop ``map_key`` from the LRU list of shard ``shard_key``."""
        self._node(shard_key).remove(map_key)

    def most_loaded(self, offset: int = 0) -> ShardNode | None:
        """Return the node at ``offset`` in the weight ordering, or None past its end."""
        with self._lock:
            if 0 <= offset < len(self._mem_list):
                return self._mem_list[offset]
        return None

    def find_victim(self, shard_key: int) -> LruEntry | None:
        """Return the LRU entry of the shard or of a neighbouring shard, or None."""
        candidates = [shard_key]
        if len(self._nodes) > shard_key + 1:
            candidates.append(shard_key + 1)
        if shard_key - 1 > 0:
            candidates.append(shard_key - 1)
        for key in candidates:
            node = self._nodes[key]
            if node is None:
                continue
            victim = node.back()
            if victim is not None:
                return victim
        return None