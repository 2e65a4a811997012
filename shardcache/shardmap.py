"""Sharded concurrent map with cached size statistics."""

from __future__ import annotations

import logging
import random
import threading
from typing import Generic

from shardcache.shard import Shard, V

TOTAL_SHARDS = 2048

logger = logging.getLogger(__name__)


def map_shard_key(key: int) -> int:
    """Return the index of the shard that holds ``key``."""
    return key % TOTAL_SHARDS


class ShardedMap(Generic[V]):
    """A map split into a fixed number of independently locked shards."""

    def __init__(self) -> None:
        self._shards: tuple[Shard[V], ...] = tuple(
            Shard(shard_id) for shard_id in range(TOTAL_SHARDS)
        )
        self._len = 0
        self._mem = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def set(self, key: int, value: V) -> None:
        """Insert or replace ``value`` under ``key``."""
        self.shard(key).set(key, value)

    def get(self, key: int) -> V | None:
        """Return the value under ``key``, or None."""
        return self.shard(key).get(key)

    def random_item(self) -> V | None:
        """Return a value from a randomly chosen shard, or None if that shard is empty."""
        return self._shards[random.randrange(TOTAL_SHARDS)].get_rand()

    def remove(self, key: int) -> int | None:
        """Remove ``key``; return the freed weight, or None if it was absent."""
        return self.shard(key).remove(key)

    def shard(self, key: int) -> Shard[V]:
        """Return the shard responsible for ``key``."""
        return self._shards[map_shard_key(key)]

    def shards(self) -> tuple[Shard[V], ...]:
        """Return all shards in index order."""
        return self._shards

    def cached_len(self) -> int:
        """Return the element count as of the last refresh."""
        return self._len

    def real_len(self) -> int:
        """Count the elements now and update the cached value."""
        self._len = sum(len(shard) for shard in self._shards)
        return self._len

    def mem(self) -> int:
        """Return the total weight as of the last refresh."""
        return self._mem

    def real_mem(self) -> int:
        """Sum the weights now and update the cached value."""
        self._mem = sum(shard.weight() for shard in self._shards)
        return self._mem

    def refresh_stats(self) -> None:
        """Recompute the cached length and weight."""
        mem = 0
        length = 0
        for shard in self._shards:
            mem += shard.weight()
            length += len(shard)
        self._mem = mem
        self._len = length

    def _run_refresher(self, interval: float) -> None:
        logger.info("[storage] memory refresher has been launched (refresh each %ss)", interval)
        while not self._stop_event.wait(interval):
            self.refresh_stats()
        logger.info("[storage] memory refresher has been closed")

    def start_refresher(self, interval: float = 0.1) -> None:
        """Refresh the cached statistics every ``interval`` seconds in the background."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_refresher, args=(interval,), name="shardmap-refresher", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the background refresher, waiting for it to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None