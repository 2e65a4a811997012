"""Background eviction that keeps storage weight under a threshold."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Protocol

from shardcache.balancer import Balancer, LruEntry
from shardcache.shardmap import TOTAL_SHARDS

FAT_SHARDS_PERCENT = 0.17

logger = logging.getLogger(__name__)


class EvictableStorage(Protocol):
    def mem(self) -> int: ...

    def real_mem(self) -> int: ...

    def remove(self, entry: LruEntry) -> int | None: ...


@dataclass(frozen=True)
class EvictionStat:
    """Result of one eviction pass."""

    items: int = 0
    freed_mem: int = 0


class Evictor:
    """Evicts least recently used entries from the heaviest shards."""

    evict_interval = 0.5
    log_interval = 5.0

    def __init__(
        self,
        storage: EvictableStorage,
        balancer: Balancer,
        memory_threshold: int,
        enabled: bool = True,
    ) -> None:
        self.storage = storage
        self.balancer = balancer
        self.memory_threshold = memory_threshold
        self.enabled = enabled
        self.fat_shards_count = int(TOTAL_SHARDS * FAT_SHARDS_PERCENT)
        self._stats_lock = threading.Lock()
        self._pending_items = 0
        self._pending_mem = 0
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def should_evict(self) -> bool:
        """Check the cached weight against the threshold."""
        return self.storage.mem() >= self.memory_threshold

    def should_evict_right_now(self) -> bool:
        """Check the freshly computed weight against the threshold."""
        return self.storage.real_mem() >= self.memory_threshold

    def evict_until_within_limit(self) -> EvictionStat:
        """Evict entries until the weight drops below the threshold or nothing is left."""
        items = 0
        freed_total = 0
        shard_offset = 0
        progress_in_cycle = False
        idle_cycles = 0
        while self.should_evict_right_now():
            shard_offset += 1
            if shard_offset >= self.fat_shards_count:
                idle_cycles = 0 if progress_in_cycle else idle_cycles + 1
                if idle_cycles >= 2:
                    break
                progress_in_cycle = False
                self.balancer.rebalance()
                shard_offset = 0

            node = self.balancer.most_loaded(shard_offset)
            if node is None or len(node) == 0:
                continue

            for entry in node.iter_from_back():
                if not self.should_evict_right_now():
                    break
                freed = self.storage.remove(entry)
                if freed is not None:
                    items += 1
                    freed_total += freed
                    progress_in_cycle = True
        return EvictionStat(items=items, freed_mem=freed_total)

    def _run_evictor(self) -> None:
        while not self._stop_event.wait(self.evict_interval):
            stat = self.evict_until_within_limit()
            if stat.items > 0 or stat.freed_mem > 0:
                with self._stats_lock:
                    self._pending_items += stat.items
                    self._pending_mem += stat.freed_mem

    def _flush_log(self) -> None:
        with self._stats_lock:
            items, mem = self._pending_items, self._pending_mem
            self._pending_items = self._pending_mem = 0
        if items <= 0 and mem <= 0:
            return
        logger.info(
            "[eviction][%ss] removed %d items, freed %d bytes",
            self.log_interval,
            items,
            mem,
            extra={"target": "eviction", "freedMemBytes": mem, "freedItems": items},
        )

    def _run_logger(self) -> None:
        while not self._stop_event.wait(self.log_interval):
            self._flush_log()

    def run(self) -> None:
        """Start the eviction and logging threads when eviction is enabled."""
        if not self.enabled or self.is_running:
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._run_logger, name="evictor-logger", daemon=True),
            threading.Thread(target=self._run_evictor, name="evictor", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def stop(self) -> None:
        """Stop the background threads, waiting for them to finish."""
        self._stop_event.set()
        for thread in self._threads:
            thread.join()
        self._threads = []