"""Weight-aware sharded in-memory cache with LRU eviction and TinyLFU admission."""

from __future__ import annotations

import dataclasses
import gc
import logging
import struct
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from shardcache.balancer import Balancer
from shardcache.dumper import DumpConfig, DumpError, Dumper
from shardcache.evictor import Evictor
from shardcache.shard import Shard
from shardcache.shardmap import ShardedMap, map_shard_key
from shardcache.tinylfu import TinyLFU

logger = logging.getLogger(__name__)

_ENTRY_HEADER = struct.Struct("<QI")
_ENTRY_OVERHEAD = 64
_MASK64 = (1 << 64) - 1


@dataclass(eq=False)
class CacheEntry:
    """A cached value addressed by a 64-bit key and checked by a fingerprint."""

    map_key: int
    payload: bytes = b""
    fingerprint: bytes = b""

    def __post_init__(self) -> None:
        self.map_key &= _MASK64

    @property
    def shard_key(self) -> int:
        return map_shard_key(self.map_key)

    def weight(self) -> int:
        """Return the approximate memory taken by this entry."""
        return _ENTRY_OVERHEAD + len(self.fingerprint) + len(self.payload)

    def is_same_fingerprint(self, fingerprint: bytes) -> bool:
        return self.fingerprint == fingerprint

    def is_same_payload(self, other: CacheEntry) -> bool:
        return self.payload == other.payload

    def swap_payloads(self, other: CacheEntry) -> None:
        """Exchange payloads with ``other``."""
        self.payload, other.payload = other.payload, self.payload

    def to_bytes(self) -> bytes:
        """Serialize the entry."""
        return (
            _ENTRY_HEADER.pack(self.map_key, len(self.fingerprint))
            + self.fingerprint
            + self.payload
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> CacheEntry:
        """Rebuild an entry from :meth:`to_bytes` output."""
        if len(data) < _ENTRY_HEADER.size:
            raise ValueError("entry data is too short")
        map_key, fp_len = _ENTRY_HEADER.unpack_from(data)
        body = data[_ENTRY_HEADER.size:]
        if len(body) < fp_len:
            raise ValueError("entry fingerprint is truncated")
        return cls(map_key=map_key, fingerprint=bytes(body[:fp_len]), payload=bytes(body[fp_len:]))


@dataclass(frozen=True)
class StorageConfig:
    """Settings of an :class:`InMemoryStorage`."""

    size: int = 1 << 30
    enabled: bool = True
    eviction_enabled: bool = True
    eviction_threshold: float = 0.95
    dump: DumpConfig = field(default_factory=DumpConfig)
    lfu_rotate_interval: float = 60.0
    stats_interval: float = 0.1
    log_interval: float = 5.0


class InMemoryStorage:
    """Sharded cache that evicts by LRU and admits new entries through TinyLFU."""

    def __init__(
        self,
        config: StorageConfig | None = None,
        decode: Callable[[bytes], CacheEntry] | None = None,
    ) -> None:
        self.config = config if config is not None else StorageConfig()
        cfg = self.config
        self.memory_threshold = int(cfg.size * cfg.eviction_threshold)
        self._shard_map: ShardedMap[CacheEntry] = ShardedMap()
        self.balancer = Balancer(self._shard_map)
        for shard in self._shard_map.shards():
            self.balancer.register(shard)
        self.tinylfu = TinyLFU(cfg.lfu_rotate_interval)
        self.evictor = Evictor(
            self,
            self.balancer,
            self.memory_threshold,
            enabled=cfg.enabled and cfg.eviction_enabled,
        )
        dump_config = dataclasses.replace(cfg.dump, enabled=cfg.enabled and cfg.dump.enabled)
        self.dumper = Dumper(dump_config, self, decode or CacheEntry.from_bytes)
        self._stop_event = threading.Event()
        self._logger_thread: threading.Thread | None = None

    def run(self) -> None:
        """Start the statistics refresher, TinyLFU aging, logging and eviction."""
        self._shard_map.start_refresher(self.config.stats_interval)
        self.tinylfu.start()
        if self._logger_thread is None or not self._logger_thread.is_alive():
            self._stop_event.clear()
            self._logger_thread = threading.Thread(
                target=self._run_logger, name="storage-logger", daemon=True
            )
            self._logger_thread.start()
        self.evictor.run()

    def close(self) -> None:
        """Stop background work and write a dump when persistence is enabled."""
        self._stop_event.set()
        if self._logger_thread is not None:
            self._logger_thread.join()
            self._logger_thread = None
        self.evictor.stop()
        self.tinylfu.stop()
        self._shard_map.stop()
        if self.config.enabled and self.config.dump.enabled:
            try:
                self.dumper.dump()
            except DumpError as exc:
                logger.error("[dump] failed to store cache dump: %s", exc)

    def clear(self) -> None:
        """Remove every entry."""
        for shard in self._shard_map.shards():
            for key, _ in shard.items():
                self.balancer.remove(shard.id, key)
            shard.clear()

    def rand(self) -> CacheEntry | None:
        """Return an entry from a random shard, or None if that shard is empty."""
        return self._shard_map.random_item()

    def get(self, entry: CacheEntry) -> CacheEntry | None:
        """Return the stored entry matching ``entry``'s key and fingerprint, or None."""
        found = self._shard_map.get(entry.map_key)
        if found is None or not found.is_same_fingerprint(entry.fingerprint):
            return None
        self.balancer.update(found)
        return found

    def set(self, entry: CacheEntry) -> bool:
        """Store ``entry``; return False when admission refused it."""
        key = entry.map_key
        self.tinylfu.increment(key)

        old = self._shard_map.get(key)
        if old is not None:
            if old.is_same_fingerprint(entry.fingerprint):
                if old.is_same_payload(entry):
                    self.balancer.update(old)
                else:
                    self._update(old, entry)
                return True
            self.remove(old)

        if self.should_evict():
            victim = self.balancer.find_victim(entry.shard_key)
            if victim is None or not self.tinylfu.admit(key, victim.map_key):
                return False

        self._shard_map.set(key, entry)
        self.balancer.push(entry)
        return True

    def _update(self, existing: CacheEntry, new: CacheEntry) -> None:
        key = existing.map_key
        self._shard_map.remove(key)
        existing.swap_payloads(new)
        self._shard_map.set(key, existing)
        self.balancer.update(existing)

    def remove(self, entry: CacheEntry) -> int | None:
        """Remove ``entry``; return the freed weight, or None if it was absent."""
        self.balancer.remove(entry.shard_key, entry.map_key)
        return self._shard_map.remove(entry.map_key)

    def len(self) -> int:
        """Return the entry count as of the last statistics refresh."""
        return self._shard_map.cached_len()

    def real_len(self) -> int:
        """Count the entries now."""
        return self._shard_map.real_len()

    def mem(self) -> int:
        """Return the cached weight plus the balancer's own footprint."""
        return self._shard_map.mem() + self.balancer.mem()

    def real_mem(self) -> int:
        """Sum the weight of all entries now."""
        return self._shard_map.real_mem()

    def stat(self) -> tuple[int, int]:
        """Return the cached (bytes, length) pair."""
        return self._shard_map.mem(), self._shard_map.cached_len()

    def should_evict(self) -> bool:
        """Check whether memory usage has reached the eviction threshold."""
        return self.mem() >= self.memory_threshold

    def shards(self) -> tuple[Shard[CacheEntry], ...]:
        """Return all shards of the underlying map."""
        return self._shard_map.shards()

    def dump(self) -> int:
        """Write all entries to disk; return how many were written."""
        return self.dumper.dump()

    def load(self) -> int:
        """Restore entries from the latest dump."""
        return self.dumper.load()

    def load_version(self, version: str) -> int:
        """Restore entries from the given dump version."""
        return self.dumper.load_version(version)

    def _run_logger(self) -> None:
        while not self._stop_event.wait(self.config.log_interval):
            mem = self._shard_map.mem()
            length = self._shard_map.cached_len()
            collections = sum(stat["collections"] for stat in gc.get_stats())
            threads = threading.active_count()
            logger.info(
                "[storage][%ss] usage: %d bytes, len: %d, limit: %d bytes, threads: %d, gc: %d",
                self.config.log_interval,
                mem,
                length,
                self.config.size,
                threads,
                collections,
                extra={
                    "target": "storage",
                    "mem": mem,
                    "len": length,
                    "memLimit": self.config.size,
                    "threads": threads,
                    "gc": collections,
                },
            )