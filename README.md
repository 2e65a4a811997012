# shardcache

A memory-aware, sharded in-memory cache storage for Python.

`shardcache` spreads entries over 2048 shards, each with its own lock. Every
shard keeps an LRU list, and an evictor removes least recently used entries
from the heaviest shards whenever the total weight reaches a threshold. When
the cache is at that threshold, a TinyLFU filter (a count-min sketch with a
doorkeeper bit filter in front of it) decides whether a new entry may be
admitted in place of an existing one. The contents can be dumped to disk,
optionally gzip compressed and CRC32 checked, and loaded back.

The package uses only the standard library.

## Installation

```
pip install shardcache
```

## Modules

- `shardcache.sketch`: `CountMinSketch` (4 rows of 2^17 wrapping 32-bit
  counters) and the `hash64` mixing function.
- `shardcache.doorkeeper`: `Doorkeeper`. `allow(key)` returns `False` the
  first time a key is seen and remembers it; afterwards it returns `True`.
- `shardcache.tinylfu`: `TinyLFU`, with `increment`, `estimate`, `admit` and
  `rotate`. `start()`/`stop()` (or use it as a context manager) rotate the
  sketches every `rotate_interval` seconds in a background thread.
- `shardcache.shard` and `shardcache.shardmap`: `Shard` and `ShardedMap`,
  keyed by 64-bit integers and tracking total weight. `ShardedMap` keeps
  cached length and weight, recomputed by `real_len()`, `real_mem()`,
  `refresh_stats()`, or a background thread started with
  `start_refresher(interval)`.
- `shardcache.balancer`: `ShardNode` (a shard with its LRU list) and
  `Balancer`, which orders nodes by weight (`rebalance`, `most_loaded`) and
  picks eviction victims (`find_victim`).
- `shardcache.evictor`: `Evictor` and `EvictionStat`.
  `evict_until_within_limit()` does one eviction pass; `run()`/`stop()`
  repeat it every half second in the background and log totals.
- `shardcache.dumper`: `Dumper`, `DumpConfig` and `DumpError`, plus the
  helpers `next_version_dir`, `rotate_version_dirs`, `latest_version_dir`,
  `extract_latest_timestamp` and `filter_files_by_timestamp`.
- `shardcache.storage`: `InMemoryStorage`, `StorageConfig` and `CacheEntry`,
  which tie the pieces together.

## Usage

```python
from shardcache.storage import CacheEntry, InMemoryStorage, StorageConfig

storage = InMemoryStorage(StorageConfig(size=64 * 1024 * 1024))
storage.run()
try:
    entry = CacheEntry(map_key=42, payload=b"body", fingerprint=b"GET /items")
    if storage.set(entry):
        cached = storage.get(CacheEntry(map_key=42, fingerprint=b"GET /items"))
        print(cached.payload)           # b"body"; get() returns None on a miss
    size_bytes, length = storage.stat()  # cached values, refreshed in the background
finally:
    storage.close()                      # stops threads, dumps if enabled
```

`get` returns an entry only when both the key and the fingerprint match.
`set` with a known key and fingerprint updates the payload in place; a known
key with another fingerprint replaces the old entry. `set` returns `False`
only when the cache is at its memory threshold and either no victim is found
near the entry's shard or TinyLFU rates the new key lower than the victim.

`CacheEntry.weight()` is the payload and fingerprint length plus a fixed
overhead; `to_bytes()` and `CacheEntry.from_bytes()` serialize it.

## Dumps

Set `StorageConfig(dump=DumpConfig(enabled=True, dir="dump"))` to enable
them. `dump()` writes each shard to its own file in a new directory `v1`,
`v2`, and so on. Each record is a 4-byte little-endian length, a 4-byte CRC32
(zero unless `crc32_control` is set) and the entry bytes. With `gzip=True`
files end in `.dump.gz`. With `max_versions` set, older directories beyond that
count are removed.

`load()` restores the most recently modified version directory, and
`load_version("v3")` a named one. Only the files with the newest timestamp in
that directory are read. A failed record does not stop the others, but a
`DumpError` is raised at the end if any failed. `dump()` raises `DumpError`
when dumping is not enabled.

## What it does not do

The package is a storage engine only. It has no network server, no
command-line program, and it does not fetch or refresh entries from any
backend; values reach the cache only through `set` or `load`.

## Running the tests

```
pip install -e ".[test]"
pytest
```