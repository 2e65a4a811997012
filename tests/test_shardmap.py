import time
from dataclasses import dataclass

import pytest

from shardcache.shardmap import TOTAL_SHARDS, ShardedMap, map_shard_key


@dataclass
class Item:
    key: int
    size: int

    def weight(self):
        return self.size


def test_total_shards_and_shard_ids():
    smap = ShardedMap()
    shards = smap.shards()
    assert len(shards) == 2048
    assert [s.id for s in shards] == list(range(TOTAL_SHARDS))


def test_map_shard_key_wraps():
    assert map_shard_key(TOTAL_SHARDS + 5) == 5
    assert map_shard_key(TOTAL_SHARDS) == 0


def test_set_get_remove_roundtrip():
    smap = ShardedMap()
    item = Item(123456789, 40)
    smap.set(item.key, item)
    assert smap.get(item.key) is item
    assert smap.shard(item.key).get(item.key) is item
    assert smap.remove(item.key) == item.size
    assert smap.get(item.key) is None
    assert smap.remove(item.key) is None


def test_keys_land_in_their_shard():
    smap = ShardedMap()
    keys = [1, TOTAL_SHARDS + 1, 2 * TOTAL_SHARDS + 1]
    for key in keys:
        smap.set(key, Item(key, 1))
    assert len(smap.shard(1)) == len(keys)


def test_cached_stats_update_on_real_and_refresh():
    smap = ShardedMap()
    items = [Item(k, k + 1) for k in range(100)]
    for item in items:
        smap.set(item.key, item)
    assert smap.cached_len() == 0
    assert smap.mem() == 0
    expected_mem = sum(i.size for i in items)
    assert smap.real_len() == len(items)
    assert smap.real_mem() == expected_mem
    assert smap.cached_len() == len(items)
    assert smap.mem() == expected_mem
    smap.remove(0)
    smap.refresh_stats()
    assert smap.cached_len() == len(items) - 1
    assert smap.mem() == expected_mem - items[0].size


def test_random_item():
    smap = ShardedMap()
    assert smap.random_item() is None
    items = {k: Item(k, 1) for k in range(TOTAL_SHARDS)}
    for key, item in items.items():
        smap.set(key, item)
    for _ in range(50):
        picked = smap.random_item()
        assert items[picked.key] is picked


def test_background_refresher():
    smap = ShardedMap()
    item = Item(9, 33)
    smap.set(item.key, item)
    smap.start_refresher(0.01)
    try:
        deadline = time.monotonic() + 3.0
        while smap.mem() != item.size and time.monotonic() < deadline:
            time.sleep(0.01)
        assert smap.mem() == item.size
        assert smap.cached_len() == 1
    finally:
        smap.stop()


def test_refresher_rejects_bad_interval():
    smap = ShardedMap()
    with pytest.raises(ValueError):
        smap.start_refresher(0)