from dataclasses import dataclass, field

import pytest

from shardcache.balancer import Balancer, ShardNode
from shardcache.shard import Shard
from shardcache.shardmap import TOTAL_SHARDS, ShardedMap, map_shard_key


@dataclass
class Entry:
    map_key: int
    size: int = 10
    shard_key: int = field(init=False)

    def __post_init__(self):
        self.shard_key = map_shard_key(self.map_key)

    def weight(self):
        return self.size


@pytest.fixture
def balancer():
    smap = ShardedMap()
    bal = Balancer(smap)
    for shard in smap.shards():
        bal.register(shard)
    return bal


def test_shard_node_lru_order():
    node = ShardNode(Shard(0))
    a, b, c = Entry(0), Entry(TOTAL_SHARDS), Entry(2 * TOTAL_SHARDS)
    for e in (a, b, c):
        node.push_front(e)
    assert len(node) == 3
    assert node.back() is a
    assert list(node.iter_from_back()) == [a, b, c]
    node.move_to_front(a.map_key)
    assert list(node.iter_from_back()) == [b, c, a]
    assert node.remove(b.map_key) is b
    assert node.remove(b.map_key) is None
    assert node.back() is c


def test_shard_node_weight_follows_shard():
    shard = Shard(3)
    node = ShardNode(shard)
    shard.set(3, Entry(3, size=42))
    assert node.weight() == shard.weight() == 42


def test_empty_node_has_no_back():
    assert ShardNode(Shard(0)).back() is None


def test_push_update_remove(balancer):
    a, b = Entry(5), Entry(5 + TOTAL_SHARDS)
    balancer.push(a)
    balancer.push(b)
    assert balancer.find_victim(5) is a
    balancer.update(a)
    assert balancer.find_victim(5) is b
    balancer.remove(b.shard_key, b.map_key)
    assert balancer.find_victim(5) is a


def test_find_victim_uses_neighbours(balancer):
    upper = Entry(7)
    balancer.push(upper)
    assert balancer.find_victim(6) is upper
    lower = Entry(10)
    balancer.push(lower)
    assert balancer.find_victim(11) is lower


def test_find_victim_skips_shard_zero_as_lower_neighbour(balancer):
    balancer.push(Entry(0))
    assert balancer.find_victim(1) is None
    assert balancer.find_victim(0) is not None and balancer.find_victim(0).map_key == 0


def test_find_victim_last_shard(balancer):
    last = TOTAL_SHARDS - 1
    assert balancer.find_victim(last) is None
    e = Entry(last - 1)
    balancer.push(e)
    assert balancer.find_victim(last) is e


def test_rebalance_orders_by_weight(balancer):
    smap = balancer.shard_map
    smap.set(9, Entry(9, size=500))
    smap.set(4, Entry(4, size=100))
    balancer.rebalance()
    assert balancer.most_loaded(0).shard.id == 9
    assert balancer.most_loaded(1).shard.id == 4
    weights = [balancer.most_loaded(i).weight() for i in range(TOTAL_SHARDS)]
    assert weights == sorted(weights, reverse=True)


def test_most_loaded_out_of_range(balancer):
    assert balancer.most_loaded(TOTAL_SHARDS) is None
    assert balancer.most_loaded(-1) is None


def test_unregistered_shard_raises():
    bal = Balancer(ShardedMap())
    with pytest.raises(KeyError):
        bal.push(Entry(1))


def test_mem_grows_with_registration():
    smap = ShardedMap()
    bal = Balancer(smap)
    empty = bal.mem()
    bal.register(smap.shards()[0])
    assert bal.mem() > empty