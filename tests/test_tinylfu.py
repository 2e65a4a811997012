import random
import threading
import time

import pytest

from shardcache.tinylfu import TinyLFU


def _wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)


def test_concurrent_usage():
    tlfu = TinyLFU()
    hot_key = 2**40 + 17
    per_thread_hot = 200

    def incrementer():
        rng = random.Random()
        for _ in range(1000):
            tlfu.increment(rng.getrandbits(63))
        for _ in range(per_thread_hot):
            tlfu.increment(hot_key)

    results = []

    def admitter():
        rng = random.Random()
        for _ in range(1000):
            results.append(tlfu.admit(rng.getrandbits(63), rng.getrandbits(63)))

    threads = [threading.Thread(target=incrementer) for _ in range(10)]
    threads += [threading.Thread(target=admitter) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 5000
    assert all(isinstance(r, bool) for r in results)
    assert tlfu.estimate(hot_key) >= (10 * per_thread_hot) // 2


def test_admit_after_initial_frequencies():
    tlfu = TinyLFU()
    for i in range(1000):
        tlfu.increment(i)
    new_key = 10**12 + 1
    old_key = 10**12 + 2
    assert tlfu.admit(new_key, old_key) is True


def test_unseen_new_key_is_admitted_then_frequency_decides():
    tlfu = TinyLFU()
    new_key, old_key = 111, 222
    assert tlfu.admit(new_key, old_key) is True
    assert tlfu.admit(new_key, old_key) is True
    for _ in range(20):
        tlfu.increment(old_key)
    assert tlfu.admit(new_key, old_key) is False


def test_estimate_averages_current_and_previous():
    tlfu = TinyLFU()
    for _ in range(20):
        tlfu.increment(5)
    assert tlfu.estimate(5) == 20 // 2
    tlfu.rotate()
    assert tlfu.estimate(5) == 20 // 2
    tlfu.rotate()
    assert tlfu.estimate(5) == 0


def test_rotate_resets_doorkeeper():
    tlfu = TinyLFU()
    tlfu.increment(77)
    tlfu.rotate()
    assert tlfu.admit(77, 78) is True
    for _ in range(10):
        tlfu.increment(78)
    assert tlfu.admit(77, 78) is False


def test_background_rotation_ages_counts():
    tlfu = TinyLFU(rotate_interval=0.02)
    for _ in range(10):
        tlfu.increment(9)
    assert tlfu.estimate(9) == 5
    tlfu.start()
    try:
        _wait_until(lambda: tlfu.estimate(9) == 0)
        assert tlfu.estimate(9) == 0
    finally:
        tlfu.stop()


def test_context_manager_runs_rotation():
    with TinyLFU(rotate_interval=0.02) as tlfu:
        for _ in range(10):
            tlfu.increment(3)
        _wait_until(lambda: tlfu.estimate(3) == 0)
        assert tlfu.estimate(3) == 0


def test_non_positive_interval_raises():
    with pytest.raises(ValueError):
        TinyLFU(rotate_interval=0)