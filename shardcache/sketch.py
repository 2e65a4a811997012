"""Count-min sketch used to approximate access frequencies."""

from __future__ import annotations

import random
import threading
from array import array
from collections.abc import Iterable

SKETCH_DEPTH = 4
SKETCH_WIDTH = 1 << 17

_MASK64 = (1 << 64) - 1
_MASK32 = 0xFFFFFFFF


def hash64(seed: int, key: int) -> int:
    """Mix a 64-bit key with a 64-bit seed into a 64-bit hash."""
    x = (key ^ seed) & _MASK64
    x ^= x >> 33
    x = (x * 0xFF51AFD7ED558CCD) & _MASK64
    x ^= x >> 33
    x = (x * 0xC4CEB9FE1A85EC53) & _MASK64
    x ^= x >> 33
    return x


class CountMinSketch:
    """A fixed-size count-min sketch with 32-bit wrapping counters."""

    def __init__(self, seeds: Iterable[int] | None = None) -> None:
        if seeds is None:
            seeds = [random.getrandbits(64) for _ in range(SKETCH_DEPTH)]
        self._seeds = tuple(int(seed) & _MASK64 for seed in seeds)
        if len(self._seeds) != SKETCH_DEPTH:
            raise ValueError(
                f"expected {SKETCH_DEPTH} seeds, got {len(self._seeds)}"
            )
        self._rows = [array("I", [0]) * SKETCH_WIDTH for _ in range(SKETCH_DEPTH)]
        self._lock = threading.Lock()

    def _indexes(self, key: int):
        key &= _MASK64
        for row, seed in zip(self._rows, self._seeds):
            yield row, hash64(seed, key) % SKETCH_WIDTH

    def increment(self, key: int) -> None:
        """Count one more occurrence of ``key``."""
        with self._lock:
            for row, idx in self._indexes(key):
                row[idx] = (row[idx] + 1) & _MASK32

    def estimate(self, key: int) -> int:
        """Return the estimated number of occurrences of ``key``."""
        with self._lock:
            return min(row[idx] for row, idx in self._indexes(key))