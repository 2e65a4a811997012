"""Bloom-like doorkeeper filtering first-time keys."""

from __future__ import annotations

import random
import threading
from collections.abc import Iterable

from shardcache.sketch import hash64


class Doorkeeper:
    """Two-hash bit filter remembering keys seen since its creation."""

    def __init__(self, capacity: int, seeds: Iterable[int] | None = None) -> None:
        words = capacity // 64
        if words <= 0:
            raise ValueError(f"capacity must be at least 64 bits, got {capacity}")
        if seeds is None:
            seeds = [random.getrandbits(64), random.getrandbits(64)]
        self._seeds = tuple(int(seed) for seed in seeds)
        if len(self._seeds) != 2:
            raise ValueError(f"expected 2 seeds, got {len(self._seeds)}")
        self._bits = bytearray(words * 8)
        self._mask = words * 64 - 1
        self._lock = threading.Lock()

    def _test(self, bit: int) -> bool:
        return bool(self._bits[bit >> 3] & (1 << (bit & 7)))

    def _set(self, bit: int) -> None:
        self._bits[bit >> 3] |= 1 << (bit & 7)

    def allow(self, key: int) -> bool:
        """Return True if ``key`` was seen before; otherwise remember it and return False."""
        h1 = hash64(self._seeds[0], key) & self._mask
        h2 = hash64(self._seeds[1], key) & self._mask
        with self._lock:
            if self._test(h1) and self._test(h2):
                return True
            self._set(h1)
            self._set(h2)
        return False