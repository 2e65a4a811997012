"""TinyLFU admission policy with periodic aging."""

from __future__ import annotations

import threading

from shardcache.doorkeeper import Doorkeeper
from shardcache.sketch import CountMinSketch

DOORKEEPER_CAPACITY = 1 << 20

_MASK32 = 0xFFFFFFFF


class TinyLFU:
    """Frequency-based admission filter backed by two rotating sketches."""

    def __init__(self, rotate_interval: float = 60.0) -> None:
        if rotate_interval <= 0:
            raise ValueError("rotate_interval must be positive")
        self.rotate_interval = rotate_interval
        self._lock = threading.Lock()
        self._curr = CountMinSketch()
        self._prev = CountMinSketch()
        self._door = Doorkeeper(DOORKEEPER_CAPACITY)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def increment(self, key: int) -> None:
        """Record an access to ``key``."""
        with self._lock:
            curr, door = self._curr, self._door
        curr.increment(key)
        door.allow(key)

    def admit(self, new_key: int, old_key: int) -> bool:
        """Decide whether ``new_key`` may replace ``old_key``."""
        with self._lock:
            door = self._door
        if not door.allow(new_key):
            return True
        return self.estimate(new_key) >= self.estimate(old_key)

    def rotate(self) -> None:
        """Age the counters: the current sketch becomes the previous one."""
        fresh_sketch = CountMinSketch()
        fresh_door = Doorkeeper(DOORKEEPER_CAPACITY)
        with self._lock:
            self._prev = self._curr
            self._curr = fresh_sketch
            self._door = fresh_door

    def estimate(self, key: int) -> int:
        """Return the averaged frequency of ``key`` over both sketches."""
        with self._lock:
            curr, prev = self._curr, self._prev
        return ((curr.estimate(key) + prev.estimate(key)) & _MASK32) // 2

    def _run(self) -> None:
        while not self._stop_event.wait(self.rotate_interval):
            self.rotate()

    def start(self) -> None:
        """Start rotating the sketches in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="tinylfu-rotator", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the background rotation, waiting for it to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> TinyLFU:
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()