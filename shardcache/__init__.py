"""Sharded in-memory cache storage with LRU eviction, TinyLFU admission and on-disk dumps."""

__version__ = "0.1.0"