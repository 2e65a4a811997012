"""Persisting storage contents to versioned dump directories and restoring them."""

from __future__ import annotations

import glob
import gzip
import logging
import os
import re
import shutil
import struct
import time
import zlib
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Protocol

logger = logging.getLogger(__name__)

_HEADER = struct.Struct("<II")
_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S"
_VERSION_RE = re.compile(r"v(\d+)")


class DumpError(Exception):
    """Raised when a dump or a restore cannot be done or finishes with errors."""


@dataclass(frozen=True)
class DumpConfig:
    """Where and how dumps are written."""

    dir: str | os.PathLike = "dump"
    name: str = "cache"
    enabled: bool = False
    gzip: bool = False
    crc32_control: bool = False
    max_versions: int = 0


class DumpableEntry(Protocol):
    def to_bytes(self) -> bytes: ...


class DumpableShard(Protocol):
    @property
    def id(self) -> int: ...

    def items(self) -> list[tuple[int, DumpableEntry]]: ...


class DumpableStorage(Protocol):
    def shards(self) -> Iterable[DumpableShard]: ...

    def set(self, entry: Any) -> bool: ...


class Dumper:
    """Writes every shard of a storage to its own file and reads them back."""

    def __init__(
        self,
        config: DumpConfig,
        storage: DumpableStorage,
        decode: Callable[[bytes], Any],
    ) -> None:
        self.config = config
        self.storage = storage
        self.decode = decode

    def dump(self) -> int:
        """Write all entries into a new version directory; return how many were written."""
        start = time.monotonic()
        cfg = self.config
        if not cfg.enabled:
            raise DumpError("persistence mode is not enabled")
        base = Path(cfg.dir)
        try:
            base.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DumpError(f"create base dump dir: {exc}") from exc

        version_dir = base / f"v{next_version_dir(base)}"
        try:
            version_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DumpError(f"create version dir: {exc}") from exc

        timestamp = datetime.now().strftime(_TIMESTAMP_FORMAT)
        success = failures = 0
        for shard in self.storage.shards():
            written, failed = self._dump_shard(shard, version_dir, timestamp)
            success += written
            failures += failed

        if cfg.max_versions > 0:
            rotate_version_dirs(base, cfg.max_versions)

        logger.info(
            "[dump] finished: %d entries, errors: %d, elapsed: %.3fs",
            success,
            failures,
            time.monotonic() - start,
        )
        if failures > 0:
            raise DumpError(f"dump finished with {failures} errors")
        return success

    def _dump_shard(
        self, shard: DumpableShard, version_dir: Path, timestamp: str
    ) -> tuple[int, int]:
        cfg = self.config
        ext = ".dump.gz" if cfg.gzip else ".dump"
        name = version_dir / f"{cfg.name}-shard-{shard.id}-{timestamp}{ext}"
        tmp = name.with_name(name.name + ".tmp")

        try:
            raw = open(tmp, "wb")
        except OSError as exc:
            logger.error("[dump] create error: %s (file=%s)", exc, tmp)
            return 0, 1

        success = failures = 0
        with raw:
            writer: BinaryIO = gzip.GzipFile(fileobj=raw, mode="wb") if cfg.gzip else raw
            try:
                for _, entry in shard.items():
                    data = entry.to_bytes()
                    crc = zlib.crc32(data) if cfg.crc32_control else 0
                    try:
                        writer.write(_HEADER.pack(len(data), crc))
                        writer.write(data)
                    except OSError:
                        failures += 1
                        continue
                    success += 1
            finally:
                if writer is not raw:
                    writer.close()
        os.replace(tmp, name)
        return success, failures

    def load(self) -> int:
        """Restore entries from the most recently modified version directory."""
        directory = latest_version_dir(self.config.dir)
        if directory is None:
            raise DumpError(f"no versioned dump dirs found in {self.config.dir}")
        return self._load(directory)

    def load_version(self, version: str) -> int:
        """Restore entries from the named version directory, such as ``"v3"``."""
        return self._load(Path(self.config.dir) / version)

    def _load(self, directory: str | os.PathLike) -> int:
        start = time.monotonic()
        cfg = self.config
        pattern = os.path.join(
            glob.escape(os.fspath(directory)), f"{glob.escape(cfg.name)}-shard-*.dump*"
        )
        files = sorted(glob.glob(pattern))
        if not files:
            raise DumpError(f"no dump files found in {directory}")
        files = filter_files_by_timestamp(files, extract_latest_timestamp(files))

        success = failures = 0
        for path in files:
            restored, failed = self._load_file(path)
            success += restored
            failures += failed

        logger.info(
            "[dump] restored: %d entries, errors: %d, elapsed: %.3fs",
            success,
            failures,
            time.monotonic() - start,
        )
        if failures > 0:
            raise DumpError(f"load finished with {failures} errors")
        return success

    def _load_file(self, path: str) -> tuple[int, int]:
        try:
            raw = open(path, "rb")
        except OSError as exc:
            logger.error("[load] open error: %s (file=%s)", exc, path)
            return 0, 1
        with raw:
            reader: BinaryIO = gzip.GzipFile(fileobj=raw, mode="rb") if path.endswith(".gz") else raw
            try:
                return self._read_records(reader, path)
            except (OSError, EOFError, zlib.error) as exc:
                logger.error("[load] read error: %s (file=%s)", exc, path)
                return 0, 1
            finally:
                if reader is not raw:
                    reader.close()

    def _read_records(self, reader: BinaryIO, path: str) -> tuple[int, int]:
        success = failures = 0
        while True:
            meta = reader.read(_HEADER.size)
            if not meta:
                break
            if len(meta) < _HEADER.size:
                logger.error("[load] read meta error: unexpected EOF (file=%s)", path)
                failures += 1
                break
            size, expected_crc = _HEADER.unpack(meta)
            data = reader.read(size)
            if len(data) < size:
                logger.error("[load] read entry error: unexpected EOF (file=%s)", path)
                failures += 1
                break
            if self.config.crc32_control and zlib.crc32(data) != expected_crc:
                logger.error("[load] crc mismatch (file=%s)", path)
                failures += 1
                continue
            try:
                entry = self.decode(data)
            except Exception as exc:
                logger.error("[load] entry decode error: %s (file=%s)", exc, path)
                failures += 1
                continue
            self.storage.set(entry)
            success += 1
        return success, failures


def _version_entries(base_dir: str | os.PathLike) -> list[Path]:
    return list(Path(base_dir).glob("v*"))


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def next_version_dir(base_dir: str | os.PathLike) -> int:
    """Return the next sequential version number in ``base_dir``."""
    highest = 0
    for entry in _version_entries(base_dir):
        match = _VERSION_RE.match(entry.name)
        version = int(match.group(1)) if match else 0
        highest = max(highest, version)
    return highest + 1


def rotate_version_dirs(base_dir: str | os.PathLike, max_versions: int) -> None:
    """Keep only the ``max_versions`` most recently modified version dirs."""
    entries = _version_entries(base_dir)
    if len(entries) <= max_versions:
        return
    entries.sort(key=_mtime, reverse=True)
    for entry in entries[max_versions:]:
        if entry.is_dir():
            shutil.rmtree(entry, ignore_errors=True)
        else:
            entry.unlink(missing_ok=True)
        logger.info("[dump] removed old dump dir: %s", entry)


def latest_version_dir(base_dir: str | os.PathLike) -> Path | None:
    """Return the most recently modified version dir, or None if there is none."""
    entries = _version_entries(base_dir)
    if not entries:
        return None
    return max(entries, key=_mtime)


def extract_latest_timestamp(files: Iterable[str]) -> str:
    """Return the largest timestamp suffix among dump file names, or ``""``."""
    stamps = []
    for name in files:
        parts = os.path.basename(name).split("-")
        if len(parts) >= 4:
            stamps.append(parts[-1].removesuffix(".dump"))
    return max(stamps, default="")


def filter_files_by_timestamp(files: Iterable[str], ts: str) -> list[str]:
    """Return the files whose path contains ``ts``."""
    return [name for name in files if ts in name]