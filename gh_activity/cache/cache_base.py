#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Flat key/value backends for the quota-aware flat store.

A flat backend is a synchronous string->string store with an enumerable key set and a hard
quota of its own (the "host" quota). Two implementations:
- MemoryFlatBackend: in-process dict, used by tests and when no cache dir is writable
- JsonFileFlatBackend: a single JSON file with inter-process locking and atomic writes
"""

from __future__ import annotations

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Set

from ..common_types import QuotaExceededError

try:
    import fcntl  # type: ignore
except Exception:  # pragma: no cover - best-effort on non-POSIX
    fcntl = None  # type: ignore

_logger = logging.getLogger(__name__)


def byte_size(value: Optional[str]) -> int:
    """UTF-8 byte size of a stored string value (0 for a missing value)."""
    if value is None:
        return 0
    return len(str(value).encode("utf-8"))


@dataclass
class BaseCacheStats:
    """Basic cache statistics tracked automatically by flat backends."""
    hit: int = 0
    miss: int = 0
    write: int = 0


class FlatBackend(ABC):
    """Interface every flat store backend implements."""

    def __init__(self) -> None:
        self.stats = BaseCacheStats()

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the stored string, or None."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store a string. Raises QuotaExceededError when the host quota refuses it."""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove a key (no-op when absent)."""

    @abstractmethod
    def keys(self) -> List[str]:
        """All keys currently stored."""

    def item_size(self, key: str) -> int:
        return byte_size(self.get_item(key))

    def _check_quota(self, items: Dict[str, str], key: str, value: str, quota_bytes: Optional[int]) -> None:
        if quota_bytes is None:
            return
        total = sum(byte_size(v) for (k, v) in items.items() if k != key) + byte_size(value)
        if total > int(quota_bytes):
            raise QuotaExceededError(
                f"flat store quota exceeded writing {key!r} ({total} > {int(quota_bytes)} bytes)"
            )


class MemoryFlatBackend(FlatBackend):
    """In-memory flat backend with an optional hard quota."""

    def __init__(self, *, quota_bytes: Optional[int] = None):
        super().__init__()
        self._mu = Lock()
        self._items: Dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def get_item(self, key: str) -> Optional[str]:
        with self._mu:
            value = self._items.get(key)
            if value is None:
                self.stats.miss += 1
            else:
                self.stats.hit += 1
            return value

    def set_item(self, key: str, value: str) -> None:
        with self._mu:
            self._check_quota(self._items, key, value, self.quota_bytes)
            self._items[key] = str(value)
            self.stats.write += 1

    def remove_item(self, key: str) -> None:
        with self._mu:
            self._items.pop(key, None)

    def keys(self) -> List[str]:
        with self._mu:
            return list(self._items.keys())


class JsonFileFlatBackend(FlatBackend):
    """Flat backend persisted as one JSON file with inter-process locking.

    Provides:
    - Thread-safe in-memory view with Lock
    - Disk persistence with inter-process locking (fcntl)
    - Lazy loading (load on first access)
    - Re-read before write so concurrent writers' other keys survive
    - Atomic writes (tmp file + rename)

    Disk format: {"version": <int>, "items": {key: value_string}}
    """

    _SCHEMA_VERSION = 1

    def __init__(self, *, cache_file: Path, quota_bytes: Optional[int] = None):
        super().__init__()
        self._mu = Lock()
        self._cache_file = Path(cache_file)
        self._items: Dict[str, str] = {}
        self._loaded = False
        self.quota_bytes = quota_bytes

    def _lock_file_path(self) -> Path:
        """Path to lock file (next to cache file)."""
        return self._cache_file.with_name(f".{self._cache_file.name}.lock")

    def _acquire_disk_lock(self, *, timeout_s: float = 10.0) -> Optional[Any]:
        """Best-effort inter-process lock for the cache file.

        Returns file handle on success, None on failure/timeout.
        """
        if fcntl is None:
            return None

        lock_path = self._lock_file_path()
        lock_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            fh = open(lock_path, "w")
        except OSError:
            return None
        start = time.monotonic()
        while time.monotonic() - start < float(timeout_s):
            try:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return fh
            except OSError:
                time.sleep(0.1)
        fh.close()
        return None

    def _release_disk_lock(self, lock_fh: Optional[Any]) -> None:
        """Release inter-process lock."""
        if lock_fh is None:
            return
        try:
            if fcntl is not None:
                fcntl.flock(lock_fh.fileno(), fcntl.LOCK_UN)
        except OSError:
            pass
        finally:
            lock_fh.close()

    def _read_disk(self) -> Dict[str, str]:
        if not self._cache_file.exists():
            return {}
        try:
            raw = json.loads(self._cache_file.read_text() or "{}")
        except (OSError, ValueError):
            _logger.warning("Ignoring unreadable flat store file %s", self._cache_file)
            return {}
        items = raw.get("items") if isinstance(raw, dict) else None
        if not isinstance(items, dict):
            return {}
        # Values are always strings; anything else is corruption and gets dropped.
        return {str(k): v for (k, v) in items.items() if isinstance(v, str)}

    def _load_once(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        self._items = self._read_disk()

    def _write_disk(self, items: Dict[str, str]) -> None:
        self._cache_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = f"{self._cache_file}.tmp.{os.getpid()}"
        Path(tmp).write_text(json.dumps({"version": self._SCHEMA_VERSION, "items": items}, separators=(",", ":")))
        os.replace(tmp, str(self._cache_file))

    def _apply(self, *, set_key: Optional[str] = None, value: Optional[str] = None, remove: Set[str] = frozenset()) -> None:
        """Re-read disk under the lock, apply one change, write back."""
        lock_fh = self._acquire_disk_lock(timeout_s=10.0)
        try:
            items = self._read_disk()
            for k in remove:
                items.pop(k, None)
            if set_key is not None:
                self._check_quota(items, set_key, value or "", self.quota_bytes)
                items[set_key] = value or ""
            self._write_disk(items)
            self._items = items
        finally:
            self._release_disk_lock(lock_fh)

    def get_item(self, key: str) -> Optional[str]:
        with self._mu:
            self._load_once()
            value = self._items.get(key)
            if value is None:
                self.stats.miss += 1
            else:
                self.stats.hit += 1
            return value

    def set_item(self, key: str, value: str) -> None:
        with self._mu:
            self._load_once()
            self._apply(set_key=key, value=str(value))
            self.stats.write += 1

    def remove_item(self, key: str) -> None:
        with self._mu:
            self._load_once()
            if key not in self._items and not self._cache_file.exists():
                return
            self._apply(remove={key})

    def keys(self) -> List[str]:
        with self._mu:
            self._load_once()
            return list(self._items.keys())
