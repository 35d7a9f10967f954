# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Quota-aware flat store.

Wraps a FlatBackend with a soft byte ceiling. Before a write, if the current total (minus the
value being replaced) plus the new value would exceed the ceiling, keys from a fixed priority list are evicted (most
disposable first, never the key being written) until the write fits or the list runs out.

If the backend itself refuses a write with QuotaExceededError, exactly one
evict-and-retry cycle is attempted. No exception leaves `set()`; the caller gets a bool.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..common import FLAT_STORE_MAX_BYTES, FLAT_STORE_NOMINAL_MAX_BYTES
from ..common_types import QuotaExceededError
from .cache_base import FlatBackend, byte_size

_logger = logging.getLogger(__name__)

SEARCH_RESULTS_KEY = "github-search-results"
EVENTS_RESULTS_KEY = "github-events-results"
RAW_EVENTS_KEY = "github-raw-events-results"
RAW_DATA_KEY = "github-raw-data-storage"
ITEM_UI_STATE_KEY = "github-item-ui-state"
UI_SETTINGS_KEY = "github-ui-settings"
FORM_SETTINGS_KEY = "github-form-settings"
USERNAME_CACHE_KEY = "github-username-cache"
LAST_SEARCH_PARAMS_KEY = "github-last-search-params"

# Most disposable first. Derived results go before raw mirrors, UI state goes last.
EVICTION_PRIORITY: Tuple[str, ...] = (
    SEARCH_RESULTS_KEY,
    EVENTS_RESULTS_KEY,
    RAW_EVENTS_KEY,
    RAW_DATA_KEY,
    ITEM_UI_STATE_KEY,
    UI_SETTINGS_KEY,
)


@dataclass(frozen=True)
class FlatItemSize:
    key: str
    size: int


@dataclass(frozen=True)
class FlatStorageStats:
    total_size: int
    max_size: int
    usage_percent: float
    available_space: int
    is_near_limit: bool


class QuotaAwareFlatStore:
    """Size-limited key/value store with deterministic eviction."""

    def __init__(
        self,
        backend: FlatBackend,
        *,
        max_bytes: int = FLAT_STORE_MAX_BYTES,
        eviction_priority: Tuple[str, ...] = EVICTION_PRIORITY,
    ):
        self.backend = backend
        self.max_bytes = int(max_bytes)
        self.eviction_priority = tuple(eviction_priority)

    # ------------------------------------------------------------------
    # Size accounting
    # ------------------------------------------------------------------

    def total_size_bytes(self) -> int:
        """Sum of the byte sizes of all stored values."""
        return sum(self.backend.item_size(k) for k in self.backend.keys())

    def items_by_size(self) -> List[FlatItemSize]:
        """All keys with their sizes, largest first."""
        out = [FlatItemSize(key=k, size=self.backend.item_size(k)) for k in self.backend.keys()]
        return sorted(out, key=lambda it: it.size, reverse=True)

    def has_enough_space(self, required_bytes: int, target_key: Optional[str] = None) -> bool:
        """Whether `required_bytes` fits. The current value of `target_key` is excluded, since a write replaces it."""
        total = self.total_size_bytes()
        if target_key is not None:
            total -= self.backend.item_size(target_key)
        return total + int(required_bytes) <= self.max_bytes

    def storage_stats(self, *, nominal_max_bytes: int = FLAT_STORE_NOMINAL_MAX_BYTES) -> FlatStorageStats:
        total = self.total_size_bytes()
        usage = (total / float(nominal_max_bytes)) * 100.0 if nominal_max_bytes else 0.0
        return FlatStorageStats(
            total_size=total,
            max_size=int(nominal_max_bytes),
            usage_percent=usage,
            available_space=int(nominal_max_bytes) - total,
            is_near_limit=usage > 80.0,
        )

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def evict_for(self, target_key: str, required_bytes: int, *, force: bool = False) -> List[str]:
        """Evict priority keys (never `target_key`) until `required_bytes` fits.

        With `force`, at least one key is evicted even if the soft ceiling already fits
        (the backend refused a write the ceiling allowed). Returns evicted keys in order.
        """
        evicted: List[str] = []
        if not force and self.has_enough_space(required_bytes, target_key):
            return evicted
        for key in self.eviction_priority:
            if key == target_key:
                continue
            if self.backend.get_item(key) is None:
                continue
            self.backend.remove_item(key)
            evicted.append(key)
            _logger.warning("Removed old data from flat store: %s", key)
            if self.has_enough_space(required_bytes, target_key):
                break
        return evicted

    # ------------------------------------------------------------------
    # Key/value API
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        return self.backend.get_item(key)

    def get_json(self, key: str) -> Optional[Any]:
        """Decode a JSON value; corrupt values read as missing."""
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            _logger.warning("Ignoring corrupt JSON in flat store key %s", key)
            return None

    def set(self, key: str, value: str) -> bool:
        """Write `value` under `key`. Returns False when the data was not saved."""
        size = byte_size(value)

        if not self.has_enough_space(size, key):
            self.evict_for(key, size)
            if not self.has_enough_space(size, key):
                _logger.warning("Not enough flat store space for %s (%d bytes). Data will not be saved.", key, size)
                return False

        try:
            self.backend.set_item(key, value)
            return True
        except QuotaExceededError as e:
            _logger.error("Flat store quota exceeded for %r (%s). Attempting cleanup...", key, e)
        except OSError as e:
            _logger.error("Error saving flat store key %s: %s", key, e)
            return False

        # One evict-and-retry cycle; a second refusal is terminal for this write.
        self.evict_for(key, size, force=True)
        try:
            self.backend.set_item(key, value)
            _logger.info("Saved %s after cleanup", key)
            return True
        except QuotaExceededError as e:
            _logger.error("Failed to save %s even after cleanup: %s", key, e)
            return False
        except OSError as e:
            _logger.error("Error saving flat store key %s: %s", key, e)
            return False

    def set_json(self, key: str, value: Any) -> bool:
        return self.set(key, json.dumps(value, separators=(",", ":")))

    def remove(self, key: str) -> None:
        self.backend.remove_item(key)

    def keys(self) -> List[str]:
        return self.backend.keys()

    def clear_keys(self, keys: List[str]) -> List[str]:
        """Remove the given keys; returns the ones that were present."""
        removed: List[str] = []
        for key in keys:
            if self.backend.get_item(key) is not None:
                self.backend.remove_item(key)
                removed.append(key)
        return removed

    def snapshot(self) -> Dict[str, int]:
        """{key: size} for debugging/stats."""
        return {it.key: it.size for it in self.items_by_size()}
