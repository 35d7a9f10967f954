# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Persistence facade over the two storage tiers.

Prefers the structured store (no practical size ceiling, may be missing) and falls back to the
quota-aware flat store (always present, small) when the structured tier is unsupported or a
structured write fails. Every writer goes through here so the eviction and fallback rules
apply uniformly. Degradations are logged, never raised.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..common_types import (
    DatasetMetadata,
    MetadataRecord,
    RawDataRecord,
    StorageInfo,
    StoredDataset,
    StructuredStorageUnavailable,
)
from .cache_flat import (
    FORM_SETTINGS_KEY,
    ITEM_UI_STATE_KEY,
    LAST_SEARCH_PARAMS_KEY,
    RAW_DATA_KEY,
    RAW_EVENTS_KEY,
    UI_SETTINGS_KEY,
    USERNAME_CACHE_KEY,
    QuotaAwareFlatStore,
)
from .cache_structured import (
    EVENTS_COLLECTION,
    METADATA_COLLECTION,
    PR_DETAILS_COLLECTION,
    StructuredStore,
)

_logger = logging.getLogger(__name__)

# Dataset keys used by ActivityContext (structured record ids)
EVENTS_DATASET_KEY = "events"
SEARCH_ITEMS_DATASET_KEY = "search-items"

# Flat-tier key of each dataset's fallback copy; both keys are on the eviction list.
FLAT_MIRROR_KEYS: Dict[str, str] = {
    EVENTS_DATASET_KEY: RAW_EVENTS_KEY,
    SEARCH_ITEMS_DATASET_KEY: RAW_DATA_KEY,
}

# Flat keys that hold settings rather than fetched data; clear() leaves them alone.
PRESERVED_FLAT_KEYS = frozenset({
    FORM_SETTINGS_KEY,
    UI_SETTINGS_KEY,
    ITEM_UI_STATE_KEY,
    USERNAME_CACHE_KEY,
    LAST_SEARCH_PARAMS_KEY,
})


def flat_key_for(key: str) -> str:
    """Flat store key holding the fallback copy of dataset `key`."""
    return FLAT_MIRROR_KEYS.get(key, key)


def _now_ms() -> int:
    return int(time.time() * 1000)


class EventsStorage:
    """store / retrieve / clear / info over structured-first, flat-fallback storage."""

    def __init__(
        self,
        structured: StructuredStore,
        flat: QuotaAwareFlatStore,
        *,
        clock_ms: Callable[[], int] = _now_ms,
    ):
        self.structured = structured
        self.flat = flat
        self._clock_ms = clock_ms

    # ------------------------------------------------------------------
    # Datasets
    # ------------------------------------------------------------------

    def store(self, key: str, items: List[Dict[str, Any]], metadata: DatasetMetadata) -> bool:
        """Persist a dataset wholesale. Returns False only if neither tier saved it."""
        record = RawDataRecord(id=key, items=list(items), metadata=metadata, timestamp_ms=self._clock_ms())
        flat_key = flat_key_for(key)

        if self.structured.is_supported():
            try:
                self.structured.put(EVENTS_COLLECTION, record.to_dict())
                self._drop_flat_mirror(flat_key)
                return True
            except (StructuredStorageUnavailable, TypeError, ValueError) as e:
                _logger.warning("Failed to store %s in structured storage, falling back to flat store: %s", key, e)
            self._drop_structured_record(key)
        else:
            _logger.warning("Structured storage not supported, storing %s in flat store", key)

        saved = self.flat.set_json(flat_key, {
            "events": record.items,
            "metadata": metadata.to_dict(),
            "timestamp": record.timestamp_ms,
        })
        if not saved:
            _logger.error("Data for %s not saved", key)
        return saved

    def retrieve(self, key: str) -> Optional[StoredDataset]:
        """Newest copy of the dataset across both tiers; the flat tier wins a timestamp tie."""
        structured = self._retrieve_structured(key)
        flat = self._retrieve_flat(key)
        if flat is not None and (structured is None or flat[0] >= structured[0]):
            return flat[1]
        return structured[1] if structured is not None else None

    def _retrieve_structured(self, key: str) -> Optional[Tuple[int, StoredDataset]]:
        if not self.structured.is_supported():
            return None
        try:
            rec = self.structured.get(EVENTS_COLLECTION, key)
            if rec is None:
                return None
            raw = RawDataRecord.from_dict(rec)
        except (StructuredStorageUnavailable, KeyError, TypeError, ValueError) as e:
            _logger.warning("Failed to retrieve %s from structured storage, trying flat store: %s", key, e)
            return None
        return raw.timestamp_ms, StoredDataset(items=raw.items, metadata=raw.metadata)

    def _retrieve_flat(self, key: str) -> Optional[Tuple[int, StoredDataset]]:
        flat_key = flat_key_for(key)
        data = self.flat.get_json(flat_key)
        if not isinstance(data, dict) or not isinstance(data.get("events"), list):
            return None
        try:
            metadata = DatasetMetadata.from_dict(data.get("metadata") or {})
            timestamp_ms = int(data.get("timestamp") or 0)
        except (TypeError, ValueError) as e:
            _logger.warning("Ignoring flat store dataset %s with bad metadata: %s", flat_key, e)
            return None
        return timestamp_ms, StoredDataset(items=list(data["events"]), metadata=metadata)

    def _drop_structured_record(self, key: str) -> None:
        # A record left behind by an earlier successful write would shadow the flat copy.
        try:
            self.structured.delete(EVENTS_COLLECTION, key)
        except StructuredStorageUnavailable as e:
            _logger.warning("Could not remove stale structured record %s: %s", key, e)

    def _drop_flat_mirror(self, flat_key: str) -> None:
        try:
            if self.flat.get(flat_key) is not None:
                self.flat.remove(flat_key)
        except OSError as e:
            _logger.warning("Could not remove stale flat store copy %s: %s", flat_key, e)

    def clear(self) -> None:
        """Clear fetched data from both tiers. A failure on one tier doesn't skip the other.

        Settings (PRESERVED_FLAT_KEYS) survive on both tiers; clear_all_keep_token() is the full wipe.
        """
        try:
            self.structured.clear([EVENTS_COLLECTION])
            for rec in self.structured.get_all(METADATA_COLLECTION):
                if rec.get("id") not in PRESERVED_FLAT_KEYS:
                    self.structured.delete(METADATA_COLLECTION, str(rec.get("id")))
        except StructuredStorageUnavailable as e:
            _logger.warning("Failed to clear structured storage: %s", e)

        try:
            for key in self.flat.keys():
                if key not in PRESERVED_FLAT_KEYS:
                    self.flat.remove(key)
        except OSError as e:
            _logger.warning("Failed to clear flat store: %s", e)

    def info(self) -> Optional[StorageInfo]:
        """Structured-tier snapshot, or None when that tier is unavailable."""
        if not self.structured.is_supported():
            return None
        try:
            return StorageInfo(
                record_count=self.structured.count(EVENTS_COLLECTION),
                metadata_count=self.structured.count(METADATA_COLLECTION),
                total_size_bytes=self.structured.size_bytes([EVENTS_COLLECTION, METADATA_COLLECTION]),
            )
        except StructuredStorageUnavailable as e:
            _logger.warning("Failed to get storage info: %s", e)
            return None

    # ------------------------------------------------------------------
    # Metadata records (last write wins)
    # ------------------------------------------------------------------

    def store_metadata(self, key: str, value: Any) -> bool:
        record = MetadataRecord(id=key, value=value, timestamp_ms=self._clock_ms())
        if self.structured.is_supported():
            try:
                self.structured.put(METADATA_COLLECTION, record.to_dict())
                return True
            except (StructuredStorageUnavailable, TypeError, ValueError) as e:
                _logger.warning("Failed to store metadata %s in structured storage, falling back: %s", key, e)
        return self.flat.set_json(key, record.to_dict())

    def retrieve_metadata(self, key: str) -> Optional[Any]:
        if self.structured.is_supported():
            try:
                rec = self.structured.get(METADATA_COLLECTION, key)
                if rec is not None:
                    return rec.get("value")
            except StructuredStorageUnavailable as e:
                _logger.warning("Failed to retrieve metadata %s from structured storage: %s", key, e)
        data = self.flat.get_json(key)
        if isinstance(data, dict) and "value" in data:
            return data["value"]
        return None

    # ------------------------------------------------------------------
    # Full reset
    # ------------------------------------------------------------------

    def clear_all_keep_token(self) -> str:
        """Wipe both tiers, settings included, and return the saved GitHub token ('' if none)."""
        preserved_token = ""
        settings = self.flat.get_json(FORM_SETTINGS_KEY)
        if isinstance(settings, dict):
            preserved_token = str(settings.get("githubToken") or "")

        try:
            self.structured.clear([EVENTS_COLLECTION, METADATA_COLLECTION, PR_DETAILS_COLLECTION])
        except StructuredStorageUnavailable as e:
            _logger.warning("Failed to clear structured storage: %s", e)

        for key in self.flat.keys():
            self.flat.remove(key)
            _logger.info("Cleared flat store key: %s", key)

        if preserved_token:
            self.flat.set_json(FORM_SETTINGS_KEY, {"githubToken": preserved_token})
        return preserved_token
