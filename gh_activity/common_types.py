# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Common shared enums/types used by the storage layer, the GitHub client and the search
orchestrator.

This module MUST NOT import any other gh_activity module to avoid cycles.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ApiMode(str, Enum):
    """Which GitHub endpoint family a search uses."""

    SEARCH = "search"
    EVENTS = "events"
    COMBINED = "combined"


class SearchErrorKind(str, Enum):
    """Tagged failure categories surfaced by the search orchestrator."""

    VALIDATION = "validation"
    INVALID_USERNAME = "invalid_username"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    REMOTE = "remote"


class SearchError(Exception):
    """A surfaced search failure: a kind to branch on plus human-readable messages."""

    def __init__(self, kind: SearchErrorKind, messages: List[str], *, username: Optional[str] = None):
        self.kind = SearchErrorKind(kind)
        self.messages = [str(m) for m in (messages or [])]
        self.username = username
        super().__init__("\n".join(self.messages))


class QuotaExceededError(Exception):
    """Raised by a flat backend when the underlying store refuses a write for lack of space."""


class StructuredStorageUnavailable(Exception):
    """Raised by every StructuredStore method when the structured tier cannot be used."""


@dataclass
class DatasetMetadata:
    last_fetch_ms: int
    usernames: List[str]
    api_mode: ApiMode
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["api_mode"] = ApiMode(self.api_mode).value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DatasetMetadata":
        return cls(
            last_fetch_ms=int(d.get("last_fetch_ms") or 0),
            usernames=[str(u) for u in (d.get("usernames") or [])],
            api_mode=ApiMode(d.get("api_mode") or ApiMode.SEARCH.value),
            start_date=d.get("start_date"),
            end_date=d.get("end_date"),
        )


@dataclass
class RawDataRecord:
    """One stored dataset. Replaced wholesale on every successful fetch."""

    id: str
    items: List[Dict[str, Any]]
    metadata: DatasetMetadata
    timestamp_ms: int

    def to_dict(self) -> Dict[str, Any]:
        # "events" is the on-disk field name for the payload
        return {
            "id": self.id,
            "events": list(self.items),
            "metadata": self.metadata.to_dict(),
            "timestamp": int(self.timestamp_ms),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RawDataRecord":
        return cls(
            id=str(d["id"]),
            items=list(d.get("events") or []),
            metadata=DatasetMetadata.from_dict(d.get("metadata") or {}),
            timestamp_ms=int(d.get("timestamp") or 0),
        )


@dataclass
class StoredDataset:
    """What EventsStorage.retrieve() hands back, whichever tier it came from."""

    items: List[Dict[str, Any]]
    metadata: DatasetMetadata


@dataclass
class MetadataRecord:
    id: str
    value: Any
    timestamp_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "value": self.value, "timestamp": int(self.timestamp_ms)}


@dataclass
class PRDetailRecord:
    """Cached pull request details, keyed by the PR's REST detail URL."""

    id: str
    pr_number: int
    repo_full_name: str
    title: str
    state: str
    body: str = ""
    labels: List[Dict[str, Any]] = field(default_factory=list)
    updated_at: Optional[str] = None
    closed_at: Optional[str] = None
    merged_at: Optional[str] = None
    merged: Optional[bool] = None
    cached_at_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PRDetailRecord":
        return cls(
            id=str(d["id"]),
            pr_number=int(d.get("pr_number") or 0),
            repo_full_name=str(d.get("repo_full_name") or ""),
            title=str(d.get("title") or ""),
            state=str(d.get("state") or ""),
            body=str(d.get("body") or ""),
            labels=list(d.get("labels") or []),
            updated_at=d.get("updated_at"),
            closed_at=d.get("closed_at"),
            merged_at=d.get("merged_at"),
            merged=d.get("merged"),
            cached_at_ms=int(d.get("cached_at_ms") or 0),
        )


@dataclass(frozen=True)
class StorageInfo:
    """Derived snapshot of the structured tier. Never persisted."""

    record_count: int
    metadata_count: int
    total_size_bytes: int
