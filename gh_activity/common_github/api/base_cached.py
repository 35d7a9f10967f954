"""Shared read-through cache flow for GitHub REST resources.

A resource (user identity, PR details) plugs in its own key format, storage, freshness rule and
fetch. This base supplies the lookup -> freshness -> fetch -> write sequence and bumps the
client's per-cache hit/miss/write counters, so `GitHubAPIClient.get_cache_stats()` reports every
resource the same way.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .. import GitHubAPIClient

T = TypeVar("T")


@dataclass(frozen=True)
class CacheLookupResult(Generic[T]):
    entry: Optional[Dict[str, Any]]
    # entry present but past its freshness window -> False
    is_fresh: bool


class CachedResourceBase(ABC, Generic[T]):
    """One cached REST resource bound to a GitHubAPIClient.

    `clock` returns epoch seconds; tests pass a settable clock.
    """

    def __init__(self, api: "GitHubAPIClient", *, clock: Callable[[], float] = time.time):
        self.api: GitHubAPIClient = api
        self._clock = clock

    @property
    @abstractmethod
    def cache_name(self) -> str:
        """Label for stats counters, e.g. 'pull_request' or 'user'."""

    @abstractmethod
    def api_call_format(self) -> str:
        """The REST call this resource makes, for logs and docs."""

    @abstractmethod
    def cache_key(self, **kwargs: Any) -> str:
        ...

    @abstractmethod
    def cache_read(self, *, key: str) -> Optional[Dict[str, Any]]:
        """Stored entry for `key`, or None."""

    @abstractmethod
    def cache_write(self, *, key: str, value: T) -> None:
        ...

    @abstractmethod
    def is_cache_entry_fresh(self, *, entry: Dict[str, Any], now: float) -> bool:
        ...

    @abstractmethod
    def value_from_cache_entry(self, *, entry: Dict[str, Any]) -> T:
        ...

    @abstractmethod
    def fetch(self, **kwargs: Any) -> T:
        """Network call. Raises GitHubAPIError subclasses."""

    def inflight_lock_key(self, **kwargs: Any) -> Optional[str]:
        """Key for the client's per-key lock that serializes identical fetches in get(); None disables it."""
        return None

    def now(self) -> float:
        return float(self._clock())

    def lookup(self, *, key: str) -> CacheLookupResult[T]:
        """Read `key` and classify it as missing / expired / fresh (counted in stats)."""
        entry = self.cache_read(key=key)
        if entry is None:
            self.api._cache_miss(f"{self.cache_name}.missing")
            return CacheLookupResult(entry=None, is_fresh=False)
        if not self.is_cache_entry_fresh(entry=entry, now=self.now()):
            self.api._cache_miss(f"{self.cache_name}.expired")
            return CacheLookupResult(entry=entry, is_fresh=False)
        self.api._cache_hit(self.cache_name)
        return CacheLookupResult(entry=entry, is_fresh=True)

    def fetch_and_write(self, *, key: str, **kwargs: Any) -> T:
        value = self.fetch(**kwargs)
        self.cache_write(key=key, value=value)
        self.api._cache_write(self.cache_name, entries=1)
        return value

    def get(self, **kwargs: Any) -> T:
        """Fresh cached value, else fetch and store. Blocking; errors propagate."""
        key = self.cache_key(**kwargs)
        found = self.lookup(key=key)
        if found.entry is not None and found.is_fresh:
            return self.value_from_cache_entry(entry=found.entry)

        lock_key = self.inflight_lock_key(**kwargs)
        if not lock_key:
            return self.fetch_and_write(key=key, **kwargs)

        with self.api._inflight_lock(lock_key):
            # a thread holding the lock before us may have just stored it
            entry = self.cache_read(key=key)
            if entry is not None and self.is_cache_entry_fresh(entry=entry, now=self.now()):
                self.api._cache_hit(self.cache_name)
                return self.value_from_cache_entry(entry=entry)
            return self.fetch_and_write(key=key, **kwargs)
