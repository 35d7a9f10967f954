# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""PR details cached API (REST), stale-while-revalidate.

Resource:
  GET /repos/{owner}/{repo}/pulls/{pr_number}

Example API Response (fields we keep):
  {
    "number": 1234,
    "title": "Add new feature",
    "state": "closed",
    "body": "...",
    "labels": [{"name": "bug", "color": "d73a4a"}],
    "updated_at": "2026-01-24T10:30:00Z",
    "closed_at": "2026-01-24T10:30:00Z",
    "merged_at": "2026-01-24T10:30:00Z",
    "merged": true,
    "base": {"repo": {"full_name": "owner/repo"}}
  }

Cache:
  `pr_details` collection of the structured store, keyed by the detail URL. When the
  structured store is unavailable, an in-memory map (process lifetime) stands in.
  Records are replaced wholesale; `cached_at_ms` only ever increases per URL.

TTL:
  24 hours fresh. A stale record is returned immediately and refreshed in the background.

Fetching:
  - never without a token (anonymous rate limits are too small for per-PR calls)
  - at most one fetch in flight per URL: concurrent callers share one Future
"""

from __future__ import annotations

import logging
import re
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Optional, Tuple, TYPE_CHECKING

from ...cache.cache_structured import PR_DETAILS_COLLECTION, StructuredStore
from ...common import PR_DETAILS_TTL_S
from ...common_types import PRDetailRecord, StructuredStorageUnavailable
from .. import GitHubAPIError
from .base_cached import CachedResourceBase

if TYPE_CHECKING:  # pragma: no cover
    from .. import GitHubAPIClient

_logger = logging.getLogger(__name__)

TTL_POLICY_DESCRIPTION = "24h fresh; stale records served immediately and refreshed in background"

CACHE_NAME = "pull_request"  # Match API label in logs
API_CALL_FORMAT = "REST GET /repos/{owner}/{repo}/pulls/{pr_number}"
CACHE_KEY_FORMAT = "https://api.github.com/repos/{owner}/{repo}/pulls/{pr_number}"

_PR_API_URL_RE = re.compile(r"/repos/([^/]+/[^/]+)/pulls/(\d+)")


def pr_api_url(repo_full_name: str, pr_number: int, *, base_url: str = "https://api.github.com") -> str:
    return f"{base_url.rstrip('/')}/repos/{repo_full_name}/pulls/{int(pr_number)}"


def record_from_api(url: str, data: Dict[str, Any], *, cached_at_ms: int) -> PRDetailRecord:
    m = _PR_API_URL_RE.search(url)
    repo_full_name = str(((data.get("base") or {}).get("repo") or {}).get("full_name") or (m.group(1) if m else ""))
    return PRDetailRecord(
        id=url,
        pr_number=int(data.get("number") or (m.group(2) if m else 0)),
        repo_full_name=repo_full_name,
        title=str(data.get("title") or ""),
        state=str(data.get("state") or ""),
        body=str(data.get("body") or ""),
        labels=[lbl for lbl in (data.get("labels") or []) if isinstance(lbl, dict)],
        updated_at=data.get("updated_at"),
        closed_at=data.get("closed_at"),
        merged_at=data.get("merged_at"),
        merged=data.get("merged"),
        cached_at_ms=int(cached_at_ms),
    )


class PRDetailsCache(CachedResourceBase[PRDetailRecord]):
    """SWR cache of PR details keyed by REST detail URL."""

    def __init__(
        self,
        api: "GitHubAPIClient",
        store: Optional[StructuredStore] = None,
        *,
        executor: Optional[Executor] = None,
        ttl_s: int = PR_DETAILS_TTL_S,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(api, clock=clock)
        self._store = store
        self._ttl_ms = int(ttl_s) * 1000
        self._owns_executor = executor is None
        self._executor = executor if executor is not None else ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="pr-details-refresh"
        )
        self._mem_mu = threading.Lock()
        self._mem: Dict[str, Dict[str, Any]] = {}
        # url -> Future of the one fetch in flight for it
        self._inflight_mu = threading.Lock()
        self._inflight: Dict[str, Future] = {}

    # ------------------------------------------------------------------
    # CachedResourceBase
    # ------------------------------------------------------------------

    @property
    def cache_name(self) -> str:
        return CACHE_NAME

    def api_call_format(self) -> str:
        return API_CALL_FORMAT

    def cache_key(self, **kwargs: Any) -> str:
        return str(kwargs["url"])

    def now_ms(self) -> int:
        return int(self.now() * 1000)

    def cache_read(self, *, key: str) -> Optional[Dict[str, Any]]:
        if self._store is not None:
            try:
                return self._store.get(PR_DETAILS_COLLECTION, key)
            except StructuredStorageUnavailable as e:
                _logger.debug("PR details: structured store unavailable, using memory: %s", e)
        with self._mem_mu:
            ent = self._mem.get(key)
            return dict(ent) if ent is not None else None

    def cache_write(self, *, key: str, value: PRDetailRecord) -> None:
        prev = self.cache_read(key=key)
        prev_ts = int((prev or {}).get("cached_at_ms") or 0)
        if value.cached_at_ms <= prev_ts:
            value.cached_at_ms = prev_ts + 1
        rec = value.to_dict()
        if self._store is not None:
            try:
                self._store.put(PR_DETAILS_COLLECTION, rec)
                return
            except StructuredStorageUnavailable as e:
                _logger.warning("PR details for %s kept in memory only: %s", key, e)
        with self._mem_mu:
            self._mem[key] = rec

    def is_cache_entry_fresh(self, *, entry: Dict[str, Any], now: float) -> bool:
        cached_at = int(entry.get("cached_at_ms") or 0)
        return bool(cached_at) and (int(now * 1000) - cached_at) < self._ttl_ms

    def value_from_cache_entry(self, *, entry: Dict[str, Any]) -> PRDetailRecord:
        return PRDetailRecord.from_dict(entry)

    def fetch(self, **kwargs: Any) -> PRDetailRecord:
        url = str(kwargs["url"])
        data = self.api.get_pull_request(url, token=kwargs.get("token"))
        return record_from_api(url, data, cached_at_ms=self.now_ms())

    # ------------------------------------------------------------------
    # In-flight dedup
    # ------------------------------------------------------------------

    def _claim(self, url: str) -> Tuple[Future, bool]:
        """Return (future, owner). Only the owner runs the fetch."""
        with self._inflight_mu:
            fut = self._inflight.get(url)
            if fut is not None:
                return fut, False
            fut = Future()
            self._inflight[url] = fut
            return fut, True

    def _run_fetch(self, url: str, token: Optional[str], fut: Future) -> None:
        try:
            rec = self.fetch_and_write(key=url, url=url, token=token)
        except Exception as e:
            with self._inflight_mu:
                self._inflight.pop(url, None)
            if isinstance(e, GitHubAPIError):
                _logger.warning("Failed to fetch PR details from %s: %s", url, e)
            else:
                _logger.exception("Unexpected error fetching PR details from %s", url)
            fut.set_exception(e)
            return
        with self._inflight_mu:
            self._inflight.pop(url, None)
        fut.set_result(rec)

    def _schedule_refresh(self, url: str, token: Optional[str]) -> None:
        fut, owner = self._claim(url)
        if owner:
            _logger.debug("PR details stale, refreshing in background: %s", url)
            self._executor.submit(self._run_fetch, url, token, fut)

    def inflight_count(self) -> int:
        with self._inflight_mu:
            return len(self._inflight)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_details(self, url: str, token: Optional[str] = None, force_refresh: bool = False) -> Optional[PRDetailRecord]:
        """Cached PR details for `url`.

        - fresh record: returned, no network
        - stale record: returned immediately, one background refresh scheduled
        - no record (or force_refresh) with a token: fetched on the caller's thread
          (shared with any fetch already in flight for the same URL)
        - no token: whatever is cached (possibly None), never a fetch
        """
        found = self.lookup(key=url)
        record = self.value_from_cache_entry(entry=found.entry) if found.entry is not None else None
        if record is not None and found.is_fresh and not force_refresh:
            return record

        effective_token = token or self.api.token
        if record is not None and not force_refresh:
            if effective_token:
                self._schedule_refresh(url, effective_token)
            return record
        if not effective_token:
            return record

        fut, owner = self._claim(url)
        if owner:
            # Re-check cache (a fetch may have settled between lookup and claim).
            entry = self.cache_read(key=url)
            if not force_refresh and entry is not None and self.is_cache_entry_fresh(entry=entry, now=self.now()):
                with self._inflight_mu:
                    self._inflight.pop(url, None)
                fut.set_result(self.value_from_cache_entry(entry=entry))
            else:
                self._run_fetch(url, effective_token, fut)
        try:
            return fut.result()
        except GitHubAPIError:
            return record

    def peek(self, url: str) -> Optional[PRDetailRecord]:
        """Cached record regardless of age; no stats, no fetch."""
        entry = self.cache_read(key=url)
        return self.value_from_cache_entry(entry=entry) if entry is not None else None

    def is_fresh(self, record: PRDetailRecord) -> bool:
        return self.is_cache_entry_fresh(entry=record.to_dict(), now=self.now())

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no fetch is in flight. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + float(timeout)
        while True:
            with self._inflight_mu:
                pending = list(self._inflight.values())
            if not pending:
                return True
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            _done, not_done = wait(pending, timeout=remaining)
            if not_done and deadline is not None and time.monotonic() >= deadline:
                return False

    def clear(self) -> None:
        with self._mem_mu:
            self._mem.clear()
        if self._store is not None:
            try:
                self._store.clear([PR_DETAILS_COLLECTION])
            except StructuredStorageUnavailable as e:
                _logger.warning("Failed to clear PR details cache: %s", e)

    def size(self) -> int:
        if self._store is not None:
            try:
                return self._store.count(PR_DETAILS_COLLECTION)
            except StructuredStorageUnavailable:
                pass
        with self._mem_mu:
            return len(self._mem)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)
