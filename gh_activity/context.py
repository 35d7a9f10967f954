# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
ActivityContext: the one object that owns every piece of shared state.

Built once per process (or per test) from an ActivityConfig:
  flat store + structured store -> EventsStorage
  GitHubAPIClient -> UserIdentityCached, PRDetailsCache (with its refresh executor)
  UsernameCacheStore (loaded from EventsStorage)

Nothing here is a module-level singleton; close() tears it all down.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

from .cache.cache_base import JsonFileFlatBackend, MemoryFlatBackend
from .cache.cache_flat import LAST_SEARCH_PARAMS_KEY, QuotaAwareFlatStore
from .cache.cache_storage import EVENTS_DATASET_KEY, SEARCH_ITEMS_DATASET_KEY, EventsStorage
from .cache.cache_structured import StructuredStore
from .common import ActivityConfig
from .common_github import GitHubAPIClient
from .common_github.api.pr_details_cached import PRDetailsCache
from .common_github.api.users_cached import UserIdentityCached
from .common_types import ApiMode, DatasetMetadata
from .pr_enrichment import enrich_items_with_pr_details
from .search import SearchOptions, SearchParams, SearchResult, create_search_cache_params, perform_search
from .username_cache import UsernameCacheStore

_logger = logging.getLogger(__name__)


@dataclass
class SearchOutcome:
    result: SearchResult
    # False when neither storage tier accepted the results (the search itself still succeeded)
    saved: bool


class ActivityContext:
    """Process-wide owner of stores, caches and the GitHub client."""

    def __init__(
        self,
        config: ActivityConfig,
        *,
        storage: EventsStorage,
        client: GitHubAPIClient,
        username_store: UsernameCacheStore,
        users: UserIdentityCached,
        pr_details: PRDetailsCache,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.config = config
        self.storage = storage
        self.client = client
        self.username_store = username_store
        self.users = users
        self.pr_details = pr_details
        self._executor = executor

    @classmethod
    def from_config(
        cls,
        config: ActivityConfig,
        *,
        session: Optional[requests.Session] = None,
        in_memory: bool = False,
    ) -> "ActivityContext":
        """Wire up every component. `in_memory` keeps the flat tier off disk (tests)."""
        if in_memory:
            backend = MemoryFlatBackend()
        else:
            backend = JsonFileFlatBackend(cache_file=config.flat_store_path)
        flat = QuotaAwareFlatStore(backend, max_bytes=config.flat_store_max_bytes)
        structured = StructuredStore(config.structured_db_path, enabled=config.structured_enabled)
        storage = EventsStorage(structured, flat)

        client = GitHubAPIClient(config.token, session=session, timeout_s=config.http_timeout_s)
        username_store = UsernameCacheStore(storage)
        username_store.load()
        users = UserIdentityCached(client)

        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="gh-activity-bg")
        pr_details = PRDetailsCache(client, structured, executor=executor, ttl_s=config.pr_details_ttl_s)

        if not structured.is_supported():
            _logger.warning("Structured storage unavailable; using the size-limited flat store only")

        return cls(
            config,
            storage=storage,
            client=client,
            username_store=username_store,
            users=users,
            pr_details=pr_details,
            executor=executor,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def search_options(self, on_progress: Optional[Callable[[str], None]] = None) -> SearchOptions:
        return SearchOptions(
            on_progress=on_progress,
            request_delay_s=self.config.request_delay_s,
            events_max_pages=self.config.events_max_pages,
            events_per_page=self.config.events_per_page,
            is_online=self.client.is_online if self.config.check_online else None,
        )

    def search_and_store(
        self,
        params: SearchParams,
        *,
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> SearchOutcome:
        """Search, then persist the raw results. Persistence failure never fails the search."""
        result = perform_search(params, self.client, self.username_store, self.users, self.search_options(on_progress))

        mode = ApiMode(params.api_mode)
        metadata = DatasetMetadata(
            last_fetch_ms=int(time.time() * 1000),
            usernames=list(result.processed_usernames),
            api_mode=mode,
            start_date=params.start_date,
            end_date=params.end_date,
        )
        saved = True
        if mode in (ApiMode.EVENTS, ApiMode.COMBINED):
            saved = self.storage.store(EVENTS_DATASET_KEY, result.raw_events, metadata) and saved
        if mode in (ApiMode.SEARCH, ApiMode.COMBINED):
            saved = self.storage.store(SEARCH_ITEMS_DATASET_KEY, result.raw_search_items, metadata) and saved
        saved = self.storage.flat.set_json(LAST_SEARCH_PARAMS_KEY, create_search_cache_params(params)) and saved
        if not saved:
            _logger.warning("Search results were not saved")
        return SearchOutcome(result=result, saved=saved)

    def enrich(
        self,
        items: List[Dict[str, Any]],
        *,
        on_progress: Optional[Callable[[int, int], None]] = None,
        on_partial_result: Optional[Callable[[List[Dict[str, Any]]], None]] = None,
    ) -> List[Dict[str, Any]]:
        return enrich_items_with_pr_details(
            items,
            self.pr_details,
            self.client.token,
            on_progress,
            on_partial_result,
            delay_s=self.config.enrichment_delay_s,
        )

    def clear_all_keep_token(self) -> str:
        token = self.storage.clear_all_keep_token()
        self.pr_details.clear()
        self.username_store.load()
        return token

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.pr_details.wait_idle()
        self.pr_details.close()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self.client.close()
        self.storage.structured.close()

    def __enter__(self) -> "ActivityContext":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
