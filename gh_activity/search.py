# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Search / fetch orchestration.

perform_search() drives one user-triggered search:
  1. validate parameters and the username list (no network)
  2. fail on names the username cache already knows are invalid
  3. validate the remaining unknown names against GET /users/{username}
  4. fetch each user's data, strictly one user at a time, `request_delay_s` apart
  5. on 404 for a name we had validated, demote it to invalid (the account went away)
  6. report progress after every user

Errors surface as SearchError with a SearchErrorKind; the first failing user stops the
batch (later users would otherwise be silently missing from the result).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .common import (
    DEFAULT_REQUEST_DELAY_S,
    EVENTS_MAX_PAGES,
    EVENTS_PER_PAGE,
    SEARCH_RESULTS_REUSE_S,
)
from .common_github import (
    GitHubAPIClient,
    GitHubAPIError,
    GitHubNetworkError,
    GitHubNotFoundError,
    GitHubRateLimitError,
)
from .common_github.api.search_issues import search_user_items
from .common_github.api.user_events import fetch_user_events
from .common_github.api.users_cached import UserIdentityCached, validate_github_usernames
from .common_types import ApiMode, SearchError, SearchErrorKind
from .github_data import categorize_raw_search_items, is_valid_date_string, process_raw_events
from .username_cache import UsernameCacheStore, get_invalid_usernames, normalize_username, validate_username_list

_logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = "You are currently offline. Please check your internet connection and try again."


@dataclass
class SearchParams:
    username: str
    start_date: str
    end_date: str
    api_mode: ApiMode = ApiMode.SEARCH


@dataclass
class SearchOptions:
    on_progress: Optional[Callable[[str], None]] = None
    request_delay_s: float = DEFAULT_REQUEST_DELAY_S
    events_max_pages: int = EVENTS_MAX_PAGES
    events_per_page: int = EVENTS_PER_PAGE
    # Returns False when the host has no network; None skips the check
    is_online: Optional[Callable[[], bool]] = None
    sleep: Callable[[float], None] = time.sleep


@dataclass
class SearchResult:
    items: List[Dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    processed_usernames: List[str] = field(default_factory=list)
    raw_events: List[Dict[str, Any]] = field(default_factory=list)
    raw_search_items: List[Dict[str, Any]] = field(default_factory=list)
    # Users whose events feed hit GitHub's pagination ceiling
    truncated_usernames: List[str] = field(default_factory=list)


# =============================================================================
# Validation
# =============================================================================

def validate_search_params(params: SearchParams, *, is_online: Optional[Callable[[], bool]] = None) -> List[str]:
    """Return human-readable problems with `params` (empty when valid)."""
    errors: List[str] = []
    if not str(params.username or "").strip():
        errors.append("Please enter a GitHub username")
    if not params.start_date or not params.end_date:
        errors.append("Please select both start and end dates")
    if params.start_date and not is_valid_date_string(params.start_date):
        errors.append("Invalid start date format. Please use YYYY-MM-DD")
    if params.end_date and not is_valid_date_string(params.end_date):
        errors.append("Invalid end date format. Please use YYYY-MM-DD")
    if (
        is_valid_date_string(params.start_date)
        and is_valid_date_string(params.end_date)
        and params.start_date > params.end_date
    ):
        errors.append("Start date must be before end date")
    if is_online is not None and not is_online():
        errors.append(OFFLINE_MESSAGE)
    return errors


def _validate_and_cache_usernames(
    usernames: List[str],
    username_store: UsernameCacheStore,
    users: UserIdentityCached,
) -> None:
    cache = username_store.cache
    already_invalid = get_invalid_usernames(usernames, cache.invalid)
    if already_invalid:
        plural = "s" if len(already_invalid) > 1 else ""
        raise SearchError(
            SearchErrorKind.INVALID_USERNAME,
            [f"Invalid GitHub username{plural}: {', '.join(already_invalid)}"],
        )

    need = cache.categorize(usernames).need_validation
    if not need:
        return

    result = validate_github_usernames(users, need)
    if result.valid:
        username_store.add_validated(result.valid)
    if result.avatar_urls:
        username_store.add_avatars(result.avatar_urls)
    if not result.invalid:
        return

    confirmed = [u for u in result.invalid if u not in result.retryable]
    if confirmed:
        username_store.add_invalid(confirmed)
        kind = SearchErrorKind.INVALID_USERNAME
    else:
        kind = SearchErrorKind(result.retryable[result.invalid[0]])
    details = "\n".join(f"{u}: {result.errors.get(u) or 'Invalid username'}" for u in result.invalid)
    raise SearchError(kind, [f"Validation failed:\n{details}"], username=result.invalid[0])


# =============================================================================
# Fetch
# =============================================================================

def _fetch_error(username: str, err: GitHubAPIError, username_store: UsernameCacheStore) -> SearchError:
    message = f"Failed to fetch data for {username}: {err}"
    if isinstance(err, GitHubNotFoundError):
        if normalize_username(username) in username_store.cache.validated:
            _logger.warning("Previously validated user %s no longer exists; marking invalid", username)
            username_store.remove_validated(username)
            username_store.add_invalid([username])
        return SearchError(SearchErrorKind.INVALID_USERNAME, [message], username=username)
    if isinstance(err, GitHubRateLimitError):
        return SearchError(SearchErrorKind.RATE_LIMITED, [message], username=username)
    if isinstance(err, GitHubNetworkError):
        return SearchError(SearchErrorKind.NETWORK, [message], username=username)
    return SearchError(SearchErrorKind.REMOTE, [message], username=username)


def perform_search(
    params: SearchParams,
    client: GitHubAPIClient,
    username_store: UsernameCacheStore,
    users: UserIdentityCached,
    options: Optional[SearchOptions] = None,
) -> SearchResult:
    """Run one search. Raises SearchError; never returns a partial multi-user result."""
    opts = options or SearchOptions()

    def progress(msg: str) -> None:
        _logger.info(msg)
        if opts.on_progress is not None:
            opts.on_progress(msg)

    param_errors = validate_search_params(params, is_online=opts.is_online)
    if param_errors:
        raise SearchError(SearchErrorKind.VALIDATION, param_errors)

    listed = validate_username_list(params.username)
    if listed.errors:
        raise SearchError(SearchErrorKind.VALIDATION, listed.errors)
    usernames = listed.usernames

    progress("Validating usernames...")
    _validate_and_cache_usernames(usernames, username_store, users)

    mode = ApiMode(params.api_mode)
    progress(f"Starting {mode.value} API...")
    result = SearchResult(processed_usernames=list(usernames))
    want_events = mode in (ApiMode.EVENTS, ApiMode.COMBINED)
    want_search = mode in (ApiMode.SEARCH, ApiMode.COMBINED)
    first_call = True

    def pause() -> None:
        nonlocal first_call
        if not first_call and opts.request_delay_s > 0:
            opts.sleep(opts.request_delay_s)
        first_call = False

    for username in usernames:
        progress(f"Fetching data for {username}...")
        try:
            if want_events:
                pause()
                events = fetch_user_events(
                    client,
                    username,
                    start_date=params.start_date,
                    max_pages=opts.events_max_pages,
                    per_page=opts.events_per_page,
                )
                result.raw_events.extend(events.events)
                if events.truncated:
                    result.truncated_usernames.append(username)
                progress(f"Found {len(events.events)} raw events for {username}")
            if want_search:
                pause()
                found = search_user_items(client, username, start_date=params.start_date, end_date=params.end_date)
                result.raw_search_items.extend(found)
                progress(f"Found {len(found)} items for {username}")
        except GitHubAPIError as e:
            raise _fetch_error(username, e, username_store) from e
        username_store.record_fetched([username])

    result.items = process_raw_events(result.raw_events, params.start_date, params.end_date)
    result.items.extend(categorize_raw_search_items(result.raw_search_items, params.start_date, params.end_date))
    result.total_count = len(result.raw_events) + len(result.raw_search_items)
    progress(f"Successfully loaded {result.total_count} records!")
    return result


def perform_combined_search(
    params: SearchParams,
    client: GitHubAPIClient,
    username_store: UsernameCacheStore,
    users: UserIdentityCached,
    options: Optional[SearchOptions] = None,
) -> SearchResult:
    """Events feed and issue/PR search for every user, still one request at a time."""
    combined = SearchParams(
        username=params.username,
        start_date=params.start_date,
        end_date=params.end_date,
        api_mode=ApiMode.COMBINED,
    )
    return perform_search(combined, client, username_store, users, options)


# =============================================================================
# Result reuse
# =============================================================================

def create_search_cache_params(params: SearchParams, *, now_ms: Optional[int] = None) -> Dict[str, Any]:
    return {
        "username": params.username,
        "start_date": params.start_date,
        "end_date": params.end_date,
        "api_mode": ApiMode(params.api_mode).value,
        "timestamp": int(now_ms if now_ms is not None else time.time() * 1000),
    }


def is_cache_valid(
    params: SearchParams,
    last_search_params: Optional[Dict[str, Any]],
    cache_expiry_ms: int = SEARCH_RESULTS_REUSE_S * 1000,
    *,
    now_ms: Optional[int] = None,
) -> bool:
    """True when the last search had the same inputs and is less than an hour old."""
    if not isinstance(last_search_params, dict):
        return False
    now = int(now_ms if now_ms is not None else time.time() * 1000)
    try:
        ts = int(last_search_params.get("timestamp") or 0)
    except (TypeError, ValueError):
        return False
    return (
        last_search_params.get("username") == params.username
        and last_search_params.get("start_date") == params.start_date
        and last_search_params.get("end_date") == params.end_date
        and now - ts < int(cache_expiry_ms)
    )
