# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""User identity cached API (REST).

Resource:
  GET /users/{username}

Example API Response (fields we keep):
  {
    "login": "octocat",
    "id": 583231,
    "avatar_url": "https://avatars.githubusercontent.com/u/583231?v=4",
    "html_url": "https://github.com/octocat"
  }

Cache:
  In-memory, per client, keyed by lower-cased username. Only successful lookups are cached;
  a 404 is never cached here (the username validation cache records invalid names).

TTL:
  1 hour (same window as username staleness)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING

from ...common import USERNAME_STALE_AFTER_S
from ...common_types import SearchErrorKind
from ...username_cache import normalize_username, validate_github_username_format
from .. import GitHubAPIError, GitHubNetworkError, GitHubNotFoundError, GitHubRateLimitError
from .base_cached import CachedResourceBase

if TYPE_CHECKING:  # pragma: no cover
    from .. import GitHubAPIClient

_logger = logging.getLogger(__name__)

CACHE_NAME = "users"
API_CALL_FORMAT = "REST GET /users/{username}"
CACHE_KEY_FORMAT = "user:{username_lower}"

ERR_NOT_FOUND = "Username not found on GitHub"
ERR_RATE_LIMIT = "API rate limit exceeded. Please try again later or add a GitHub token."
ERR_NETWORK = "Network error while validating username"


class UserIdentityCached(CachedResourceBase[Dict[str, Any]]):
    """Existence + avatar lookup for one GitHub user."""

    def __init__(self, api: "GitHubAPIClient", *, ttl_s: int = USERNAME_STALE_AFTER_S, **kwargs: Any):
        super().__init__(api, **kwargs)
        self._ttl_s = int(ttl_s)
        self._mu = threading.Lock()
        self._entries: Dict[str, Dict[str, Any]] = {}

    @property
    def cache_name(self) -> str:
        return CACHE_NAME

    def api_call_format(self) -> str:
        return API_CALL_FORMAT

    def cache_key(self, **kwargs: Any) -> str:
        return f"user:{normalize_username(kwargs['username'])}"

    def inflight_lock_key(self, **kwargs: Any) -> Optional[str]:
        return self.cache_key(**kwargs)

    def cache_read(self, *, key: str) -> Optional[Dict[str, Any]]:
        with self._mu:
            ent = self._entries.get(key)
            return dict(ent) if ent is not None else None

    def cache_write(self, *, key: str, value: Dict[str, Any]) -> None:
        with self._mu:
            self._entries[key] = {"ts": self.now(), "user": dict(value)}

    def is_cache_entry_fresh(self, *, entry: Dict[str, Any], now: float) -> bool:
        ts = float(entry.get("ts", 0) or 0)
        return bool(ts) and (now - ts) <= self._ttl_s

    def value_from_cache_entry(self, *, entry: Dict[str, Any]) -> Dict[str, Any]:
        user = entry.get("user")
        return dict(user) if isinstance(user, dict) else {}

    def fetch(self, **kwargs: Any) -> Dict[str, Any]:
        data = self.api.get_user(str(kwargs["username"]).strip())
        return {
            "login": data.get("login"),
            "id": data.get("id"),
            "avatar_url": data.get("avatar_url"),
            "html_url": data.get("html_url"),
        }


@dataclass
class BatchValidationResult:
    valid: List[str] = field(default_factory=list)
    invalid: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    avatar_urls: Dict[str, str] = field(default_factory=dict)
    # subset of `invalid` that failed for a transient reason; name -> SearchErrorKind value
    retryable: Dict[str, str] = field(default_factory=dict)


def validate_github_usernames(users: UserIdentityCached, usernames: Iterable[str]) -> BatchValidationResult:
    """Check each username against GET /users/{username}, one at a time.

    Format errors are reported without a network call. Every failure (including rate limiting
    and network errors) puts the name in `invalid` with a human-readable reason in `errors`;
    transient failures are also listed in `retryable` so callers don't cache them as invalid.
    """
    result = BatchValidationResult()
    for username in usernames:
        fmt = validate_github_username_format(username)
        if not fmt.is_valid:
            result.invalid.append(username)
            result.errors[username] = fmt.error or "Invalid username"
            continue
        try:
            user = users.get(username=username)
        except GitHubNotFoundError:
            result.invalid.append(username)
            result.errors[username] = ERR_NOT_FOUND
            continue
        except GitHubRateLimitError:
            result.invalid.append(username)
            result.errors[username] = ERR_RATE_LIMIT
            result.retryable[username] = SearchErrorKind.RATE_LIMITED.value
            continue
        except GitHubNetworkError:
            result.invalid.append(username)
            result.errors[username] = ERR_NETWORK
            result.retryable[username] = SearchErrorKind.NETWORK.value
            continue
        except GitHubAPIError as e:
            result.invalid.append(username)
            result.errors[username] = f"GitHub API error: {e.status_code}"
            result.retryable[username] = SearchErrorKind.REMOTE.value
            continue
        result.valid.append(username)
        if user.get("avatar_url"):
            result.avatar_urls[username] = str(user["avatar_url"])
    return result
