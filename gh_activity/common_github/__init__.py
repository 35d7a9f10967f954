# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""GitHub REST client used by gh-activity.

Thin wrapper over a `requests.Session`:
- token header handling (`Authorization: token <tok>`)
- per-client REST call / error / cache statistics
- rate-limit header capture
- status code -> typed exception mapping (not found, rate limited, pagination limited)
- per-key in-flight locks for deduping concurrent identical fetches

Resource-specific logic (cache key format, TTL policy, pagination) lives in `api/`.
"""

from __future__ import annotations

import logging
import threading
import time
import urllib.parse
from typing import Any, Dict, List, Optional

import requests

from ..common import DEFAULT_HTTP_TIMEOUT_S

# Module logger
_logger = logging.getLogger(__name__)

GITHUB_API_BASE_URL = "https://api.github.com"


# ======================================================================================
# ERRORS
# ======================================================================================

class GitHubAPIError(Exception):
    """A GitHub REST call that did not return a usable response."""

    def __init__(self, message: str, *, status_code: int = 0, url: str = ""):
        super().__init__(message)
        self.status_code = int(status_code or 0)
        self.url = str(url or "")


class GitHubNotFoundError(GitHubAPIError):
    """404: the user / PR / repo does not exist (or is not visible to this token)."""


class GitHubRateLimitError(GitHubAPIError):
    """403/429 caused by an exhausted rate limit. Not retried automatically."""


class GitHubPaginationLimitError(GitHubAPIError):
    """422 "pagination is limited": the endpoint refuses to page any deeper."""


class GitHubNetworkError(GitHubAPIError):
    """Transport failure (DNS, connection reset, timeout); no HTTP status."""


# ======================================================================================
# STATISTICS
# ======================================================================================

class _GitHubAPIStats:
    """REST call and cache statistics for one client."""

    def __init__(self):
        self._mu = threading.Lock()
        self.reset()

    def reset(self):
        """Reset all statistics (useful for testing)."""
        # REST call stats
        self.rest_calls_total = 0
        self.rest_calls_by_label = {}  # Dict[str, int] - count by API endpoint label
        self.rest_success_total = 0
        self.rest_time_total_s = 0.0

        # Error stats
        self.rest_errors_total = 0
        self.rest_errors_by_status = {}  # Dict[int, int]
        self.rest_last_error = {}  # Dict[str, Any] - {status, url, body}

        # Generic cache stats, by cache name
        self.cache_hits = {}  # Dict[str, int]
        self.cache_misses = {}  # Dict[str, int]
        self.cache_writes_ops = {}  # Dict[str, int]
        self.cache_writes_entries = {}  # Dict[str, int]

    def bump(self, counter: Dict[Any, int], key: Any, n: int = 1) -> None:
        with self._mu:
            counter[key] = int(counter.get(key, 0) or 0) + int(n)


class GitHubAPIClient:
    """GitHub REST client with statistics and typed errors."""

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        session: Optional[requests.Session] = None,
        base_url: str = GITHUB_API_BASE_URL,
        timeout_s: int = DEFAULT_HTTP_TIMEOUT_S,
    ):
        """Initialize GitHub API client.

        Args:
            token: GitHub personal access token. Token discovery (env var, token file, gh CLI
                   config) happens in ActivityConfig.from_env(); the client only uses what it
                   is given. Without a token, requests are anonymous (lower rate limit).
            session: requests.Session to use (tests pass a fake).
        """
        self.token = str(token or "").strip() or None
        self.base_url = str(base_url).rstrip("/")
        self.timeout_s = int(timeout_s)
        self.session = session if session is not None else requests.Session()
        self.headers = {'Accept': 'application/vnd.github.v3+json'}
        if self.token:
            self.headers['Authorization'] = f'token {self.token}'
        self.logger = logging.getLogger(self.__class__.__name__)
        self.stats = _GitHubAPIStats()

        # Cached rate limit info from response headers.
        # Format: {"remaining": 1234, "limit": 5000, "reset_epoch": 1766947200, "seconds_until_reset": 600}
        self._cached_rate_limit_info: Optional[Dict[str, Any]] = None

        # Inflight request deduplication: per-key locks to prevent concurrent identical API calls.
        self._inflight_locks_mu = threading.Lock()
        self._inflight_locks: Dict[str, threading.Lock] = {}

    def has_token(self) -> bool:
        return bool(self.token)

    def close(self) -> None:
        try:
            self.session.close()
        except AttributeError:
            pass

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self.base_url}{endpoint}" if endpoint.startswith('/') else f"{self.base_url}/{endpoint}"

    def _rest_label_for_url(self, url: str) -> str:
        """Short category label for a REST URL (used as the stats key)."""
        path = urllib.parse.urlparse(str(url or "")).path
        parts = [p for p in path.split("/") if p]
        if parts[:2] == ["search", "issues"]:
            return "search_issues"
        if parts and parts[0] == "users":
            return "users_events" if len(parts) >= 3 and parts[2] == "events" else "users"
        if parts and parts[0] == "repos" and len(parts) >= 4 and parts[3] == "pulls":
            return "pull_request"
        return "/".join(parts[:3]) if parts else "unknown"

    def _inflight_lock(self, key: str) -> "threading.Lock":
        """Return a per-key lock to dedupe concurrent network fetches across threads."""
        k = str(key or "")
        if not k:
            # Fallback: single shared lock
            k = "__default__"
        with self._inflight_locks_mu:
            lk = self._inflight_locks.get(k)
            if lk is None:
                lk = threading.Lock()
                self._inflight_locks[k] = lk
            return lk

    def _cache_hit(self, name: str) -> None:
        self.stats.bump(self.stats.cache_hits, str(name or "").strip() or "unknown")

    def _cache_miss(self, name: str) -> None:
        self.stats.bump(self.stats.cache_misses, str(name or "").strip() or "unknown")

    def _cache_write(self, name: str, *, entries: int = 0) -> None:
        k = str(name or "").strip() or "unknown"
        self.stats.bump(self.stats.cache_writes_ops, k)
        if int(entries or 0) > 0:
            self.stats.bump(self.stats.cache_writes_entries, k, int(entries))

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _rest_get(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[int] = None,
        token: Optional[str] = None,
    ):
        """session.get wrapper that increments per-client counters and captures rate limits.

        Raises GitHubNetworkError on transport failure. HTTP error statuses are returned as-is;
        `_raise_for_status` maps them to exceptions. `token` overrides the client token for this call.
        """
        label = self._rest_label_for_url(url)
        self.stats.rest_calls_total += 1
        self.stats.bump(self.stats.rest_calls_by_label, label)
        self.logger.debug("GH REST GET [%s] %s params=%s", label, url, params or {})

        headers = dict(self.headers)
        if token:
            headers["Authorization"] = f"token {token}"

        t0_req = time.monotonic()
        try:
            resp = self.session.get(url, headers=headers, params=params, timeout=timeout or self.timeout_s)
        except requests.exceptions.RequestException as e:
            self.stats.rest_errors_total += 1
            self.stats.rest_last_error = {"status": 0, "url": str(url), "body": str(e)[:300]}
            raise GitHubNetworkError(f"Network error: {e}", url=url) from e
        finally:
            self.stats.rest_time_total_s += max(0.0, time.monotonic() - t0_req)

        code = int(resp.status_code or 0)
        if code and code < 400:
            self.stats.rest_success_total += 1
        else:
            self.stats.rest_errors_total += 1
            self.stats.bump(self.stats.rest_errors_by_status, code)
            body = ""
            try:
                body = (resp.text or "")[:300]
            except (ValueError, TypeError):
                body = ""
            self.stats.rest_last_error = {"status": code, "url": str(url), "body": body}

        self.logger.debug(
            "GH REST RESP [%s] status=%s remaining=%s", label, code, resp.headers.get("X-RateLimit-Remaining")
        )
        self._capture_rate_limit(resp)
        return resp

    def _capture_rate_limit(self, resp) -> None:
        try:
            remaining_hdr = resp.headers.get("X-RateLimit-Remaining")
            limit_hdr = resp.headers.get("X-RateLimit-Limit")
            reset_hdr = resp.headers.get("X-RateLimit-Reset")
            if remaining_hdr is None or limit_hdr is None:
                return
            reset_epoch = int(reset_hdr) if reset_hdr is not None else None
            self._cached_rate_limit_info = {
                "remaining": int(remaining_hdr),
                "limit": int(limit_hdr),
                "reset_epoch": reset_epoch,
                "seconds_until_reset": (reset_epoch - int(time.time())) if reset_epoch is not None else 0,
            }
        except (ValueError, AttributeError):  # int() on invalid header values or missing headers
            pass

    @staticmethod
    def _error_message(resp) -> str:
        try:
            data = resp.json()
        except ValueError:
            return ""
        if isinstance(data, dict):
            return str(data.get("message") or "")
        return ""

    def _raise_for_status(self, resp, url: str) -> None:
        code = int(resp.status_code or 0)
        if code < 400:
            return
        reason = str(getattr(resp, "reason", "") or "")
        message = self._error_message(resp)

        if code == 404:
            raise GitHubNotFoundError(f"GitHub API error: 404 {reason}".rstrip(), status_code=code, url=url)
        if code in (403, 429):
            remaining = resp.headers.get("X-RateLimit-Remaining")
            if remaining == "0" or code == 429 or "rate limit" in message.lower():
                raise GitHubRateLimitError(
                    "API rate limit exceeded. Please try again later or add a GitHub token.",
                    status_code=code,
                    url=url,
                )
        if code == 422 and "pagination is limited" in message.lower():
            raise GitHubPaginationLimitError(message, status_code=code, url=url)
        raise GitHubAPIError(f"GitHub API error: {code} {reason}".rstrip(), status_code=code, url=url)

    def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[int] = None,
        *,
        token: Optional[str] = None,
    ) -> Any:
        """Make GET request to GitHub API and return the decoded JSON body.

        Args:
            endpoint: API endpoint (e.g., "/users/octocat") or a full API URL
            params: Query parameters
            timeout: Request timeout in seconds (default: the client's timeout)

        Raises:
            GitHubNotFoundError, GitHubRateLimitError, GitHubPaginationLimitError,
            GitHubAPIError for other HTTP errors, GitHubNetworkError for transport failures.
        """
        url = self._url(endpoint)
        resp = self._rest_get(url, params=params, timeout=timeout, token=token)
        self._raise_for_status(resp, url)
        try:
            return resp.json()
        except ValueError as e:
            raise GitHubAPIError(f"GitHub API returned invalid JSON for {endpoint}", status_code=resp.status_code, url=url) from e

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def is_online(self, *, timeout: int = 5) -> bool:
        """Cheap reachability check against /rate_limit (not counted against the quota).

        Any HTTP response counts as online; only a transport failure returns False.
        """
        try:
            self._rest_get(self._url("/rate_limit"), timeout=timeout)
        except GitHubNetworkError as e:
            self.logger.warning("GitHub API unreachable: %s", e)
            return False
        return True

    def get_user(self, username: str) -> Dict[str, Any]:
        """GET /users/{username} (identity lookup: existence + avatar)."""
        data = self.get(f"/users/{urllib.parse.quote(str(username), safe='')}")
        return data if isinstance(data, dict) else {}

    def search_issues(self, query: str, *, per_page: int = 100, page: int = 1) -> Dict[str, Any]:
        """GET /search/issues?q=...; returns {"total_count": N, "items": [...]}."""
        data = self.get("/search/issues", params={"q": query, "per_page": int(per_page), "page": int(page)})
        return data if isinstance(data, dict) else {"total_count": 0, "items": []}

    def get_user_events_page(self, username: str, *, page: int, per_page: int = 100) -> List[Dict[str, Any]]:
        """GET /users/{username}/events?page=N&per_page=M (newest first)."""
        data = self.get(
            f"/users/{urllib.parse.quote(str(username), safe='')}/events",
            params={"page": int(page), "per_page": int(per_page)},
        )
        return [e for e in data if isinstance(e, dict)] if isinstance(data, list) else []

    def get_pull_request(self, url_or_endpoint: str, *, token: Optional[str] = None) -> Dict[str, Any]:
        """GET /repos/{owner}/{repo}/pulls/{number}."""
        data = self.get(url_or_endpoint, token=token)
        return data if isinstance(data, dict) else {}

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_core_rate_limit_info(self) -> Optional[Dict[str, Any]]:
        """Rate limit info captured from the most recent response headers (None if never seen)."""
        return dict(self._cached_rate_limit_info) if self._cached_rate_limit_info else None

    def get_cache_stats(self) -> Dict[str, Any]:
        """Return per-client cache hit/miss/write stats."""
        hits = dict(self.stats.cache_hits)
        misses = dict(self.stats.cache_misses)
        return {
            "hits_total": int(sum(hits.values())),
            "misses_total": int(sum(misses.values())),
            "hits_by_cache": dict(sorted(hits.items())),
            "misses_by_cache": dict(sorted(misses.items())),
            "writes_ops_by_cache": dict(sorted(self.stats.cache_writes_ops.items())),
            "writes_entries_by_cache": dict(sorted(self.stats.cache_writes_entries.items())),
        }

    def get_rest_call_stats(self) -> Dict[str, Any]:
        """Return per-client REST call stats for debugging."""
        return {
            "total": int(self.stats.rest_calls_total),
            "by_label": dict(sorted(self.stats.rest_calls_by_label.items(), key=lambda kv: (-kv[1], kv[0]))),
            "success_total": int(self.stats.rest_success_total),
            "error_total": int(self.stats.rest_errors_total),
            "errors_by_status": dict(self.stats.rest_errors_by_status),
            "last_error": dict(self.stats.rest_last_error or {}),
            "time_total_s": float(self.stats.rest_time_total_s),
        }
