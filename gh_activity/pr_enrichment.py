# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Pull request enrichment.

Items built from Events API payloads often lack the PR title (GitHub trims the embedded
pull_request object), so github_data falls back to placeholder titles such as
"Pull Request #42 opened" or "Review on: Pull Request #42". This module detects those items
and fills them in from PRDetailsCache.

Batch flow (enrich_items_with_pr_details):
  1. apply whatever the cache already holds to every item that needs it (no network)
  2. hand that partially-enriched list to `on_partial_result`
  3. fetch the rest one at a time, `delay_s` apart, reporting `on_progress(current, total)`
Nothing is fetched without a token.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional

from .common import DEFAULT_ENRICHMENT_DELAY_S
from .common_github.api.pr_details_cached import PRDetailsCache, pr_api_url
from .common_types import PRDetailRecord

_logger = logging.getLogger(__name__)

_PLACEHOLDER_TITLE_RE = re.compile(
    r"^Pull Request #\d+ (opened|closed|labeled|unlabeled|synchronized|reopened|edited"
    r"|assigned|unassigned|review_requested|review_request_removed)$"
)
_PLACEHOLDER_PREFIXES = ("Review on: Pull Request #", "Review comment on: Pull Request #")
_PR_HTML_URL_RE = re.compile(r"github\.com/([^/]+/[^/]+)/pull/(\d+)")
_PR_TITLE_ACTION_RE = re.compile(r"^Pull Request #\d+ (.+)$")


def _is_pr_event_item(item: Dict[str, Any]) -> bool:
    return "PullRequest" in str(item.get("originalEventType") or "")


def needs_pr_enrichment(item: Dict[str, Any]) -> bool:
    """True for PR-event items whose title is one of the placeholder forms."""
    if not _is_pr_event_item(item):
        return False
    title = str(item.get("title") or "")
    if _PLACEHOLDER_TITLE_RE.match(title):
        return True
    return title.startswith(_PLACEHOLDER_PREFIXES)


def pr_api_url_for_item(item: Dict[str, Any]) -> Optional[str]:
    """REST detail URL for a PR-event item, or None when the item isn't one."""
    if not _is_pr_event_item(item):
        return None
    m = _PR_HTML_URL_RE.search(str(item.get("html_url") or ""))
    if not m:
        return None
    return pr_api_url(m.group(1), int(m.group(2)))


def apply_pr_details(item: Dict[str, Any], record: PRDetailRecord) -> Dict[str, Any]:
    """Return a copy of `item` with PR fields and title taken from `record`."""
    enriched = dict(item)
    enriched["labels"] = record.labels if record.labels else item.get("labels")
    enriched["updated_at"] = record.updated_at or item.get("updated_at")
    enriched["closed_at"] = record.closed_at or item.get("closed_at")
    enriched["merged_at"] = record.merged_at or item.get("merged_at")
    enriched["merged"] = record.merged if record.merged is not None else item.get("merged")
    enriched["state"] = record.state or item.get("state")

    etype = item.get("originalEventType")
    title = str(item.get("title") or "")
    if not record.title:
        return enriched
    if etype == "PullRequestReviewEvent":
        enriched["title"] = f"Review on: {record.title}"
    elif etype == "PullRequestReviewCommentEvent":
        enriched["title"] = f"Review comment on: {record.title}"
    elif title.startswith("Pull Request #"):
        m = _PR_TITLE_ACTION_RE.match(title)
        action = m.group(1) if m else ""
        enriched["title"] = f"{record.title} ({action})" if action else record.title
    return enriched


def enrich_item(item: Dict[str, Any], cache: PRDetailsCache, token: Optional[str] = None) -> Dict[str, Any]:
    """Enrich one item (may fetch). Returns the item unchanged when nothing applies."""
    if not needs_pr_enrichment(item):
        return item
    url = pr_api_url_for_item(item)
    if not url:
        return item
    record = cache.get_details(url, token)
    return apply_pr_details(item, record) if record is not None else item


def enrich_items_with_pr_details(
    items: List[Dict[str, Any]],
    cache: PRDetailsCache,
    token: Optional[str] = None,
    on_progress: Optional[Callable[[int, int], None]] = None,
    on_partial_result: Optional[Callable[[List[Dict[str, Any]]], None]] = None,
    *,
    delay_s: float = DEFAULT_ENRICHMENT_DELAY_S,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Dict[str, Any]]:
    """Enrich every item that needs it. Returns a new list in the original order."""
    result = list(items)
    pending: List[int] = []
    effective_token = token or cache.api.token

    for idx, item in enumerate(result):
        if not needs_pr_enrichment(item):
            continue
        url = pr_api_url_for_item(item)
        if not url:
            continue
        record = cache.peek(url)
        if record is None:
            pending.append(idx)
            continue
        if effective_token and not cache.is_fresh(record):
            # stale: served now, refreshed in the background
            cache.get_details(url, effective_token)
        result[idx] = apply_pr_details(item, record)

    if on_partial_result is not None:
        on_partial_result(list(result))

    if not pending or not effective_token:
        return result

    _logger.info("Enriching %d items with PR details...", len(pending))
    total = len(pending)
    for n, idx in enumerate(pending, start=1):
        result[idx] = enrich_item(result[idx], cache, effective_token)
        if on_progress is not None:
            on_progress(n, total)
        if n < total and delay_s > 0:
            sleep(delay_s)
    return result
