# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Per-user activity feed (REST), the "events" endpoint family.

Endpoint:
  GET /users/{username}/events?page=N&per_page=100

Pagination policy:
  - GitHub keeps only a short rolling window (about 30 days / 300 events), so at most
    `max_pages` pages are requested (default 3).
  - Events come newest first; paging stops as soon as a page's oldest event is older than
    the requested start date, or a page comes back empty.
  - 422 "pagination is limited" is a soft stop: whatever was collected so far is returned.
  - Any other error (404 included) propagates to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from ...common import EVENTS_MAX_PAGES, EVENTS_PER_PAGE
from ...github_data import parse_github_datetime, start_of_day
from .. import GitHubPaginationLimitError

if TYPE_CHECKING:  # pragma: no cover
    from .. import GitHubAPIClient

_logger = logging.getLogger(__name__)

API_CALL_FORMAT = "REST GET /users/{username}/events?page={page}&per_page=100"


@dataclass
class UserEventsResult:
    events: List[Dict[str, Any]] = field(default_factory=list)
    pages_fetched: int = 0
    # True when GitHub refused a deeper page (422) and the result is partial
    truncated: bool = False


def _oldest_event_time(events: List[Dict[str, Any]]) -> Optional[datetime]:
    times = [t for t in (parse_github_datetime(e.get("created_at")) for e in events) if t is not None]
    return min(times) if times else None


def fetch_user_events(
    api: "GitHubAPIClient",
    username: str,
    *,
    start_date: Optional[str] = None,
    max_pages: int = EVENTS_MAX_PAGES,
    per_page: int = EVENTS_PER_PAGE,
) -> UserEventsResult:
    """Raw events for `username`, newest first, bounded by `max_pages` and `start_date`."""
    result = UserEventsResult()
    start_dt = start_of_day(start_date) if start_date else None

    for page in range(1, int(max_pages) + 1):
        try:
            events = api.get_user_events_page(username, page=page, per_page=per_page)
        except GitHubPaginationLimitError:
            _logger.warning(
                "GitHub Events API pagination limit reached for %s. Returning partial results.", username
            )
            result.truncated = True
            break
        result.pages_fetched = page
        if not events:
            break
        result.events.extend(events)

        if start_dt is not None:
            oldest = _oldest_event_time(events)
            if oldest is not None and oldest < start_dt:
                break

    return result
