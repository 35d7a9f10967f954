# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""search/issues by author (REST), the "search" endpoint family.

Endpoint:
  GET /search/issues?q=author:{username} updated:{start}..{end}&per_page=100

One page only: the search family trades completeness for a single call per user.
Not cached here; identical searches are reused at the dataset level (see search.is_cache_valid).
"""

from __future__ import annotations

from typing import Any, Dict, List, TYPE_CHECKING

from ...common import SEARCH_PER_PAGE

if TYPE_CHECKING:  # pragma: no cover
    from .. import GitHubAPIClient

API_CALL_FORMAT = "REST GET /search/issues?q=author:{username}+updated:{start}..{end}&per_page=100"


def author_query(username: str, start_date: str, end_date: str) -> str:
    return f"author:{username} updated:{start_date}..{end_date}"


def search_user_items(
    api: "GitHubAPIClient",
    username: str,
    *,
    start_date: str,
    end_date: str,
    per_page: int = SEARCH_PER_PAGE,
) -> List[Dict[str, Any]]:
    """Issues and PRs authored by `username` and updated inside [start_date, end_date]."""
    data = api.search_issues(author_query(username, start_date, end_date), per_page=per_page)
    items = data.get("items") or []
    return [it for it in items if isinstance(it, dict)]
