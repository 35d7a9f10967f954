# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
GitHub data transformation.

- parse GitHub timestamps / YYYY-MM-DD dates
- raw event (Events API) -> item (the same shape the Search API returns)
- date filtering (end date inclusive) and de-duplication by html_url

Items produced from events carry `originalEventType`; the PR enrichment heuristics key off
it and off the placeholder titles used here when the event payload lacks the PR title.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

_logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# =============================================================================
# Dates
# =============================================================================

def is_valid_date_string(date_str: Any) -> bool:
    """True for a real calendar date written as YYYY-MM-DD."""
    if not isinstance(date_str, str) or not _DATE_RE.match(date_str):
        return False
    try:
        datetime.strptime(date_str, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def start_of_day(date_str: str) -> datetime:
    """YYYY-MM-DD -> midnight UTC."""
    return datetime.strptime(date_str, "%Y-%m-%d").replace(tzinfo=timezone.utc)


def end_of_day(date_str: str) -> datetime:
    """Exclusive upper bound for YYYY-MM-DD: midnight UTC of the following day."""
    return start_of_day(date_str) + timedelta(days=1)


def parse_github_datetime(value: Any) -> Optional[datetime]:
    """Parse GitHub's ISO-8601 timestamps ("2024-01-15T10:00:00Z"). None when unparseable."""
    if not isinstance(value, str) or not value:
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _in_range(ts: Any, start_date: Optional[str], end_date: Optional[str]) -> bool:
    dt = parse_github_datetime(ts)
    if dt is None:
        return not (start_date or end_date)
    if start_date and dt < start_of_day(start_date):
        return False
    if end_date and dt >= end_of_day(end_date):
        return False
    return True


# =============================================================================
# Event -> item
# =============================================================================

def _repo_fields(repo_name: str) -> Dict[str, Any]:
    return {
        "repository_url": f"https://api.github.com/repos/{repo_name}",
        "repository": {
            "full_name": repo_name,
            "html_url": f"https://github.com/{repo_name}",
        },
    }


def _pr_fields(pr: Dict[str, Any], payload: Dict[str, Any], repo_name: str):
    pr_number = pr.get("number") or payload.get("number")
    html_url = pr.get("html_url") or f"https://github.com/{repo_name}/pull/{pr_number}"
    return pr_number, html_url


def transform_event_to_item(event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Turn one Events API event into an item; None for event types we don't show."""
    etype = event.get("type")
    payload = event.get("payload") or {}
    repo_name = str((event.get("repo") or {}).get("name") or "")
    actor = event.get("actor") or {}
    login = str(actor.get("login") or "")
    user = {
        "login": login,
        "avatar_url": actor.get("avatar_url"),
        "html_url": f"https://github.com/{login}",
    }
    common = {
        "event_id": event.get("id"),
        "created_at": event.get("created_at"),
        "user": user,
        "original": payload,
        "originalEventType": etype,
        **_repo_fields(repo_name),
    }

    if etype == "IssuesEvent" and payload.get("issue"):
        issue = payload["issue"]
        return {
            **common,
            "id": issue.get("id"),
            "html_url": issue.get("html_url"),
            "title": issue.get("title"),
            "updated_at": issue.get("updated_at"),
            "state": issue.get("state"),
            "body": issue.get("body"),
            "labels": issue.get("labels") or [],
            "closed_at": issue.get("closed_at"),
            "number": issue.get("number"),
            "assignee": issue.get("assignee"),
            "assignees": issue.get("assignees") or [],
            "pull_request": issue.get("pull_request"),
        }

    if etype == "PullRequestEvent" and payload.get("pull_request"):
        pr = payload["pull_request"]
        pr_number, html_url = _pr_fields(pr, payload, repo_name)
        action = payload.get("action") or "updated"
        return {
            **common,
            "id": pr.get("id"),
            "html_url": html_url,
            "title": pr.get("title") or f"Pull Request #{pr_number} {action}",
            "updated_at": pr.get("updated_at") or event.get("created_at"),
            "state": pr.get("state") or "open",
            "body": pr.get("body") or f"Pull request {action} by {login}",
            "labels": payload.get("labels") or pr.get("labels") or [],
            "closed_at": pr.get("closed_at"),
            "merged_at": pr.get("merged_at"),
            "merged": pr.get("merged"),
            "number": pr_number,
            "pull_request": {"merged_at": pr.get("merged_at"), "url": html_url},
        }

    if etype == "PullRequestReviewEvent" and payload.get("pull_request"):
        pr = payload["pull_request"]
        pr_number, html_url = _pr_fields(pr, payload, repo_name)
        pr_title = pr.get("title") or f"Pull Request #{pr_number}"
        return {
            **common,
            "id": pr.get("id"),
            "html_url": html_url,
            "title": f"Review on: {pr_title}",
            "updated_at": pr.get("updated_at") or event.get("created_at"),
            "state": pr.get("state") or "open",
            "body": pr.get("body") or f"Review by {login}",
            "labels": pr.get("labels") or [],
            "closed_at": pr.get("closed_at"),
            "merged_at": pr.get("merged_at"),
            "merged": pr.get("merged"),
            "number": pr_number,
            "pull_request": {"merged_at": pr.get("merged_at"), "url": html_url},
        }

    if etype == "IssueCommentEvent" and payload.get("comment") and payload.get("issue"):
        comment = payload["comment"]
        issue = payload["issue"]
        return {
            **common,
            "id": comment.get("id"),
            "html_url": comment.get("html_url"),
            "title": f"Comment on: {issue.get('title')}",
            "updated_at": comment.get("updated_at"),
            "state": issue.get("state"),
            "body": comment.get("body"),
            "labels": issue.get("labels") or [],
            "closed_at": issue.get("closed_at"),
            "number": issue.get("number"),
            "pull_request": issue.get("pull_request"),
        }

    if etype == "PullRequestReviewCommentEvent" and payload.get("comment") and payload.get("pull_request"):
        comment = payload["comment"]
        pr = payload["pull_request"]
        pr_number, html_url = _pr_fields(pr, payload, repo_name)
        pr_title = pr.get("title") or f"Pull Request #{pr_number}"
        return {
            **common,
            "id": comment.get("id"),
            "html_url": comment.get("html_url"),
            "title": f"Review comment on: {pr_title}",
            "updated_at": comment.get("updated_at"),
            "state": pr.get("state") or "open",
            "body": comment.get("body"),
            "labels": pr.get("labels") or [],
            "closed_at": pr.get("closed_at"),
            "merged_at": pr.get("merged_at"),
            "merged": pr.get("merged"),
            "number": pr_number,
            "pull_request": {"merged_at": pr.get("merged_at"), "url": html_url},
        }

    if etype == "PushEvent":
        branch = str(payload.get("ref") or "").replace("refs/heads/", "") or "main"
        commits = [c for c in (payload.get("commits") or []) if isinstance(c, dict)]
        distinct = int(payload.get("distinct_size") or 0)
        title = f"Pushed {distinct} commit{'' if distinct == 1 else 's'} to {branch}"
        if len(commits) > distinct:
            title += f" ({len(commits)} total)"
        lines = [f"- {(c.get('message') or 'No commit message').splitlines()[0]}" for c in commits[:5]]
        if len(commits) > 5:
            lines.append(f"... and {len(commits) - 5} more commits")
        return {
            **common,
            "id": event.get("id"),
            "html_url": f"https://github.com/{repo_name}/commits/{branch}",
            "title": title,
            "updated_at": event.get("created_at"),
            "state": "open",
            "body": "\n".join(lines),
            "labels": [],
        }

    return None


def process_raw_events(
    raw_events: Iterable[Dict[str, Any]],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Raw events -> items, keeping events created inside [start_date, end_date]."""
    items: List[Dict[str, Any]] = []
    for event in raw_events:
        if not _in_range(event.get("created_at"), start_date, end_date):
            continue
        item = transform_event_to_item(event)
        if item is not None:
            items.append(item)
    return items


def categorize_raw_search_items(
    raw_items: Iterable[Dict[str, Any]],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Date-filter search items on updated_at, drop untitled ones, de-duplicate by html_url."""
    seen = set()
    out: List[Dict[str, Any]] = []
    for item in raw_items:
        if not item.get("title"):
            _logger.warning("Skipping item with missing title: %s", item.get("html_url") or item.get("id"))
            continue
        if not _in_range(item.get("updated_at"), start_date, end_date):
            continue
        url = item.get("html_url")
        if url in seen:
            continue
        seen.add(url)
        out.append(item)
    return out
