"""
Pytest tests for pr_enrichment.py (placeholder detection + batch PR details enrichment).
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from gh_activity.cache.cache_structured import PR_DETAILS_COLLECTION
from gh_activity.common_github.api.pr_details_cached import PRDetailsCache
from gh_activity.common_types import PRDetailRecord
from gh_activity.conftest import FakeResponse, ManualClock
from gh_activity.pr_enrichment import (
    apply_pr_details,
    enrich_item,
    enrich_items_with_pr_details,
    needs_pr_enrichment,
    pr_api_url_for_item,
)


def _item(number, *, title=None, etype="PullRequestEvent", repo="acme/widgets"):
    return {
        "title": title or f"Pull Request #{number} opened",
        "html_url": f"https://github.com/{repo}/pull/{number}",
        "originalEventType": etype,
        "labels": [{"name": "from-event"}],
        "state": "open",
    }


def _api_path(number, repo="acme/widgets"):
    return f"/repos/{repo}/pulls/{number}"


def _pr_json(number, title):
    return {
        "number": number,
        "title": title,
        "state": "closed",
        "labels": [{"name": "bug"}],
        "merged": True,
        "merged_at": "2026-01-24T10:30:00Z",
        "base": {"repo": {"full_name": "acme/widgets"}},
    }


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def executor():
    ex = ThreadPoolExecutor(max_workers=2)
    yield ex
    ex.shutdown(wait=True)


@pytest.fixture
def pr_cache(client, structured_store, executor, clock):
    return PRDetailsCache(client, structured_store, executor=executor, clock=clock)


# ============================================================================
# Detection
# ============================================================================

@pytest.mark.parametrize("item,expected", [
    (_item(1), True),
    (_item(1, title="Pull Request #1 review_requested"), True),
    (_item(1, title="Add widget"), False),
    (_item(1, title="Review on: Pull Request #1", etype="PullRequestReviewEvent"), True),
    (_item(1, title="Review comment on: Pull Request #1", etype="PullRequestReviewCommentEvent"), True),
    (_item(1, title="Review on: Add widget", etype="PullRequestReviewEvent"), False),
    (_item(1, etype="IssuesEvent"), False),
    ({"title": "Pull Request #1 opened", "html_url": "https://github.com/a/b/pull/1"}, False),
])
def test_needs_pr_enrichment(item, expected):
    assert needs_pr_enrichment(item) is expected


def test_pr_api_url_for_item():
    assert pr_api_url_for_item(_item(42)) == "https://api.github.com/repos/acme/widgets/pulls/42"
    assert pr_api_url_for_item(_item(42, etype="IssuesEvent")) is None
    assert pr_api_url_for_item({"originalEventType": "PullRequestEvent", "html_url": "https://github.com/a/b/issues/1"}) is None


# ============================================================================
# Applying details
# ============================================================================

def _record(title="Add widget", labels=None):
    return PRDetailRecord(
        id="https://api.github.com/repos/acme/widgets/pulls/42", pr_number=42, repo_full_name="acme/widgets",
        title=title, state="closed", labels=labels if labels is not None else [{"name": "bug"}], merged=True,
    )


def test_apply_pr_details_keeps_action_suffix():
    out = apply_pr_details(_item(42, title="Pull Request #42 closed"), _record())
    assert out["title"] == "Add widget (closed)"
    assert out["state"] == "closed"
    assert out["merged"] is True
    assert out["labels"] == [{"name": "bug"}]


def test_apply_pr_details_review_titles():
    review = apply_pr_details(_item(42, title="Review on: Pull Request #42", etype="PullRequestReviewEvent"), _record())
    assert review["title"] == "Review on: Add widget"
    comment = apply_pr_details(
        _item(42, title="Review comment on: Pull Request #42", etype="PullRequestReviewCommentEvent"), _record()
    )
    assert comment["title"] == "Review comment on: Add widget"


def test_apply_pr_details_empty_labels_keep_item_labels():
    out = apply_pr_details(_item(42), _record(labels=[]))
    assert out["labels"] == [{"name": "from-event"}]


def test_apply_pr_details_does_not_mutate_input():
    item = _item(42)
    apply_pr_details(item, _record())
    assert item["title"] == "Pull Request #42 opened"


def test_enrich_item_fetches(pr_cache, fake_session):
    fake_session.routes[_api_path(42)] = FakeResponse(200, _pr_json(42, "Add widget"))
    assert enrich_item(_item(42), pr_cache)["title"] == "Add widget (opened)"


def test_enrich_item_leaves_real_titles_alone(pr_cache, fake_session):
    item = _item(42, title="Already titled")
    assert enrich_item(item, pr_cache) is item
    assert fake_session.calls == []


# ============================================================================
# Batch
# ============================================================================

def test_batch_cache_pass_then_serial_fetch(pr_cache, structured_store, fake_session, clock):
    cached = _record(title="Cached PR")
    cached.cached_at_ms = int(clock.now * 1000)
    structured_store.put(PR_DETAILS_COLLECTION, cached.to_dict())
    fake_session.routes[_api_path(7)] = FakeResponse(200, _pr_json(7, "Seven"))
    fake_session.routes[_api_path(8)] = FakeResponse(200, _pr_json(8, "Eight"))

    items = [_item(42), _item(7), {"title": "Issue", "originalEventType": "IssuesEvent"}, _item(8)]
    partials, progress, sleeps = [], [], []

    result = enrich_items_with_pr_details(
        items,
        pr_cache,
        on_progress=lambda cur, total: progress.append((cur, total)),
        on_partial_result=partials.append,
        delay_s=0.25,
        sleep=sleeps.append,
    )

    assert len(partials) == 1
    assert [i["title"] for i in partials[0]] == [
        "Cached PR (opened)", "Pull Request #7 opened", "Issue", "Pull Request #8 opened",
    ]
    assert [i["title"] for i in result] == ["Cached PR (opened)", "Seven (opened)", "Issue", "Eight (opened)"]
    assert progress == [(1, 2), (2, 2)]
    assert sleeps == [0.25]
    assert fake_session.calls_to(_api_path(42)) == []
    assert items[1]["title"] == "Pull Request #7 opened"


def test_batch_without_token_is_cache_only(anon_client, structured_store, executor, clock, fake_session):
    cache = PRDetailsCache(anon_client, structured_store, executor=executor, clock=clock)
    fake_session.routes[_api_path(7)] = FakeResponse(200, _pr_json(7, "Seven"))
    partials = []

    result = enrich_items_with_pr_details([_item(7)], cache, on_partial_result=partials.append, sleep=lambda _s: None)

    assert result[0]["title"] == "Pull Request #7 opened"
    assert len(partials) == 1
    assert fake_session.calls == []


def test_batch_failed_fetch_keeps_item(pr_cache, fake_session):
    fake_session.routes[_api_path(7)] = FakeResponse(500, {"message": "boom"})

    result = enrich_items_with_pr_details([_item(7)], pr_cache, sleep=lambda _s: None)

    assert result[0]["title"] == "Pull Request #7 opened"
