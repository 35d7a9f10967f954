"""
Pytest tests for search.py (validation, sequential per-user fetch, error mapping, result reuse).
"""

import pytest
import requests

from gh_activity.common_github.api.users_cached import UserIdentityCached
from gh_activity.common_types import ApiMode, SearchError, SearchErrorKind
from gh_activity.conftest import FakeResponse, user_payload
from gh_activity.search import (
    OFFLINE_MESSAGE,
    SearchOptions,
    SearchParams,
    create_search_cache_params,
    is_cache_valid,
    perform_combined_search,
    perform_search,
    validate_search_params,
)
from gh_activity.username_cache import UsernameCacheStore

START, END = "2026-01-01", "2026-01-31"


def _search_item(n, *, updated_at="2026-01-20T00:00:00Z"):
    return {
        "id": n,
        "html_url": f"https://github.com/acme/widgets/issues/{n}",
        "title": f"Issue {n}",
        "updated_at": updated_at,
        "state": "open",
    }


def _raw_event(eid, *, created_at="2026-01-20T00:00:00Z"):
    return {
        "id": str(eid),
        "type": "IssuesEvent",
        "actor": {"login": "alice"},
        "repo": {"name": "acme/widgets"},
        "payload": {"issue": {"id": eid, "title": f"Event {eid}", "html_url": f"https://github.com/acme/widgets/issues/{eid}"}},
        "created_at": created_at,
    }


@pytest.fixture
def username_store():
    return UsernameCacheStore()


@pytest.fixture
def users(client):
    return UserIdentityCached(client)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def options(sleeps):
    return SearchOptions(sleep=sleeps.append)


def _run(params, client, username_store, users, options):
    return perform_search(params, client, username_store, users, options)


# ============================================================================
# Parameter validation
# ============================================================================

def test_validate_search_params_ok():
    assert validate_search_params(SearchParams("alice", START, END)) == []


@pytest.mark.parametrize("params,message", [
    (SearchParams("  ", START, END), "Please enter a GitHub username"),
    (SearchParams("alice", "", END), "Please select both start and end dates"),
    (SearchParams("alice", "2026/01/01", END), "Invalid start date format. Please use YYYY-MM-DD"),
    (SearchParams("alice", START, "2026-13-01"), "Invalid end date format. Please use YYYY-MM-DD"),
    (SearchParams("alice", END, START), "Start date must be before end date"),
])
def test_validate_search_params_errors(params, message):
    assert message in validate_search_params(params)


def test_offline_check():
    assert validate_search_params(SearchParams("alice", START, END), is_online=lambda: False) == [OFFLINE_MESSAGE]


def test_invalid_params_raise_before_network(client, fake_session, username_store, users, options):
    with pytest.raises(SearchError) as exc:
        _run(SearchParams("alice, alice", START, END), client, username_store, users, options)
    assert exc.value.kind == SearchErrorKind.VALIDATION
    assert exc.value.messages == ["Duplicate usernames found: alice"]
    assert fake_session.calls == []


# ============================================================================
# Username validation
# ============================================================================

def test_unknown_usernames_validated_once(client, fake_session, username_store, users, options):
    fake_session.routes["/users/alice"] = FakeResponse(200, user_payload("alice"))
    fake_session.routes["/search/issues"] = FakeResponse(200, {"total_count": 1, "items": [_search_item(1)]})

    _run(SearchParams("alice", START, END), client, username_store, users, options)
    _run(SearchParams("ALICE", START, END), client, username_store, users, options)

    assert len(fake_session.calls_to("/users/alice")) == 1
    assert "alice" in username_store.cache.validated
    assert username_store.cache.avatar_urls["alice"] == "https://avatars.githubusercontent.com/alice"
    assert "alice" in username_store.cache.last_fetched


def test_nonexistent_username_cached_as_invalid(client, fake_session, username_store, users, options):
    with pytest.raises(SearchError) as exc:
        _run(SearchParams("ghost", START, END), client, username_store, users, options)
    assert exc.value.kind == SearchErrorKind.INVALID_USERNAME
    assert exc.value.messages == ["Validation failed:\nghost: Username not found on GitHub"]
    assert "ghost" in username_store.cache.invalid

    fake_session.calls.clear()
    with pytest.raises(SearchError) as exc:
        _run(SearchParams("ghost, alice", START, END), client, username_store, users, options)
    assert exc.value.messages == ["Invalid GitHub username: ghost"]
    assert fake_session.calls == []


def test_rate_limited_validation_is_not_cached_as_invalid(client, fake_session, username_store, users, options):
    fake_session.routes["/users/alice"] = FakeResponse(403, {"message": "API rate limit exceeded"})

    with pytest.raises(SearchError) as exc:
        _run(SearchParams("alice", START, END), client, username_store, users, options)

    assert exc.value.kind == SearchErrorKind.RATE_LIMITED
    assert exc.value.username == "alice"
    assert "alice" not in username_store.cache.invalid


# ============================================================================
# Fetching
# ============================================================================

def test_search_mode_progress_and_items(client, fake_session, username_store, users, options):
    username_store.add_validated(["alice"])
    fake_session.routes["/search/issues"] = FakeResponse(
        200, {"total_count": 2, "items": [_search_item(1), _search_item(2, updated_at="2025-06-01T00:00:00Z")]}
    )
    messages = []
    options.on_progress = messages.append

    result = _run(SearchParams("alice", START, END), client, username_store, users, options)

    assert [i["title"] for i in result.items] == ["Issue 1"]
    assert result.total_count == 2
    assert result.processed_usernames == ["alice"]
    assert messages == [
        "Validating usernames...",
        "Starting search API...",
        "Fetching data for alice...",
        "Found 2 items for alice",
        "Successfully loaded 2 records!",
    ]
    assert fake_session.calls[0]["params"]["q"] == f"author:alice updated:{START}..{END}"


def test_requests_are_spaced_between_calls_only(client, fake_session, username_store, users, options, sleeps):
    username_store.add_validated(["alice", "bob"])
    fake_session.routes["/search/issues"] = FakeResponse(200, {"total_count": 0, "items": []})

    _run(SearchParams("alice, bob", START, END), client, username_store, users, options)
    assert sleeps == [0.5]


def test_combined_search_hits_both_endpoints(client, fake_session, username_store, users, options, sleeps):
    username_store.add_validated(["alice", "bob"])
    fake_session.routes["/search/issues"] = FakeResponse(200, {"total_count": 1, "items": [_search_item(9)]})
    fake_session.routes["/users/alice/events"] = [FakeResponse(200, [_raw_event(1)]), FakeResponse(200, [])]
    fake_session.routes["/users/bob/events"] = FakeResponse(200, [])

    result = perform_combined_search(SearchParams("alice, bob", START, END), client, username_store, users, options)

    assert len(sleeps) == 3
    assert result.total_count == 3
    assert [i["title"] for i in result.items] == ["Event 1", "Issue 9"]


def test_events_pagination_ceiling(client, fake_session, username_store, users, options):
    username_store.add_validated(["alice"])

    def pages(**kw):
        page = int(kw["params"]["page"])
        return FakeResponse(200, [_raw_event(page * 10 + i) for i in range(2)])

    fake_session.routes["/users/alice/events"] = pages

    result = _run(SearchParams("alice", START, END, ApiMode.EVENTS), client, username_store, users, options)

    assert [c["params"]["page"] for c in fake_session.calls_to("/users/alice/events")] == [1, 2, 3]
    assert len(result.raw_events) == 6
    assert result.truncated_usernames == []


def test_events_stop_once_older_than_start(client, fake_session, username_store, users, options):
    username_store.add_validated(["alice"])
    fake_session.routes["/users/alice/events"] = FakeResponse(
        200, [_raw_event(1), _raw_event(2, created_at="2025-12-15T00:00:00Z")]
    )

    result = _run(SearchParams("alice", START, END, ApiMode.EVENTS), client, username_store, users, options)

    assert len(fake_session.calls_to("/users/alice/events")) == 1
    assert result.total_count == 2
    assert [i["title"] for i in result.items] == ["Event 1"]


def test_events_pagination_limit_returns_partial(client, fake_session, username_store, users, options):
    username_store.add_validated(["alice"])
    fake_session.routes["/users/alice/events"] = [
        FakeResponse(200, [_raw_event(1)]),
        FakeResponse(422, {"message": "In order to keep the API fast for everyone, pagination is limited for this resource."}),
    ]

    result = _run(SearchParams("alice", START, END, ApiMode.EVENTS), client, username_store, users, options)

    assert len(result.raw_events) == 1
    assert result.truncated_usernames == ["alice"]


def test_vanished_user_demoted_to_invalid(client, fake_session, username_store, users, options):
    username_store.add_validated(["alice"])

    with pytest.raises(SearchError) as exc:
        _run(SearchParams("alice", START, END, ApiMode.EVENTS), client, username_store, users, options)

    assert exc.value.kind == SearchErrorKind.INVALID_USERNAME
    assert exc.value.messages == ["Failed to fetch data for alice: GitHub API error: 404 Not Found"]
    assert "alice" in username_store.cache.invalid
    assert "alice" not in username_store.cache.validated


def test_network_failure_stops_batch(client, fake_session, username_store, users, options):
    username_store.add_validated(["alice", "bob"])
    fake_session.routes["/users/alice/events"] = requests.exceptions.ConnectionError("down")
    fake_session.routes["/users/bob/events"] = FakeResponse(200, [])

    with pytest.raises(SearchError) as exc:
        _run(SearchParams("alice, bob", START, END, ApiMode.EVENTS), client, username_store, users, options)

    assert exc.value.kind == SearchErrorKind.NETWORK
    assert exc.value.username == "alice"
    assert fake_session.calls_to("/users/bob/events") == []
    assert "alice" in username_store.cache.validated


def test_server_error_is_remote(client, fake_session, username_store, users, options):
    username_store.add_validated(["alice"])
    fake_session.routes["/search/issues"] = FakeResponse(500, {"message": "boom"})

    with pytest.raises(SearchError) as exc:
        _run(SearchParams("alice", START, END), client, username_store, users, options)
    assert exc.value.kind == SearchErrorKind.REMOTE


# ============================================================================
# Result reuse
# ============================================================================

def test_search_cache_params_round_trip():
    params = SearchParams("alice", START, END, ApiMode.EVENTS)
    last = create_search_cache_params(params, now_ms=1_000)

    assert last == {"username": "alice", "start_date": START, "end_date": END, "api_mode": "events", "timestamp": 1_000}
    assert is_cache_valid(params, last, now_ms=1_000 + 3_599_999)
    assert not is_cache_valid(params, last, now_ms=1_000 + 3_600_000)
    assert not is_cache_valid(SearchParams("bob", START, END), last, now_ms=2_000)
    assert not is_cache_valid(params, None, now_ms=2_000)
    assert not is_cache_valid(params, {"username": "alice", "timestamp": "x"}, now_ms=2_000)
