"""
Pytest tests for ActivityContext (wiring, search + persist, reset).
"""

import pytest

from gh_activity.cache.cache_flat import FORM_SETTINGS_KEY, LAST_SEARCH_PARAMS_KEY
from gh_activity.cache.cache_storage import EVENTS_DATASET_KEY, SEARCH_ITEMS_DATASET_KEY
from gh_activity.common import ActivityConfig
from gh_activity.common_types import ApiMode, SearchError, SearchErrorKind
from gh_activity.conftest import FakeResponse, FakeSession, user_payload
from gh_activity.context import ActivityContext
from gh_activity.search import OFFLINE_MESSAGE, SearchParams

START, END = "2026-01-01", "2026-01-31"


def _routes():
    return {
        "/users/alice": FakeResponse(200, user_payload("alice")),
        "/search/issues": FakeResponse(200, {"total_count": 1, "items": [{
            "id": 1,
            "html_url": "https://github.com/acme/widgets/issues/1",
            "title": "Issue 1",
            "updated_at": "2026-01-10T00:00:00Z",
        }]}),
        "/users/alice/events": FakeResponse(200, []),
    }


def _config(tmp_path, **overrides):
    overrides.setdefault("token", "tok")
    overrides.setdefault("request_delay_s", 0)
    overrides.setdefault("enrichment_delay_s", 0)
    return ActivityConfig(cache_dir=tmp_path, **overrides)


@pytest.fixture
def session():
    return FakeSession(_routes())


@pytest.fixture
def ctx(tmp_path, session):
    context = ActivityContext.from_config(_config(tmp_path), session=session, in_memory=True)
    yield context
    context.close()


def test_search_and_store_persists_dataset(ctx):
    progress = []

    outcome = ctx.search_and_store(SearchParams("alice", START, END), on_progress=progress.append)

    assert outcome.saved is True
    assert [i["title"] for i in outcome.result.items] == ["Issue 1"]
    stored = ctx.storage.retrieve(SEARCH_ITEMS_DATASET_KEY)
    assert stored is not None
    assert stored.items[0]["title"] == "Issue 1"
    assert stored.metadata.usernames == ["alice"]
    assert stored.metadata.api_mode == ApiMode.SEARCH
    assert ctx.storage.retrieve(EVENTS_DATASET_KEY) is None
    assert ctx.storage.flat.get_json(LAST_SEARCH_PARAMS_KEY)["username"] == "alice"
    assert progress[0] == "Validating usernames..."


def test_combined_search_stores_both_datasets(ctx):
    outcome = ctx.search_and_store(SearchParams("alice", START, END, ApiMode.COMBINED))

    assert outcome.saved is True
    assert ctx.storage.retrieve(EVENTS_DATASET_KEY) is not None
    assert ctx.storage.retrieve(SEARCH_ITEMS_DATASET_KEY) is not None


def test_username_cache_survives_new_context(tmp_path):
    cfg = _config(tmp_path)
    with ActivityContext.from_config(cfg, session=FakeSession(_routes())) as first:
        first.search_and_store(SearchParams("alice", START, END))

    session = FakeSession(_routes())
    with ActivityContext.from_config(cfg, session=session) as second:
        assert "alice" in second.username_store.cache.validated
        second.search_and_store(SearchParams("alice", START, END))
    assert session.calls_to("/users/alice") == []


def test_unsaved_results_still_returned(tmp_path, session):
    cfg = _config(tmp_path, structured_enabled=False, flat_store_max_bytes=16)
    with ActivityContext.from_config(cfg, session=session, in_memory=True) as ctx:
        outcome = ctx.search_and_store(SearchParams("alice", START, END))

    assert outcome.saved is False
    assert outcome.result.total_count == 1


def test_search_errors_propagate(ctx):
    with pytest.raises(SearchError) as exc:
        ctx.search_and_store(SearchParams("ghost", START, END))
    assert exc.value.kind == SearchErrorKind.INVALID_USERNAME


def test_enrich_uses_context_cache(ctx, session):
    session.routes["/repos/acme/widgets/pulls/5"] = FakeResponse(200, {"number": 5, "title": "Five", "state": "open"})
    item = {
        "title": "Pull Request #5 opened",
        "html_url": "https://github.com/acme/widgets/pull/5",
        "originalEventType": "PullRequestEvent",
    }

    assert ctx.enrich([item])[0]["title"] == "Five (opened)"
    assert ctx.pr_details.size() == 1


def test_clear_all_keep_token(ctx):
    ctx.search_and_store(SearchParams("alice", START, END))
    ctx.storage.flat.set_json(FORM_SETTINGS_KEY, {"githubToken": "saved-tok", "username": "alice"})

    assert ctx.clear_all_keep_token() == "saved-tok"

    assert ctx.storage.retrieve(SEARCH_ITEMS_DATASET_KEY) is None
    assert ctx.storage.flat.get_json(FORM_SETTINGS_KEY) == {"githubToken": "saved-tok"}
    assert ctx.username_store.cache.validated == frozenset()
    assert ctx.pr_details.size() == 0


def test_search_fails_fast_when_offline(ctx, session, network_down):
    session.routes["/rate_limit"] = network_down

    with pytest.raises(SearchError) as exc:
        ctx.search_and_store(SearchParams("alice", START, END))

    assert exc.value.kind == SearchErrorKind.VALIDATION
    assert OFFLINE_MESSAGE in exc.value.messages
    assert session.calls_to("/users/alice") == []


def test_online_check_can_be_disabled(tmp_path, session, network_down):
    session.routes["/rate_limit"] = network_down
    cfg = _config(tmp_path, check_online=False)
    with ActivityContext.from_config(cfg, session=session, in_memory=True) as ctx:
        assert ctx.search_and_store(SearchParams("alice", START, END)).saved is True
    assert session.calls_to("/rate_limit") == []
