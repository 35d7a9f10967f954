"""
Pytest tests for the GitHubAPIClient (status mapping, token headers, stats).
"""

import pytest
import requests

from gh_activity.common_github import (
    GitHubAPIClient,
    GitHubAPIError,
    GitHubNetworkError,
    GitHubNotFoundError,
    GitHubPaginationLimitError,
    GitHubRateLimitError,
)
from gh_activity.conftest import FakeResponse, FakeSession


def test_token_header_sent(client, fake_session):
    fake_session.routes["/users/octocat"] = FakeResponse(200, {"login": "octocat"})

    assert client.get_user("octocat") == {"login": "octocat"}
    assert fake_session.calls[0]["headers"]["Authorization"] == "token test-token"


def test_anonymous_client_sends_no_authorization(anon_client, fake_session):
    fake_session.routes["/users/octocat"] = FakeResponse(200, {"login": "octocat"})

    anon_client.get_user("octocat")
    assert "Authorization" not in fake_session.calls[0]["headers"]
    assert anon_client.has_token() is False


def test_per_call_token_overrides_client_token(anon_client, fake_session):
    url = "https://api.github.com/repos/o/r/pulls/1"
    fake_session.routes["/repos/o/r/pulls/1"] = FakeResponse(200, {"number": 1})

    anon_client.get_pull_request(url, token="other")
    assert fake_session.calls[0]["headers"]["Authorization"] == "token other"


def test_not_found_maps_to_typed_error(client, fake_session):
    with pytest.raises(GitHubNotFoundError) as exc:
        client.get_user("ghost")
    assert exc.value.status_code == 404
    assert str(exc.value) == "GitHub API error: 404 Not Found"


@pytest.mark.parametrize("resp", [
    FakeResponse(403, {"message": "API rate limit exceeded for 1.2.3.4."}),
    FakeResponse(403, {"message": "Forbidden"}, headers={"X-RateLimit-Remaining": "0"}),
    FakeResponse(429, {"message": "slow down"}),
])
def test_rate_limit_detection(client, fake_session, resp):
    fake_session.routes["/users/octocat"] = resp
    with pytest.raises(GitHubRateLimitError):
        client.get_user("octocat")


def test_plain_forbidden_is_generic_error(client, fake_session):
    fake_session.routes["/users/octocat"] = FakeResponse(403, {"message": "Resource not accessible"})
    with pytest.raises(GitHubAPIError) as exc:
        client.get_user("octocat")
    assert not isinstance(exc.value, GitHubRateLimitError)
    assert exc.value.status_code == 403


def test_pagination_limit_error(client, fake_session):
    fake_session.routes["/users/octocat/events"] = FakeResponse(
        422, {"message": "In order to keep the API fast for everyone, pagination is limited for this resource."}
    )
    with pytest.raises(GitHubPaginationLimitError):
        client.get_user_events_page("octocat", page=4)


def test_transport_failure_wrapped(client, fake_session):
    fake_session.routes["/users/octocat"] = requests.exceptions.ConnectionError("boom")
    with pytest.raises(GitHubNetworkError):
        client.get_user("octocat")
    assert client.get_rest_call_stats()["error_total"] == 1


def test_search_issues_passes_query(client, fake_session):
    fake_session.routes["/search/issues"] = FakeResponse(200, {"total_count": 0, "items": []})

    client.search_issues("author:octocat updated:2026-01-01..2026-01-31")
    assert fake_session.calls[0]["params"]["q"] == "author:octocat updated:2026-01-01..2026-01-31"
    assert fake_session.calls[0]["params"]["per_page"] == 100


def test_rest_stats_and_rate_limit_capture(client, fake_session):
    fake_session.routes["/users/a"] = FakeResponse(
        200, {"login": "a"}, headers={"X-RateLimit-Remaining": "4999", "X-RateLimit-Limit": "5000", "X-RateLimit-Reset": "1"}
    )
    client.get_user("a")
    with pytest.raises(GitHubNotFoundError):
        client.get_user("b")

    stats = client.get_rest_call_stats()
    assert stats["total"] == 2
    assert stats["by_label"] == {"users": 2}
    assert stats["success_total"] == 1
    assert stats["errors_by_status"] == {404: 1}
    assert client.get_core_rate_limit_info()["remaining"] == 4999


def test_stats_are_per_client():
    first = GitHubAPIClient("t", session=FakeSession({"/users/a": FakeResponse(200, {})}))
    second = GitHubAPIClient("t", session=FakeSession())
    first.get_user("a")
    assert first.get_rest_call_stats()["total"] == 1
    assert second.get_rest_call_stats()["total"] == 0


def test_invalid_json_is_api_error(client, fake_session):
    fake_session.routes["/users/a"] = FakeResponse(200, None)
    with pytest.raises(GitHubAPIError):
        client.get_user("a")


def test_is_online_accepts_any_http_response(client, fake_session):
    # no /rate_limit route: the fake answers 404, which still proves reachability
    assert client.is_online() is True
    assert fake_session.calls_to("/rate_limit") != []


def test_is_online_false_on_transport_failure(client, fake_session, network_down):
    fake_session.routes["/rate_limit"] = network_down
    assert client.is_online() is False
