# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Shared pytest fixtures.

The GitHub client is always real; only the `requests` session underneath is fake, so status
code mapping, stats and token headers are exercised end to end without touching the network.
"""

import json
import threading
import urllib.parse
from typing import Any, Callable, Dict, List, Optional, Union

import pytest
import requests

from gh_activity.cache.cache_base import MemoryFlatBackend
from gh_activity.cache.cache_flat import QuotaAwareFlatStore
from gh_activity.cache.cache_storage import EventsStorage
from gh_activity.cache.cache_structured import StructuredStore
from gh_activity.common_github import GitHubAPIClient


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        json_data: Any = None,
        *,
        reason: str = "",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self._json = json_data
        self.reason = reason or {200: "OK", 404: "Not Found", 403: "Forbidden", 422: "Unprocessable Entity",
                                 500: "Internal Server Error"}.get(status_code, "")
        self.headers = dict(headers or {})

    @property
    def text(self) -> str:
        return json.dumps(self._json) if self._json is not None else ""

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no json body")
        return self._json


Route = Union[FakeResponse, Exception, Callable[..., FakeResponse], List[Any]]


class FakeSession:
    """Stands in for requests.Session. Routes are keyed by URL path.

    A route is a FakeResponse, an exception to raise, a callable(url, params, headers) that
    returns a FakeResponse, or a list of those consumed in order (the last one repeats).
    """

    def __init__(self, routes: Optional[Dict[str, Route]] = None):
        self.routes: Dict[str, Route] = dict(routes or {})
        self.calls: List[Dict[str, Any]] = []
        self._mu = threading.Lock()
        self.closed = False

    def calls_to(self, path: str) -> List[Dict[str, Any]]:
        with self._mu:
            return [c for c in self.calls if c["path"] == path]

    def get(self, url, headers=None, params=None, timeout=None):
        path = urllib.parse.urlparse(url).path
        with self._mu:
            self.calls.append({"path": path, "params": dict(params or {}), "headers": dict(headers or {})})
            route = self.routes.get(path)
            if isinstance(route, list):
                route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            return FakeResponse(404, {"message": "Not Found"})
        if isinstance(route, Exception):
            raise route
        if callable(route) and not isinstance(route, FakeResponse):
            return route(url=url, params=params, headers=headers)
        return route

    def close(self):
        self.closed = True


class ManualClock:
    """Settable time source (seconds)."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


def user_payload(login: str) -> Dict[str, Any]:
    return {
        "login": login,
        "id": abs(hash(login)) % 100000,
        "avatar_url": f"https://avatars.githubusercontent.com/{login}",
        "html_url": f"https://github.com/{login}",
    }


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def client(fake_session):
    return GitHubAPIClient("test-token", session=fake_session)


@pytest.fixture
def anon_client(fake_session):
    return GitHubAPIClient(None, session=fake_session)


@pytest.fixture
def flat_store():
    return QuotaAwareFlatStore(MemoryFlatBackend())


@pytest.fixture
def structured_store(tmp_path):
    store = StructuredStore(tmp_path / "activity.sqlite")
    yield store
    store.close()


@pytest.fixture
def disabled_structured_store():
    return StructuredStore(None, enabled=False)


@pytest.fixture
def storage(structured_store, flat_store):
    return EventsStorage(structured_store, flat_store)


@pytest.fixture
def flat_only_storage(disabled_structured_store, flat_store):
    return EventsStorage(disabled_structured_store, flat_store)


@pytest.fixture
def network_down():
    return requests.exceptions.ConnectionError("connection refused")
