# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Username validation cache.

Remembers which GitHub usernames are known to exist (`validated`) and which are known not to
(`invalid`), so a search only hits GET /users/{username} for names it has never seen.

Rules:
- usernames are normalized (trimmed, lower-cased) before they enter either set
- the two sets are always disjoint: adding to one removes from the other
- an invalid username is never re-validated automatically
- every operation is pure and returns a new UsernameCache
- persisted state that doesn't decode to the expected shape reads as empty

Also here: GitHub username syntax rules (`validate_github_username_format`) and parsing of the
comma-separated username list typed by the user (`validate_username_list`).
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, TYPE_CHECKING

from .common import USERNAME_STALE_AFTER_S
from .cache.cache_flat import USERNAME_CACHE_KEY

if TYPE_CHECKING:  # pragma: no cover
    from .cache.cache_storage import EventsStorage

_logger = logging.getLogger(__name__)

MAX_USERNAME_LENGTH = 39
MAX_USERNAMES_PER_REQUEST = 15
MAX_USERNAME_LIST_CHARS = 250

RESERVED_USERNAMES = frozenset({
    "about", "admin", "api", "blog", "contact", "dashboard", "enterprise", "explore",
    "features", "github", "help", "login", "logout", "marketplace", "new", "notifications",
    "organizations", "pricing", "root", "security", "settings", "signup", "site", "support",
    "system", "www",
})

_USERNAME_CHARS_RE = re.compile(r"^[A-Za-z0-9-]+$")


def normalize_username(username: Any) -> str:
    return str(username or "").strip().lower()


def _as_set(value: Any) -> FrozenSet[str]:
    """Set-like input -> frozenset of normalized names; anything else reads as empty."""
    if isinstance(value, (set, frozenset)):
        return frozenset(n for n in (normalize_username(u) for u in value) if n)
    return frozenset()


def _as_int_map(value: Any) -> Dict[str, int]:
    if not isinstance(value, Mapping):
        return {}
    out: Dict[str, int] = {}
    for k, v in value.items():
        try:
            out[normalize_username(k)] = int(v)
        except (TypeError, ValueError):
            continue
    return out


def _now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# Set helpers (stateless)
# =============================================================================

@dataclass(frozen=True)
class UsernameCategories:
    need_validation: List[str]
    already_valid: List[str]
    already_invalid: List[str]


def categorize_usernames(usernames: Iterable[str], validated: Any, invalid: Any) -> UsernameCategories:
    """Split `usernames` into never-seen / known-valid / known-invalid (input spelling kept)."""
    valid_set = _as_set(validated)
    invalid_set = _as_set(invalid)
    need, ok, bad = [], [], []
    for u in usernames:
        n = normalize_username(u)
        if n in valid_set:
            ok.append(u)
        elif n in invalid_set:
            bad.append(u)
        else:
            need.append(u)
    return UsernameCategories(need_validation=need, already_valid=ok, already_invalid=bad)


def needs_validation(usernames: Iterable[str], validated: Any, invalid: Any) -> bool:
    return bool(categorize_usernames(usernames, validated, invalid).need_validation)


def get_invalid_usernames(usernames: Iterable[str], invalid: Any) -> List[str]:
    invalid_set = _as_set(invalid)
    return [u for u in usernames if normalize_username(u) in invalid_set]


def is_stale(
    username: str,
    last_fetched: Any,
    max_age_ms: int = USERNAME_STALE_AFTER_S * 1000,
    *,
    now_ms: Optional[int] = None,
) -> bool:
    """True when the username's data is older than `max_age_ms` or was never fetched."""
    ts = _as_int_map(last_fetched).get(normalize_username(username))
    if ts is None:
        return True
    now = _now_ms() if now_ms is None else int(now_ms)
    return (now - ts) > int(max_age_ms)


def get_stale_usernames(
    usernames: Iterable[str],
    last_fetched: Any,
    max_age_ms: int = USERNAME_STALE_AFTER_S * 1000,
    *,
    now_ms: Optional[int] = None,
) -> List[str]:
    return [u for u in usernames if is_stale(u, last_fetched, max_age_ms, now_ms=now_ms)]


def get_cached_avatar_urls(usernames: Iterable[str], avatar_urls: Any) -> Dict[str, str]:
    """{username: avatar_url} for the names we have an avatar for."""
    if not isinstance(avatar_urls, Mapping):
        return {}
    norm = {normalize_username(k): v for k, v in avatar_urls.items() if isinstance(v, str) and v}
    return {u: norm[normalize_username(u)] for u in usernames if normalize_username(u) in norm}


# =============================================================================
# UsernameCache (immutable state)
# =============================================================================

@dataclass(frozen=True)
class UsernameCache:
    validated: FrozenSet[str] = frozenset()
    invalid: FrozenSet[str] = frozenset()
    last_fetched: Mapping[str, int] = field(default_factory=dict)
    avatar_urls: Mapping[str, str] = field(default_factory=dict)

    def add_validated(self, usernames: Iterable[str]) -> "UsernameCache":
        names = {n for n in (normalize_username(u) for u in usernames) if n}
        return replace(self, validated=self.validated | names, invalid=self.invalid - names)

    def add_invalid(self, usernames: Iterable[str]) -> "UsernameCache":
        names = {n for n in (normalize_username(u) for u in usernames) if n}
        return replace(self, invalid=self.invalid | names, validated=self.validated - names)

    def remove_validated(self, username: str) -> "UsernameCache":
        return replace(self, validated=self.validated - {normalize_username(username)})

    def remove_invalid(self, username: str) -> "UsernameCache":
        """Explicitly forget a known-invalid name so the next search re-validates it."""
        return replace(self, invalid=self.invalid - {normalize_username(username)})

    def record_fetched(self, usernames: Iterable[str], *, now_ms: Optional[int] = None) -> "UsernameCache":
        now = _now_ms() if now_ms is None else int(now_ms)
        stamps = dict(self.last_fetched)
        stamps.update({normalize_username(u): now for u in usernames if normalize_username(u)})
        return replace(self, last_fetched=stamps)

    def with_avatars(self, avatar_urls: Mapping[str, str]) -> "UsernameCache":
        merged = dict(self.avatar_urls)
        merged.update({normalize_username(k): str(v) for k, v in avatar_urls.items() if v})
        return replace(self, avatar_urls=merged)

    def categorize(self, usernames: Iterable[str]) -> UsernameCategories:
        return categorize_usernames(usernames, self.validated, self.invalid)

    def is_stale(self, username: str, max_age_ms: int = USERNAME_STALE_AFTER_S * 1000, *, now_ms: Optional[int] = None) -> bool:
        return is_stale(username, self.last_fetched, max_age_ms, now_ms=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validated": sorted(self.validated),
            "invalid": sorted(self.invalid),
            "last_fetched": dict(self.last_fetched),
            "avatar_urls": dict(self.avatar_urls),
        }

    @classmethod
    def from_dict(cls, d: Any) -> "UsernameCache":
        """Decode persisted state. Malformed parts read as empty; overlap resolves to validated."""
        if not isinstance(d, Mapping):
            return cls()
        validated = _as_set({u for u in d["validated"] if isinstance(u, str)}) if isinstance(d.get("validated"), list) else frozenset()
        invalid = _as_set({u for u in d["invalid"] if isinstance(u, str)}) if isinstance(d.get("invalid"), list) else frozenset()
        avatars = d.get("avatar_urls")
        return cls(
            validated=validated,
            invalid=invalid - validated,
            last_fetched=_as_int_map(d.get("last_fetched")),
            avatar_urls={normalize_username(k): v for k, v in avatars.items() if isinstance(v, str)}
            if isinstance(avatars, Mapping) else {},
        )


class UsernameCacheStore:
    """Process-wide holder for the current UsernameCache, persisted through EventsStorage.

    Mutators swap in a new immutable UsernameCache under a lock and save it (best effort).
    """

    def __init__(self, storage: Optional["EventsStorage"] = None, *, key: str = USERNAME_CACHE_KEY):
        self._storage = storage
        self._key = key
        self._mu = threading.Lock()
        self._cache = UsernameCache()

    @property
    def cache(self) -> UsernameCache:
        with self._mu:
            return self._cache

    def load(self) -> UsernameCache:
        if self._storage is None:
            return self.cache
        raw = self._storage.retrieve_metadata(self._key)
        with self._mu:
            self._cache = UsernameCache.from_dict(raw)
            return self._cache

    def save(self) -> bool:
        if self._storage is None:
            return True
        saved = self._storage.store_metadata(self._key, self.cache.to_dict())
        if not saved:
            _logger.warning("Username cache not saved")
        return saved

    def _update(self, fn) -> UsernameCache:
        with self._mu:
            self._cache = fn(self._cache)
            new = self._cache
        self.save()
        return new

    def add_validated(self, usernames: Iterable[str]) -> UsernameCache:
        names = list(usernames)
        return self._update(lambda c: c.add_validated(names))

    def add_invalid(self, usernames: Iterable[str]) -> UsernameCache:
        names = list(usernames)
        return self._update(lambda c: c.add_invalid(names))

    def remove_validated(self, username: str) -> UsernameCache:
        return self._update(lambda c: c.remove_validated(username))

    def remove_invalid(self, username: str) -> UsernameCache:
        return self._update(lambda c: c.remove_invalid(username))

    def record_fetched(self, usernames: Iterable[str], *, now_ms: Optional[int] = None) -> UsernameCache:
        names = list(usernames)
        return self._update(lambda c: c.record_fetched(names, now_ms=now_ms))

    def add_avatars(self, avatar_urls: Mapping[str, str]) -> UsernameCache:
        avatars = dict(avatar_urls)
        return self._update(lambda c: c.with_avatars(avatars))


# =============================================================================
# Username syntax
# =============================================================================

@dataclass(frozen=True)
class UsernameFormatResult:
    is_valid: bool
    error: Optional[str] = None


@dataclass
class UsernameListResult:
    usernames: List[str]
    errors: List[str]


def validate_github_username_format(username: Any) -> UsernameFormatResult:
    """GitHub username syntax: 1-39 chars, letters/digits/single inner hyphens, not reserved."""
    if not isinstance(username, str) or not username.strip():
        return UsernameFormatResult(False, "Username cannot be empty")
    name = username.strip()
    if len(name) > MAX_USERNAME_LENGTH:
        return UsernameFormatResult(False, f"Username cannot be longer than {MAX_USERNAME_LENGTH} characters")
    if not _USERNAME_CHARS_RE.match(name):
        return UsernameFormatResult(False, "Username may only contain alphanumeric characters or single hyphens")
    if name.startswith("-"):
        return UsernameFormatResult(False, "Username cannot begin with a hyphen")
    if name.endswith("-"):
        return UsernameFormatResult(False, "Username cannot end with a hyphen")
    if "--" in name:
        return UsernameFormatResult(False, "Username cannot contain consecutive hyphens")
    if name.lower() in RESERVED_USERNAMES:
        return UsernameFormatResult(False, "This username is reserved and cannot be used")
    return UsernameFormatResult(True)


def validate_username_list(text: Any) -> UsernameListResult:
    """Parse "a, b, c" into usernames, collecting every problem as a message.

    Duplicates are dropped (first spelling kept) and the list is cut to the first
    MAX_USERNAMES_PER_REQUEST names, so `usernames` is usable even when `errors` is not empty.
    """
    if not isinstance(text, str):
        return UsernameListResult([], ["Please enter at least one username"])
    raw = [p.strip() for p in text.split(",")]
    raw = [p for p in raw if p]
    if not raw:
        return UsernameListResult([], ["Please enter at least one username"])

    errors: List[str] = []
    usernames: List[str] = []
    seen = set()
    duplicates: List[str] = []
    for name in raw:
        key = name.lower()
        if key in seen:
            if name not in duplicates:
                duplicates.append(name)
            continue
        seen.add(key)
        usernames.append(name)
    if duplicates:
        errors.append(f"Duplicate usernames found: {', '.join(duplicates)}")

    total_chars = sum(len(u) for u in usernames)
    if total_chars > MAX_USERNAME_LIST_CHARS:
        errors.append(
            f"Username list is too long ({total_chars} characters). "
            f"Please limit the combined usernames to {MAX_USERNAME_LIST_CHARS} characters."
        )

    if len(usernames) > MAX_USERNAMES_PER_REQUEST:
        errors.append(f"Too many usernames. Please limit to {MAX_USERNAMES_PER_REQUEST} usernames at a time.")
        usernames = usernames[:MAX_USERNAMES_PER_REQUEST]

    for name in usernames:
        fmt = validate_github_username_format(name)
        if not fmt.is_valid:
            errors.append(f'"{name}": {fmt.error}')

    return UsernameListResult(usernames, errors)
