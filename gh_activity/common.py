# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Shared constants and utilities for gh-activity.

Cache policy, cache-location policy, GitHub token discovery and logging setup live here so
the storage layer, the GitHub client and the CLI don't duplicate literals.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

# Global logger for the module
_logger = logging.getLogger(__name__)

#
# Cache policy constants (single source of truth)
#
FLAT_STORE_MAX_BYTES: int = int(4.5 * 1024 * 1024)
# ^ Soft ceiling for the flat key/value store. Writes that would push the total past this
#   evict disposable keys first (see cache/cache_flat.py).
FLAT_STORE_NOMINAL_MAX_BYTES: int = 5 * 1024 * 1024
# ^ Nominal hard quota used only for usage statistics (usage %, near-limit flag).
PR_DETAILS_TTL_S: int = 24 * 3600
# ^ Freshness window for cached PR details. Older records are served stale and refreshed
#   in the background.
USERNAME_STALE_AFTER_S: int = 3600
# ^ Per-username data older than this is considered stale (see username_cache.is_stale).
SEARCH_RESULTS_REUSE_S: int = 3600
# ^ Identical search parameters within this window reuse the stored results.
DEFAULT_REQUEST_DELAY_S: float = 0.5
# ^ Delay between sequential per-user fetches (abuse-rate-limit safety).
DEFAULT_ENRICHMENT_DELAY_S: float = 0.1
# ^ Delay between serial PR detail fetches in the batch enrichment pass.
EVENTS_MAX_PAGES: int = 3
# ^ The events API only retains a short rolling window and refuses deep pagination.
EVENTS_PER_PAGE: int = 100
SEARCH_PER_PAGE: int = 100
DEFAULT_HTTP_TIMEOUT_S: int = 15


# ======================================================================================
# IMPORTANT: Cache location policy
#
# All *persistent* state for gh-activity MUST live under:
#   - $GH_ACTIVITY_CACHE_DIR        (explicit override), else
#   - ~/.cache/gh-activity          (default)
# ======================================================================================


def gh_activity_cache_dir() -> Path:
    """Return the cache directory for gh-activity.

    Resolution order:
    - GH_ACTIVITY_CACHE_DIR (explicit override)
    - ~/.cache/gh-activity
    """
    override = os.environ.get("GH_ACTIVITY_CACHE_DIR")
    if override:
        return Path(override).expanduser()

    return Path.home() / ".cache" / "gh-activity"


def resolve_cache_path(cache_file: str, *, cache_dir: Optional[Path] = None) -> Path:
    """Resolve a cache file path into the cache directory.

    - Absolute paths are used as-is.
    - Relative paths are rooted under `cache_dir` (default: `gh_activity_cache_dir()`).
    """
    p = Path(cache_file).expanduser()
    if p.is_absolute():
        return p
    root = cache_dir if cache_dir is not None else gh_activity_cache_dir()
    return Path(root) / p


def _env_flag(name: str) -> bool:
    return str(os.environ.get(name, "") or "").strip().lower() in ("1", "true", "yes", "on")


def get_github_token_from_file() -> Optional[str]:
    """Get a GitHub token from local config (first match wins).

    - $GH_ACTIVITY_TOKEN
    - ~/.config/github-token   (single line token)
    - ~/.config/gh/hosts.yml   (GitHub CLI login; oauth_token)
    """
    env_tok = str(os.environ.get("GH_ACTIVITY_TOKEN", "") or "").strip()
    if env_tok:
        return env_tok
    try:
        token_file = Path.home() / ".config" / "github-token"
        if token_file.exists():
            tok = (token_file.read_text() or "").strip()
            if tok:
                return tok
    except OSError:
        pass
    return get_github_token_from_cli()


def get_github_token_from_cli() -> Optional[str]:
    """Get GitHub token from the GitHub CLI configuration (~/.config/gh/hosts.yml)."""
    try:
        gh_config_path = Path.home() / ".config" / "gh" / "hosts.yml"
        if gh_config_path.exists():
            with open(gh_config_path, "r") as f:
                config = yaml.safe_load(f)
            if config and "github.com" in config:
                github_config = config["github.com"] or {}
                if github_config.get("oauth_token"):
                    return github_config["oauth_token"]
                for _user, user_config in (github_config.get("users") or {}).items():
                    if isinstance(user_config, dict) and user_config.get("oauth_token"):
                        return user_config["oauth_token"]
    except (OSError, yaml.YAMLError, AttributeError):
        pass
    return None


@dataclass
class ActivityConfig:
    """Runtime configuration for an ActivityContext."""

    cache_dir: Path = field(default_factory=gh_activity_cache_dir)
    flat_store_file: str = "flat-store.json"
    structured_db_file: str = "activity.sqlite"
    structured_enabled: bool = True
    token: Optional[str] = None
    request_delay_s: float = DEFAULT_REQUEST_DELAY_S
    enrichment_delay_s: float = DEFAULT_ENRICHMENT_DELAY_S
    pr_details_ttl_s: int = PR_DETAILS_TTL_S
    flat_store_max_bytes: int = FLAT_STORE_MAX_BYTES
    events_max_pages: int = EVENTS_MAX_PAGES
    events_per_page: int = EVENTS_PER_PAGE
    http_timeout_s: int = DEFAULT_HTTP_TIMEOUT_S
    # Fail a search fast with the offline message when the API host is unreachable
    check_online: bool = True

    @classmethod
    def from_env(cls, *, token: Optional[str] = None, **overrides) -> "ActivityConfig":
        """Build a config from the environment. Explicit arguments win."""
        cfg = cls(**overrides)
        cfg.structured_enabled = cfg.structured_enabled and not _env_flag("GH_ACTIVITY_DISABLE_SQLITE")
        cfg.check_online = cfg.check_online and not _env_flag("GH_ACTIVITY_SKIP_ONLINE_CHECK")
        cfg.token = token or get_github_token_from_file()
        return cfg

    @property
    def flat_store_path(self) -> Path:
        return resolve_cache_path(self.flat_store_file, cache_dir=self.cache_dir)

    @property
    def structured_db_path(self) -> Path:
        return resolve_cache_path(self.structured_db_file, cache_dir=self.cache_dir)


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging for command-line use."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )
