#!/usr/bin/env python3
# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
gh-activity: fetch, cache and inspect GitHub activity for one or more users.
"""

import argparse
import json
import sys
from typing import List, Optional

from .common import ActivityConfig, setup_logging
from .common_types import ApiMode, SearchError
from .context import ActivityContext
from .search import SearchParams


def _format_bytes(n: int) -> str:
    if n >= 1024 * 1024:
        return f"{n / (1024 * 1024):.2f} MiB"
    if n >= 1024:
        return f"{n / 1024:.1f} KiB"
    return f"{n} B"


def cmd_search(ctx: ActivityContext, args: argparse.Namespace) -> int:
    params = SearchParams(
        username=args.users,
        start_date=args.start,
        end_date=args.end,
        api_mode=ApiMode(args.mode),
    )
    try:
        outcome = ctx.search_and_store(params, on_progress=lambda msg: print(f"  {msg}"))
    except SearchError as e:
        print(f"❌ Search failed ({e.kind.value}):", file=sys.stderr)
        for msg in e.messages:
            print(f"  {msg}", file=sys.stderr)
        return 1

    items = outcome.result.items
    if args.enrich:
        if not ctx.client.has_token():
            print("⚠️  No GitHub token; PR details come from cache only")
        items = ctx.enrich(items, on_progress=lambda cur, total: print(f"  Enriched {cur}/{total}"))

    if args.json:
        print(json.dumps(items, indent=2, default=str))
    else:
        for item in items:
            repo = (item.get("repository") or {}).get("full_name") or ""
            print(f"{item.get('updated_at') or '':<22} {repo:<40} {item.get('title')}")

    print(f"✅ {len(items)} items for {', '.join(outcome.result.processed_usernames)}")
    if outcome.result.truncated_usernames:
        print(f"⚠️  Events feed truncated by GitHub for: {', '.join(outcome.result.truncated_usernames)}")
    if not outcome.saved:
        print("⚠️  Results were not saved to the local cache")
    return 0


def cmd_storage_info(ctx: ActivityContext, args: argparse.Namespace) -> int:
    info = ctx.storage.info()
    if info is None:
        print("Structured storage: unavailable")
    else:
        print("Structured storage:")
        print(f"  records:   {info.record_count}")
        print(f"  metadata:  {info.metadata_count}")
        print(f"  size:      {_format_bytes(info.total_size_bytes)}")
        print(f"  PR cache:  {ctx.pr_details.size()}")

    stats = ctx.storage.flat.storage_stats()
    print("Flat storage:")
    print(f"  used:      {_format_bytes(stats.total_size)} / {_format_bytes(stats.max_size)} ({stats.usage_percent:.1f}%)")
    backend_stats = ctx.storage.flat.backend.stats
    print(f"  reads:     {backend_stats.hit} hit / {backend_stats.miss} miss, writes: {backend_stats.write}")
    if stats.is_near_limit:
        print("  ⚠️  near the size limit")
    for entry in ctx.storage.flat.items_by_size():
        print(f"  {entry.key:<32} {_format_bytes(entry.size)}")
    return 0


def cmd_clear(ctx: ActivityContext, args: argparse.Namespace) -> int:
    if args.keep_token:
        token = ctx.clear_all_keep_token()
        print(f"✅ Cleared all cached data{' (token kept)' if token else ''}")
    else:
        ctx.storage.clear()
        ctx.pr_details.clear()
        print("✅ Cleared cached search data")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description='Fetch and cache GitHub activity (issues, PRs, events) for users',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Issues/PRs updated in a date range
  %(prog)s search octocat --start 2026-01-01 --end 2026-01-31

  # Recent activity feed for two users, with PR titles filled in
  %(prog)s search octocat,hubot --start 2026-01-01 --end 2026-01-31 --mode events --enrich

  # What is cached, and wipe it (keeping the saved token)
  %(prog)s storage-info
  %(prog)s clear --keep-token
"""
    )
    parser.add_argument(
        '--token',
        help='GitHub token (optional, will use GH_ACTIVITY_TOKEN env, ~/.config/github-token or gh CLI config)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable debug logging'
    )
    sub = parser.add_subparsers(dest='command', required=True)

    p_search = sub.add_parser('search', help='Search activity for comma-separated USERS')
    p_search.add_argument('users', help='Comma-separated GitHub usernames')
    p_search.add_argument('--start', required=True, help='Start date (YYYY-MM-DD)')
    p_search.add_argument('--end', required=True, help='End date (YYYY-MM-DD, inclusive)')
    p_search.add_argument(
        '--mode',
        choices=[m.value for m in ApiMode],
        default=ApiMode.SEARCH.value,
        help='Endpoint family (default: search)'
    )
    p_search.add_argument('--enrich', action='store_true', help='Fill in missing PR details')
    p_search.add_argument('--json', action='store_true', help='Print items as JSON')
    p_search.set_defaults(func=cmd_search)

    p_info = sub.add_parser('storage-info', help='Show cache usage')
    p_info.set_defaults(func=cmd_storage_info)

    p_clear = sub.add_parser('clear', help='Clear cached data')
    p_clear.add_argument(
        '--keep-token',
        action='store_true',
        help='Wipe everything, settings included, except the saved GitHub token'
    )
    p_clear.set_defaults(func=cmd_clear)

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    config = ActivityConfig.from_env(token=args.token)
    with ActivityContext.from_config(config) as ctx:
        return int(args.func(ctx, args))


if __name__ == '__main__':
    sys.exit(main())
