"""Resource-specific GitHub API wrappers with caching and TTL policy.

Each module in this package owns:
- the API calls for one resource (via GitHubAPIClient)
- the cache key/value format + persistence (where the resource is cached)
- the TTL / pagination policy for that resource
"""
