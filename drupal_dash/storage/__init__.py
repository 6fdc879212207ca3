"""
drupal_dash.storage — Local expiring cache.

Modules:
    cache — CacheStore (fast in-process tier + durable JSON-file tier),
            cache_key() namespacing and the secret-key exclusion policy.

Nothing here is a source of truth: every entry can be regenerated by
re-fetching upstream.
"""

from drupal_dash.storage.cache import (
    GITLAB_TOKEN_KEY,
    CacheStore,
    FileCacheTier,
    NullCacheTier,
    cache_key,
)

__all__ = [
    "GITLAB_TOKEN_KEY",
    "CacheStore",
    "FileCacheTier",
    "NullCacheTier",
    "cache_key",
]
