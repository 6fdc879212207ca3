"""
drupal_dash/storage/cache.py — Two-tier expiring cache store.

The fast tier is a per-instance dict lost on process exit. The durable tier
keeps one JSON file per key under a cache directory and survives restarts,
but has a byte quota and never raises: a write that fails (quota exceeded,
disk error) is logged and dropped, and a corrupt file reads as a miss.

Every entry carries its write timestamp. An entry is stale once
``now - timestamp >= ttl``; a stale entry is deleted from both tiers on read
and reported as absent.

Keys listed in ``secret_keys`` (the GitLab token by default) live in the fast
tier only and are never written to disk.

Usage:
    store = CacheStore(ttl_seconds=3600, durable=FileCacheTier(".cache"))
    key = cache_key("contributionRecords", {"org": "CivicActions", "months": 12})
    if (rows := store.get(key)) is None:
        rows = fetch()
        store.set(key, rows)
"""

import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

KEY_PREFIX = "drupal-dash-cache-"
GITLAB_TOKEN_KEY = "drupal-dash-gl-token"


def cache_key(endpoint: str, params: dict) -> str:
    """Namespaced cache key for an endpoint plus its call parameters.

    Parameters are serialized with sorted keys so identical (endpoint, params)
    pairs always collide and differing parameters never do.
    """
    encoded = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return f"{KEY_PREFIX}{endpoint}-{encoded}"


@dataclass
class CacheEntry:
    data: Any
    timestamp: float


# ---------------------------------------------------------------------------
# Durable tiers
# ---------------------------------------------------------------------------

class NullCacheTier:
    """Durable tier that stores nothing (memory-only caching)."""

    def read(self, key: str) -> Optional[CacheEntry]:
        return None

    def write(self, key: str, entry: CacheEntry) -> None:
        return None

    def remove(self, key: str) -> None:
        return None

    def clear(self, prefix: str) -> int:
        return 0

    def usage(self) -> tuple[int, int]:
        return 0, 0


class FileCacheTier:
    """JSON-file durable tier with a byte quota.

    Each entry is written to ``{directory}/{sha256(key)}.json`` through a
    ``.tmp`` intermediate and os.replace, so readers never see a half-written
    file. The original key is stored inside the payload so that clear() can
    match on the key prefix.

    Args:
        directory: Cache directory, created on first write.
        max_bytes: Total size budget for all entry files.
    """

    def __init__(self, directory: str, max_bytes: int = 5 * 1024 * 1024) -> None:
        self._dir = os.path.abspath(directory)
        self._max_bytes = max_bytes

    @property
    def directory(self) -> str:
        return self._dir

    def _path(self, key: str) -> str:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return os.path.join(self._dir, f"{digest}.json")

    def _entry_files(self) -> list[str]:
        if not os.path.isdir(self._dir):
            return []
        return [
            os.path.join(self._dir, name)
            for name in os.listdir(self._dir)
            if name.endswith(".json")
        ]

    def usage(self) -> tuple[int, int]:
        """Return (entry_count, total_bytes) currently on disk."""
        files = self._entry_files()
        total = 0
        for path in files:
            try:
                total += os.path.getsize(path)
            except OSError:
                continue
        return len(files), total

    def read(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
            return CacheEntry(data=payload["data"], timestamp=float(payload["timestamp"]))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Unreadable cache file %s — treating as miss: %s", path, exc)
            return None

    def write(self, key: str, entry: CacheEntry) -> None:
        path = self._path(key)
        try:
            body = json.dumps(
                {"key": key, "timestamp": entry.timestamp, "data": entry.data},
                ensure_ascii=True,
            )
        except (TypeError, ValueError) as exc:
            logger.warning("Cache value for %s is not JSON-serializable: %s", key, exc)
            return

        size = len(body.encode("utf-8"))
        _, used = self.usage()
        if os.path.exists(path):
            used -= os.path.getsize(path)
        if used + size > self._max_bytes:
            logger.warning(
                "Durable cache quota exceeded (%d + %d > %d bytes) — %s kept in memory only",
                used, size, self._max_bytes, key,
            )
            return

        try:
            os.makedirs(self._dir, exist_ok=True)
            tmp = path + ".tmp"
            with open(tmp, "w", encoding="utf-8") as fh:
                fh.write(body)
            os.replace(tmp, path)
        except OSError as exc:
            logger.warning("Durable cache write failed for %s: %s", key, exc)

    def remove(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Durable cache delete failed for %s: %s", key, exc)

    def clear(self, prefix: str) -> int:
        """Remove every entry whose key starts with *prefix*. Returns the count."""
        removed = 0
        for path in self._entry_files():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    key = json.load(fh).get("key", "")
            except (OSError, ValueError, AttributeError):
                key = prefix  # unreadable entries are ours to drop
            if not key.startswith(prefix):
                continue
            try:
                os.remove(path)
                removed += 1
            except OSError as exc:
                logger.warning("Durable cache delete failed for %s: %s", path, exc)
        return removed


# ---------------------------------------------------------------------------
# Cache store
# ---------------------------------------------------------------------------

class CacheStore:
    """Expiring key/value store over a fast tier and a durable tier.

    Args:
        ttl_seconds: Entry lifetime. An entry aged exactly ttl is already stale.
        durable:     Durable tier; NullCacheTier when omitted.
        secret_keys: Keys that must never reach the durable tier.
        clock:       Time source in seconds, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float,
        durable: Optional[Any] = None,
        secret_keys: Iterable[str] = (GITLAB_TOKEN_KEY,),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._memory: dict[str, CacheEntry] = {}
        self._durable = durable if durable is not None else NullCacheTier()
        self._secret_keys = frozenset(secret_keys)
        self._clock = clock

    @classmethod
    def from_config(cls, config) -> "CacheStore":
        """Build a store from a DashConfig (memory-only when cache_dir is None)."""
        durable = (
            FileCacheTier(config.cache_dir, max_bytes=config.cache_max_bytes)
            if config.cache_dir
            else NullCacheTier()
        )
        return cls(ttl_seconds=config.cache_ttl_seconds, durable=durable)

    def _is_stale(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.timestamp >= self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        entry = self._memory.get(key)
        if entry is not None:
            if not self._is_stale(entry):
                return entry.data
            self.delete(key)
            return None

        if key in self._secret_keys:
            return None

        entry = self._durable.read(key)
        if entry is None:
            return None
        if self._is_stale(entry):
            logger.debug("Cache entry expired: %s", key)
            self.delete(key)
            return None
        self._memory[key] = entry
        return entry.data

    def set(self, key: str, value: Any) -> None:
        entry = CacheEntry(data=value, timestamp=self._clock())
        self._memory[key] = entry
        if key not in self._secret_keys:
            self._durable.write(key, entry)

    def delete(self, key: str) -> None:
        self._memory.pop(key, None)
        self._durable.remove(key)

    def clear(self) -> None:
        """Drop the fast tier and every namespaced entry of the durable tier."""
        self._memory.clear()
        removed = self._durable.clear(KEY_PREFIX)
        logger.info("Cache cleared (%d durable entries removed)", removed)

    def stats(self) -> dict:
        entries, size = self._durable.usage()
        return {
            "memory_entries": len(self._memory),
            "durable_entries": entries,
            "durable_bytes": size,
            "ttl_seconds": self.ttl_seconds,
        }
