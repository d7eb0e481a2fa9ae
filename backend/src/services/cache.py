"""In-memory TTL cache for folder trees, page listings and page content."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

DEFAULT_TTL_SECONDS = 30.0

TREE_PREFIX = "tree:"
PAGES_PREFIX = "pages:"
CONTENT_PREFIX = "page:"


def tree_key(path: str = "") -> str:
    return f"{TREE_PREFIX}{path}"


def pages_key(folder: str = "") -> str:
    return f"{PAGES_PREFIX}{folder}"


def content_key(path: str) -> str:
    return f"{CONTENT_PREFIX}{path}"


class TTLCache:
    """
    Keyed store whose entries expire ``ttl_seconds`` after they were set.

    Expiry is lazy: a stale entry is dropped by the ``get`` that finds it.
    Writers are expected to invalidate the keys they affect; the TTL only
    bounds how long edits made outside the application stay invisible.

    Every invalidation bumps the generation of the keys it matches. A reader
    that loads a value from disk takes ``generation(key)`` first and stores
    the result with ``set_if_current``, so a load that raced a write is
    dropped instead of cached.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._generations: Dict[str, int] = {}

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (value, self._clock())

    def generation(self, key: str) -> int:
        """Return the invalidation count for ``key``, tracking it from now on."""
        return self._generations.setdefault(key, 0)

    def set_if_current(self, key: str, value: Any, generation: int) -> bool:
        """Store ``value`` only if ``key`` was not invalidated since ``generation`` was read."""
        if self._generations.get(key, 0) != generation:
            return False
        self.set(key, value)
        return True

    def invalidate(self, pattern: str) -> None:
        """Drop every entry whose key contains ``pattern``."""
        for key in [key for key in self._entries if pattern in key]:
            del self._entries[key]
        for key in self._generations:
            if pattern in key:
                self._generations[key] += 1

    def invalidate_key(self, key: str) -> None:
        self._entries.pop(key, None)
        if key in self._generations:
            self._generations[key] += 1

    def clear(self) -> None:
        self._entries.clear()
        for key in self._generations:
            self._generations[key] += 1

    def stats(self) -> Dict[str, Any]:
        keys: List[str] = sorted(self._entries)
        return {"size": len(keys), "keys": keys}

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "TTLCache",
    "DEFAULT_TTL_SECONDS",
    "tree_key",
    "pages_key",
    "content_key",
    "TREE_PREFIX",
    "PAGES_PREFIX",
    "CONTENT_PREFIX",
]
