"""
Cache invalidation port.

The kernel does not read from any cache.  It only tells the response cache
which organization-scoped key patterns went stale after a mutation, e.g.
``journal_entries:<org_id>:*``.  Invalidation is best-effort and
non-transactional.
"""

from fnmatch import fnmatchcase
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class CacheInvalidator(Protocol):
    def invalidate(self, pattern: str) -> int:
        """Drop every key matching a glob pattern; return the count dropped."""
        ...


class NullCacheInvalidator:
    def invalidate(self, pattern: str) -> int:
        return 0


class InMemoryResponseCache:
    """Dict-backed response cache with glob invalidation."""

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}
        self.invalidated_patterns: list[str] = []

    def get(self, key: str, default: Any = None) -> Any:
        return self._entries.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def invalidate(self, pattern: str) -> int:
        self.invalidated_patterns.append(pattern)
        stale = [key for key in self._entries if fnmatchcase(key, pattern)]
        for key in stale:
            del self._entries[key]
        return len(stale)
