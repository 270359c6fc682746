"""
TTL Read-Through Cache

DESIGN DECISION: The cache is an explicitly constructed object that is
passed to whatever needs it. There is no module-level instance, so tests
and separate ledgers each get an isolated cache.

Each entry carries its own expiry timer and is evicted when the timer
fires, whether or not anyone reads it again. Reads also check the deadline
so a late timer never serves a stale value.

Invalidation is by tag rather than by matching substrings of keys: an
entry is tagged with the namespaces it depends on (e.g. the owner's
transaction namespace) and `invalidate_tag` drops all of them at once.

The cache is advisory. Storage is authoritative.
"""

import json
import threading
import time
from typing import Any, Callable, Hashable, Iterable, Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)

MISS = object()

TRANSACTIONS_NAMESPACE = "transactions"
SUMMARY_NAMESPACE = "financial_summary"
DEBTS_NAMESPACE = "debts"


def owner_tag(namespace: str, owner_id: str) -> str:
    """Tag shared by every entry in `namespace` for one owner."""
    return f"{namespace}:{owner_id}"


def cache_key(
    namespace: str,
    owner_id: str,
    params: Optional[Mapping[str, Any]] = None,
) -> str:
    """
    Deterministic key for a read: operation namespace, owner and filters.

    Filters are serialized with sorted keys and empty values dropped, so
    the same filter set always lands in the same slot and different sets
    never collide.
    """
    cleaned = {
        k: v for k, v in (params or {}).items()
        if v is not None and v != ""
    }
    serialized = json.dumps(cleaned, sort_keys=True, default=str, separators=(",", ":"))
    return f"{namespace}:{owner_id}:{serialized}"


class _Entry:
    __slots__ = ("value", "expires_at", "timer", "tags")

    def __init__(self, value: Any, expires_at: Optional[float], timer, tags: frozenset):
        self.value = value
        self.expires_at = expires_at
        self.timer = timer
        self.tags = tags


class TTLCache:
    """
    Thread-safe key/value cache with per-entry TTL timers and tags.

    Args:
        default_ttl: seconds an entry lives when `set` gets no ttl.
                     A ttl of 0 or less stores the entry without expiry.
        clock: monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[Hashable, _Entry] = {}
        self._tags: dict[str, set] = {}
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: Hashable, default: Any = MISS) -> Any:
        """Cached value, or `default` (MISS) if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._expired(entry):
                self._remove(key)
                entry = None
            if entry is None:
                self.misses += 1
                logger.debug("cache_miss", key=str(key))
                return default
            self.hits += 1
            logger.debug("cache_hit", key=str(key))
            return entry.value

    def set(
        self,
        key: Hashable,
        value: Any,
        ttl: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> None:
        """Store a value, replacing any existing entry and its timer."""
        ttl = self._default_ttl if ttl is None else ttl
        with self._lock:
            if key in self._entries:
                self._remove(key)

            timer = None
            expires_at = None
            if ttl > 0:
                expires_at = self._clock() + ttl
                timer = threading.Timer(ttl, self._expire, args=(key, expires_at))
                timer.daemon = True

            entry = _Entry(value, expires_at, timer, frozenset(tags))
            self._entries[key] = entry
            for tag in entry.tags:
                self._tags.setdefault(tag, set()).add(key)

            if timer is not None:
                timer.start()

        logger.debug("cache_set", key=str(key), ttl=ttl)

    def delete(self, key: Hashable) -> bool:
        """Remove one entry. Returns True if it was present."""
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
        logger.debug("cache_delete", key=str(key))
        return True

    def has(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._expired(entry):
                self._remove(key)
                return False
            return True

    def keys(self) -> list:
        """Keys of all live entries."""
        with self._lock:
            for key in [k for k, e in self._entries.items() if self._expired(e)]:
                self._remove(key)
            return list(self._entries.keys())

    def size(self) -> int:
        return len(self.keys())

    def clear(self) -> None:
        with self._lock:
            for entry in self._entries.values():
                if entry.timer is not None:
                    entry.timer.cancel()
            self._entries.clear()
            self._tags.clear()
        logger.debug("cache_cleared")

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_tag(self, tag: str) -> int:
        """
        Drop every entry carrying `tag`.

        Idempotent: a second call finds nothing and returns 0.
        """
        with self._lock:
            keys = list(self._tags.get(tag, ()))
            for key in keys:
                self._remove(key)
            self._tags.pop(tag, None)
        if keys:
            logger.debug("cache_invalidated", tag=tag, count=len(keys))
        return len(keys)

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        return sum(self.invalidate_tag(tag) for tag in tags)

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "hits": self.hits,
                "misses": self.misses,
                "size": len(self._entries),
            }

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _expired(self, entry: _Entry) -> bool:
        return entry.expires_at is not None and self._clock() >= entry.expires_at

    def _remove(self, key: Hashable) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
        for tag in entry.tags:
            keys = self._tags.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tags[tag]

    def _expire(self, key: Hashable, expires_at: float) -> None:
        """Timer callback. Only evicts the entry the timer was started for."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expires_at != expires_at:
                return
            self._remove(key)
        logger.debug("cache_expired", key=str(key))
