"""TTL-bounded key/value caches.

Three independent instances live on the engine context: record-store read
responses, language-model responses, and resolved-entity lookups
(``objectSlug:value -> recordId``). Each has its own TTL and evicts on its
own schedule.
"""

import hashlib
import json
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# Fraction of entries dropped once a cache grows past its ceiling
EVICTION_FRACTION = 0.2


@dataclass
class CacheEntry:
    data: Any
    timestamp: float


def stable_hash(*parts: Any) -> str:
    """Deterministic digest of arbitrary JSON-serializable parts."""
    raw = json.dumps(parts, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def normalize_text(text: str) -> str:
    """Normalize free text for cache keys: lowercase, collapsed whitespace."""
    return " ".join(text.lower().split())


class ResponseCache:
    """Size-bounded TTL cache.

    Entries older than ``ttl`` seconds are treated as misses (and dropped on
    access). When the cache exceeds ``max_size`` the oldest 20% of entries
    are removed.
    """

    def __init__(self, ttl: float, max_size: int = 1000, name: str = "cache"):
        self.ttl = ttl
        self.max_size = max_size
        self.name = name
        self._entries: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._live(key) is not None

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._live(key)
        if entry is None:
            self.misses += 1
            return default
        self.hits += 1
        return entry.data

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(data=value, timestamp=time.monotonic())
        if len(self._entries) > self.max_size:
            self.evict_oldest()

    def items(self) -> Iterator[tuple[str, Any]]:
        """Iterate live (non-expired) entries."""
        now = time.monotonic()
        for key, entry in list(self._entries.items()):
            if now - entry.timestamp < self.ttl:
                yield key, entry.data

    def invalidate(self, predicate: Callable[[str], bool]) -> int:
        """Drop every entry whose key satisfies ``predicate``. Returns count."""
        doomed = [k for k in self._entries if predicate(k)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug(f"{self.name}: invalidated {len(doomed)} entries")
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def evict_oldest(self) -> int:
        ordered = sorted(self._entries.items(), key=lambda kv: kv[1].timestamp)
        to_remove = int(len(ordered) * EVICTION_FRACTION)
        for key, _ in ordered[:to_remove]:
            del self._entries[key]
        logger.debug(f"{self.name}: evicted {to_remove} old entries")
        return to_remove

    def _live(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if time.monotonic() - entry.timestamp >= self.ttl:
            del self._entries[key]
            return None
        return entry
