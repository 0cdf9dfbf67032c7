"""In-process memo for ranked feeds.

Entries are keyed by (viewer id, config fingerprint, candidate-set version);
a change to any of the three is a cache miss, so stale feeds are never served.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections import OrderedDict
from collections.abc import Callable

from kurral.config import CACHE_SIZE
from kurral.models import FeedResult, ForYouConfig

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, str]


def config_fingerprint(config: ForYouConfig) -> str:
    """Stable hash of the config; topic order does not matter."""
    canonical = {
        "following_weight": config.following_weight.value,
        "boost_active_conversations": config.boost_active_conversations,
        "liked_topics": sorted(config.liked_topics),
        "muted_topics": sorted(config.muted_topics),
    }
    blob = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


class FeedCache:
    """Thread-safe LRU of :class:`FeedResult` objects."""

    def __init__(self, max_entries: int = CACHE_SIZE) -> None:
        self._max_entries = max(1, max_entries)
        self._entries: OrderedDict[CacheKey, FeedResult] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    # ── public ──────────────────────────────────────────────────────────

    @staticmethod
    def key(viewer_id: str, config: ForYouConfig, candidate_version: str | int) -> CacheKey:
        return (viewer_id, config_fingerprint(config), str(candidate_version))

    def get(self, key: CacheKey) -> FeedResult | None:
        with self._lock:
            result = self._entries.get(key)
            if result is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return result

    def put(self, key: CacheKey, result: FeedResult) -> None:
        with self._lock:
            self._entries[key] = result
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Feed cache evicted %s", evicted[0])

    def get_or_compute(self, key: CacheKey, compute: Callable[[], FeedResult]) -> FeedResult:
        cached = self.get(key)
        if cached is not None:
            return cached
        result = compute()
        self.put(key, result)
        return result

    def invalidate(self, viewer_id: str | None = None) -> int:
        """Drop entries for *viewer_id* (or everything); return how many."""
        with self._lock:
            if viewer_id is None:
                dropped = len(self._entries)
                self._entries.clear()
            else:
                stale = [k for k in self._entries if k[0] == viewer_id]
                for k in stale:
                    del self._entries[k]
                dropped = len(stale)
        if dropped:
            logger.info("Feed cache invalidated %d entries (viewer=%s)", dropped, viewer_id or "*")
        return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
