"""Tests for the ranked-feed memo."""

from kurral.cache import FeedCache, config_fingerprint
from kurral.models import FeedResult, ForYouConfig


class TestFingerprint:
    def test_topic_order_does_not_matter(self) -> None:
        a = ForYouConfig(liked_topics=["science", "art"], muted_topics=["politics"])
        b = ForYouConfig(liked_topics=["Art", "science"], muted_topics=["politics"])
        assert config_fingerprint(a) == config_fingerprint(b)

    def test_any_setting_changes_fingerprint(self) -> None:
        base = ForYouConfig()
        assert config_fingerprint(base) != config_fingerprint(ForYouConfig(following_weight="heavy"))
        assert config_fingerprint(base) != config_fingerprint(
            ForYouConfig(boost_active_conversations=False)
        )
        assert config_fingerprint(base) != config_fingerprint(ForYouConfig(muted_topics=["x"]))


class TestFeedCache:
    def test_computes_once_per_key(self) -> None:
        cache = FeedCache()
        calls = []

        def compute() -> FeedResult:
            calls.append(1)
            return FeedResult(diagnosis="fresh")

        key = FeedCache.key("v", ForYouConfig(), 1)
        first = cache.get_or_compute(key, compute)
        second = cache.get_or_compute(key, compute)
        assert first is second
        assert len(calls) == 1
        assert (cache.hits, cache.misses) == (1, 1)

    def test_new_candidate_version_misses(self) -> None:
        cache = FeedCache()
        cache.put(FeedCache.key("v", ForYouConfig(), 1), FeedResult())
        assert cache.get(FeedCache.key("v", ForYouConfig(), 2)) is None
        assert cache.get(FeedCache.key("v", ForYouConfig(following_weight="none"), 1)) is None

    def test_lru_eviction(self) -> None:
        cache = FeedCache(max_entries=2)
        k1, k2, k3 = (FeedCache.key("v", ForYouConfig(), n) for n in (1, 2, 3))
        cache.put(k1, FeedResult())
        cache.put(k2, FeedResult())
        cache.get(k1)
        cache.put(k3, FeedResult())
        assert len(cache) == 2
        assert cache.get(k2) is None
        assert cache.get(k1) is not None

    def test_invalidate(self) -> None:
        cache = FeedCache()
        cache.put(FeedCache.key("v", ForYouConfig(), 1), FeedResult())
        cache.put(FeedCache.key("w", ForYouConfig(), 1), FeedResult())
        assert cache.invalidate("v") == 1
        assert len(cache) == 1
        assert cache.invalidate() == 1
        assert len(cache) == 0
