"""Tests for the engagement-driven ForYouConfig tuning suggestions."""

from datetime import UTC, datetime

from kurral.models import (
    Chirp,
    EngagementEvent,
    FollowingWeight,
    ForYouConfig,
    TuningSuggestion,
    User,
)
from kurral.tuning import EngagementHistory, apply_suggestion, suggest

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _chirp(chirp_id: str, author: str = "a", topic: str = "science", comments: int = 0) -> Chirp:
    return Chirp(
        id=chirp_id,
        author_id=author,
        topic=topic,
        created_at=NOW,
        comment_count=comments,
    )


def _viewer(following=("a",), **config) -> User:
    return User(id="v", following=list(following), for_you_config=ForYouConfig(**config))


def _history(viewer: User, pairs) -> EngagementHistory:
    history = EngagementHistory(viewer)
    for kind, chirp in pairs:
        history.record(EngagementEvent(chirp_id=chirp.id, viewer_id=viewer.id, kind=kind), chirp)
    return history


class TestEngagementHistory:
    def test_rejects_events_for_other_viewers(self) -> None:
        history = EngagementHistory(_viewer())
        chirp = _chirp("c1")
        event = EngagementEvent(chirp_id="c1", viewer_id="someone-else", kind="like")
        assert history.record(event, chirp) is False
        assert len(history) == 0

    def test_record_many_skips_unknown_chirps(self) -> None:
        viewer = _viewer()
        chirps = {"c1": _chirp("c1")}
        events = [
            EngagementEvent(chirp_id="c1", viewer_id="v", kind="like"),
            EngagementEvent(chirp_id="gone", viewer_id="v", kind="like"),
        ]
        history = EngagementHistory(viewer)
        assert history.record_many(events, chirps) == 1
        assert history.observations[0].followed_author is True

    def test_bounded(self) -> None:
        viewer = _viewer()
        history = EngagementHistory(viewer, max_events=3)
        chirp = _chirp("c1")
        for _ in range(10):
            history.record(EngagementEvent(chirp_id="c1", viewer_id="v", kind="view"), chirp)
        assert len(history) == 3


class TestSuggest:
    def test_too_little_activity_echoes_config(self) -> None:
        viewer = _viewer(following_weight="light", liked_topics=["art"])
        history = _history(viewer, [("like", _chirp(f"c{i}")) for i in range(4)])
        suggestion = suggest(history, viewer.for_you_config)
        assert suggestion.confidence == 0.0
        assert suggestion.following_weight is FollowingWeight.LIGHT
        assert suggestion.liked_topics == frozenset({"art"})
        assert suggestion.is_actionable(viewer.for_you_config) is False

    def test_repeat_likes_count_once(self) -> None:
        viewer = _viewer()
        chirp = _chirp("c1")
        history = _history(viewer, [("like", chirp)] * 10)
        assert suggest(history, viewer.for_you_config).confidence == 0.0

    def test_followed_heavy_engagement(self) -> None:
        viewer = _viewer(following_weight="light")
        history = _history(viewer, [("like", _chirp(f"c{i}", author="a")) for i in range(6)])
        suggestion = suggest(history, viewer.for_you_config)
        assert suggestion.following_weight is FollowingWeight.HEAVY
        assert suggestion.confidence == 0.3
        assert "people you follow" in suggestion.explanation
        assert suggestion.is_actionable(viewer.for_you_config)

    def test_strangers_only_suggests_none(self) -> None:
        viewer = _viewer(following=())
        history = _history(viewer, [("like", _chirp(f"c{i}", author="z")) for i in range(6)])
        assert suggest(history, viewer.for_you_config).following_weight is FollowingWeight.NONE

    def test_conversation_boost(self) -> None:
        viewer = _viewer(boost_active_conversations=False)
        history = _history(
            viewer, [("comment", _chirp(f"c{i}", comments=12)) for i in range(6)]
        )
        assert suggest(history, viewer.for_you_config).boost_active_conversations is True

    def test_quiet_posts_turn_boost_off(self) -> None:
        viewer = _viewer(boost_active_conversations=True)
        history = _history(viewer, [("like", _chirp(f"c{i}")) for i in range(6)])
        assert suggest(history, viewer.for_you_config).boost_active_conversations is False

    def test_liked_topics_from_engagement(self) -> None:
        viewer = _viewer()
        pairs = [("like", _chirp(f"s{i}", topic="science")) for i in range(4)]
        pairs += [("bookmark", _chirp(f"a{i}", topic="art")) for i in range(2)]
        pairs += [("like", _chirp("g1", topic="gardening"))]
        suggestion = suggest(_history(viewer, pairs), viewer.for_you_config)
        assert suggestion.liked_topics == frozenset({"science", "art"})

    def test_muted_topic_never_suggested_as_liked(self) -> None:
        viewer = _viewer(muted_topics=["science"])
        history = _history(viewer, [("like", _chirp(f"c{i}")) for i in range(6)])
        suggestion = suggest(history, viewer.for_you_config)
        assert "science" not in suggestion.liked_topics
        assert suggestion.muted_topics == frozenset({"science"})

    def test_ignored_and_muted_topics(self) -> None:
        viewer = _viewer()
        pairs = [("like", _chirp(f"s{i}")) for i in range(5)]
        pairs += [("view", _chirp(f"k{i}", topic="crypto")) for i in range(5)]
        pairs += [("mute", _chirp("r1", topic="reality tv")), ("mute", _chirp("r2", topic="reality tv"))]
        pairs += [("view", _chirp(f"s{i}")) for i in range(5)]
        suggestion = suggest(_history(viewer, pairs), viewer.for_you_config)
        assert suggestion.muted_topics == frozenset({"crypto", "reality tv"})
        assert "science" not in suggestion.muted_topics


class TestApplySuggestion:
    def test_returns_new_config(self) -> None:
        current = ForYouConfig(following_weight="light", liked_topics=["crypto", "art"])
        suggestion = TuningSuggestion(
            following_weight="heavy",
            boost_active_conversations=False,
            liked_topics=["crypto", "art", "science"],
            muted_topics=["crypto"],
            confidence=0.8,
        )
        applied = apply_suggestion(current, suggestion)
        assert applied is not current
        assert current.following_weight is FollowingWeight.LIGHT
        assert applied.following_weight is FollowingWeight.HEAVY
        assert applied.boost_active_conversations is False
        assert applied.liked_topics == frozenset({"art", "science"})
        assert applied.muted_topics == frozenset({"crypto"})

    def test_applied_suggestion_is_no_longer_actionable(self) -> None:
        viewer = _viewer(following_weight="light")
        history = _history(viewer, [("like", _chirp(f"c{i}")) for i in range(8)])
        suggestion = suggest(history, viewer.for_you_config)
        applied = apply_suggestion(viewer.for_you_config, suggestion)
        assert suggestion.is_actionable(applied) is False
