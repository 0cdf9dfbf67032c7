"""Advisory tuning: propose ForYouConfig edits from a viewer's engagement.

Suggestions are never applied automatically. :func:`apply_suggestion` merges
one into a config and returns a new config, leaving the old one untouched so
the viewer can go back to it.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from kurral.models import (
    Chirp,
    EngagementEvent,
    EngagementKind,
    FollowingWeight,
    ForYouConfig,
    TuningSuggestion,
    User,
)

logger = logging.getLogger(__name__)

_MAX_EVENTS = 1000
_MIN_ENGAGEMENTS = 5
_CONFIDENCE_SATURATION = 20

# Share of engagements on followed authors → suggested following weight.
_FOLLOWING_THRESHOLDS: list[tuple[float, FollowingWeight]] = [
    (0.7, FollowingWeight.HEAVY),
    (0.45, FollowingWeight.MEDIUM),
    (0.2, FollowingWeight.LIGHT),
]
_BOOST_ON_RATE = 0.5
_BOOST_OFF_RATE = 0.2
_LIKE_MIN_COUNT = 2
_LIKE_MIN_SHARE = 0.2
_MUTE_MIN_COUNT = 2
_IGNORED_MIN_VIEWS = 5


@dataclass(frozen=True)
class Observation:
    """One engagement event joined with what it was about."""

    kind: EngagementKind
    chirp_id: str
    topics: tuple[str, ...]
    followed_author: bool
    had_comments: bool


class EngagementHistory:
    """Bounded log of one viewer's engagement, most recent events kept."""

    def __init__(self, viewer: User, max_events: int = _MAX_EVENTS) -> None:
        self.viewer = viewer
        self._observations: deque[Observation] = deque(maxlen=max_events)

    def record(self, event: EngagementEvent, chirp: Chirp) -> bool:
        """Add *event*; return False if it does not belong in this history."""
        if event.viewer_id != self.viewer.id or event.chirp_id != chirp.id:
            logger.warning(
                "Ignoring engagement event %s/%s for history of %s",
                event.viewer_id,
                event.chirp_id,
                self.viewer.id,
            )
            return False
        self._observations.append(
            Observation(
                kind=event.kind,
                chirp_id=chirp.id,
                topics=tuple(chirp.topics),
                followed_author=chirp.author_id in self.viewer.following,
                had_comments=chirp.comment_count > 0,
            )
        )
        return True

    def record_many(self, events: Iterable[EngagementEvent], chirps: Mapping[str, Chirp]) -> int:
        recorded = 0
        for event in events:
            chirp = chirps.get(event.chirp_id)
            if chirp is None:
                logger.debug("Engagement on unknown chirp %s skipped", event.chirp_id)
                continue
            recorded += self.record(event, chirp)
        return recorded

    @property
    def observations(self) -> tuple[Observation, ...]:
        return tuple(self._observations)

    def __len__(self) -> int:
        return len(self._observations)


def _weight_for_rate(rate: float) -> FollowingWeight:
    for threshold, weight in _FOLLOWING_THRESHOLDS:
        if rate >= threshold:
            return weight
    return FollowingWeight.NONE


def suggest(history: EngagementHistory, current: ForYouConfig) -> TuningSuggestion:
    """Propose settings that lean toward what the viewer engages with."""
    observations = history.observations
    engaged: dict[str, Observation] = {}
    for obs in observations:
        if obs.kind.is_engagement:
            engaged.setdefault(obs.chirp_id, obs)
    total = len(engaged)

    if total < _MIN_ENGAGEMENTS:
        return TuningSuggestion(
            following_weight=current.following_weight,
            boost_active_conversations=current.boost_active_conversations,
            liked_topics=current.liked_topics,
            muted_topics=current.muted_topics,
            confidence=0.0,
            explanation=(
                f"Not enough activity yet ({total} of {_MIN_ENGAGEMENTS} engagements needed)."
            ),
        )

    followed_rate = sum(o.followed_author for o in engaged.values()) / total
    weight = _weight_for_rate(followed_rate)

    active_rate = sum(o.had_comments for o in engaged.values()) / total
    if active_rate >= _BOOST_ON_RATE:
        boost = True
    elif active_rate <= _BOOST_OFF_RATE:
        boost = False
    else:
        boost = current.boost_active_conversations

    topic_engaged: Counter[str] = Counter(t for o in engaged.values() for t in o.topics)
    topic_viewed: Counter[str] = Counter(
        t for o in observations if o.kind is EngagementKind.VIEW for t in o.topics
    )
    topic_muted: Counter[str] = Counter(
        t for o in observations if o.kind is EngagementKind.MUTE for t in o.topics
    )

    new_liked = {
        topic
        for topic, count in topic_engaged.items()
        if count >= _LIKE_MIN_COUNT and count / total >= _LIKE_MIN_SHARE
    } - current.muted_topics - current.liked_topics

    ignored = {
        topic
        for topic, views in topic_viewed.items()
        if views >= _IGNORED_MIN_VIEWS and topic_engaged[topic] == 0
    }
    repeatedly_muted = {t for t, count in topic_muted.items() if count >= _MUTE_MIN_COUNT}
    new_muted = (
        (ignored | repeatedly_muted)
        - set(topic_engaged)
        - current.liked_topics
        - current.muted_topics
    )

    notes: list[str] = []
    if weight != current.following_weight:
        notes.append(
            f"{followed_rate:.0%} of your engagement is with people you follow, "
            f"so following weight could be {weight.value}."
        )
    if boost != current.boost_active_conversations:
        verb = "boosting" if boost else "not boosting"
        notes.append(f"{active_rate:.0%} of what you engage with has comments; try {verb} active conversations.")
    if new_liked:
        notes.append(f"You often engage with {', '.join(sorted(new_liked))}.")
    if new_muted:
        notes.append(f"You skip or mute {', '.join(sorted(new_muted))}.")
    if not notes:
        notes.append("Your current settings already match how you use the feed.")

    suggestion = TuningSuggestion(
        following_weight=weight,
        boost_active_conversations=boost,
        liked_topics=current.liked_topics | new_liked,
        muted_topics=current.muted_topics | new_muted,
        confidence=round(min(1.0, total / _CONFIDENCE_SATURATION), 2),
        explanation=" ".join(notes),
    )
    logger.info(
        "Tuning suggestion for %s: confidence=%.2f, +liked=%d, +muted=%d",
        history.viewer.id,
        suggestion.confidence,
        len(new_liked),
        len(new_muted),
    )
    return suggestion


def apply_suggestion(config: ForYouConfig, suggestion: TuningSuggestion) -> ForYouConfig:
    """Merge an accepted suggestion into *config* and return the new config.

    Topics the suggestion newly mutes leave the liked set and vice versa.
    """
    newly_liked = suggestion.liked_topics - config.liked_topics
    newly_muted = suggestion.muted_topics - config.muted_topics
    return config.model_copy(
        update={
            "following_weight": suggestion.following_weight,
            "boost_active_conversations": suggestion.boost_active_conversations,
            "liked_topics": (config.liked_topics - newly_muted) | newly_liked,
            "muted_topics": (config.muted_topics - newly_liked) | newly_muted,
        }
    )
