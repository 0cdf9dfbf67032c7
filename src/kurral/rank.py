"""Personalised "For You" ranking with a one-line explanation per chirp."""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime

from kurral.config import FEED_LIMIT
from kurral.models import (
    Chirp,
    FactCheckStatus,
    FeedEmptyReason,
    FeedResult,
    ForYouConfig,
    ScoredChirp,
    User,
    ValueScore,
    as_utc,
    normalize_topic,
)

logger = logging.getLogger(__name__)

ResolveUser = Callable[[str], User | None]

# ── Weights (tuneable) ─────────────────────────────────────────────────────
_W_FOLLOW = 50.0
_W_LIKED_TOPIC = 25.0
_W_LIKED_TOPIC_EXTRA = 5.0
_LIKED_TOPIC_CAP = 40.0
_W_INTEREST = 20.0
_W_INTEREST_EXTRA = 5.0
_INTEREST_CAP = 35.0
_W_RECENCY = 15.0
_RECENCY_HALF_LIFE_HOURS = 12.0
_W_CONVERSATION = 5.0
_CONVERSATION_CAP = 20.0
_W_VALUE = 40.0
_VALUE_MIN_CONFIDENCE = 0.5
_NEUTRAL_VALUE = ValueScore(total=0.5, confidence=0.5)
_LOW_VALUE_THRESHOLD = 0.35
_W_LOW_VALUE_PENALTY = 30.0
_HIGH_VALUE_THRESHOLD = 0.7
_NEEDS_REVIEW_DAMPING = 0.6

# ── Explanation / diversity ────────────────────────────────────────────────
_MIN_CONVERSATION_MENTION = 5.0
_MAX_REASONS = 3
_AUTHOR_TOP_WINDOW = 20
_AUTHOR_TOP_WINDOW_LIMIT = 3
_AUTHOR_TOTAL_LIMIT = 5


# ── Topic matching ─────────────────────────────────────────────────────────


def _overlaps(a: str, b: str) -> bool:
    """Equal, or one is a whole-word run inside the other."""
    return a == b or f" {a} " in f" {b} " or f" {b} " in f" {a} "


def matching_topics(chirp: Chirp, topics: Iterable[str]) -> list[str]:
    """Return the (normalised) *topics* this chirp touches, sorted.

    The primary topic must match exactly; semantic topics may overlap.
    """
    primary = normalize_topic(chirp.topic)
    semantic = [t for t in (normalize_topic(s) for s in chirp.semantic_topics) if t]
    matched: list[str] = []
    for topic in sorted({normalize_topic(t) for t in topics}):
        if not topic:
            continue
        if topic == primary or any(_overlaps(s, topic) for s in semantic):
            matched.append(topic)
    return matched


# ── Signals ────────────────────────────────────────────────────────────────


def recency_points(chirp: Chirp, now: datetime) -> float:
    age_hours = max(0.0, (now - chirp.created_at).total_seconds() / 3600)
    return _W_RECENCY * 0.5 ** (age_hours / _RECENCY_HALF_LIFE_HOURS)


def conversation_points(comment_count: int) -> float:
    if comment_count <= 0:
        return 0.0
    return min(_CONVERSATION_CAP, math.log10(comment_count + 1) * _W_CONVERSATION)


def value_points(value: ValueScore | None) -> float:
    """Unscored chirps get the points of a middling, half-confident score."""
    value = value or _NEUTRAL_VALUE
    points = _W_VALUE * value.total * max(_VALUE_MIN_CONFIDENCE, value.confidence)
    if value.total < _LOW_VALUE_THRESHOLD:
        points -= (_LOW_VALUE_THRESHOLD - value.total) * _W_LOW_VALUE_PENALTY
    return points


def _follow_phrase(author_id: str, resolve_user: ResolveUser) -> str:
    author = resolve_user(author_id)
    if author is not None and author.handle:
        return f"From someone you follow (@{author.handle})"
    return "From someone you follow"


def score_chirp(
    chirp: Chirp,
    viewer: User,
    config: ForYouConfig,
    resolve_user: ResolveUser,
    now: datetime,
) -> ScoredChirp:
    """Compute a ranking score and explanation for a single chirp."""
    total = 0.0
    mentions: list[tuple[float, str]] = []

    if chirp.author_id in viewer.following:
        points = _W_FOLLOW * config.following_weight.multiplier
        if points > 0:
            total += points
            mentions.append((points, _follow_phrase(chirp.author_id, resolve_user)))

    liked = matching_topics(chirp, config.liked_topics)
    if liked:
        points = min(_LIKED_TOPIC_CAP, _W_LIKED_TOPIC + _W_LIKED_TOPIC_EXTRA * (len(liked) - 1))
        total += points
        mentions.append((points, f"Matches your liked topic #{liked[0]}"))

    interests = [t for t in matching_topics(chirp, viewer.interests) if t not in liked]
    if interests:
        points = min(_INTEREST_CAP, _W_INTEREST + _W_INTEREST_EXTRA * (len(interests) - 1))
        total += points
        mentions.append((points, f"Matches your interest in {interests[0]}"))

    total += recency_points(chirp, now)

    if config.boost_active_conversations:
        points = conversation_points(chirp.comment_count)
        total += points
        if points >= _MIN_CONVERSATION_MENTION:
            mentions.append((points, "Active discussion"))

    points = value_points(chirp.value_score)
    total += points
    if chirp.value_score is not None and chirp.value_score.total >= _HIGH_VALUE_THRESHOLD:
        mentions.append((points, "High value content"))

    total = max(0.0, total)
    dampened = chirp.fact_check_status is FactCheckStatus.NEEDS_REVIEW
    if dampened:
        total *= _NEEDS_REVIEW_DAMPING

    return ScoredChirp(
        chirp=chirp,
        score=round(total, 4),
        explanation=_explain(mentions, dampened),
    )


def _explain(mentions: list[tuple[float, str]], dampened: bool) -> str:
    ordered = sorted(mentions, key=lambda m: (-m[0], m[1]))[:_MAX_REASONS]
    text = " + ".join(phrase for _, phrase in ordered) if ordered else "Recent post"
    if dampened:
        text += " (fact-check under review)"
    return text


# ── Feed assembly ──────────────────────────────────────────────────────────


def _order_key(item: ScoredChirp) -> tuple[float, float, str]:
    return (-item.score, -item.chirp.created_at.timestamp(), item.chirp.id)


def apply_diversity_limits(scored: Sequence[ScoredChirp], limit: int) -> list[ScoredChirp]:
    """Cap posts per author: a few in the top window, a few more overall."""
    results: list[ScoredChirp] = []
    per_author: Counter[str] = Counter()
    for item in scored:
        if len(results) >= limit:
            break
        author = item.chirp.author_id
        cap = (
            _AUTHOR_TOP_WINDOW_LIMIT if len(results) < _AUTHOR_TOP_WINDOW else _AUTHOR_TOTAL_LIMIT
        )
        if per_author[author] >= cap:
            continue
        results.append(item)
        per_author[author] += 1
    return results


def _empty_feed(viewer: User, config: ForYouConfig, muted_out: int) -> FeedResult:
    if config.muted_topics and muted_out:
        return FeedResult(
            empty_reason=FeedEmptyReason.OVER_MUTED,
            diagnosis=(
                f"Your {len(config.muted_topics)} muted topic(s) hide every available post; "
                "try unmuting some."
            ),
        )
    if not viewer.following and not viewer.interests and not config.liked_topics:
        return FeedResult(
            empty_reason=FeedEmptyReason.NO_SIGNALS,
            diagnosis="Follow people or add interests to personalise your feed.",
        )
    return FeedResult(
        empty_reason=FeedEmptyReason.NO_CANDIDATES,
        diagnosis="No posts are available right now.",
    )


def rank(
    posts: Iterable[Chirp],
    viewer: User | None,
    config: ForYouConfig,
    resolve_user: ResolveUser,
    *,
    now: datetime | None = None,
    limit: int = FEED_LIMIT,
) -> FeedResult:
    """Filter, score and order *posts* for *viewer*.

    Muted topics and blocked chirps are removed outright; everything else is
    scored and sorted descending (newer first on ties). The viewer's own posts
    are not filtered here.
    """
    if viewer is None:
        logger.info("Ranking skipped: no viewer")
        return FeedResult(
            empty_reason=FeedEmptyReason.NOT_PERSONALIZED,
            diagnosis="Feed is not personalized without a viewer.",
        )

    now = as_utc(now) if now else datetime.now(UTC)
    posts = list(posts)

    candidates: list[Chirp] = []
    muted_out = blocked_out = 0
    for chirp in posts:
        if chirp.fact_check_status is FactCheckStatus.BLOCKED:
            blocked_out += 1
        elif matching_topics(chirp, config.muted_topics):
            muted_out += 1
        else:
            candidates.append(chirp)

    logger.debug(
        "Ranking for %s: %d posts, %d muted, %d blocked",
        viewer.id,
        len(posts),
        muted_out,
        blocked_out,
    )

    if not candidates:
        result = _empty_feed(viewer, config, muted_out)
        logger.info("Empty feed for %s: %s", viewer.id, result.empty_reason.value)
        return result

    scored = sorted(
        (score_chirp(chirp, viewer, config, resolve_user, now) for chirp in candidates),
        key=_order_key,
    )
    items = apply_diversity_limits(scored, limit)
    logger.info(
        "Ranked %d items for %s; top score=%.1f",
        len(items),
        viewer.id,
        items[0].score if items else 0,
    )
    return FeedResult(items=items)
