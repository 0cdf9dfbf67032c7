"""KurralScore: an author's decayed 0–100 trust score.

The score is a fixed weighted function of five components. Each component is
a running aggregate that relaxes toward a neutral baseline with its own
half-life, so old behaviour fades and authors recover from past violations
through sustained quality activity.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from kurral import config
from kurral.models import (
    Contribution,
    FactCheckStatus,
    KurralScore,
    KurralScoreComponents,
    ScoreHistoryEntry,
    ValueScore,
    Violation,
    as_utc,
    clamp,
)
from kurral.store import MemoryScoreStore, ScoreStore, StaleScoreError

logger = logging.getLogger(__name__)

# ── Component weights ──────────────────────────────────────────────────────
_W_QUALITY = 0.40
_W_VIOLATIONS = 0.25
_W_ENGAGEMENT = 0.15
_W_CONSISTENCY = 0.10
_W_TRUST = 0.10

_NET_FLOOR = -0.25
_NET_CEILING = 0.75

# ── Event folding ──────────────────────────────────────────────────────────
_EMA_ALPHA = 0.2
_CONSISTENCY_STEP = 10.0
_REVIEW_TRUST = 60.0
_BLOCK_PENALTY = 1.0
_REVIEW_PENALTY = 0.4
_FALSE_CLAIM_PENALTY = 0.25

_BASELINE = KurralScoreComponents()

_HALF_LIVES: dict[str, float] = {
    "quality_history": config.QUALITY_HALF_LIFE_DAYS,
    "violation_history": config.VIOLATION_HALF_LIFE_DAYS,
    "engagement_quality": config.ENGAGEMENT_HALF_LIFE_DAYS,
    "consistency": config.CONSISTENCY_HALF_LIFE_DAYS,
    "community_trust": config.TRUST_HALF_LIFE_DAYS,
}

_SECONDS_PER_DAY = 24 * 60 * 60


# ── Pure scoring functions ─────────────────────────────────────────────────


def compute_score(components: KurralScoreComponents) -> float:
    """Map the five components onto the 0–100 score."""
    net = (
        components.quality_history * _W_QUALITY
        + components.engagement_quality * _W_ENGAGEMENT
        + components.consistency * _W_CONSISTENCY
        + components.community_trust * _W_TRUST
        - components.violation_history * _W_VIOLATIONS
    ) / 100
    net = max(_NET_FLOOR, min(_NET_CEILING, net))
    scaled = (net - _NET_FLOOR) / (_NET_CEILING - _NET_FLOOR) * 100
    return round(clamp(scaled, 0.0, 100.0, 0.0), 2)


def decay_components(components: KurralScoreComponents, elapsed_days: float) -> KurralScoreComponents:
    """Relax every component toward its baseline by its half-life."""
    if elapsed_days <= 0:
        return components
    decayed: dict[str, float] = {}
    for name, half_life in _HALF_LIVES.items():
        value = getattr(components, name)
        baseline = getattr(_BASELINE, name)
        factor = 0.5 ** (elapsed_days / half_life) if half_life > 0 else 0.0
        decayed[name] = baseline + (value - baseline) * factor
    return KurralScoreComponents(**decayed)


def initial_score(at: datetime) -> KurralScore:
    return KurralScore(
        score=compute_score(_BASELINE),
        last_updated=at,
        components=_BASELINE,
    )


def project(record: KurralScore, at: datetime) -> KurralScore:
    """Return *record* as it reads at *at*, with decay applied; never mutates."""
    elapsed = max(0.0, (at - record.last_updated).total_seconds() / _SECONDS_PER_DAY)
    components = decay_components(record.components, elapsed)
    return record.model_copy(
        update={"components": components, "score": compute_score(components)}
    )


def quality_signal(value: ValueScore) -> float:
    """Weighted value sub-components, on the 0–100 component scale."""
    weighted = (
        value.epistemic * 0.3
        + value.insight * 0.2
        + value.practical * 0.2
        + value.relational * 0.2
        + value.effort * 0.1
    )
    return clamp(weighted, 0.0, 1.0, 0.5) * 100


def violation_penalty(violation: Violation) -> float:
    """Severity of a violation in ``[0, 1]``."""
    penalty = 0.0
    if violation.status is FactCheckStatus.BLOCKED:
        penalty += _BLOCK_PENALTY
    elif violation.status is FactCheckStatus.NEEDS_REVIEW:
        penalty += _REVIEW_PENALTY
    if violation.false_claims > 0:
        penalty += min(1.0, violation.false_claims * _FALSE_CLAIM_PENALTY)
    return min(1.0, penalty)


def _toward(current: float, target: float) -> float:
    return current + _EMA_ALPHA * (target - current)


def fold_contribution(
    components: KurralScoreComponents, contribution: Contribution
) -> KurralScoreComponents:
    update: dict[str, float] = {}
    if contribution.value_score is not None:
        update["quality_history"] = _toward(
            components.quality_history, quality_signal(contribution.value_score)
        )
        update["consistency"] = (
            components.consistency + _CONSISTENCY_STEP * contribution.value_score.total
        )
    if contribution.discussion_quality is not None:
        update["engagement_quality"] = _toward(
            components.engagement_quality, contribution.discussion_quality.mean * 100
        )
    if contribution.policy_status is FactCheckStatus.CLEAN:
        update["community_trust"] = _toward(components.community_trust, 100.0)
    elif contribution.policy_status is FactCheckStatus.NEEDS_REVIEW:
        update["community_trust"] = _toward(components.community_trust, _REVIEW_TRUST)
    return KurralScoreComponents(**{**components.model_dump(), **update})


def fold_violation(components: KurralScoreComponents, violation: Violation) -> KurralScoreComponents:
    penalty = violation_penalty(violation)
    if violation.status is FactCheckStatus.BLOCKED:
        trust = 0.0
    else:
        trust = min(components.community_trust, _REVIEW_TRUST)
    return KurralScoreComponents(
        **{
            **components.model_dump(),
            "violation_history": components.violation_history + penalty * 100,
            "community_trust": trust,
        }
    )


# ── Engine ─────────────────────────────────────────────────────────────────


class ReputationEngine:
    """Owns every author's KurralScore and serialises writes per author.

    Writers for the same author queue on a per-author lock; the store's
    version check catches writers in other processes, and the whole
    read-fold-write is retried on conflict.
    """

    def __init__(
        self,
        store: ScoreStore | None = None,
        *,
        history_limit: int = config.HISTORY_LIMIT,
    ) -> None:
        self._store = store if store is not None else MemoryScoreStore()
        self._history_limit = history_limit
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ── public ──────────────────────────────────────────────────────────

    def record_contribution(self, author_id: str, contribution: Contribution) -> KurralScore:
        """Fold in *contribution*; a repeat for the same chirp and kind is a no-op."""
        reason = f"{contribution.kind.value}_value"
        event_key = None
        if contribution.chirp_id:
            reason = f"{reason}:{contribution.chirp_id}"
            event_key = f"{contribution.kind.value}:{contribution.chirp_id}"
        return self._apply(
            author_id,
            contribution.occurred_at,
            lambda components: fold_contribution(components, contribution),
            reason,
            event_key,
        )

    def record_violation(self, author_id: str, violation: Violation) -> KurralScore:
        """Fold in *violation*; only the first violation per chirp counts."""
        reason = violation.reason or f"violation:{violation.status.value}"
        event_key = None
        if violation.chirp_id:
            reason = f"{reason}:{violation.chirp_id}"
            event_key = f"violation:{violation.chirp_id}"
        return self._apply(
            author_id,
            violation.occurred_at,
            lambda components: fold_violation(components, violation),
            reason,
            event_key,
        )

    def current_score(self, author_id: str, at: datetime | None = None) -> KurralScore:
        """Read-only view of the author's score as of *at* (default: now)."""
        at = as_utc(at) if at else datetime.now(UTC)
        stored, _ = self._store.load(author_id)
        if stored is None:
            return initial_score(at)
        return project(stored, at)

    # ── private ─────────────────────────────────────────────────────────

    def _author_lock(self, author_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(author_id)
            if lock is None:
                lock = self._locks[author_id] = threading.Lock()
            return lock

    def _apply(
        self,
        author_id: str,
        occurred_at: datetime | None,
        fold: Callable[[KurralScoreComponents], KurralScoreComponents],
        reason: str,
        event_key: str | None = None,
    ) -> KurralScore:
        when = as_utc(occurred_at) if occurred_at else datetime.now(UTC)
        with self._author_lock(author_id):
            updated, applied = self._write(author_id, when, fold, reason, event_key)
        if applied:
            logger.info("KurralScore %s: %.2f (%s)", author_id, updated.score, reason)
        else:
            logger.info("KurralScore %s: %s already recorded, skipped", author_id, event_key)
        return updated

    @retry(
        retry=retry_if_exception_type(StaleScoreError),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=0.01, max=0.2),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _write(
        self,
        author_id: str,
        when: datetime,
        fold: Callable[[KurralScoreComponents], KurralScoreComponents],
        reason: str,
        event_key: str | None,
    ) -> tuple[KurralScore, bool]:
        stored, version = self._store.load(author_id)
        if event_key and stored is not None and event_key in stored.event_keys:
            return stored, False
        previous = project(stored, when) if stored is not None else initial_score(when)

        components = fold(previous.components)
        score = compute_score(components)
        entry = ScoreHistoryEntry(
            date=when,
            score=score,
            delta=round(score - previous.score, 2),
            reason=reason,
        )
        history = [*previous.history, entry]
        history = history[-self._history_limit:] if self._history_limit > 0 else []

        updated = KurralScore(
            score=score,
            last_updated=max(when, previous.last_updated),
            components=components,
            history=history,
            event_keys=[*previous.event_keys, event_key] if event_key else previous.event_keys,
        )
        self._store.save(author_id, updated, version)
        return updated, True
