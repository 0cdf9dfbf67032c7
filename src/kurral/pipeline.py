"""Wiring between the engines: verification → status → reputation → feed."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from kurral import config
from kurral.cache import FeedCache
from kurral.models import (
    Chirp,
    Claim,
    Contribution,
    FactCheck,
    FactCheckStatus,
    FeedResult,
    ForYouConfig,
    User,
    ValueScore,
    Verdict,
    Violation,
    as_utc,
)
from kurral.policy import evaluate_policy, latest_checks
from kurral.rank import ResolveUser, rank
from kurral.reputation import ReputationEngine

logger = logging.getLogger(__name__)


def apply_verification(
    chirp: Chirp,
    claims: Sequence[Claim],
    fact_checks: Sequence[FactCheck],
    reputation: ReputationEngine,
    *,
    now: datetime | None = None,
) -> Chirp:
    """Attach verifier output to *chirp* and return the new snapshot.

    A chirp that becomes ``blocked`` records one violation against its
    author; staying blocked across re-verification does not record another.
    """
    now = as_utc(now) if now else datetime.now(UTC)
    previous = chirp.fact_check_status
    updated = chirp.model_copy(update={"claims": list(claims), "fact_checks": list(fact_checks)})
    decision = evaluate_policy(updated.claims, updated.fact_checks)

    logger.info(
        "Chirp %s: %s → %s (%d claims)",
        chirp.id,
        previous.value,
        decision.status.value,
        len(claims),
    )
    for reason in decision.reasons:
        logger.debug("  [%s] %s", chirp.id, reason)

    if decision.status is FactCheckStatus.BLOCKED and previous is not FactCheckStatus.BLOCKED:
        checks = latest_checks(updated.fact_checks)
        false_claims = sum(
            1
            for check in (checks.get(claim.id) for claim in updated.claims)
            if check is not None
            and check.verdict is Verdict.FALSE
            and check.confidence >= config.BLOCK_CONFIDENCE
        )
        reputation.record_violation(
            chirp.author_id,
            Violation(
                chirp_id=chirp.id,
                status=decision.status,
                false_claims=false_claims,
                occurred_at=now,
                reason="fact_check_blocked",
            ),
        )
    return updated


def apply_value_score(
    chirp: Chirp,
    value_score: ValueScore,
    reputation: ReputationEngine,
    *,
    now: datetime | None = None,
) -> Chirp:
    """Attach a value score; a clean, high-value chirp credits its author once."""
    now = as_utc(now) if now else datetime.now(UTC)
    first_score = chirp.value_score is None
    updated = chirp.model_copy(update={"value_score": value_score})

    if (
        first_score
        and updated.fact_check_status is FactCheckStatus.CLEAN
        and value_score.total >= config.HIGH_VALUE_THRESHOLD
    ):
        reputation.record_contribution(
            chirp.author_id,
            Contribution(
                chirp_id=chirp.id,
                value_score=value_score,
                policy_status=FactCheckStatus.CLEAN,
                occurred_at=now,
            ),
        )
    else:
        logger.debug(
            "Chirp %s value %.2f recorded without contribution (status=%s, first=%s)",
            chirp.id,
            value_score.total,
            updated.fact_check_status.value,
            first_score,
        )
    return updated


def build_feed(
    posts: Iterable[Chirp],
    viewer: User | None,
    resolve_user: ResolveUser,
    *,
    for_you: ForYouConfig | None = None,
    cache: FeedCache | None = None,
    candidate_version: str | int | None = None,
    now: datetime | None = None,
    limit: int = config.FEED_LIMIT,
) -> FeedResult:
    """Rank *posts* for *viewer*, memoised when a cache and version are given.

    *for_you* defaults to the viewer's own saved config.
    """
    if viewer is None:
        return rank(posts, None, for_you or ForYouConfig(), resolve_user, now=now, limit=limit)

    settings = for_you or viewer.for_you_config

    def compute() -> FeedResult:
        return rank(posts, viewer, settings, resolve_user, now=now, limit=limit)

    if cache is None or candidate_version is None:
        return compute()
    return cache.get_or_compute(FeedCache.key(viewer.id, settings, candidate_version), compute)
