"""Fact-check policy: reduce a chirp's claims and verdicts to a visibility status.

Each claim is classified on its own and the chirp takes the worst class
(``blocked`` > ``needs_review`` > ``clean``). A single confidently false claim
blocks the chirp no matter how many other claims check out, and an unresolved
claim in a sensitive domain is never hidden by unrelated verified ones.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from kurral import config
from kurral.models import (
    Chirp,
    Claim,
    FactCheck,
    FactCheckStatus,
    PolicyDecision,
    RiskLevel,
    Verdict,
)

logger = logging.getLogger(__name__)


def latest_checks(fact_checks: Iterable[FactCheck]) -> dict[str, FactCheck]:
    """Index fact-checks by claim id, keeping the most recent one per claim.

    Undated checks lose to dated ones; among equals the later list entry wins.
    """
    latest: dict[str, FactCheck] = {}
    for check in fact_checks:
        current = latest.get(check.claim_id)
        if current is None or _checked_key(check) >= _checked_key(current):
            latest[check.claim_id] = check
    return latest


def _checked_key(check: FactCheck) -> float:
    return check.checked_at.timestamp() if check.checked_at else float("-inf")


def classify_claim(claim: Claim, check: FactCheck | None) -> tuple[FactCheckStatus, str | None]:
    """Classify one claim against its fact-check; return ``(status, reason)``."""
    if (
        check is not None
        and check.verdict is Verdict.FALSE
        and check.confidence >= config.BLOCK_CONFIDENCE
    ):
        return FactCheckStatus.BLOCKED, f'Claim "{claim.text}" is false with high confidence.'

    if claim.risk_level is not RiskLevel.HIGH:
        return FactCheckStatus.CLEAN, None

    domain = claim.domain.value
    if check is None:
        return FactCheckStatus.NEEDS_REVIEW, f'{domain} claim "{claim.text}" lacks verification.'
    if check.verdict is Verdict.MIXED:
        return FactCheckStatus.NEEDS_REVIEW, f'{domain} claim "{claim.text}" has mixed evidence.'
    if check.verdict is Verdict.UNVERIFIED:
        return FactCheckStatus.NEEDS_REVIEW, f'{domain} claim "{claim.text}" could not be verified.'
    if check.confidence < config.REVIEW_CONFIDENCE:
        return (
            FactCheckStatus.NEEDS_REVIEW,
            f'{domain} claim "{claim.text}" was checked with low confidence '
            f"({check.confidence:.2f}).",
        )
    if check.verdict is Verdict.FALSE:
        return FactCheckStatus.NEEDS_REVIEW, f'{domain} claim "{claim.text}" is likely false.'
    return FactCheckStatus.CLEAN, None


def evaluate_policy(claims: Sequence[Claim], fact_checks: Sequence[FactCheck]) -> PolicyDecision:
    """Return the status for a chirp together with the reasons behind it."""
    if not claims:
        return PolicyDecision(status=FactCheckStatus.CLEAN, reasons=["No extractable claims"])

    checks = latest_checks(fact_checks)
    status = FactCheckStatus.CLEAN
    reasons: list[str] = []

    for claim in claims:
        claim_status, reason = classify_claim(claim, checks.get(claim.id))
        if reason:
            reasons.append(reason)
        if claim_status.severity > status.severity:
            status = claim_status

    if not reasons:
        reasons.append("All claims verified.")

    return PolicyDecision(
        status=status,
        reasons=reasons,
        escalate_to_human=status is not FactCheckStatus.CLEAN,
    )


def decide_status(claims: Sequence[Claim], fact_checks: Sequence[FactCheck]) -> FactCheckStatus:
    """Total and side-effect free: no claims means ``clean``."""
    return evaluate_policy(claims, fact_checks).status


# ── Visibility gate ────────────────────────────────────────────────────────


def should_display(
    chirp: Chirp,
    viewer_id: str | None,
    profile_owner_id: str | None = None,
) -> bool:
    """Decide whether *chirp* may be shown to *viewer_id*.

    Blocked chirps are only surfaced to their own author, and only while the
    author is looking at their own profile; everything else is displayable.
    """
    if chirp.fact_check_status is not FactCheckStatus.BLOCKED:
        return True
    if not viewer_id or viewer_id != chirp.author_id:
        return False
    return profile_owner_id is not None and viewer_id == profile_owner_id


def filter_for_viewer(
    chirps: Iterable[Chirp],
    viewer_id: str | None,
    profile_owner_id: str | None = None,
) -> list[Chirp]:
    chirps = list(chirps)
    visible = [c for c in chirps if should_display(c, viewer_id, profile_owner_id)]
    if len(visible) != len(chirps):
        logger.debug(
            "Visibility: hid %d blocked chirps from viewer %s",
            len(chirps) - len(visible),
            viewer_id,
        )
    return visible
