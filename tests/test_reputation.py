"""Tests for KurralScore computation, decay and concurrent updates."""

import threading
from datetime import UTC, datetime, timedelta

import pytest

from kurral.models import Contribution, KurralScoreComponents, ValueScore, Violation
from kurral.reputation import (
    ReputationEngine,
    compute_score,
    decay_components,
    violation_penalty,
)
from kurral.store import MemoryScoreStore, StaleScoreError

T0 = datetime(2025, 1, 1, tzinfo=UTC)


def _contribution(chirp_id: str = "p1", total: float = 0.9, at: datetime = T0) -> Contribution:
    value = ValueScore(
        total=total,
        confidence=0.9,
        epistemic=total,
        insight=total,
        practical=total,
        relational=total,
        effort=total,
    )
    return Contribution(chirp_id=chirp_id, value_score=value, occurred_at=at)


def _violation(chirp_id: str = "p1", at: datetime = T0, **kw) -> Violation:
    return Violation(chirp_id=chirp_id, occurred_at=at, **kw)


class FlakyStore(MemoryScoreStore):
    """Reports a concurrent write for the first *failures* saves."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def save(self, author_id, score, expected_version):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise StaleScoreError(author_id, expected_version)
        return super().save(author_id, score, expected_version)


class TestComputeScore:
    def test_baseline(self) -> None:
        assert compute_score(KurralScoreComponents()) == 61.0

    def test_best_and_worst(self) -> None:
        best = KurralScoreComponents(
            quality_history=100,
            violation_history=0,
            engagement_quality=100,
            consistency=100,
            community_trust=100,
        )
        worst = KurralScoreComponents(
            quality_history=0,
            violation_history=100,
            engagement_quality=0,
            consistency=0,
            community_trust=0,
        )
        assert compute_score(best) == 100.0
        assert compute_score(worst) == 0.0

    def test_components_clamped(self) -> None:
        components = KurralScoreComponents(violation_history=250, community_trust=-10)
        assert components.violation_history == 100.0
        assert components.community_trust == 0.0

    def test_decay_moves_toward_baseline(self) -> None:
        hurt = KurralScoreComponents(violation_history=100, community_trust=0)
        decayed = decay_components(hurt, 21)
        # violations halve every 21 days, trust recovers with a 14-day half-life
        assert decayed.violation_history == pytest.approx(50.0)
        assert decayed.community_trust == pytest.approx(100 - 100 * 0.5**1.5)
        assert decayed.quality_history == 50.0
        assert decay_components(hurt, 0) == hurt

    def test_violation_penalty_bounded(self) -> None:
        assert violation_penalty(_violation(false_claims=10)) == 1.0
        assert violation_penalty(_violation(status="needs_review")) == pytest.approx(0.4)


class TestReputationEngine:
    def test_unknown_author_gets_baseline(self) -> None:
        engine = ReputationEngine()
        score = engine.current_score("nobody", at=T0)
        assert score.score == 61.0
        assert score.history == []

    def test_violation_drops_score(self) -> None:
        engine = ReputationEngine()
        updated = engine.record_violation("a", _violation(reason="fact_check_blocked"))
        assert updated.score == 26.0
        assert updated.history[-1].reason == "fact_check_blocked:p1"
        assert updated.history[-1].delta == pytest.approx(-35.0)

    def test_decay_recovers(self) -> None:
        engine = ReputationEngine()
        at_violation = engine.record_violation("a", _violation()).score
        later = engine.current_score("a", at=T0 + timedelta(days=120)).score
        assert later > at_violation
        assert later <= 61.0

    def test_contribution_raises_score(self) -> None:
        engine = ReputationEngine()
        updated = engine.record_contribution("a", _contribution(total=0.95))
        assert updated.score > 61.0
        assert updated.history[-1].reason == "post_value:p1"

    def test_score_bounds_over_long_sequences(self) -> None:
        engine = ReputationEngine()
        at = T0
        for i in range(60):
            at += timedelta(hours=6)
            if i % 3 == 0:
                result = engine.record_violation("a", _violation(f"v{i}", at=at, false_claims=3))
            else:
                result = engine.record_contribution("a", _contribution(f"c{i}", total=1.0, at=at))
            assert 0.0 <= result.score <= 100.0
            for entry in result.history:
                assert 0.0 <= entry.score <= 100.0

    def test_history_is_capped(self) -> None:
        engine = ReputationEngine(history_limit=3)
        for i in range(5):
            result = engine.record_contribution("a", _contribution(f"p{i}"))
        assert len(result.history) == 3
        assert [h.reason for h in result.history] == [
            "post_value:p2",
            "post_value:p3",
            "post_value:p4",
        ]

    def test_zero_history_limit_keeps_nothing(self) -> None:
        engine = ReputationEngine(history_limit=0)
        assert engine.record_contribution("a", _contribution()).history == []

    def test_repeat_events_for_a_chirp_count_once(self) -> None:
        engine = ReputationEngine()
        first = engine.record_contribution("a", _contribution("p1"))
        again = engine.record_contribution("a", _contribution("p1", total=1.0))
        assert again == first
        assert len(again.history) == 1
        assert again.event_keys == ["post:p1"]

        blocked = engine.record_violation("a", _violation("p1"))
        assert engine.record_violation("a", _violation("p1")) == blocked
        assert blocked.event_keys == ["post:p1", "violation:p1"]
        assert len(blocked.history) == 2

    def test_events_without_chirp_are_not_deduplicated(self) -> None:
        engine = ReputationEngine()
        engine.record_violation("a", _violation(""))
        result = engine.record_violation("a", _violation(""))
        assert len(result.history) == 2
        assert result.event_keys == []

    def test_authors_are_independent(self) -> None:
        engine = ReputationEngine()
        engine.record_violation("a", _violation())
        assert engine.current_score("b", at=T0).score == 61.0

    def test_concurrent_updates_are_not_lost(self) -> None:
        store = MemoryScoreStore()
        engine = ReputationEngine(store, history_limit=1000)

        def worker(n: int) -> None:
            for i in range(5):
                engine.record_contribution("a", _contribution(f"t{n}-{i}"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stored, version = store.load("a")
        assert version == 40
        assert len(stored.history) == 40

    def test_stale_write_is_retried(self) -> None:
        store = FlakyStore(failures=2)
        engine = ReputationEngine(store)
        result = engine.record_contribution("a", _contribution())
        assert store.attempts == 3
        assert store.load("a")[0] == result

    def test_persistent_conflict_is_raised(self) -> None:
        engine = ReputationEngine(FlakyStore(failures=100))
        with pytest.raises(StaleScoreError):
            engine.record_violation("a", _violation())
