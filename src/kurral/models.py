"""Domain models used across the policy, reputation, ranking and tuning engines.

Every entity has exactly one default-filling constructor: the model itself.
Fields are snake_case and also accept the camelCase keys used by the document
store (``authorId``, ``factChecks`` ...). Malformed scalar values are coerced
to the most cautious reading instead of raising.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel


# ── Coercion helpers ───────────────────────────────────────────────────────


def clamp(value: Any, low: float, high: float, default: float) -> float:
    """Coerce *value* to a float in ``[low, high]``; junk and NaN become *default*."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return max(low, min(high, number))


def clamp01(value: Any, default: float = 0.0) -> float:
    return clamp(value, 0.0, 1.0, default)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def normalize_topic(value: str) -> str:
    return " ".join(str(value).lower().split())


def _topic_set(value: Any) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = [value]
    return frozenset(t for t in (normalize_topic(v) for v in value) if t)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]

_MAX_COUNT = 10**9


class _Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Snapshot(_Document):
    model_config = ConfigDict(frozen=True)


# ── Closed vocabularies ────────────────────────────────────────────────────


class ClaimDomain(str, Enum):
    HEALTH = "health"
    FINANCE = "finance"
    POLITICS = "politics"
    TECHNOLOGY = "technology"
    SCIENCE = "science"
    SOCIETY = "society"
    GENERAL = "general"

    @classmethod
    def parse(cls, value: Any) -> ClaimDomain:
        return _lookup(cls, value, cls.GENERAL)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


_DOMAIN_RISK: dict[ClaimDomain, RiskLevel] = {
    ClaimDomain.HEALTH: RiskLevel.HIGH,
    ClaimDomain.FINANCE: RiskLevel.HIGH,
    ClaimDomain.POLITICS: RiskLevel.HIGH,
    ClaimDomain.TECHNOLOGY: RiskLevel.MEDIUM,
    ClaimDomain.SCIENCE: RiskLevel.MEDIUM,
    ClaimDomain.SOCIETY: RiskLevel.MEDIUM,
    ClaimDomain.GENERAL: RiskLevel.LOW,
}


class ClaimType(str, Enum):
    FACT = "fact"
    OPINION = "opinion"
    EXPERIENCE = "experience"

    @classmethod
    def parse(cls, value: Any) -> ClaimType:
        return _lookup(cls, value, cls.FACT)


class Verdict(str, Enum):
    TRUE = "true"
    FALSE = "false"
    MIXED = "mixed"
    UNVERIFIED = "unverified"

    @classmethod
    def parse(cls, value: Any) -> Verdict:
        # YAML and JSON documents may carry real booleans here.
        if isinstance(value, bool):
            return cls.TRUE if value else cls.FALSE
        if isinstance(value, str) and value.strip().lower() == "unknown":
            return cls.UNVERIFIED
        return _lookup(cls, value, cls.UNVERIFIED)


class FactCheckStatus(str, Enum):
    CLEAN = "clean"
    NEEDS_REVIEW = "needs_review"
    BLOCKED = "blocked"

    @property
    def severity(self) -> int:
        return _STATUS_SEVERITY[self]

    @classmethod
    def parse(cls, value: Any) -> FactCheckStatus:
        return _lookup(cls, value, cls.CLEAN)


_STATUS_SEVERITY: dict[FactCheckStatus, int] = {
    FactCheckStatus.CLEAN: 0,
    FactCheckStatus.NEEDS_REVIEW: 1,
    FactCheckStatus.BLOCKED: 2,
}


class DiscussionRole(str, Enum):
    QUESTION = "question"
    ANSWER = "answer"
    EVIDENCE = "evidence"
    OPINION = "opinion"
    MODERATION = "moderation"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> DiscussionRole:
        return _lookup(cls, value, cls.OTHER)


class FollowingWeight(str, Enum):
    NONE = "none"
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"

    @property
    def multiplier(self) -> float:
        return _FOLLOWING_MULTIPLIER[self]

    @classmethod
    def parse(cls, value: Any) -> FollowingWeight:
        return _lookup(cls, value, cls.MEDIUM)


_FOLLOWING_MULTIPLIER: dict[FollowingWeight, float] = {
    FollowingWeight.NONE: 0.0,
    FollowingWeight.LIGHT: 0.25,
    FollowingWeight.MEDIUM: 0.5,
    FollowingWeight.HEAVY: 1.0,
}


class ContributionKind(str, Enum):
    POST = "post"
    COMMENT = "comment"


class EngagementKind(str, Enum):
    VIEW = "view"
    LIKE = "like"
    COMMENT = "comment"
    BOOKMARK = "bookmark"
    RECHIRP = "rechirp"
    MUTE = "mute"

    @property
    def is_engagement(self) -> bool:
        return self not in (EngagementKind.VIEW, EngagementKind.MUTE)


class FeedEmptyReason(str, Enum):
    NOT_PERSONALIZED = "not_personalized"
    NO_SIGNALS = "no_signals"
    OVER_MUTED = "over_muted"
    NO_CANDIDATES = "no_candidates"


def _lookup(enum_cls: Any, value: Any, default: Any) -> Any:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            return default
    return default


# ── Claims and verdicts ────────────────────────────────────────────────────


class Claim(_Snapshot):
    id: str
    text: str = ""
    type: ClaimType = ClaimType.FACT
    domain: ClaimDomain = ClaimDomain.GENERAL

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> ClaimType:
        return ClaimType.parse(value)

    @field_validator("domain", mode="before")
    @classmethod
    def _parse_domain(cls, value: Any) -> ClaimDomain:
        return ClaimDomain.parse(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def risk_level(self) -> RiskLevel:
        return _DOMAIN_RISK[self.domain]


class Evidence(_Snapshot):
    source: str = ""
    snippet: str = ""
    url: str | None = None
    quality: float = 0.5

    @field_validator("quality", mode="before")
    @classmethod
    def _clamp_quality(cls, value: Any) -> float:
        return clamp01(value, default=0.5)


class FactCheck(_Snapshot):
    claim_id: str
    verdict: Verdict = Verdict.UNVERIFIED
    confidence: float = 0.0
    evidence: list[Evidence] = Field(default_factory=list)
    caveats: list[str] = Field(default_factory=list)
    checked_at: UtcDatetime | None = None

    @field_validator("verdict", mode="before")
    @classmethod
    def _parse_verdict(cls, value: Any) -> Verdict:
        return Verdict.parse(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return clamp01(value)


class PolicyDecision(_Snapshot):
    status: FactCheckStatus
    reasons: list[str] = Field(default_factory=list)
    escalate_to_human: bool = False


# ── Value scoring ──────────────────────────────────────────────────────────


class ValueScore(_Snapshot):
    total: float = 0.0
    confidence: float = 0.0
    epistemic: float = 0.5
    insight: float = 0.5
    practical: float = 0.5
    relational: float = 0.5
    effort: float = 0.5
    drivers: list[str] = Field(default_factory=list)

    @field_validator("total", "confidence", mode="before")
    @classmethod
    def _clamp_headline(cls, value: Any) -> float:
        return clamp01(value)

    @field_validator("epistemic", "insight", "practical", "relational", "effort", mode="before")
    @classmethod
    def _clamp_vector(cls, value: Any) -> float:
        return clamp01(value, default=0.5)


class DiscussionQuality(_Snapshot):
    informativeness: float = 0.0
    civility: float = 0.0
    reasoning_depth: float = 0.0
    cross_perspective: float = 0.0
    summary: str = ""

    @field_validator(
        "informativeness", "civility", "reasoning_depth", "cross_perspective", mode="before"
    )
    @classmethod
    def _clamp_axes(cls, value: Any) -> float:
        return clamp01(value)

    @property
    def mean(self) -> float:
        return (
            self.informativeness + self.civility + self.reasoning_depth + self.cross_perspective
        ) / 4


# ── Posts ──────────────────────────────────────────────────────────────────


class Chirp(_Snapshot):
    id: str
    author_id: str
    text: str = ""
    topic: str = ""
    semantic_topics: list[str] = Field(default_factory=list)
    created_at: UtcDatetime
    comment_count: int = 0
    value_score: ValueScore | None = None
    discussion_role: DiscussionRole = DiscussionRole.OTHER
    claims: list[Claim] = Field(default_factory=list)
    fact_checks: list[FactCheck] = Field(default_factory=list)

    @field_validator("semantic_topics", mode="before")
    @classmethod
    def _listify_topics(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value]

    @field_validator("comment_count", mode="before")
    @classmethod
    def _count(cls, value: Any) -> int:
        return int(clamp(value, 0, _MAX_COUNT, 0))

    @field_validator("discussion_role", mode="before")
    @classmethod
    def _parse_role(cls, value: Any) -> DiscussionRole:
        return DiscussionRole.parse(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def fact_check_status(self) -> FactCheckStatus:
        """Always derived from ``claims``/``fact_checks``; never stored."""
        from kurral.policy import decide_status

        return decide_status(self.claims, self.fact_checks)

    @property
    def topics(self) -> list[str]:
        """Primary topic followed by semantic topics, normalised, without repeats."""
        seen: list[str] = []
        for raw in [self.topic, *self.semantic_topics]:
            norm = normalize_topic(raw)
            if norm and norm not in seen:
                seen.append(norm)
        return seen


# ── Users, configuration and reputation ────────────────────────────────────


class ForYouConfig(_Snapshot):
    following_weight: FollowingWeight = FollowingWeight.MEDIUM
    boost_active_conversations: bool = True
    liked_topics: frozenset[str] = Field(default_factory=frozenset)
    muted_topics: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("following_weight", mode="before")
    @classmethod
    def _parse_weight(cls, value: Any) -> FollowingWeight:
        return FollowingWeight.parse(value)

    @field_validator("liked_topics", "muted_topics", mode="before")
    @classmethod
    def _normalize_topics(cls, value: Any) -> frozenset[str]:
        return _topic_set(value)


class KurralScoreComponents(_Snapshot):
    quality_history: float = 50.0
    violation_history: float = 0.0
    engagement_quality: float = 40.0
    consistency: float = 0.0
    community_trust: float = 100.0

    @field_validator("*", mode="before")
    @classmethod
    def _clamp_component(cls, value: Any) -> float:
        return clamp(value, 0.0, 100.0, 0.0)


class ScoreHistoryEntry(_Snapshot):
    date: UtcDatetime
    score: float
    delta: float = 0.0
    reason: str = "score_update"


class KurralScore(_Snapshot):
    score: float
    last_updated: UtcDatetime
    components: KurralScoreComponents = Field(default_factory=KurralScoreComponents)
    history: list[ScoreHistoryEntry] = Field(default_factory=list)
    # "<kind>:<chirp id>" of every event already folded in; never trimmed.
    event_keys: list[str] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> float:
        return clamp(value, 0.0, 100.0, 0.0)


class User(_Snapshot):
    id: str
    handle: str = ""
    following: frozenset[str] = Field(default_factory=frozenset)
    interests: frozenset[str] = Field(default_factory=frozenset)
    for_you_config: ForYouConfig = Field(default_factory=ForYouConfig)
    kurral_score: KurralScore | None = None

    @field_validator("following", mode="before")
    @classmethod
    def _ids(cls, value: Any) -> frozenset[str]:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        return frozenset(str(v).strip() for v in value if str(v).strip())

    @field_validator("interests", mode="before")
    @classmethod
    def _normalize_interests(cls, value: Any) -> frozenset[str]:
        return _topic_set(value)


# ── Reputation events ──────────────────────────────────────────────────────


class Contribution(_Snapshot):
    chirp_id: str = ""
    kind: ContributionKind = ContributionKind.POST
    value_score: ValueScore | None = None
    discussion_quality: DiscussionQuality | None = None
    policy_status: FactCheckStatus = FactCheckStatus.CLEAN
    occurred_at: UtcDatetime | None = None

    @field_validator("policy_status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> FactCheckStatus:
        return FactCheckStatus.parse(value)


class Violation(_Snapshot):
    chirp_id: str = ""
    status: FactCheckStatus = FactCheckStatus.BLOCKED
    false_claims: int = 0
    occurred_at: UtcDatetime | None = None
    reason: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> FactCheckStatus:
        # An unreadable status on a violation is read as the harshest one.
        parsed = FactCheckStatus.parse(value)
        if parsed is FactCheckStatus.CLEAN and value != FactCheckStatus.CLEAN.value:
            return FactCheckStatus.BLOCKED
        return parsed

    @field_validator("false_claims", mode="before")
    @classmethod
    def _count(cls, value: Any) -> int:
        return int(clamp(value, 0, _MAX_COUNT, 0))


# ── Engine outputs ─────────────────────────────────────────────────────────


class ScoredChirp(_Snapshot):
    chirp: Chirp
    score: float
    explanation: str


class FeedResult(_Snapshot):
    items: list[ScoredChirp] = Field(default_factory=list)
    empty_reason: FeedEmptyReason | None = None
    diagnosis: str = ""

    @property
    def chirp_ids(self) -> list[str]:
        return [item.chirp.id for item in self.items]


# ── Engagement and tuning ──────────────────────────────────────────────────


class EngagementEvent(_Snapshot):
    chirp_id: str
    viewer_id: str
    kind: EngagementKind = EngagementKind.VIEW
    occurred_at: UtcDatetime | None = None


_MIN_ACTIONABLE_CONFIDENCE = 0.3


class TuningSuggestion(_Snapshot):
    following_weight: FollowingWeight
    boost_active_conversations: bool
    liked_topics: frozenset[str] = Field(default_factory=frozenset)
    muted_topics: frozenset[str] = Field(default_factory=frozenset)
    confidence: float = 0.0
    explanation: str = ""

    @field_validator("following_weight", mode="before")
    @classmethod
    def _parse_weight(cls, value: Any) -> FollowingWeight:
        return FollowingWeight.parse(value)

    @field_validator("liked_topics", "muted_topics", mode="before")
    @classmethod
    def _normalize_topics(cls, value: Any) -> frozenset[str]:
        return _topic_set(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return clamp01(value)

    def differs_from(self, config: ForYouConfig) -> bool:
        return (
            self.following_weight != config.following_weight
            or self.boost_active_conversations != config.boost_active_conversations
            or not self.liked_topics <= config.liked_topics
            or not self.muted_topics <= config.muted_topics
        )

    def is_actionable(self, config: ForYouConfig) -> bool:
        """Worth showing to the viewer: confident enough and not a no-op."""
        return self.confidence >= _MIN_ACTIONABLE_CONFIDENCE and self.differs_from(config)
