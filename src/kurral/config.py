"""Centralised configuration loaded from environment variables and dotenv."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ── Paths ──────────────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[2]
SNAPSHOTS_DIR: Path = PROJECT_ROOT / "config" / "snapshots"
DB_BASE: Path = Path(os.getenv("KURRAL_DB_DIR", str(PROJECT_ROOT / "var")))
SCORE_DB: Path = Path(os.getenv("KURRAL_SCORE_DB", str(DB_BASE / "kurral_scores.sqlite3")))

# ── Logging ────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("KURRAL_LOG_LEVEL", "INFO").upper()

# ── Fact-check policy ─────────────────────────────────────────────────────
BLOCK_CONFIDENCE: float = float(os.getenv("KURRAL_BLOCK_CONFIDENCE", "0.8"))
REVIEW_CONFIDENCE: float = float(os.getenv("KURRAL_REVIEW_CONFIDENCE", "0.6"))

# ── Reputation ────────────────────────────────────────────────────────────
HIGH_VALUE_THRESHOLD: float = float(os.getenv("KURRAL_HIGH_VALUE_THRESHOLD", "0.7"))
HISTORY_LIMIT: int = int(os.getenv("KURRAL_HISTORY_LIMIT", "20"))
QUALITY_HALF_LIFE_DAYS: float = float(os.getenv("KURRAL_QUALITY_HALF_LIFE_DAYS", "30"))
VIOLATION_HALF_LIFE_DAYS: float = float(os.getenv("KURRAL_VIOLATION_HALF_LIFE_DAYS", "21"))
ENGAGEMENT_HALF_LIFE_DAYS: float = float(os.getenv("KURRAL_ENGAGEMENT_HALF_LIFE_DAYS", "30"))
CONSISTENCY_HALF_LIFE_DAYS: float = float(os.getenv("KURRAL_CONSISTENCY_HALF_LIFE_DAYS", "14"))
TRUST_HALF_LIFE_DAYS: float = float(os.getenv("KURRAL_TRUST_HALF_LIFE_DAYS", "14"))

# ── Feed ──────────────────────────────────────────────────────────────────
FEED_LIMIT: int = int(os.getenv("KURRAL_FEED_LIMIT", "50"))
CACHE_SIZE: int = int(os.getenv("KURRAL_CACHE_SIZE", "256"))


def snapshot_path(name: str) -> Path:
    """Resolve a snapshot name (``demo``) or path to a YAML file.

    Bare names are looked up in ``config/snapshots``; anything that already
    points at an existing file is returned unchanged.
    """
    candidate = Path(name)
    if candidate.exists():
        return candidate
    return SNAPSHOTS_DIR / f"{_snapshot_filename(name)}"


def _snapshot_filename(name: str) -> str:
    return name if name.endswith((".yml", ".yaml")) else f"{name}.yml"
