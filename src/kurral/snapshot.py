"""Load users, chirps and engagement events from a YAML snapshot file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from kurral.models import Chirp, EngagementEvent, User, as_utc

logger = logging.getLogger(__name__)

_M = TypeVar("_M", bound=BaseModel)


@dataclass
class Snapshot:
    users: dict[str, User] = field(default_factory=dict)
    chirps: list[Chirp] = field(default_factory=list)
    events: list[EngagementEvent] = field(default_factory=list)
    now: datetime | None = None

    def resolve_user(self, user_id: str) -> User | None:
        return self.users.get(user_id)

    @property
    def chirps_by_id(self) -> dict[str, Chirp]:
        return {chirp.id: chirp for chirp in self.chirps}


def _load_entries(raw: Any, model: type[_M], section: str, source: Path) -> list[_M]:
    """Validate each entry of a section, skipping (and logging) bad ones."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning("%s: '%s' should be a list; ignoring it", source, section)
        return []
    loaded: list[_M] = []
    for index, entry in enumerate(raw):
        try:
            loaded.append(model.model_validate(entry))
        except ValidationError as exc:
            logger.warning(
                "%s: skipping %s[%d]: %d validation error(s): %s",
                source,
                section,
                index,
                exc.error_count(),
                exc.errors()[0]["msg"],
            )
    return loaded


def load_snapshot(path: str | Path) -> Snapshot:
    """Parse a snapshot file with optional ``users``, ``chirps``, ``events`` and ``now`` keys."""
    p = Path(path)
    if not p.exists():
        logger.warning("Snapshot not found, using empty snapshot: %s", p)
        return Snapshot()

    with open(p, encoding="utf-8") as fh:
        cfg: Any = yaml.safe_load(fh) or {}
    if not isinstance(cfg, dict):
        logger.warning(
            "Snapshot %s should be a mapping, got %s; using empty snapshot",
            p,
            type(cfg).__name__,
        )
        return Snapshot()

    users = _load_entries(cfg.get("users"), User, "users", p)
    chirps = _load_entries(cfg.get("chirps"), Chirp, "chirps", p)
    events = _load_entries(cfg.get("events"), EngagementEvent, "events", p)

    now = cfg.get("now")
    if isinstance(now, str):
        try:
            now = datetime.fromisoformat(now)
        except ValueError:
            pass
    if now is not None and not isinstance(now, datetime):
        logger.warning("%s: ignoring unreadable 'now' value %r", p, now)
        now = None

    snapshot = Snapshot(
        users={user.id: user for user in users},
        chirps=chirps,
        events=events,
        now=as_utc(now) if now else None,
    )
    logger.info(
        "Loaded snapshot %s: %d users, %d chirps, %d events",
        p.name,
        len(snapshot.users),
        len(snapshot.chirps),
        len(snapshot.events),
    )
    return snapshot
