"""CLI entry-point: ``python -m kurral feed|status|tune|scores``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from kurral import config
from kurral.pipeline import apply_value_score, apply_verification, build_feed
from kurral.policy import evaluate_policy
from kurral.reputation import ReputationEngine
from kurral.snapshot import Snapshot, load_snapshot
from kurral.store import SQLiteScoreStore
from kurral.tuning import EngagementHistory, apply_suggestion, suggest

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load(name: str) -> Snapshot:
    path = config.snapshot_path(name)
    if not path.exists():
        logger.error("Snapshot '%s' not found (looked for %s)", name, path)
        sys.exit(1)
    return load_snapshot(path)


def _viewer(snapshot: Snapshot, viewer_id: str):
    viewer = snapshot.resolve_user(viewer_id)
    if viewer is None:
        logger.error("Viewer '%s' is not in the snapshot", viewer_id)
        sys.exit(1)
    return viewer


def _cmd_feed(args: argparse.Namespace) -> None:
    snapshot = _load(args.snapshot)
    viewer = _viewer(snapshot, args.viewer)
    # The latest-feed collaborator drops the viewer's own posts before ranking.
    posts = [c for c in snapshot.chirps if c.author_id != viewer.id]
    feed = build_feed(
        posts,
        viewer,
        snapshot.resolve_user,
        now=snapshot.now,
        limit=args.limit,
    )
    if not feed.items:
        print(f"(empty feed: {feed.empty_reason.value if feed.empty_reason else 'unknown'}) {feed.diagnosis}")
        return
    for item in feed.items:
        author = snapshot.resolve_user(item.chirp.author_id)
        handle = author.handle if author and author.handle else item.chirp.author_id
        print(f"[{item.score:6.1f}] @{handle} #{item.chirp.topic}: {item.chirp.text[:80]}")
        print(f"         {item.explanation}")


def _cmd_status(args: argparse.Namespace) -> None:
    snapshot = _load(args.snapshot)
    chirps = snapshot.chirps
    if args.chirp:
        chirps = [c for c in chirps if c.id == args.chirp]
        if not chirps:
            logger.error("Chirp '%s' is not in the snapshot", args.chirp)
            sys.exit(1)
    for chirp in chirps:
        decision = evaluate_policy(chirp.claims, chirp.fact_checks)
        flag = " (escalate)" if decision.escalate_to_human else ""
        print(f"{chirp.id}: {decision.status.value}{flag}")
        for reason in decision.reasons:
            print(f"    - {reason}")


def _cmd_tune(args: argparse.Namespace) -> None:
    snapshot = _load(args.snapshot)
    viewer = _viewer(snapshot, args.viewer)
    history = EngagementHistory(viewer)
    history.record_many(
        (e for e in snapshot.events if e.viewer_id == viewer.id),
        snapshot.chirps_by_id,
    )
    current = viewer.for_you_config
    suggestion = suggest(history, current)
    print(f"confidence: {suggestion.confidence:.2f}")
    print(f"following weight: {current.following_weight.value} -> {suggestion.following_weight.value}")
    print(
        "boost active conversations: "
        f"{current.boost_active_conversations} -> {suggestion.boost_active_conversations}"
    )
    print(f"liked topics: {', '.join(sorted(suggestion.liked_topics)) or '-'}")
    print(f"muted topics: {', '.join(sorted(suggestion.muted_topics)) or '-'}")
    print(suggestion.explanation)
    if args.apply:
        if not suggestion.is_actionable(current):
            logger.warning("Suggestion is not actionable; leaving config unchanged")
            return
        print(apply_suggestion(current, suggestion).model_dump_json(by_alias=True, indent=2))


def _cmd_scores(args: argparse.Namespace) -> None:
    snapshot = _load(args.snapshot)
    store = SQLiteScoreStore(db_path=Path(args.db) if args.db else config.SCORE_DB)
    engine = ReputationEngine(store)
    for chirp in snapshot.chirps:
        pending = chirp.model_copy(update={"claims": [], "fact_checks": [], "value_score": None})
        verified = apply_verification(
            pending, chirp.claims, chirp.fact_checks, engine, now=chirp.created_at
        )
        if chirp.value_score is not None:
            apply_value_score(verified, chirp.value_score, engine, now=chirp.created_at)
    for author_id, _ in store.top_scores(limit=args.limit):
        current = engine.current_score(author_id, at=snapshot.now)
        c = current.components
        print(
            f"{author_id:>16}  {current.score:6.2f}  "
            f"(quality {c.quality_history:.0f}, violations {c.violation_history:.0f}, "
            f"trust {c.community_trust:.0f})"
        )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="kurral",
        description="Feed ranking, fact-check policy and reputation tools.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="command")

    # ── feed ──────────────────────────────────────────────────────────
    feed_parser = sub.add_parser("feed", help="Rank a snapshot's chirps for one viewer.")
    feed_parser.add_argument("--snapshot", default="demo", help="Snapshot name or path.")
    feed_parser.add_argument("--viewer", required=True, help="Viewer user id.")
    feed_parser.add_argument("--limit", type=int, default=config.FEED_LIMIT)

    # ── status ────────────────────────────────────────────────────────
    status_parser = sub.add_parser("status", help="Show fact-check status per chirp.")
    status_parser.add_argument("--snapshot", default="demo", help="Snapshot name or path.")
    status_parser.add_argument("--chirp", help="Only this chirp id.")

    # ── tune ──────────────────────────────────────────────────────────
    tune_parser = sub.add_parser("tune", help="Suggest ForYouConfig changes from engagement.")
    tune_parser.add_argument("--snapshot", default="demo", help="Snapshot name or path.")
    tune_parser.add_argument("--viewer", required=True, help="Viewer user id.")
    tune_parser.add_argument(
        "--apply",
        action="store_true",
        help="Print the config that accepting the suggestion would produce.",
    )

    # ── scores ────────────────────────────────────────────────────────
    scores_parser = sub.add_parser(
        "scores",
        help="Replay a snapshot's verification into the score DB and list top authors.",
    )
    scores_parser.add_argument("--snapshot", default="demo", help="Snapshot name or path.")
    scores_parser.add_argument("--db", help=f"SQLite path (default: {config.SCORE_DB}).")
    scores_parser.add_argument("--limit", type=int, default=10)

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if args.command == "feed":
        _cmd_feed(args)
    elif args.command == "status":
        _cmd_status(args)
    elif args.command == "tune":
        _cmd_tune(args)
    elif args.command == "scores":
        _cmd_scores(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
