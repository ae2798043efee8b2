"""
habitquest.__main__ — Entry point for ``python -m habitquest``
==============================================================

Wiring:
1. Load .env (``DATABASE_URL``).
2. Load config.yaml if one is given (or present), else defaults.
3. Create the SQLAlchemy engine and the store.
4. Build the service context and run the sub-command.

Run with::

    python -m habitquest check <user-id>
    python -m habitquest repair <user-id> --dry-run
    python -m habitquest scan --repair
    python -m habitquest award <character-id> 150 physical
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from habitquest.config import HabitQuestConfig, load_config
from habitquest.database.engine import create_db_engine, init_db
from habitquest.errors import HabitQuestError, RepairIncompleteError
from habitquest.services.activity_service import record_habit_completion, update_goal_progress
from habitquest.services.context import ServiceContext, build_context
from habitquest.services.error_reporter import ErrorReporter
from habitquest.services.integrity_service import check
from habitquest.services.progression_service import apply_experience, progression_messages
from habitquest.services.repair_service import repair
from habitquest.services.scan_service import scan_users
from habitquest.services.store import SqlAlchemyStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
    stream=sys.stderr,
)
logger = logging.getLogger("habitquest")

DEFAULT_CONFIG = Path("config.yaml")


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="habitquest",
        description="Character progression and data-integrity tooling.",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables if they do not exist")

    p = sub.add_parser("check", help="Integrity report for one user")
    p.add_argument("user_id")

    p = sub.add_parser("repair", help="Repair drift for one user")
    p.add_argument("user_id")
    p.add_argument("--dry-run", action="store_true")

    p = sub.add_parser("scan", help="Check (and optionally repair) many users")
    p.add_argument("user_ids", nargs="*", help="Defaults to every known user")
    p.add_argument("--repair", action="store_true")
    p.add_argument("--concurrency", type=int, default=None)
    p.add_argument("--timeout", type=float, default=None)

    p = sub.add_parser("award", help="Grant experience to a character")
    p.add_argument("character_id")
    p.add_argument("amount", type=int)
    p.add_argument("attribute")
    p.add_argument("--custom", action="store_true", help="Attribute is a custom one")
    p.add_argument("--event-id", default=None, help="Idempotency key")

    p = sub.add_parser("complete-habit", help="Record a habit completion")
    p.add_argument("habit_id")
    p.add_argument("--date", type=date.fromisoformat, default=None)

    p = sub.add_parser("goal-progress", help="Set goal progress (0-100)")
    p.add_argument("goal_id")
    p.add_argument("progress", type=int)

    return parser


def _load_settings(path: Path | None) -> HabitQuestConfig:
    if path is not None:
        return load_config(path)
    if DEFAULT_CONFIG.exists():
        return load_config(DEFAULT_CONFIG)
    return HabitQuestConfig()


async def _scan(ctx: ServiceContext, args: argparse.Namespace) -> dict:
    reporter = ErrorReporter(
        maxsize=ctx.config.error_queue_size,
        interval=ctx.config.error_drain_interval,
    )
    reporter.start()
    try:
        summary = await scan_users(
            ctx,
            args.user_ids or None,
            repair=args.repair,
            concurrency=args.concurrency,
            timeout=args.timeout,
            reporter=reporter,
        )
    finally:
        await reporter.stop()
    payload = summary.to_dict()
    payload["dropped_error_reports"] = reporter.dropped
    return payload


def run(args: argparse.Namespace) -> int:
    """Execute one parsed command; returns the process exit code."""
    cfg = _load_settings(args.config)
    engine = create_db_engine(args.database_url)

    if args.command == "init-db":
        init_db(engine)
        return 0

    ctx = build_context(SqlAlchemyStore(engine), cfg)

    if args.command == "check":
        report = check(ctx, args.user_id)
        _emit(report.to_dict())
        return 0 if report.is_valid else 1

    if args.command == "repair":
        try:
            result = repair(ctx, args.user_id, dry_run=args.dry_run)
        except RepairIncompleteError as exc:
            logger.error("%s", exc)
            _emit(exc.result.to_dict())
            return 1
        _emit(result.to_dict())
        return 0

    if args.command == "scan":
        payload = asyncio.run(_scan(ctx, args))
        _emit(payload)
        return 0 if not payload["failed"] and not payload["timed_out"] else 1

    if args.command == "award":
        result = apply_experience(
            ctx,
            args.character_id,
            args.amount,
            args.attribute,
            args.custom,
            source_event_id=args.event_id,
        )
        _emit({**result.to_dict(), "messages": progression_messages(result)})
        return 0

    if args.command == "complete-habit":
        done = record_habit_completion(ctx, args.habit_id, args.date)
        messages = progression_messages(done.progression) if done.progression else []
        _emit({
            "habit_id": done.habit_id,
            "completed_on": done.completed_on,
            "current_streak": done.current_streak,
            "longest_streak": done.longest_streak,
            "already_recorded": done.already_recorded,
            "messages": messages,
        })
        return 0

    if args.command == "goal-progress":
        updated = update_goal_progress(ctx, args.goal_id, args.progress)
        messages = progression_messages(updated.progression) if updated.progression else []
        _emit({
            "goal_id": updated.goal_id,
            "progress": updated.progress,
            "completed_at": updated.completed_at,
            "messages": messages,
        })
        return 0

    raise AssertionError(f"unhandled command {args.command!r}")


def main(argv: list[str] | None = None) -> int:
    """Bootstrap and run one HabitQuest command."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    try:
        return run(args)
    except HabitQuestError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 2
    except (FileNotFoundError, KeyError, RuntimeError, ValueError) as exc:
        logger.critical("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
