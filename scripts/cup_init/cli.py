"""CLI entry point: verify, converge, init-db, status, scheduler."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from scripts.cup_init.config import load_config
from scripts.cup_init.db import Database
from scripts.cup_init.engine import ReconciliationEngine
from scripts.cup_init.logging_config import configure_logging
from scripts.cup_init.models import Mode
from scripts.cup_init.policy import FatalError

logger = logging.getLogger("cup_init.cli")

MODE_CHOICES = ["all", Mode.VERIFY.value, Mode.CONVERGE.value]


def _reconcile(mode: Mode) -> int:
    """Run one reconciliation and return the process exit code."""
    try:
        config = load_config()
        db = Database(config.database, config.identity)
    except Exception as exc:
        logger.error("Could not initialise: %s", exc, exc_info=True)
        print(FatalError(exc).describe())
        return FatalError.exit_code

    try:
        verdict = ReconciliationEngine(config, db).run(mode)
    finally:
        db.close()

    print(verdict.describe())
    return verdict.exit_code


def cmd_verify(args: argparse.Namespace) -> int:
    """Read-only drift check, used as a pre-flight gate."""
    return _reconcile(Mode.VERIFY)


def cmd_converge(args: argparse.Namespace) -> int:
    """Create or repair the identity and rewrite the deployer profile."""
    return _reconcile(Mode.CONVERGE)


def cmd_init_db(args: argparse.Namespace) -> int:
    config = load_config()
    db = Database(config.database, config.identity)
    try:
        db.ensure_schema()
    finally:
        db.close()
    print("Schema ready.")
    return 0


def cmd_scheduler(args: argparse.Namespace) -> int:
    """Start the APScheduler-based verify loop."""
    from scripts.cup_init.scheduler import start_scheduler

    config = load_config()
    db = Database(config.database, config.identity)
    try:
        start_scheduler(config, db)
    finally:
        db.close()
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show recent reconciliation runs."""
    config = load_config()
    db = Database(config.database, config.identity)

    try:
        runs = db.get_recent_runs(
            mode=args.mode if args.mode != "all" else None,
            limit=args.limit,
        )
        if not runs:
            print("No reconciliation runs found.")
            return 0

        fmt = "{:<36}  {:<9}  {:<13}  {:<20}  {:<20}  {:<20}  {}"
        print(fmt.format(
            "RUN ID", "MODE", "STATUS", "STARTED", "FINISHED", "ACCESS KEY", "REASON",
        ))
        print("-" * 160)
        for r in runs:
            started = str(r["started_at"])[:19] if r["started_at"] else ""
            finished = str(r["finished_at"])[:19] if r["finished_at"] else ""
            reason = (r.get("error_message") or r.get("reason") or "")[:50]
            print(fmt.format(
                str(r["id"])[:36],
                r["mode"],
                r["status"],
                started,
                finished,
                r.get("access_key_id") or "",
                reason,
            ))
    finally:
        db.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cup-init",
        description="Provision and verify the clio-up deployer identity",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    verify_parser = subparsers.add_parser("verify", help="Detect drift without changing anything")
    verify_parser.set_defaults(func=cmd_verify)

    converge_parser = subparsers.add_parser("converge", help="Repair the identity and rotate its key")
    converge_parser.set_defaults(func=cmd_converge)

    init_parser = subparsers.add_parser("init-db", help="Create the database tables")
    init_parser.set_defaults(func=cmd_init_db)

    sched_parser = subparsers.add_parser("scheduler", help="Start scheduled verify loop")
    sched_parser.set_defaults(func=cmd_scheduler)

    status_parser = subparsers.add_parser("status", help="Show recent reconciliation runs")
    status_parser.add_argument(
        "--mode", "-m",
        choices=MODE_CHOICES,
        default="all",
        help="Filter by mode",
    )
    status_parser.add_argument(
        "--limit", "-l",
        type=int,
        default=10,
        help="Number of runs to show (default: 10)",
    )
    status_parser.set_defaults(func=cmd_status)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    args = build_parser().parse_args(argv)
    sys.exit(args.func(args))
