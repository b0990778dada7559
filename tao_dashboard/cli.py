"""CLI tool for admin operations.

Usage:
    python -m tao_dashboard.cli init-db
    python -m tao_dashboard.cli snapshot [--force] [--day YYYY-MM-DD]
    python -m tao_dashboard.cli signals
"""

import asyncio
import json
import sys

from sqlmodel import Session

from tao_dashboard.config import settings
from tao_dashboard.database import engine, create_db_and_tables
from tao_dashboard.utils.logging import setup_logging

USAGE = "Usage: python -m tao_dashboard.cli <init-db|snapshot|signals> [--force] [--day YYYY-MM-DD]"


def init_db():
    create_db_and_tables()
    print("Database tables created.")


def snapshot(args: list[str]):
    """Run one snapshot cycle in the foreground."""
    from tao_dashboard.engine.snapshot_job import run_snapshot_cycle

    force = "--force" in args
    day = None
    if "--day" in args:
        idx = args.index("--day")
        if idx + 1 >= len(args):
            print("--day needs a value (YYYY-MM-DD)")
            sys.exit(1)
        day = args[idx + 1]

    create_db_and_tables()
    result = asyncio.run(run_snapshot_cycle(force=force, day=day))
    print(json.dumps(result.to_dict(), indent=2))
    if not result.ok:
        sys.exit(1)


def signals():
    """Print today's signal report for the configured wallet."""
    from tao_dashboard.api.portfolio import signal_thresholds
    from tao_dashboard.services.snapshot_store import signal_report_for

    create_db_and_tables()
    with Session(engine) as session:
        report = signal_report_for(session, settings.coldkey_address or None, signal_thresholds())
    print(json.dumps(report.to_dict(), indent=2))


def main():
    if len(sys.argv) < 2:
        print(USAGE)
        sys.exit(1)

    setup_logging()
    command = sys.argv[1]
    if command == "init-db":
        init_db()
    elif command == "snapshot":
        snapshot(sys.argv[2:])
    elif command == "signals":
        signals()
    else:
        print(f"Unknown command: {command}")
        print(USAGE)
        sys.exit(1)


if __name__ == "__main__":
    main()
