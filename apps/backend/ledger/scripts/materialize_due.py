"""
Roll active recurrences forward to the end of the current month.

Occurrences are generated lazily: creating or resuming a recurrence only
covers the month containing "today". Run this once a day (cron, systemd
timer) so each new month gets its transactions:

    python -m ledger.scripts.materialize_due [--user-id N]

Safe to re-run: materialization skips dates that already have a row.
"""
import argparse
import logging

from ledger.core.config import settings
from ledger.core.database import SessionLocal, session_scope
from ledger.services import RecurrenceService

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger("materialize_due")


def run(user_id: int | None = None) -> dict[int, int]:
    with session_scope(SessionLocal) as db:
        created = RecurrenceService(db).materialize_due(user_id=user_id)
    total = sum(created.values())
    logger.info("Rolled forward %d recurrence(s); created %d transaction(s)", len(created), total)
    return created


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--user-id", type=int, default=None, help="only roll forward this user's recurrences")
    args = parser.parse_args(argv)
    run(user_id=args.user_id)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
