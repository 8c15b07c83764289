"""Scheduled job: move finalized orders older than the retention window to the archive.

Run from cron or a Kubernetes CronJob:

    python -m app.jobs.archive_orders [--dry-run]
"""
import argparse
import sys

from app.application.archive import OrderArchiver
from app.application.errors import PersistenceError
from app.core_settings import get_settings
from app.infrastructure.db import get_sessionmaker
from shared.core import get_logger, setup_logging

logger = get_logger(__name__)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Archive orders moved to sales before the retention window")
    parser.add_argument("--dry-run", action="store_true", help="only report how many orders would be archived")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(service_name="orders-archiver", level=settings.LOG_LEVEL)

    db = get_sessionmaker()()
    try:
        archiver = OrderArchiver(
            db,
            retention_months=settings.ARCHIVE_RETENTION_MONTHS,
            lock_ttl_seconds=settings.ARCHIVE_LOCK_TTL_SECONDS,
        )
        if args.dry_run:
            candidates = archiver.candidates()
            logger.info(f"{len(candidates)} orders eligible for archiving",
                        extra={"extra_fields": {"threshold": archiver.threshold()}})
            return 0
        result = archiver.run()
        if result.locked_out:
            logger.warning("Another archive run is in progress, exiting")
        return 0
    except PersistenceError as e:
        logger.error(f"Error archiving orders: {e.message}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
