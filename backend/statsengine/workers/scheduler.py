"""
Dedicated scheduler process for the statistics pipeline.

Run exactly one of these per deployment, separate from the API process:

    python -m statsengine.workers.scheduler

The interval job never overlaps itself inside this process, and the Redis
lease keeps a second scheduler (or a manual refresh job) from running the
pipeline at the same time.
"""

from __future__ import annotations

import logging
import signal
from datetime import datetime, timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from statsengine.core.config import settings
from statsengine.core.db import Database
from statsengine.core.errors import DataSourceUnavailable
from statsengine.tasks import lease_connection, run_exclusive

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "statistics_refresh"

_scheduler: BlockingScheduler | None = None


def refresh_job(database: Database, redis_connection=None) -> None:
    try:
        run_exclusive(database, redis_connection)
    except DataSourceUnavailable:
        logger.error("Statistics refresh aborted, data source unavailable", exc_info=True)
    except Exception:  # noqa: BLE001
        logger.exception("Statistics refresh failed")


def bootstrap_scheduler(database: Database, redis_connection=None) -> BlockingScheduler:
    global _scheduler
    if _scheduler is not None:
        logger.warning("Scheduler already bootstrapped, ignoring second start")
        return _scheduler

    job_options = {}
    if settings.STATS_RUN_ON_STARTUP:
        job_options["next_run_time"] = datetime.now(timezone.utc)

    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        refresh_job,
        IntervalTrigger(minutes=settings.STATS_REFRESH_INTERVAL_MINUTES),
        args=[database, redis_connection],
        id=REFRESH_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        **job_options,
    )
    logger.info(
        "Statistics refresh scheduled every %s minutes",
        settings.STATS_REFRESH_INTERVAL_MINUTES,
    )
    _scheduler = scheduler
    return scheduler


def main() -> None:
    database = Database()
    scheduler = bootstrap_scheduler(database, lease_connection())

    def _shutdown(signum, _frame) -> None:
        logger.info("Received signal %s, stopping scheduler", signum)
        scheduler.shutdown(wait=False)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        scheduler.start()
    finally:
        database.dispose()


if __name__ == "__main__":
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    main()
