from __future__ import annotations

import logging

from statsengine.core.config import settings
from statsengine.core.db import Database
from statsengine.core.lock import pipeline_lease
from statsengine.core.queue import _get_redis_connection
from statsengine.pipelines.statistics import PipelineRunResult, run_statistics_pipeline

logger = logging.getLogger(__name__)


def lease_connection():
    if not settings.PIPELINE_LOCK_ENABLED:
        return None
    return _get_redis_connection()


def run_exclusive(database: Database, redis_connection=None) -> PipelineRunResult | None:
    """Run the pipeline under the shared lease. Returns None when skipped."""
    if redis_connection is None:
        redis_connection = lease_connection()

    with pipeline_lease(redis_connection) as owned:
        if not owned:
            logger.info("Statistics refresh skipped, another run is in progress")
            return None
        return run_statistics_pipeline(database)


def refresh_statistics_job() -> dict | None:
    database = Database()
    try:
        result = run_exclusive(database)
    except Exception:  # noqa: BLE001
        logger.exception("Statistics refresh job failed")
        raise
    finally:
        database.dispose()

    if result is None:
        return None
    return result.as_dict()
