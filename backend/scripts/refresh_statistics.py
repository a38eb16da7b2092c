from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

script_path = Path(__file__).resolve()
backend_root = script_path.parents[1]
sys.path.append(str(backend_root))

from statsengine.core.config import settings  # noqa: E402
from statsengine.core.db import Database  # noqa: E402
from statsengine.core.errors import DataSourceUnavailable  # noqa: E402
from statsengine.core.lock import pipeline_lease  # noqa: E402
from statsengine.pipelines.statistics import run_statistics_pipeline  # noqa: E402
from statsengine.tasks import lease_connection  # noqa: E402

logger = logging.getLogger("refresh_statistics")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one statistics refresh cycle now.")
    parser.add_argument(
        "--as-of",
        type=datetime.fromisoformat,
        default=None,
        help="Evaluate as of this UTC timestamp (ISO 8601) instead of now.",
    )
    parser.add_argument(
        "--no-lock",
        action="store_true",
        help="Skip the Redis lease. Only safe when no scheduler is running.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    database = Database()
    redis_connection = None if args.no_lock else lease_connection()
    try:
        with pipeline_lease(redis_connection) as owned:
            if not owned:
                logger.warning("Another pipeline run holds the lease, nothing done")
                return 2
            result = run_statistics_pipeline(database, now=args.as_of)
    except DataSourceUnavailable:
        logger.exception("Database unavailable, statistics not refreshed")
        return 1
    finally:
        database.dispose()

    print(json.dumps(result.as_dict(), default=str, indent=2))
    return 1 if result.failed_entities else 0


if __name__ == "__main__":
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(main())
