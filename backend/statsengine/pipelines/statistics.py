from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy.exc import SQLAlchemyError

from statsengine.core.db import Database
from statsengine.core.errors import StatsEngineError
from statsengine.services.assignment_stats_service import assignment_stats_service
from statsengine.services.batch import BatchResult
from statsengine.services.class_stats_service import class_stats_service
from statsengine.services.needs_help_service import needs_help_service
from statsengine.services.school_stats_service import school_stats_service
from statsengine.services.student_stats_service import student_stats_service

logger = logging.getLogger(__name__)


@dataclass
class PipelineRunResult:
    started_at: datetime
    finished_at: datetime | None = None
    stages: list[BatchResult] = field(default_factory=list)
    school_stats_date: date | None = None
    purged_school_stats: int = 0

    @property
    def failed_entities(self) -> int:
        return sum(len(stage.failed) for stage in self.stages)

    def as_dict(self) -> dict:
        return {
            "status": "partial" if self.failed_entities else "success",
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "stages": [stage.as_dict() for stage in self.stages],
            "school_stats_date": self.school_stats_date,
            "purged_school_stats": self.purged_school_stats,
        }


def _run_school_stage(database: Database, now: datetime, result: PipelineRunResult) -> None:
    stage = BatchResult(entity_type="school_stats", processed=1)
    with database.session() as db:
        try:
            stats = school_stats_service.refresh_school_stats(db, now)
            result.school_stats_date = stats.date
        except (StatsEngineError, SQLAlchemyError):
            db.rollback()
            logger.exception("Failed to write school statistics for %s", now.date())
            stage.failed.append(now.date())

        try:
            result.purged_school_stats = school_stats_service.purge_old_school_stats(db, now=now)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to purge old school statistics")
    result.stages.append(stage)


def run_statistics_pipeline(database: Database, now: datetime | None = None) -> PipelineRunResult:
    """
    Run one full refresh cycle.

    Order is Student -> Assignment -> Class -> School -> Help. Class averages
    StudentStats and School averages AssignmentStats, so both must come after
    the entity stages of the same cycle. Each stage gets its own session.

    Raises ``DataSourceUnavailable`` before any write when the store cannot be
    reached or an entity population cannot be listed.
    """
    now = now or datetime.utcnow()
    result = PipelineRunResult(started_at=datetime.utcnow())
    logger.info("Statistics pipeline started (as of %s)", now.isoformat())

    database.ping()

    for refresh_all in (
        student_stats_service.refresh_all,
        assignment_stats_service.refresh_all,
        class_stats_service.refresh_all,
    ):
        with database.session() as db:
            result.stages.append(refresh_all(db, now))

    _run_school_stage(database, now, result)

    with database.session() as db:
        result.stages.append(needs_help_service.refresh_all(db, now))

    result.finished_at = datetime.utcnow()
    logger.info(
        "Statistics pipeline finished in %.1fs with %s failed entities",
        (result.finished_at - result.started_at).total_seconds(),
        result.failed_entities,
    )
    return result
