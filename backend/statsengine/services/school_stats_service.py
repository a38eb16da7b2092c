import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from statsengine.core.config import settings
from statsengine.core.retry import commit_with_retry
from statsengine.models.assignment import Assignment
from statsengine.models.classroom import SchoolClass
from statsengine.models.stats import AssignmentStats, SchoolStats
from statsengine.models.user import User, UserRole
from statsengine.services.needs_help_service import needs_help_service

logger = logging.getLogger(__name__)

SCHOOL_STATS_FIELDS = (
    "total_users",
    "total_teachers",
    "total_students",
    "total_classes",
    "total_assignments",
    "active_assignments",
    "scheduled_assignments",
    "completed_assignments",
    "average_completion_rate",
    "average_score",
    "total_questions",
    "total_answers",
    "total_correct_answers",
    "daily_active_students",
    "daily_active_teachers",
    "students_needing_help",
    "updated_at",
)


def _to_float(value: Any) -> float:
    if value is None:
        return 0.0
    return round(float(value), 2)


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    return int(value)


class SchoolStatsService:
    """
    Daily school-wide snapshot.

    Rates are averaged over the AssignmentStats rows written earlier in the
    same cycle rather than recomputed from raw progress.
    """

    def _metric(self, db: Session, name: str, compute: Callable[[], Any], default: Any = 0) -> Any:
        try:
            return compute()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("School metric %s failed, recording %r", name, default)
            return default

    def _count(self, db: Session, model_column, *criteria) -> int:
        return _to_int(db.query(func.count(model_column)).filter(*criteria).scalar())

    def _daily_active(self, db: Session, role: UserRole, since: datetime) -> int:
        return self._count(
            db,
            User.id,
            User.role == role,
            or_(User.created_at >= since, User.updated_at >= since),
        )

    def calculate_school_stats(self, db: Session, now: datetime | None = None) -> SchoolStats:
        now = now or datetime.utcnow()
        since = now - timedelta(hours=24)

        averages = self._metric(
            db,
            "assignment_stats_aggregate",
            lambda: db.query(
                func.avg(AssignmentStats.completion_rate),
                func.avg(AssignmentStats.average_score),
                func.sum(AssignmentStats.total_questions),
                func.sum(AssignmentStats.total_answers),
                func.sum(AssignmentStats.total_correct_answers),
            ).one(),
            default=(None, None, None, None, None),
        )
        avg_completion, avg_score, total_questions, total_answers, total_correct = averages

        return SchoolStats(
            date=now.date(),
            total_users=self._metric(db, "total_users", lambda: self._count(db, User.id)),
            total_teachers=self._metric(
                db, "total_teachers", lambda: self._count(db, User.id, User.role == UserRole.TEACHER)
            ),
            total_students=self._metric(
                db, "total_students", lambda: self._count(db, User.id, User.role == UserRole.STUDENT)
            ),
            total_classes=self._metric(db, "total_classes", lambda: self._count(db, SchoolClass.id)),
            total_assignments=self._metric(
                db, "total_assignments", lambda: self._count(db, Assignment.id)
            ),
            active_assignments=self._metric(
                db,
                "active_assignments",
                lambda: self._count(db, Assignment.id, Assignment.is_active == True),  # noqa: E712
            ),
            scheduled_assignments=self._metric(
                db,
                "scheduled_assignments",
                lambda: self._count(
                    db,
                    Assignment.id,
                    Assignment.is_active == False,  # noqa: E712
                    Assignment.scheduled_publish_at.isnot(None),
                ),
            ),
            completed_assignments=self._metric(
                db,
                "completed_assignments",
                lambda: self._count(
                    db,
                    AssignmentStats.id,
                    AssignmentStats.total_students > 0,
                    AssignmentStats.completed_students == AssignmentStats.total_students,
                ),
            ),
            average_completion_rate=_to_float(avg_completion),
            average_score=_to_float(avg_score),
            total_questions=_to_int(total_questions),
            total_answers=_to_int(total_answers),
            total_correct_answers=_to_int(total_correct),
            daily_active_students=self._metric(
                db,
                "daily_active_students",
                lambda: self._daily_active(db, UserRole.STUDENT, since),
            ),
            daily_active_teachers=self._metric(
                db,
                "daily_active_teachers",
                lambda: self._daily_active(db, UserRole.TEACHER, since),
            ),
            students_needing_help=self._metric(
                db, "students_needing_help", lambda: needs_help_service.count_open(db)
            ),
            updated_at=now,
        )

    def _upsert(self, db: Session, stats: SchoolStats) -> SchoolStats:
        existing = db.query(SchoolStats).filter(SchoolStats.date == stats.date).first()
        if existing:
            for field in SCHOOL_STATS_FIELDS:
                setattr(existing, field, getattr(stats, field))
            return existing
        db.add(stats)
        return stats

    def refresh_school_stats(self, db: Session, now: datetime | None = None) -> SchoolStats:
        stats = self.calculate_school_stats(db, now)
        saved = commit_with_retry(
            db,
            lambda: self._upsert(db, stats),
            description=f"school_stats upsert for {stats.date}",
        )
        logger.info("School statistics written for %s", stats.date)
        return saved

    def get_school_stats(
        self,
        db: Session,
        day: date | None = None,
        *,
        fallback_to_latest: bool = False,
    ) -> SchoolStats | None:
        day = day or datetime.utcnow().date()
        stats = db.query(SchoolStats).filter(SchoolStats.date == day).first()
        if stats is None and fallback_to_latest:
            stats = db.query(SchoolStats).order_by(SchoolStats.date.desc()).first()
        return stats

    def get_school_stats_trend(
        self, db: Session, days: int = 30, now: datetime | None = None
    ) -> list[SchoolStats]:
        start = (now or datetime.utcnow()).date() - timedelta(days=days)
        return (
            db.query(SchoolStats)
            .filter(SchoolStats.date >= start)
            .order_by(SchoolStats.date.asc())
            .all()
        )

    def purge_old_school_stats(
        self,
        db: Session,
        retention_days: int | None = None,
        now: datetime | None = None,
    ) -> int:
        retention_days = retention_days or settings.SCHOOL_STATS_RETENTION_DAYS
        cutoff = (now or datetime.utcnow()).date() - timedelta(days=retention_days)
        deleted = (
            db.query(SchoolStats)
            .filter(SchoolStats.date < cutoff)
            .delete(synchronize_session=False)
        )
        db.commit()
        if deleted:
            logger.info("Deleted %s school statistics rows older than %s", deleted, cutoff)
        return deleted


# Singleton instance
school_stats_service = SchoolStatsService()
