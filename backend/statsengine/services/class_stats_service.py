import uuid
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from statsengine.core.config import settings
from statsengine.core.retry import commit_with_retry
from statsengine.models.classroom import SchoolClass
from statsengine.models.help import NeedsHelpClass, NeedsHelpRecord
from statsengine.models.stats import ClassStats, StudentStats
from statsengine.services.attempt_service import mean, percentage
from statsengine.services.batch import BatchResult, ensure_rate, list_entity_ids, run_batch
from statsengine.services.scope_service import scope_service

CLASS_STATS_FIELDS = (
    "total_students",
    "total_assignments",
    "average_completion",
    "average_score",
    "accuracy_rate",
    "total_questions",
    "total_answers",
    "total_correct_answers",
    "active_students",
    "students_needing_help",
    "last_updated",
)


class ClassStatsService:
    """
    Rolls member StudentStats up to one ClassStats row per class. Must run
    after the student aggregation of the same cycle.
    """

    def calculate_class_stats(
        self,
        db: Session,
        class_id: uuid.UUID,
        now: datetime | None = None,
    ) -> ClassStats:
        now = now or datetime.utcnow()
        student_ids = scope_service.student_ids_for_class(db, class_id)
        assignment_ids = scope_service.assignment_ids_for_class(db, class_id)

        member_stats = []
        if student_ids:
            member_stats = (
                db.query(StudentStats).filter(StudentStats.student_id.in_(student_ids)).all()
            )

        active_since = now - timedelta(days=settings.CLASS_ACTIVE_WINDOW_DAYS)
        active_students = sum(
            1
            for stats in member_stats
            if stats.last_activity_date is not None and stats.last_activity_date >= active_since
        )
        students_needing_help = (
            db.query(NeedsHelpRecord.student_id)
            .join(NeedsHelpClass, NeedsHelpClass.record_id == NeedsHelpRecord.id)
            .filter(
                NeedsHelpClass.class_id == class_id,
                NeedsHelpRecord.is_resolved == False,  # noqa: E712
            )
            .distinct()
            .count()
        )

        total_answers = sum(stats.total_answers for stats in member_stats)
        total_correct = sum(stats.total_correct_answers for stats in member_stats)
        class_stats = ClassStats(
            class_id=class_id,
            total_students=len(student_ids),
            total_assignments=len(assignment_ids),
            average_completion=mean([float(s.completion_rate) for s in member_stats]),
            average_score=mean([float(s.average_score) for s in member_stats]),
            accuracy_rate=percentage(total_correct, total_answers),
            total_questions=sum(stats.total_questions for stats in member_stats),
            total_answers=total_answers,
            total_correct_answers=total_correct,
            active_students=active_students,
            students_needing_help=students_needing_help,
            last_updated=now,
        )
        ensure_rate(f"class {class_id} average_completion", class_stats.average_completion)
        ensure_rate(f"class {class_id} accuracy_rate", class_stats.accuracy_rate)
        return class_stats

    def _upsert(self, db: Session, stats: ClassStats) -> ClassStats:
        existing = db.query(ClassStats).filter(ClassStats.class_id == stats.class_id).first()
        if existing:
            for field in CLASS_STATS_FIELDS:
                setattr(existing, field, getattr(stats, field))
            return existing
        db.add(stats)
        return stats

    def refresh_class(
        self,
        db: Session,
        class_id: uuid.UUID,
        now: datetime | None = None,
    ) -> ClassStats:
        return commit_with_retry(
            db,
            lambda: self._upsert(db, self.calculate_class_stats(db, class_id, now)),
            description=f"class_stats upsert for {class_id}",
        )

    def refresh_all(self, db: Session, now: datetime | None = None) -> BatchResult:
        now = now or datetime.utcnow()
        class_ids = list_entity_ids(db.query(SchoolClass.id).order_by(SchoolClass.id), "class")
        return run_batch(
            db,
            "class",
            class_ids,
            lambda class_id: self.refresh_class(db, class_id, now),
        )

    def get_class_statistics(self, db: Session, class_id: uuid.UUID) -> ClassStats | None:
        return db.query(ClassStats).filter(ClassStats.class_id == class_id).first()


# Singleton instance
class_stats_service = ClassStatsService()
