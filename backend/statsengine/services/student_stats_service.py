import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from statsengine.core.retry import commit_with_retry
from statsengine.models.stats import StudentStats
from statsengine.models.user import User, UserRole
from statsengine.services.attempt_service import (
    COMPLETED,
    IN_PROGRESS,
    AnswerTally,
    attempt_service,
    classify_completion,
    mean,
    percentage,
    tally_by,
)
from statsengine.services.batch import BatchResult, ensure, ensure_rate, list_entity_ids, run_batch
from statsengine.services.scope_service import scope_service

STUDENT_STATS_FIELDS = (
    "total_assignments",
    "completed_assignments",
    "in_progress_assignments",
    "not_started_assignments",
    "average_score",
    "total_questions",
    "total_answers",
    "total_correct_answers",
    "accuracy_rate",
    "completion_rate",
    "last_activity_date",
    "last_updated",
)


class StudentStatsService:
    """Materializes one StudentStats row per student from the progress log."""

    def calculate_student_stats(
        self,
        db: Session,
        student_id: uuid.UUID,
        now: datetime | None = None,
    ) -> StudentStats:
        """
        Compute (without persisting) the aggregate for a student over their
        active in-scope assignments.

        - completion_rate: % of assignments with every question answered
        - accuracy_rate: % of answered questions that are correct, across
          all assignments
        - average_score: mean per-assignment score, completed assignments only
        """
        now = now or datetime.utcnow()
        assignment_ids = scope_service.assignment_ids_for_student(db, student_id, active_only=True)
        question_counts = scope_service.question_counts(db, assignment_ids)
        attempts = attempt_service.load_authoritative(
            db, student_id=student_id, assignment_ids=assignment_ids
        )
        by_assignment = tally_by(attempts, key=lambda attempt: attempt.assignment_id)

        completed = 0
        in_progress = 0
        completed_scores: list[float] = []
        for assignment_id, total_questions in question_counts.items():
            tally = by_assignment.get(assignment_id, AnswerTally())
            status = classify_completion(tally.answered, total_questions)
            if status == COMPLETED:
                completed += 1
                completed_scores.append(tally.correct / total_questions * 100)
            elif status == IN_PROGRESS:
                in_progress += 1

        total_assignments = len(question_counts)
        total_answers = len(attempts)
        total_correct = sum(1 for attempt in attempts if attempt.is_correct)

        stats = StudentStats(
            student_id=student_id,
            total_assignments=total_assignments,
            completed_assignments=completed,
            in_progress_assignments=in_progress,
            not_started_assignments=total_assignments - completed - in_progress,
            average_score=mean(completed_scores),
            total_questions=sum(question_counts.values()),
            total_answers=total_answers,
            total_correct_answers=total_correct,
            accuracy_rate=percentage(total_correct, total_answers),
            completion_rate=percentage(completed, total_assignments),
            last_activity_date=max((a.created_at for a in attempts), default=None),
            last_updated=now,
        )
        self._check_invariants(stats)
        return stats

    def _check_invariants(self, stats: StudentStats) -> None:
        prefix = f"student {stats.student_id}"
        ensure(
            0 <= stats.completed_assignments <= stats.total_assignments,
            f"{prefix}: completed={stats.completed_assignments} total={stats.total_assignments}",
        )
        ensure(
            stats.not_started_assignments >= 0,
            f"{prefix}: negative not_started_assignments",
        )
        ensure(
            stats.total_correct_answers <= stats.total_answers,
            f"{prefix}: more correct answers than answers",
        )
        ensure_rate(f"{prefix} completion_rate", stats.completion_rate)
        ensure_rate(f"{prefix} accuracy_rate", stats.accuracy_rate)
        ensure_rate(f"{prefix} average_score", stats.average_score)

    def _upsert(self, db: Session, stats: StudentStats) -> StudentStats:
        existing = db.query(StudentStats).filter(StudentStats.student_id == stats.student_id).first()
        if existing:
            for field in STUDENT_STATS_FIELDS:
                setattr(existing, field, getattr(stats, field))
            return existing
        db.add(stats)
        return stats

    def refresh_student(
        self,
        db: Session,
        student_id: uuid.UUID,
        now: datetime | None = None,
    ) -> StudentStats:
        return commit_with_retry(
            db,
            lambda: self._upsert(db, self.calculate_student_stats(db, student_id, now)),
            description=f"student_stats upsert for {student_id}",
        )

    def refresh_all(self, db: Session, now: datetime | None = None) -> BatchResult:
        now = now or datetime.utcnow()
        student_ids = list_entity_ids(
            db.query(User.id).filter(User.role == UserRole.STUDENT).order_by(User.id),
            "student",
        )
        return run_batch(
            db,
            "student",
            student_ids,
            lambda student_id: self.refresh_student(db, student_id, now),
        )

    def get_student_statistics(self, db: Session, student_id: uuid.UUID) -> StudentStats | None:
        return db.query(StudentStats).filter(StudentStats.student_id == student_id).first()


# Singleton instance
student_stats_service = StudentStatsService()
