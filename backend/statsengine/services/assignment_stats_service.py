import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from statsengine.core.errors import EntityComputationError
from statsengine.core.retry import commit_with_retry
from statsengine.models.assignment import Assignment
from statsengine.models.stats import AssignmentStats
from statsengine.services.attempt_service import (
    COMPLETED,
    IN_PROGRESS,
    attempt_service,
    classify_completion,
    mean,
    percentage,
    tally_by,
)
from statsengine.services.batch import BatchResult, ensure, ensure_rate, list_entity_ids, run_batch
from statsengine.services.scope_service import scope_service

ASSIGNMENT_STATS_FIELDS = (
    "total_students",
    "total_questions",
    "completed_students",
    "in_progress_students",
    "not_started_students",
    "completion_rate",
    "average_score",
    "total_answers",
    "total_correct_answers",
    "accuracy_rate",
    "last_updated",
)


class AssignmentStatsService:
    """Materializes one AssignmentStats row per assignment."""

    def calculate_assignment_stats(
        self,
        db: Session,
        assignment_id: uuid.UUID,
        now: datetime | None = None,
    ) -> AssignmentStats:
        now = now or datetime.utcnow()
        if db.get(Assignment, assignment_id) is None:
            raise EntityComputationError("assignment", assignment_id, "assignment not found")

        student_ids = scope_service.student_ids_for_assignment(db, assignment_id)
        total_questions = scope_service.question_counts(db, [assignment_id])[assignment_id]
        # Attempts from students no longer in scope do not count.
        attempts = [
            attempt
            for attempt in attempt_service.load_authoritative(db, assignment_ids=[assignment_id])
            if attempt.student_id in student_ids
        ]
        by_student = tally_by(attempts, key=lambda attempt: attempt.student_id)

        completed = 0
        in_progress = 0
        completed_scores: list[float] = []
        for tally in by_student.values():
            status = classify_completion(tally.answered, total_questions)
            if status == COMPLETED:
                completed += 1
                completed_scores.append(tally.correct / total_questions * 100)
            elif status == IN_PROGRESS:
                in_progress += 1

        total_students = len(student_ids)
        total_answers = len(attempts)
        total_correct = sum(1 for attempt in attempts if attempt.is_correct)

        stats = AssignmentStats(
            assignment_id=assignment_id,
            total_students=total_students,
            total_questions=total_questions,
            completed_students=completed,
            in_progress_students=in_progress,
            not_started_students=total_students - completed - in_progress,
            completion_rate=percentage(completed, total_students),
            average_score=mean(completed_scores),
            total_answers=total_answers,
            total_correct_answers=total_correct,
            accuracy_rate=percentage(total_correct, total_answers),
            last_updated=now,
        )
        self._check_invariants(stats)
        return stats

    def _check_invariants(self, stats: AssignmentStats) -> None:
        prefix = f"assignment {stats.assignment_id}"
        ensure(
            stats.completed_students + stats.in_progress_students <= stats.total_students,
            f"{prefix}: completed+in_progress exceeds total_students",
        )
        ensure(stats.not_started_students >= 0, f"{prefix}: negative not_started_students")
        ensure_rate(f"{prefix} completion_rate", stats.completion_rate)
        ensure_rate(f"{prefix} accuracy_rate", stats.accuracy_rate)
        ensure_rate(f"{prefix} average_score", stats.average_score)

    def _upsert(self, db: Session, stats: AssignmentStats) -> AssignmentStats:
        existing = (
            db.query(AssignmentStats)
            .filter(AssignmentStats.assignment_id == stats.assignment_id)
            .first()
        )
        if existing:
            for field in ASSIGNMENT_STATS_FIELDS:
                setattr(existing, field, getattr(stats, field))
            return existing
        db.add(stats)
        return stats

    def refresh_assignment(
        self,
        db: Session,
        assignment_id: uuid.UUID,
        now: datetime | None = None,
    ) -> AssignmentStats:
        return commit_with_retry(
            db,
            lambda: self._upsert(db, self.calculate_assignment_stats(db, assignment_id, now)),
            description=f"assignment_stats upsert for {assignment_id}",
        )

    def refresh_all(self, db: Session, now: datetime | None = None) -> BatchResult:
        """Inactive assignments are included so historical views stay current."""
        now = now or datetime.utcnow()
        assignment_ids = list_entity_ids(
            db.query(Assignment.id).order_by(Assignment.id),
            "assignment",
        )
        return run_batch(
            db,
            "assignment",
            assignment_ids,
            lambda assignment_id: self.refresh_assignment(db, assignment_id, now),
        )

    def get_assignment_statistics(
        self, db: Session, assignment_id: uuid.UUID
    ) -> AssignmentStats | None:
        return (
            db.query(AssignmentStats)
            .filter(AssignmentStats.assignment_id == assignment_id)
            .first()
        )


# Singleton instance
assignment_stats_service = AssignmentStatsService()
