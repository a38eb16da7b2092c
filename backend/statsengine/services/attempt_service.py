"""
Reading the progress log.

A student may attempt the same question several times. For every
(student, assignment, question) only the most recent complete attempt is
authoritative: it decides whether the question is answered and whether it
counts as correct. Incomplete attempts never count.
"""

import uuid
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from statsengine.models.progress import ProgressAttempt

COMPLETED = "completed"
IN_PROGRESS = "in_progress"
NOT_STARTED = "not_started"


@dataclass
class AnswerTally:
    answered: int = 0
    correct: int = 0
    last_attempt_at: datetime | None = None

    def add(self, attempt: ProgressAttempt) -> None:
        self.answered += 1
        if attempt.is_correct:
            self.correct += 1
        if self.last_attempt_at is None or attempt.created_at > self.last_attempt_at:
            self.last_attempt_at = attempt.created_at


def percentage(part: float, whole: float) -> float:
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)


def mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


def classify_completion(answered: int, total_questions: int) -> str:
    if total_questions > 0 and answered >= total_questions:
        return COMPLETED
    if answered > 0:
        return IN_PROGRESS
    return NOT_STARTED


def select_authoritative(attempts: Iterable[ProgressAttempt]) -> list[ProgressAttempt]:
    latest: dict[tuple[uuid.UUID, uuid.UUID, uuid.UUID], ProgressAttempt] = {}
    for attempt in attempts:
        if not attempt.is_complete:
            continue
        key = (attempt.student_id, attempt.assignment_id, attempt.question_id)
        current = latest.get(key)
        if current is None or (attempt.created_at, str(attempt.id)) > (
            current.created_at,
            str(current.id),
        ):
            latest[key] = attempt
    return list(latest.values())


def tally_by(
    attempts: Iterable[ProgressAttempt],
    key: Callable[[ProgressAttempt], Hashable],
) -> dict[Hashable, AnswerTally]:
    tallies: dict[Hashable, AnswerTally] = {}
    for attempt in attempts:
        tallies.setdefault(key(attempt), AnswerTally()).add(attempt)
    return tallies


class AttemptService:
    """Loads authoritative attempts from the progress log."""

    def load_authoritative(
        self,
        db: Session,
        *,
        student_id: uuid.UUID | None = None,
        assignment_ids: Iterable[uuid.UUID] | None = None,
    ) -> list[ProgressAttempt]:
        query = db.query(ProgressAttempt).filter(ProgressAttempt.is_complete == True)  # noqa: E712
        if student_id is not None:
            query = query.filter(ProgressAttempt.student_id == student_id)
        if assignment_ids is not None:
            ids = list(assignment_ids)
            if not ids:
                return []
            query = query.filter(ProgressAttempt.assignment_id.in_(ids))
        return select_authoritative(query.all())


# Singleton instance
attempt_service = AttemptService()
