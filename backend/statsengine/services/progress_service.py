import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from statsengine.models.assignment import Assignment, Question
from statsengine.schemas.statistics import (
    AssignmentProgressResponse,
    QuestionProgressSummary,
    StudentProgressSummary,
)
from statsengine.services.attempt_service import (
    COMPLETED,
    IN_PROGRESS,
    AnswerTally,
    attempt_service,
    classify_completion,
    percentage,
    tally_by,
)
from statsengine.services.scope_service import scope_service


class ProgressService:
    """Live, per-student and per-question breakdown of one assignment."""

    def get_assignment_progress(
        self,
        db: Session,
        assignment_id: uuid.UUID,
        student_id: uuid.UUID | None = None,
    ) -> AssignmentProgressResponse | None:
        assignment = db.get(Assignment, assignment_id)
        if assignment is None:
            return None

        questions = (
            db.query(Question)
            .filter(Question.assignment_id == assignment_id)
            .order_by(Question.id)
            .all()
        )
        total_questions = len(questions)
        student_ids = scope_service.student_ids_for_assignment(db, assignment_id)
        if student_id is not None:
            student_ids &= {student_id}

        attempts = [
            attempt
            for attempt in attempt_service.load_authoritative(db, assignment_ids=[assignment_id])
            if attempt.student_id in student_ids
        ]
        by_student = tally_by(attempts, key=lambda attempt: attempt.student_id)
        by_question = tally_by(attempts, key=lambda attempt: attempt.question_id)

        students = []
        for sid in sorted(student_ids, key=str):
            tally = by_student.get(sid, AnswerTally())
            students.append(
                StudentProgressSummary(
                    student_id=sid,
                    answered_questions=tally.answered,
                    correct_answers=tally.correct,
                    total_questions=total_questions,
                    status=classify_completion(tally.answered, total_questions),
                    score=percentage(tally.correct, total_questions),
                    last_attempt_at=tally.last_attempt_at,
                )
            )

        completed = sum(1 for s in students if s.status == COMPLETED)
        in_progress = sum(1 for s in students if s.status == IN_PROGRESS)
        return AssignmentProgressResponse(
            assignment_id=assignment_id,
            topic=assignment.topic,
            total_students=len(students),
            total_questions=total_questions,
            completed_students=completed,
            in_progress_students=in_progress,
            not_started_students=len(students) - completed - in_progress,
            completion_rate=percentage(completed, len(students)),
            students=students,
            questions=[
                QuestionProgressSummary(
                    question_id=question.id,
                    text_question=question.text_question,
                    answered_count=by_question.get(question.id, AnswerTally()).answered,
                    correct_count=by_question.get(question.id, AnswerTally()).correct,
                )
                for question in questions
            ],
            computed_at=datetime.utcnow(),
        )


# Singleton instance
progress_service = ProgressService()
