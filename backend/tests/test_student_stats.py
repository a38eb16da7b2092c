from datetime import timedelta

from conftest import NOW

from statsengine.models.stats import StudentStats
from statsengine.services.attempt_service import classify_completion, percentage
from statsengine.services.student_stats_service import (
    STUDENT_STATS_FIELDS,
    student_stats_service,
)


def test_partially_answered_assignment_is_not_completed(db, factory):
    """One assignment of 4 questions, 2 answered and both correct."""
    student = factory.student()
    _, questions = factory.assignment(questions=4, students=[student])
    factory.attempt(student, questions[0])
    factory.attempt(student, questions[1])

    stats = student_stats_service.refresh_student(db, student.id, NOW)

    assert stats.total_assignments == 1
    assert stats.completed_assignments == 0
    assert stats.in_progress_assignments == 1
    assert stats.completion_rate == 0.0
    assert stats.accuracy_rate == 100.0
    assert stats.average_score == 0.0
    assert stats.total_questions == 4
    assert stats.total_answers == 2


def test_latest_complete_attempt_is_authoritative(db, factory):
    student = factory.student()
    _, questions = factory.assignment(questions=2, students=[student])
    factory.attempt(student, questions[0], is_correct=True, created_at=NOW - timedelta(hours=2))
    factory.attempt(student, questions[0], is_correct=False, created_at=NOW - timedelta(hours=1))
    # Newer but incomplete, ignored
    factory.attempt(student, questions[0], is_correct=True, is_complete=False, created_at=NOW)
    factory.attempt(student, questions[1], is_correct=True)

    stats = student_stats_service.calculate_student_stats(db, student.id, NOW)

    assert stats.total_answers == 2
    assert stats.total_correct_answers == 1
    assert stats.accuracy_rate == 50.0
    assert stats.completed_assignments == 1
    assert stats.average_score == 50.0
    assert stats.last_activity_date == NOW


def test_average_score_over_completed_assignments_only(db, factory):
    student = factory.student()
    _, first = factory.assignment(questions=2, students=[student])
    _, second = factory.assignment(questions=4, students=[student])
    _, untouched = factory.assignment(questions=3, students=[student])
    factory.answer_all(student, first, correct=2)
    factory.answer_all(student, second, correct=1)

    stats = student_stats_service.calculate_student_stats(db, student.id, NOW)

    assert stats.completed_assignments == 2
    assert stats.not_started_assignments == 1
    assert stats.average_score == 62.5
    assert stats.completion_rate == 66.67
    assert stats.total_questions == 9


def test_inactive_assignments_are_ignored(db, factory):
    student = factory.student()
    _, questions = factory.assignment(questions=1, students=[student], is_active=False)
    factory.answer_all(student, questions)

    stats = student_stats_service.calculate_student_stats(db, student.id, NOW)

    assert stats.total_assignments == 0
    assert stats.total_answers == 0
    assert stats.completion_rate == 0.0


def test_refresh_is_idempotent(db, factory):
    student = factory.student()
    school_class = factory.school_class(student)
    _, questions = factory.assignment(questions=3, classes=[school_class])
    factory.answer_all(student, questions, correct=2)

    first = student_stats_service.refresh_student(db, student.id, NOW)
    snapshot = {field: getattr(first, field) for field in STUDENT_STATS_FIELDS}
    student_stats_service.refresh_student(db, student.id, NOW + timedelta(hours=1))

    rows = db.query(StudentStats).filter(StudentStats.student_id == student.id).all()
    assert len(rows) == 1
    for field in STUDENT_STATS_FIELDS:
        if field != "last_updated":
            assert getattr(rows[0], field) == snapshot[field], field
    assert rows[0].last_updated == NOW + timedelta(hours=1)


def test_refresh_all_respects_bounds(db, factory):
    students = [factory.student() for _ in range(4)]
    school_class = factory.school_class(*students)
    _, questions = factory.assignment(questions=3, classes=[school_class])
    factory.answer_all(students[0], questions)
    factory.answer_all(students[1], questions[:1], correct=0)

    result = student_stats_service.refresh_all(db, NOW)

    assert result.processed == 4
    assert result.failed == []
    for stats in db.query(StudentStats).all():
        assert 0 <= stats.completed_assignments <= stats.total_assignments
        assert 0 <= stats.completion_rate <= 100
        assert 0 <= stats.accuracy_rate <= 100


def test_get_student_statistics_returns_none_before_first_run(db, factory):
    student = factory.student()
    assert student_stats_service.get_student_statistics(db, student.id) is None


def test_helpers():
    assert percentage(1, 3) == 33.33
    assert percentage(5, 0) == 0.0
    assert classify_completion(0, 0) == "not_started"
    assert classify_completion(3, 3) == "completed"
    assert classify_completion(1, 3) == "in_progress"
