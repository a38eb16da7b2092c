from datetime import timedelta

import pytest
from conftest import NOW

from statsengine.models.help import HelpReason, HelpSeverity, NeedsHelpRecord
from statsengine.services.needs_help_service import (
    CREATED,
    RESOLVED,
    UNCHANGED,
    UPDATED,
    days_needing_help,
    needs_help_service,
    severity_for,
)


def _records(db, student):
    return (
        db.query(NeedsHelpRecord)
        .filter(NeedsHelpRecord.student_id == student.id)
        .order_by(NeedsHelpRecord.needs_help_since)
        .all()
    )


@pytest.mark.parametrize(
    ("days", "severity"),
    [
        (1, HelpSeverity.RECENT),
        (7, HelpSeverity.RECENT),
        (8, HelpSeverity.WARNING),
        (14, HelpSeverity.WARNING),
        (15, HelpSeverity.CRITICAL),
        (90, HelpSeverity.CRITICAL),
    ],
)
def test_severity_bands(days, severity):
    assert severity_for(days) == severity


def test_days_needing_help_rounds_up_with_floor_of_one():
    assert days_needing_help(NOW, NOW) == 1
    assert days_needing_help(NOW, NOW + timedelta(hours=3)) == 1
    assert days_needing_help(NOW, NOW + timedelta(days=1, seconds=1)) == 2
    assert days_needing_help(NOW, NOW + timedelta(days=10)) == 10


def test_student_without_assignments_is_never_flagged(db, factory):
    student = factory.student()

    assert needs_help_service.evaluate_student(db, student.id, NOW) == UNCHANGED
    assert _records(db, student) == []


def test_new_flag_starts_recent(db, factory):
    student = factory.student()
    factory.assignment(questions=2, students=[student])

    assert needs_help_service.evaluate_student(db, student.id, NOW) == CREATED

    [record] = _records(db, student)
    assert record.needs_help_since == NOW
    assert record.days_needing_help == 1
    assert record.severity == HelpSeverity.RECENT
    # No answers yet, so only completion counts against the student
    assert record.reasons == [HelpReason.LOW_COMPLETION.value]
    assert record.completion_rate == 0.0


def test_flag_escalates_from_persisted_start_time(db, factory):
    student = factory.student()
    factory.assignment(questions=2, students=[student])
    flagged_at = NOW - timedelta(days=10)
    needs_help_service.evaluate_student(db, student.id, flagged_at)

    assert needs_help_service.evaluate_student(db, student.id, NOW) == UPDATED

    [record] = _records(db, student)
    assert record.needs_help_since == flagged_at
    assert record.days_needing_help == 10
    assert record.severity == HelpSeverity.WARNING

    needs_help_service.evaluate_student(db, student.id, flagged_at + timedelta(days=15))
    db.refresh(record)
    assert record.severity == HelpSeverity.CRITICAL


def test_reasons_are_ordered_and_described(db, factory):
    student = factory.student()
    _, first = factory.assignment(questions=2, students=[student], due_date=NOW - timedelta(days=1))
    factory.assignment(questions=1, students=[student], due_date=NOW - timedelta(days=2))
    factory.attempt(student, first[0], is_correct=False)

    needs_help_service.evaluate_student(db, student.id, NOW)

    [record] = _records(db, student)
    assert record.reasons == [
        HelpReason.LOW_COMPLETION.value,
        HelpReason.LOW_SCORE.value,
        HelpReason.OVERDUE_ASSIGNMENTS.value,
    ]
    assert record.reason_details[-1] == "2 overdue assignments"
    assert record.overdue_assignments == 2


def test_improving_student_is_resolved_and_frozen(db, factory):
    student = factory.student()
    single = [factory.assignment(questions=1, students=[student])[1] for _ in range(4)]
    _, double = factory.assignment(questions=2, students=[student])
    factory.answer_all(student, single[0])
    factory.answer_all(student, single[1])

    flagged_at = NOW - timedelta(days=3)
    assert needs_help_service.evaluate_student(db, student.id, flagged_at) == CREATED
    [record] = _records(db, student)
    assert record.completion_rate == 40.0

    factory.answer_all(student, single[2])
    factory.answer_all(student, single[3], correct=0)
    factory.attempt(student, double[0])

    analysis = needs_help_service.analyze_student(db, student.id, NOW)
    assert analysis.completion_rate == 80.0
    assert analysis.average_score == 80.0
    assert analysis.overdue_assignments == 0

    assert needs_help_service.evaluate_student(db, student.id, NOW) == RESOLVED
    db.refresh(record)
    assert record.is_resolved is True
    assert record.resolved_at == NOW
    assert record.needs_help_since == flagged_at
    # Snapshot keeps the last flagged values
    assert record.completion_rate == 40.0

    later = NOW + timedelta(days=1)
    assert needs_help_service.evaluate_student(db, student.id, later) == UNCHANGED
    db.refresh(record)
    assert record.resolved_at == NOW


def test_regression_after_resolution_creates_new_record(db, factory):
    student = factory.student()
    _, questions = factory.assignment(questions=1, students=[student])
    needs_help_service.evaluate_student(db, student.id, NOW - timedelta(days=5))
    factory.answer_all(student, questions)
    needs_help_service.evaluate_student(db, student.id, NOW - timedelta(days=2))

    factory.assignment(questions=1, students=[student])
    factory.assignment(questions=1, students=[student])
    assert needs_help_service.evaluate_student(db, student.id, NOW) == CREATED

    old, new = _records(db, student)
    assert old.is_resolved is True
    assert old.needs_help_since == NOW - timedelta(days=5)
    assert new.is_resolved is False
    assert new.needs_help_since == NOW
    assert new.id != old.id


def _open_record(db, student, since):
    record = NeedsHelpRecord(student_id=student.id, needs_help_since=since, updated_at=since)
    db.add(record)
    db.commit()
    return record


def test_duplicate_open_records_collapse_to_oldest(db, factory):
    student = factory.student()
    factory.assignment(questions=2, students=[student])
    oldest = _open_record(db, student, NOW - timedelta(days=20))
    _open_record(db, student, NOW - timedelta(days=20, hours=-1))

    for day in range(3):
        needs_help_service.evaluate_student(db, student.id, NOW + timedelta(days=day))

    assert needs_help_service.count_open(db) == 1
    [kept] = needs_help_service.get_needs_help(db)
    assert kept.id == oldest.id
    assert kept.days_needing_help == 22
    assert kept.severity == HelpSeverity.CRITICAL
    duplicate = _records(db, student)[1]
    assert duplicate.is_resolved is True
    assert duplicate.resolved_at == NOW


def test_resolution_closes_every_open_record(db, factory):
    student = factory.student()
    _, questions = factory.assignment(questions=1, students=[student])
    factory.answer_all(student, questions)
    _open_record(db, student, NOW - timedelta(days=4))
    _open_record(db, student, NOW - timedelta(days=2))

    assert needs_help_service.evaluate_student(db, student.id, NOW) == RESOLVED

    assert needs_help_service.count_open(db) == 0
    assert all(record.resolved_at == NOW for record in _records(db, student))


def test_teacher_notes_survive_reevaluation(db, factory):
    student = factory.student()
    factory.assignment(questions=1, students=[student])
    needs_help_service.evaluate_student(db, student.id, NOW - timedelta(days=1))
    [record] = _records(db, student)

    needs_help_service.update_teacher_notes(db, record.id, "Called parents")
    needs_help_service.evaluate_student(db, student.id, NOW)

    db.refresh(record)
    assert record.teacher_notes == "Called parents"


def test_visibility_by_assignment_teacher_or_class(db, factory):
    assigning_teacher = factory.teacher()
    class_teacher = factory.teacher()
    individual = factory.student()
    classmate = factory.student()
    school_class = factory.school_class(classmate, class_teacher)
    factory.assignment(students=[individual], teacher=assigning_teacher)
    factory.assignment(classes=[school_class])

    result = needs_help_service.refresh_all(db, NOW)
    assert result.outcomes[CREATED] == 2

    def visible(teacher_id):
        return {r.student_id for r in needs_help_service.get_needs_help(db, teacher_id)}

    assert visible(assigning_teacher.id) == {individual.id}
    assert visible(class_teacher.id) == {classmate.id}
    assert visible(None) == {individual.id, classmate.id}


def test_list_is_ordered_by_days_and_summarized(db, factory):
    long_flagged = factory.student()
    recent = factory.student()
    factory.assignment(students=[long_flagged, recent])
    needs_help_service.evaluate_student(db, long_flagged.id, NOW - timedelta(days=20))
    needs_help_service.evaluate_student(db, recent.id, NOW - timedelta(days=1))
    needs_help_service.refresh_all(db, NOW)

    records = needs_help_service.get_needs_help(db)
    assert [r.student_id for r in records] == [long_flagged.id, recent.id]

    summary = needs_help_service.summarize(records)
    assert (summary.total, summary.critical, summary.warning, summary.recent) == (2, 1, 0, 1)
    assert needs_help_service.count_open(db) == 2
