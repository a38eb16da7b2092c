import uuid
from collections.abc import Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from statsengine.models.assignment import (
    Assignment,
    AssignmentClass,
    AssignmentStudent,
    Question,
)
from statsengine.models.classroom import ClassMember
from statsengine.models.user import User, UserRole


class ScopeService:
    """
    Resolves which assignments a student sees and which students an
    assignment reaches, through class membership or individual assignment.

    Read-only: nothing here writes to the session.
    """

    def assignment_ids_for_student(
        self,
        db: Session,
        student_id: uuid.UUID,
        *,
        active_only: bool = True,
    ) -> set[uuid.UUID]:
        student_classes = select(ClassMember.class_id).where(ClassMember.user_id == student_id)
        via_class = select(AssignmentClass.assignment_id).where(
            AssignmentClass.class_id.in_(student_classes)
        )
        individual = select(AssignmentStudent.assignment_id).where(
            AssignmentStudent.user_id == student_id
        )
        query = db.query(Assignment.id).filter(
            or_(Assignment.id.in_(via_class), Assignment.id.in_(individual))
        )
        if active_only:
            query = query.filter(Assignment.is_active == True)  # noqa: E712
        return {row[0] for row in query.all()}

    def student_ids_for_assignment(self, db: Session, assignment_id: uuid.UUID) -> set[uuid.UUID]:
        linked_classes = select(AssignmentClass.class_id).where(
            AssignmentClass.assignment_id == assignment_id
        )
        class_students = (
            db.query(ClassMember.user_id)
            .join(User, User.id == ClassMember.user_id)
            .filter(
                ClassMember.class_id.in_(linked_classes),
                User.role == UserRole.STUDENT,
            )
            .all()
        )
        individual = (
            db.query(AssignmentStudent.user_id)
            .filter(AssignmentStudent.assignment_id == assignment_id)
            .all()
        )
        return {row[0] for row in class_students} | {row[0] for row in individual}

    def scope_pairs_for_student(
        self, db: Session, student_id: uuid.UUID, *, active_only: bool = True
    ) -> set[tuple[uuid.UUID, uuid.UUID]]:
        return {
            (student_id, assignment_id)
            for assignment_id in self.assignment_ids_for_student(
                db, student_id, active_only=active_only
            )
        }

    def scope_pairs_for_assignment(
        self, db: Session, assignment_id: uuid.UUID
    ) -> set[tuple[uuid.UUID, uuid.UUID]]:
        return {
            (student_id, assignment_id)
            for student_id in self.student_ids_for_assignment(db, assignment_id)
        }

    def question_counts(
        self, db: Session, assignment_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, int]:
        ids = list(assignment_ids)
        counts = {assignment_id: 0 for assignment_id in ids}
        if not ids:
            return counts
        rows = (
            db.query(Question.assignment_id, func.count(Question.id))
            .filter(Question.assignment_id.in_(ids))
            .group_by(Question.assignment_id)
            .all()
        )
        for assignment_id, count in rows:
            counts[assignment_id] = int(count)
        return counts

    def class_ids_for_user(self, db: Session, user_id: uuid.UUID) -> set[uuid.UUID]:
        rows = db.query(ClassMember.class_id).filter(ClassMember.user_id == user_id).all()
        return {row[0] for row in rows}

    def student_ids_for_class(self, db: Session, class_id: uuid.UUID) -> set[uuid.UUID]:
        rows = (
            db.query(ClassMember.user_id)
            .join(User, User.id == ClassMember.user_id)
            .filter(ClassMember.class_id == class_id, User.role == UserRole.STUDENT)
            .all()
        )
        return {row[0] for row in rows}

    def assignment_ids_for_class(self, db: Session, class_id: uuid.UUID) -> set[uuid.UUID]:
        rows = (
            db.query(AssignmentClass.assignment_id)
            .filter(AssignmentClass.class_id == class_id)
            .all()
        )
        return {row[0] for row in rows}

    def teacher_ids_for_assignments(
        self, db: Session, assignment_ids: Iterable[uuid.UUID]
    ) -> set[uuid.UUID]:
        ids = list(assignment_ids)
        if not ids:
            return set()
        rows = (
            db.query(Assignment.teacher_id)
            .filter(Assignment.id.in_(ids), Assignment.teacher_id.isnot(None))
            .distinct()
            .all()
        )
        return {row[0] for row in rows}


# Singleton instance
scope_service = ScopeService()
