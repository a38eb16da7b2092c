import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from statsengine.core.db import Base


class Assignment(Base):
    __tablename__ = "assignments"
    __table_args__ = (
        Index("idx_assignments_teacher", "teacher_id"),
        Index("idx_assignments_active", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    teacher_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", name="assignments_teacher_id_fkey"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    scheduled_publish_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime, server_default=text("CURRENT_TIMESTAMP"), nullable=True
    )


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (Index("idx_questions_assignment", "assignment_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assignments.id", name="questions_assignment_id_fkey", ondelete="CASCADE"),
        nullable=False,
    )
    text_question: Mapped[str | None] = mapped_column(Text, nullable=True)


class AssignmentClass(Base):
    __tablename__ = "assignment_classes"
    __table_args__ = (Index("idx_assignment_classes_class", "class_id"),)

    assignment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assignments.id", name="assignment_classes_assignment_id_fkey", ondelete="CASCADE"),
        primary_key=True,
    )
    class_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("classes.id", name="assignment_classes_class_id_fkey", ondelete="CASCADE"),
        primary_key=True,
    )


class AssignmentStudent(Base):
    """Individual (non-class) assignee."""

    __tablename__ = "assignment_students"
    __table_args__ = (Index("idx_assignment_students_user", "user_id"),)

    assignment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assignments.id", name="assignment_students_assignment_id_fkey", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", name="assignment_students_user_id_fkey", ondelete="CASCADE"),
        primary_key=True,
    )
