import datetime as dt
import uuid

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from statsengine.core.db import Base


def _rate_column():
    return mapped_column(Numeric(7, 2, asdecimal=False), default=0.0, nullable=False)


def _count_column():
    return mapped_column(Integer, default=0, nullable=False)


class StudentStats(Base):
    __tablename__ = "student_stats"
    __table_args__ = (UniqueConstraint("student_id", name="student_stats_student_id_key"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", name="student_stats_student_id_fkey", ondelete="CASCADE"),
        nullable=False,
    )
    total_assignments: Mapped[int] = _count_column()
    completed_assignments: Mapped[int] = _count_column()
    in_progress_assignments: Mapped[int] = _count_column()
    not_started_assignments: Mapped[int] = _count_column()
    average_score: Mapped[float] = _rate_column()
    total_questions: Mapped[int] = _count_column()
    total_answers: Mapped[int] = _count_column()
    total_correct_answers: Mapped[int] = _count_column()
    accuracy_rate: Mapped[float] = _rate_column()
    completion_rate: Mapped[float] = _rate_column()
    last_activity_date: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    last_updated: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)


class AssignmentStats(Base):
    __tablename__ = "assignment_stats"
    __table_args__ = (
        UniqueConstraint("assignment_id", name="assignment_stats_assignment_id_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assignments.id", name="assignment_stats_assignment_id_fkey", ondelete="CASCADE"),
        nullable=False,
    )
    total_students: Mapped[int] = _count_column()
    total_questions: Mapped[int] = _count_column()
    completed_students: Mapped[int] = _count_column()
    in_progress_students: Mapped[int] = _count_column()
    not_started_students: Mapped[int] = _count_column()
    completion_rate: Mapped[float] = _rate_column()
    average_score: Mapped[float] = _rate_column()
    total_answers: Mapped[int] = _count_column()
    total_correct_answers: Mapped[int] = _count_column()
    accuracy_rate: Mapped[float] = _rate_column()
    last_updated: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)


class ClassStats(Base):
    __tablename__ = "class_stats"
    __table_args__ = (UniqueConstraint("class_id", name="class_stats_class_id_key"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    class_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("classes.id", name="class_stats_class_id_fkey", ondelete="CASCADE"),
        nullable=False,
    )
    total_students: Mapped[int] = _count_column()
    total_assignments: Mapped[int] = _count_column()
    average_completion: Mapped[float] = _rate_column()
    average_score: Mapped[float] = _rate_column()
    accuracy_rate: Mapped[float] = _rate_column()
    total_questions: Mapped[int] = _count_column()
    total_answers: Mapped[int] = _count_column()
    total_correct_answers: Mapped[int] = _count_column()
    active_students: Mapped[int] = _count_column()
    students_needing_help: Mapped[int] = _count_column()
    last_updated: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)


class SchoolStats(Base):
    """One row per calendar day."""

    __tablename__ = "school_stats"
    __table_args__ = (UniqueConstraint("date", name="school_stats_date_key"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    total_users: Mapped[int] = _count_column()
    total_teachers: Mapped[int] = _count_column()
    total_students: Mapped[int] = _count_column()
    total_classes: Mapped[int] = _count_column()
    total_assignments: Mapped[int] = _count_column()
    active_assignments: Mapped[int] = _count_column()
    scheduled_assignments: Mapped[int] = _count_column()
    completed_assignments: Mapped[int] = _count_column()
    average_completion_rate: Mapped[float] = _rate_column()
    average_score: Mapped[float] = _rate_column()
    total_questions: Mapped[int] = _count_column()
    total_answers: Mapped[int] = _count_column()
    total_correct_answers: Mapped[int] = _count_column()
    daily_active_students: Mapped[int] = _count_column()
    daily_active_teachers: Mapped[int] = _count_column()
    students_needing_help: Mapped[int] = _count_column()
    created_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime, server_default=text("CURRENT_TIMESTAMP"), nullable=True
    )
    updated_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
