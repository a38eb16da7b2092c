import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from statsengine.core.db import Base


class ProgressAttempt(Base):
    """
    One attempt of a student at a question. Written by the assignment
    submission flow; the statistics engine only reads it.
    """

    __tablename__ = "progress_attempts"
    __table_args__ = (
        Index("idx_progress_student_assignment", "student_id", "assignment_id"),
        Index("idx_progress_assignment_complete", "assignment_id", "is_complete"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", name="progress_attempts_student_id_fkey"), nullable=False
    )
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assignments.id", name="progress_attempts_assignment_id_fkey"),
        nullable=False,
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("questions.id", name="progress_attempts_question_id_fkey"), nullable=False
    )
    is_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    actual_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
