import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from statsengine.core.db import Base


class HelpReason(str, enum.Enum):
    LOW_COMPLETION = "LOW_COMPLETION"
    LOW_SCORE = "LOW_SCORE"
    OVERDUE_ASSIGNMENTS = "OVERDUE_ASSIGNMENTS"


class HelpSeverity(str, enum.Enum):
    RECENT = "RECENT"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class NeedsHelpRecord(Base):
    __tablename__ = "needs_help_records"
    __table_args__ = (
        Index("idx_needs_help_student_resolved", "student_id", "is_resolved"),
        Index("idx_needs_help_resolved_days", "is_resolved", "days_needing_help"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", name="needs_help_records_student_id_fkey", ondelete="CASCADE"),
        nullable=False,
    )
    # Ordered HelpReason values, plus the matching human readable lines
    reasons: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    reason_details: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    needs_help_since: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    days_needing_help: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    severity: Mapped[HelpSeverity] = mapped_column(
        Enum(HelpSeverity, name="help_severity"), default=HelpSeverity.RECENT, nullable=False
    )
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    average_score: Mapped[float] = mapped_column(
        Numeric(7, 2, asdecimal=False), default=0.0, nullable=False
    )
    completion_rate: Mapped[float] = mapped_column(
        Numeric(7, 2, asdecimal=False), default=0.0, nullable=False
    )
    overdue_assignments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    teacher_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime, server_default=text("CURRENT_TIMESTAMP"), nullable=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    classes: Mapped[list["NeedsHelpClass"]] = relationship(
        back_populates="record", cascade="all, delete-orphan", lazy="selectin"
    )
    teachers: Mapped[list["NeedsHelpTeacher"]] = relationship(
        back_populates="record", cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def class_ids(self) -> list[uuid.UUID]:
        return [link.class_id for link in self.classes]

    @property
    def teacher_ids(self) -> list[uuid.UUID]:
        return [link.teacher_id for link in self.teachers]


class NeedsHelpClass(Base):
    __tablename__ = "needs_help_classes"

    record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("needs_help_records.id", name="needs_help_classes_record_id_fkey", ondelete="CASCADE"),
        primary_key=True,
    )
    class_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("classes.id", name="needs_help_classes_class_id_fkey", ondelete="CASCADE"),
        primary_key=True,
    )

    record: Mapped["NeedsHelpRecord"] = relationship(back_populates="classes")


class NeedsHelpTeacher(Base):
    __tablename__ = "needs_help_teachers"

    record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("needs_help_records.id", name="needs_help_teachers_record_id_fkey", ondelete="CASCADE"),
        primary_key=True,
    )
    teacher_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", name="needs_help_teachers_teacher_id_fkey", ondelete="CASCADE"),
        primary_key=True,
    )

    record: Mapped["NeedsHelpRecord"] = relationship(back_populates="teachers")
