import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from statsengine.core.config import settings
from statsengine.core.retry import commit_with_retry
from statsengine.models.assignment import Assignment
from statsengine.models.classroom import ClassMember
from statsengine.models.help import (
    HelpReason,
    HelpSeverity,
    NeedsHelpClass,
    NeedsHelpRecord,
    NeedsHelpTeacher,
)
from statsengine.models.user import User, UserRole
from statsengine.services.attempt_service import (
    COMPLETED,
    AnswerTally,
    attempt_service,
    classify_completion,
    percentage,
    tally_by,
)
from statsengine.services.batch import BatchResult, list_entity_ids, run_batch
from statsengine.services.scope_service import scope_service

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

CREATED = "created"
UPDATED = "updated"
RESOLVED = "resolved"
UNCHANGED = "unchanged"


def days_needing_help(needs_help_since: datetime, now: datetime) -> int:
    elapsed = (now - needs_help_since).total_seconds()
    return max(1, math.ceil(elapsed / SECONDS_PER_DAY))


def severity_for(days: int) -> HelpSeverity:
    if days > settings.HELP_CRITICAL_AFTER_DAYS:
        return HelpSeverity.CRITICAL
    if days > settings.HELP_WARNING_AFTER_DAYS:
        return HelpSeverity.WARNING
    return HelpSeverity.RECENT


@dataclass
class HelpAnalysis:
    student_id: uuid.UUID
    total_assignments: int = 0
    completion_rate: float = 0.0
    average_score: float = 0.0
    total_answers: int = 0
    overdue_assignments: int = 0
    reasons: list[HelpReason] = field(default_factory=list)
    reason_details: list[str] = field(default_factory=list)
    class_ids: set[uuid.UUID] = field(default_factory=set)
    teacher_ids: set[uuid.UUID] = field(default_factory=set)

    @property
    def should_flag(self) -> bool:
        return self.total_assignments > 0 and bool(self.reasons)


@dataclass
class HelpSummary:
    total: int = 0
    critical: int = 0
    warning: int = 0
    recent: int = 0


class NeedsHelpService:
    """
    Flags students who need help and tracks how long they have needed it.

    Per student the record moves Unflagged -> Flagged(severity) -> Resolved.
    Severity is never stored as an input: every run re-derives it from
    ``needs_help_since``. Resolved records are frozen; a student who
    regresses later gets a new record.
    """

    def analyze_student(
        self,
        db: Session,
        student_id: uuid.UUID,
        now: datetime | None = None,
    ) -> HelpAnalysis:
        now = now or datetime.utcnow()
        assignment_ids = scope_service.assignment_ids_for_student(db, student_id, active_only=True)
        analysis = HelpAnalysis(student_id=student_id, total_assignments=len(assignment_ids))
        if not assignment_ids:
            return analysis

        question_counts = scope_service.question_counts(db, assignment_ids)
        due_dates = dict(
            db.query(Assignment.id, Assignment.due_date)
            .filter(Assignment.id.in_(assignment_ids))
            .all()
        )
        attempts = attempt_service.load_authoritative(
            db, student_id=student_id, assignment_ids=assignment_ids
        )
        by_assignment = tally_by(attempts, key=lambda attempt: attempt.assignment_id)

        completed_ids = {
            assignment_id
            for assignment_id, total_questions in question_counts.items()
            if classify_completion(
                by_assignment.get(assignment_id, AnswerTally()).answered, total_questions
            )
            == COMPLETED
        }
        correct = sum(1 for attempt in attempts if attempt.is_correct)

        analysis.completion_rate = percentage(len(completed_ids), analysis.total_assignments)
        analysis.total_answers = len(attempts)
        analysis.average_score = percentage(correct, analysis.total_answers)
        analysis.overdue_assignments = sum(
            1
            for assignment_id, due_date in due_dates.items()
            if due_date is not None and due_date < now and assignment_id not in completed_ids
        )
        analysis.class_ids = scope_service.class_ids_for_user(db, student_id)
        analysis.teacher_ids = scope_service.teacher_ids_for_assignments(db, assignment_ids)
        self._collect_reasons(analysis)
        return analysis

    def _collect_reasons(self, analysis: HelpAnalysis) -> None:
        if analysis.completion_rate < settings.HELP_LOW_COMPLETION_THRESHOLD:
            analysis.reasons.append(HelpReason.LOW_COMPLETION)
            analysis.reason_details.append(
                f"Low completion rate ({analysis.completion_rate:g}% of assignments completed)"
            )
        if (
            analysis.total_answers > 0
            and analysis.average_score < settings.HELP_LOW_SCORE_THRESHOLD
        ):
            analysis.reasons.append(HelpReason.LOW_SCORE)
            analysis.reason_details.append(f"Low average score ({analysis.average_score:g}%)")
        if analysis.overdue_assignments > settings.HELP_OVERDUE_THRESHOLD:
            count = analysis.overdue_assignments
            plural = "" if count == 1 else "s"
            analysis.reasons.append(HelpReason.OVERDUE_ASSIGNMENTS)
            analysis.reason_details.append(f"{count} overdue assignment{plural}")

    def _open_records(self, db: Session, student_id: uuid.UUID) -> list[NeedsHelpRecord]:
        """Open records for a student, oldest first."""
        return (
            db.query(NeedsHelpRecord)
            .filter(
                NeedsHelpRecord.student_id == student_id,
                NeedsHelpRecord.is_resolved == False,  # noqa: E712
            )
            .order_by(NeedsHelpRecord.needs_help_since.asc(), NeedsHelpRecord.id.asc())
            .all()
        )

    def _resolve(self, record: NeedsHelpRecord, now: datetime) -> None:
        record.is_resolved = True
        record.resolved_at = now
        record.updated_at = now

    def _sync_links(self, record: NeedsHelpRecord, analysis: HelpAnalysis) -> None:
        record.classes[:] = [link for link in record.classes if link.class_id in analysis.class_ids]
        linked_classes = {link.class_id for link in record.classes}
        for class_id in sorted(analysis.class_ids - linked_classes, key=str):
            record.classes.append(NeedsHelpClass(class_id=class_id))

        record.teachers[:] = [
            link for link in record.teachers if link.teacher_id in analysis.teacher_ids
        ]
        linked_teachers = {link.teacher_id for link in record.teachers}
        for teacher_id in sorted(analysis.teacher_ids - linked_teachers, key=str):
            record.teachers.append(NeedsHelpTeacher(teacher_id=teacher_id))

    def _apply_snapshot(self, record: NeedsHelpRecord, analysis: HelpAnalysis) -> None:
        record.reasons = [reason.value for reason in analysis.reasons]
        record.reason_details = list(analysis.reason_details)
        record.average_score = analysis.average_score
        record.completion_rate = analysis.completion_rate
        record.overdue_assignments = analysis.overdue_assignments

    def _apply(self, db: Session, analysis: HelpAnalysis, now: datetime) -> str:
        open_records = self._open_records(db, analysis.student_id)

        if not analysis.should_flag:
            if not open_records:
                return UNCHANGED
            for record in open_records:
                self._resolve(record, now)
            return RESOLVED

        # Overlapping runs can leave duplicates; the oldest keeps the history
        record, *duplicates = open_records or [None]
        for duplicate in duplicates:
            logger.warning(
                "Resolving duplicate help record %s for student %s",
                duplicate.id,
                analysis.student_id,
            )
            self._resolve(duplicate, now)

        if record is None:
            record = NeedsHelpRecord(
                student_id=analysis.student_id,
                needs_help_since=now,
                days_needing_help=1,
                severity=HelpSeverity.RECENT,
                is_resolved=False,
                updated_at=now,
                classes=[],
                teachers=[],
            )
            self._apply_snapshot(record, analysis)
            self._sync_links(record, analysis)
            db.add(record)
            return CREATED

        record.days_needing_help = days_needing_help(record.needs_help_since, now)
        record.severity = severity_for(record.days_needing_help)
        record.updated_at = now
        self._apply_snapshot(record, analysis)
        self._sync_links(record, analysis)
        return UPDATED

    def evaluate_student(
        self,
        db: Session,
        student_id: uuid.UUID,
        now: datetime | None = None,
    ) -> str:
        now = now or datetime.utcnow()
        transition = commit_with_retry(
            db,
            lambda: self._apply(db, self.analyze_student(db, student_id, now), now),
            description=f"needs_help update for {student_id}",
        )
        if transition in (CREATED, RESOLVED):
            logger.info("Student %s help record %s", student_id, transition)
        return transition

    def refresh_all(self, db: Session, now: datetime | None = None) -> BatchResult:
        now = now or datetime.utcnow()
        student_ids = list_entity_ids(
            db.query(User.id).filter(User.role == UserRole.STUDENT).order_by(User.id),
            "student",
        )
        result = run_batch(
            db,
            "needs_help",
            student_ids,
            lambda student_id: self.evaluate_student(db, student_id, now),
        )
        logger.info(
            "Help flagging: %s flagged, %s still flagged, %s resolved",
            result.outcomes[CREATED],
            result.outcomes[UPDATED],
            result.outcomes[RESOLVED],
        )
        return result

    def get_needs_help(
        self,
        db: Session,
        teacher_id: uuid.UUID | None = None,
        *,
        include_resolved: bool = False,
    ) -> list[NeedsHelpRecord]:
        """Records visible to everyone, or to one teacher via their links or classes."""
        query = db.query(NeedsHelpRecord)
        if not include_resolved:
            query = query.filter(NeedsHelpRecord.is_resolved == False)  # noqa: E712
        if teacher_id is not None:
            teacher_classes = select(ClassMember.class_id).where(ClassMember.user_id == teacher_id)
            query = query.filter(
                or_(
                    NeedsHelpRecord.teachers.any(NeedsHelpTeacher.teacher_id == teacher_id),
                    NeedsHelpRecord.classes.any(NeedsHelpClass.class_id.in_(teacher_classes)),
                )
            )
        return query.order_by(
            NeedsHelpRecord.days_needing_help.desc(),
            NeedsHelpRecord.needs_help_since.asc(),
        ).all()

    def summarize(self, records: list[NeedsHelpRecord]) -> HelpSummary:
        open_records = [record for record in records if not record.is_resolved]
        return HelpSummary(
            total=len(open_records),
            critical=sum(1 for r in open_records if r.severity == HelpSeverity.CRITICAL),
            warning=sum(1 for r in open_records if r.severity == HelpSeverity.WARNING),
            recent=sum(1 for r in open_records if r.severity == HelpSeverity.RECENT),
        )

    def count_open(self, db: Session) -> int:
        return int(
            db.query(func.count(NeedsHelpRecord.id))
            .filter(NeedsHelpRecord.is_resolved == False)  # noqa: E712
            .scalar()
            or 0
        )

    def update_teacher_notes(
        self, db: Session, record_id: uuid.UUID, notes: str | None
    ) -> NeedsHelpRecord | None:
        record = db.get(NeedsHelpRecord, record_id)
        if record is None:
            return None
        record.teacher_notes = notes
        db.commit()
        db.refresh(record)
        return record


# Singleton instance
needs_help_service = NeedsHelpService()
