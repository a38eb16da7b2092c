import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from statsengine.models.help import HelpSeverity


class NeedsHelpRecordResponse(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    reasons: list[str]
    reason_details: list[str]
    needs_help_since: datetime
    days_needing_help: int
    severity: HelpSeverity
    is_resolved: bool
    resolved_at: datetime | None = None
    average_score: float
    completion_rate: float
    overdue_assignments: int
    teacher_notes: str | None = None
    class_ids: list[uuid.UUID] = []
    teacher_ids: list[uuid.UUID] = []
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class NeedsHelpSummaryResponse(BaseModel):
    total: int
    critical: int
    warning: int
    recent: int

    model_config = ConfigDict(from_attributes=True)


class NeedsHelpListResponse(BaseModel):
    students: list[NeedsHelpRecordResponse]
    summary: NeedsHelpSummaryResponse


class TeacherNotesUpdate(BaseModel):
    teacher_notes: str | None = None
