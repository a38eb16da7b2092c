import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict


class StudentStatsResponse(BaseModel):
    student_id: uuid.UUID
    total_assignments: int
    completed_assignments: int
    in_progress_assignments: int
    not_started_assignments: int
    average_score: float
    total_questions: int
    total_answers: int
    total_correct_answers: int
    accuracy_rate: float
    completion_rate: float
    last_activity_date: datetime | None = None
    last_updated: datetime

    model_config = ConfigDict(from_attributes=True)


class AssignmentStatsResponse(BaseModel):
    assignment_id: uuid.UUID
    total_students: int
    total_questions: int
    completed_students: int
    in_progress_students: int
    not_started_students: int
    completion_rate: float
    average_score: float
    total_answers: int
    total_correct_answers: int
    accuracy_rate: float
    last_updated: datetime

    model_config = ConfigDict(from_attributes=True)


class ClassStatsResponse(BaseModel):
    class_id: uuid.UUID
    total_students: int
    total_assignments: int
    average_completion: float
    average_score: float
    accuracy_rate: float
    total_questions: int
    total_answers: int
    total_correct_answers: int
    active_students: int
    students_needing_help: int
    last_updated: datetime

    model_config = ConfigDict(from_attributes=True)


class SchoolStatsResponse(BaseModel):
    date: date
    total_users: int
    total_teachers: int
    total_students: int
    total_classes: int
    total_assignments: int
    active_assignments: int
    scheduled_assignments: int
    completed_assignments: int
    average_completion_rate: float
    average_score: float
    total_questions: int
    total_answers: int
    total_correct_answers: int
    daily_active_students: int
    daily_active_teachers: int
    students_needing_help: int
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class StudentProgressSummary(BaseModel):
    """Live progress of one student on one assignment"""

    student_id: uuid.UUID
    answered_questions: int
    correct_answers: int
    total_questions: int
    status: str  # completed, in_progress, not_started
    score: float
    last_attempt_at: datetime | None = None


class QuestionProgressSummary(BaseModel):
    question_id: uuid.UUID
    text_question: str | None = None
    answered_count: int
    correct_count: int


class AssignmentProgressResponse(BaseModel):
    """Recomputed from raw attempts on every request; bypasses AssignmentStats"""

    assignment_id: uuid.UUID
    topic: str
    total_students: int
    total_questions: int
    completed_students: int
    in_progress_students: int
    not_started_students: int
    completion_rate: float
    students: list[StudentProgressSummary]
    questions: list[QuestionProgressSummary]
    computed_at: datetime


class PipelineStageResult(BaseModel):
    entity_type: str
    processed: int
    succeeded: int
    failed: list[str]
    outcomes: dict[str, int] = {}


class PipelineRunResponse(BaseModel):
    status: str  # success, partial, skipped, queued
    started_at: datetime | None = None
    finished_at: datetime | None = None
    stages: list[PipelineStageResult] = []
    school_stats_date: date | None = None
    purged_school_stats: int = 0
    job_id: str | None = None
