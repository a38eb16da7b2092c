import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from statsengine.core.db import get_db
from statsengine.schemas.needs_help import (
    NeedsHelpListResponse,
    NeedsHelpRecordResponse,
    NeedsHelpSummaryResponse,
    TeacherNotesUpdate,
)
from statsengine.services.needs_help_service import needs_help_service

router = APIRouter(prefix="/needs-help", tags=["needs-help"])


@router.get("", response_model=NeedsHelpListResponse)
def list_students_needing_help(
    teacher_id: uuid.UUID | None = None,
    include_resolved: bool = False,
    db: Session = Depends(get_db),
):
    """
    Students currently flagged, most days first. With ``teacher_id`` only
    records linked to that teacher, directly or through one of their classes.
    """
    try:
        records = needs_help_service.get_needs_help(
            db, teacher_id, include_resolved=include_resolved
        )
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=503,
            detail={"status": "error", "database": "unavailable", "error": str(exc)},
        ) from exc

    return NeedsHelpListResponse(
        students=[NeedsHelpRecordResponse.model_validate(record) for record in records],
        summary=NeedsHelpSummaryResponse.model_validate(needs_help_service.summarize(records)),
    )


@router.patch("/{record_id}/notes", response_model=NeedsHelpRecordResponse)
def update_teacher_notes(
    record_id: uuid.UUID,
    payload: TeacherNotesUpdate,
    db: Session = Depends(get_db),
):
    record = needs_help_service.update_teacher_notes(db, record_id, payload.teacher_notes)
    if not record:
        raise HTTPException(status_code=404, detail="Record not found")
    return record
