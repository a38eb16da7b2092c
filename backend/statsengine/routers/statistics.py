import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from statsengine.core.db import get_db
from statsengine.core.errors import DataSourceUnavailable
from statsengine.core.queue import enqueue_statistics_refresh, is_async_queue_enabled
from statsengine.schemas.statistics import (
    AssignmentProgressResponse,
    AssignmentStatsResponse,
    ClassStatsResponse,
    PipelineRunResponse,
    SchoolStatsResponse,
    StudentStatsResponse,
)
from statsengine.services.assignment_stats_service import assignment_stats_service
from statsengine.services.class_stats_service import class_stats_service
from statsengine.services.progress_service import progress_service
from statsengine.services.school_stats_service import school_stats_service
from statsengine.services.student_stats_service import student_stats_service
from statsengine.tasks import run_exclusive

router = APIRouter(prefix="/statistics", tags=["statistics"])


def _unavailable(exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={"status": "error", "database": "unavailable", "error": str(exc)},
    )


@router.get("/students/{student_id}", response_model=StudentStatsResponse)
def get_student_statistics(student_id: uuid.UUID, db: Session = Depends(get_db)):
    try:
        stats = student_stats_service.get_student_statistics(db, student_id)
    except SQLAlchemyError as exc:
        raise _unavailable(exc) from exc
    if not stats:
        raise HTTPException(status_code=404, detail="Student statistics not found")
    return stats


@router.get("/assignments/{assignment_id}", response_model=AssignmentStatsResponse)
def get_assignment_statistics(assignment_id: uuid.UUID, db: Session = Depends(get_db)):
    try:
        stats = assignment_stats_service.get_assignment_statistics(db, assignment_id)
    except SQLAlchemyError as exc:
        raise _unavailable(exc) from exc
    if not stats:
        raise HTTPException(status_code=404, detail="Assignment statistics not found")
    return stats


@router.get("/assignments/{assignment_id}/progress", response_model=AssignmentProgressResponse)
def get_assignment_progress(
    assignment_id: uuid.UUID,
    student_id: uuid.UUID | None = None,
    db: Session = Depends(get_db),
):
    """
    Live progress for one assignment, recomputed from the attempt log.
    Does not read or write the cached AssignmentStats row.
    """
    try:
        progress = progress_service.get_assignment_progress(db, assignment_id, student_id)
    except SQLAlchemyError as exc:
        raise _unavailable(exc) from exc
    if not progress:
        raise HTTPException(status_code=404, detail="Assignment not found")
    return progress


@router.get("/classes/{class_id}", response_model=ClassStatsResponse)
def get_class_statistics(class_id: uuid.UUID, db: Session = Depends(get_db)):
    try:
        stats = class_stats_service.get_class_statistics(db, class_id)
    except SQLAlchemyError as exc:
        raise _unavailable(exc) from exc
    if not stats:
        raise HTTPException(status_code=404, detail="Class statistics not found")
    return stats


@router.get("/school", response_model=SchoolStatsResponse)
def get_school_statistics(
    day: date | None = Query(None, alias="date"),
    fallback: bool = False,
    db: Session = Depends(get_db),
):
    """School snapshot for a day (today by default), optionally the latest one instead."""
    try:
        stats = school_stats_service.get_school_stats(db, day, fallback_to_latest=fallback)
    except SQLAlchemyError as exc:
        raise _unavailable(exc) from exc
    if not stats:
        raise HTTPException(status_code=404, detail="School statistics not found")
    return stats


@router.get("/school/trend", response_model=list[SchoolStatsResponse])
def get_school_statistics_trend(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
):
    try:
        return school_stats_service.get_school_stats_trend(db, days)
    except SQLAlchemyError as exc:
        raise _unavailable(exc) from exc


@router.post("/refresh", response_model=PipelineRunResponse)
def refresh_statistics(request: Request):
    """Queue a pipeline run, or run it inline when the async queue is disabled."""
    try:
        if is_async_queue_enabled():
            job_id = enqueue_statistics_refresh()
            return PipelineRunResponse(status="queued", job_id=job_id)
        result = run_exclusive(request.app.state.database)
    except DataSourceUnavailable as exc:
        raise _unavailable(exc) from exc
    except RedisError as exc:
        raise HTTPException(
            status_code=503,
            detail={"status": "error", "redis": "unavailable", "error": str(exc)},
        ) from exc
    if result is None:
        return PipelineRunResponse(status="skipped")
    return PipelineRunResponse(**result.as_dict())
