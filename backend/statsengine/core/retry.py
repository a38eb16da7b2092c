from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from statsengine.core.config import settings
from statsengine.core.errors import UpsertConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (IntegrityError, OperationalError)


def commit_with_retry(
    db: Session,
    operation: Callable[[], T],
    *,
    description: str,
    attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    """
    Run ``operation`` and commit, retrying on unique-key races and transient
    connection errors. The session is rolled back between attempts so the
    next attempt re-reads the row it collided with.
    """
    max_attempts = attempts or settings.DB_RETRY_ATTEMPTS
    multiplier = settings.DB_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=multiplier, max=settings.DB_RETRY_BACKOFF_MAX_SECONDS),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        for attempt in retrying:
            with attempt:
                try:
                    result = operation()
                    db.commit()
                except RETRYABLE_ERRORS:
                    db.rollback()
                    raise
    except RETRYABLE_ERRORS as exc:
        raise UpsertConflict(f"{description} failed after {max_attempts} attempts") from exc
    return result
