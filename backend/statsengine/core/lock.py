from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import redis
from redis.exceptions import LockError

from statsengine.core.config import settings

logger = logging.getLogger(__name__)


@contextmanager
def pipeline_lease(redis_connection: redis.Redis | None) -> Iterator[bool]:
    """
    Hold the cross-process lease for one pipeline run.

    Yields ``True`` when this process owns the run, ``False`` when another
    process already holds it. With no connection (lease disabled) the caller
    always owns the run.
    """
    if redis_connection is None:
        yield True
        return

    lock = redis_connection.lock(
        settings.PIPELINE_LOCK_NAME,
        timeout=settings.PIPELINE_LOCK_TIMEOUT_SECONDS,
        blocking=False,
    )
    acquired = lock.acquire(blocking=False)
    if not acquired:
        logger.warning("Pipeline lease %s is held elsewhere", settings.PIPELINE_LOCK_NAME)
        yield False
        return

    try:
        yield True
    finally:
        try:
            lock.release()
        except LockError:
            # Lease expired while running; another run may already own it.
            logger.warning("Pipeline lease %s expired before release", settings.PIPELINE_LOCK_NAME)
