"""
Statistics Engine - FastAPI read API

Serves the aggregates written by the scheduler process. The pipeline itself
does not run here except through the manual refresh endpoint.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from redis.exceptions import RedisError
from rq import Worker
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from statsengine.core.config import settings
from statsengine.core.db import Database, get_db
from statsengine.core.queue import _get_redis_connection
from statsengine.routers import needs_help, statistics


def create_app(database: Database | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "database", None) is None
        if owned:
            app.state.database = Database()
        yield
        if owned:
            app.state.database.dispose()

    app = FastAPI(
        title="Statistics Engine API",
        description="Student, assignment, class and school statistics with help flagging",
        version="0.1.0",
        lifespan=lifespan,
    )
    if database is not None:
        app.state.database = database

    app.include_router(statistics.router, prefix="/api/v1")
    app.include_router(needs_help.router, prefix="/api/v1")

    @app.get("/")
    def root():
        """Root endpoint"""
        return {
            "message": "Statistics Engine API",
            "version": "0.1.0",
            "status": "running",
        }

    @app.get("/health")
    def health():
        """Health check endpoint"""
        return {"status": "ok"}

    @app.get("/health/db")
    def health_db(db: Session = Depends(get_db)):
        """Database health check endpoint"""
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise HTTPException(
                status_code=503,
                detail={
                    "status": "error",
                    "database": "unavailable",
                    "error": str(exc),
                },
            ) from exc

        return {"status": "ok", "db": "ok"}

    @app.get("/health/redis")
    def health_redis():
        """Redis health check endpoint (lease and async queue)."""
        try:
            redis_connection = _get_redis_connection()
            redis_connection.ping()
        except RedisError as exc:
            raise HTTPException(
                status_code=503,
                detail={
                    "status": "error",
                    "redis": "unavailable",
                    "error": str(exc),
                },
            ) from exc

        return {"status": "ok", "redis": "ok"}

    @app.get("/health/worker")
    def health_worker():
        """Worker health check endpoint (only meaningful when ASYNC_QUEUE_ENABLED=true)."""
        if not settings.ASYNC_QUEUE_ENABLED:
            return {"status": "skipped", "async_enabled": False}

        try:
            redis_connection = _get_redis_connection()
            redis_connection.ping()
            workers = Worker.all(connection=redis_connection)
        except RedisError as exc:
            raise HTTPException(
                status_code=503,
                detail={
                    "status": "error",
                    "redis": "unavailable",
                    "error": str(exc),
                },
            ) from exc

        active_workers = [
            worker.name
            for worker in workers
            if any(queue.name == settings.RQ_QUEUE_NAME for queue in worker.queues)
        ]
        if not active_workers:
            raise HTTPException(
                status_code=503,
                detail={
                    "status": "error",
                    "worker": "unavailable",
                    "queue": settings.RQ_QUEUE_NAME,
                    "workers": 0,
                },
            )

        return {
            "status": "ok",
            "async_enabled": True,
            "queue": settings.RQ_QUEUE_NAME,
            "workers": len(active_workers),
        }

    return app


app = create_app()
