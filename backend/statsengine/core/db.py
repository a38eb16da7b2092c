from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from statsengine.core.config import settings
from statsengine.core.errors import DataSourceUnavailable

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Connection pool plus session factory, built once per process.

    Every component receives this object (or a session made from it) instead
    of reaching for a module-level engine.
    """

    def __init__(self, url: str | None = None, *, engine: Engine | None = None, **engine_kwargs):
        if engine is None:
            engine_kwargs.setdefault("pool_pre_ping", settings.DB_POOL_PRE_PING)
            engine = create_engine(url or settings.DATABASE_URL, **engine_kwargs)
        self.engine = engine
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def new_session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def ping(self) -> None:
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise DataSourceUnavailable(f"Database unreachable: {exc}") from exc

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        logger.info("Disposing database connection pool")
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.database.new_session()
    try:
        yield db
    finally:
        db.close()


from statsengine.models import (  # noqa: E402, F401, I001
    assignment,
    classroom,
    help,
    progress,
    stats,
    user,
)
