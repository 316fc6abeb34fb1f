"""Engine, session factory and schema bootstrap"""

import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from gatekeeper.config import settings

logger = logging.getLogger(__name__)


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # Single shared connection so an in-memory database survives across sessions and threads
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=settings.DEBUG,
        )
    return create_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=settings.DEBUG,
    )


engine = _build_engine(settings.get_database_url())
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Registers every table on Base.metadata
from gatekeeper import models  # noqa: E402,F401


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for code running outside a request (startup, sockets, jobs)"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """
    Prepare the schema according to DB_INIT_MODE.

    migrate: expect Alembic to have run (alembic_version present when
    DB_REQUIRE_HEAD); create_all: build tables from the models, for local
    runs only; off: do nothing.
    """
    mode = settings.DB_INIT_MODE.strip().lower()
    if mode == "off":
        logger.info("Schema check skipped (DB_INIT_MODE=off)")
    elif mode == "create_all":
        Base.metadata.create_all(bind=engine)
        logger.warning("Tables created from models; use Alembic migrations outside local development")
    elif mode == "migrate":
        migrated = inspect(engine).has_table("alembic_version")
        if settings.DB_REQUIRE_HEAD and not migrated:
            raise RuntimeError("Database is not migrated. Run `alembic upgrade head` before starting the API.")
        logger.info("Schema managed by Alembic")
    else:
        raise RuntimeError(f"Unknown DB_INIT_MODE: {settings.DB_INIT_MODE}")
