"""
Entitlements Database Configuration

One engine per process. HTTP handlers get a session per request through
get_db; Celery tasks open one per run through session_scope. The store
commits its own writes, so neither helper commits.
"""

from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from app.config import settings

# =============================================================================
# Database Engine
# =============================================================================


def _engine_options(database_url: str) -> dict:
    """Pool settings for PostgreSQL; SQLite (tests, local runs) has no pool sizing."""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "echo": settings.debug,
    }


engine = create_engine(settings.database_url, **_engine_options(settings.database_url))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()


# =============================================================================
# Sessions
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """Request-scoped session for FastAPI dependencies."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Session for one background job run.

    Anything left uncommitted when the job fails is rolled back before the
    session is closed, so a retried task starts from a clean connection.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
