from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.config import settings


class Base(DeclarativeBase):
    pass


def get_engine():
    return create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )


SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)


def get_db():
    """Database session dependency for FastAPI route handlers."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory=None):
    """Session for worker units of work.

    Rolls back on error and always closes, so a failed unit of work never
    leaves the session in a broken transaction for the next one.
    """
    factory = session_factory or SessionLocal
    db = factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def libpq_dsn(database_url: str | None = None) -> str:
    """Convert an SQLAlchemy URL into a plain libpq DSN for raw psycopg use."""
    url = make_url(database_url or settings.database_url)
    return url.set(drivername="postgresql").render_as_string(hide_password=False)
