"""Database engine, session factory, and dependency injection."""

from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import sessionmaker, Session

from scriptgov.core.config import settings
from scriptgov.core.exceptions import StoreUnavailableError


def build_engine(url: str):
    """Create an engine; SQLite (tests, local dev) skips the pool tuning."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=settings.DB_ECHO,
        )
    return create_engine(
        url,
        pool_size=20,
        max_overflow=40,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=settings.DB_ECHO,
    )


engine = build_engine(settings.DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that provides a DB session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def store_errors(db: Session) -> Iterator[None]:
    """Translate transport-level database failures into StoreUnavailableError."""
    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        db.rollback()
        raise StoreUnavailableError(f"Store unavailable: {exc.orig or exc}") from exc
