"""Database utilities for the sandbox backend."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

_MEMORY_URLS = {"sqlite://", "sqlite:///:memory:"}


class Base(DeclarativeBase):
    """Base model for SQLAlchemy mappings."""


def create_sandbox_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite keeps one shared connection alive."""

    if url in _MEMORY_URLS:
        return create_engine(
            url, connect_args={"check_same_thread": False}, poolclass=StaticPool, future=True
        )
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, future=True)
    return create_engine(url, future=True)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_database(engine: Engine) -> None:
    """Ensure that the database schema exists."""

    from . import models  # noqa: F401 - ensure models are imported

    Base.metadata.create_all(bind=engine)
