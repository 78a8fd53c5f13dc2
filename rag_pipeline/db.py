"""Database setup and session utilities for SQLAlchemy.

This module centralizes engine/session initialization, metadata base, and helpers:
- make_engine / make_session_factory: build the engine and session factory from a URL.
- init_db: Ensures the pgvector extension exists (PostgreSQL) and creates required tables
  and indexes.
- session_scope: Context-managed transactional scope for imperative workflows.

The database URL is supplied by the caller (see rag_pipeline.config.Settings.DATABASE_URL).
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from rag_pipeline.errors import StorageFailure

Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    """Create an engine for the given URL with connection health checks enabled."""
    return create_engine(database_url, pool_pre_ping=True, future=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to engine.

    expire_on_commit is disabled so values read inside a scope stay usable after it closes.
    """
    return sessionmaker(
        autocommit=False, autoflush=False, bind=engine, future=True, expire_on_commit=False
    )


def is_postgres(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"


def init_db(engine: Engine) -> None:
    """Initialize database extensions, tables, and indexes.

    Ensures the pgvector extension is available on PostgreSQL and creates tables from
    SQLAlchemy metadata.

    This function is idempotent and safe to run multiple times.
    """
    if is_postgres(engine):
        with engine.connect() as conn:
            # Enable pgvector extension
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            conn.commit()

    # Import models after Base is defined
    from rag_pipeline import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations.

    Yields:
        Session: A SQLAlchemy session from session_factory.

    Notes:
        - Commits on successful exit.
        - Rolls back on exception; SQLAlchemy errors are re-raised as StorageFailure.
        - Always closes the session at the end.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise StorageFailure(str(exc)) from exc
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()
