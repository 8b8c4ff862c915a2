"""
Organization Health - Database Engine.

============================================================
PURPOSE
============================================================
SQLAlchemy engine and session management for the snapshot
repository.

- Declarative base for ORM models
- Engine creation (PostgreSQL in production, SQLite for tests)
- Session factory and transaction scope

============================================================
CONFIGURATION
============================================================
ORG_HEALTH_DATABASE_URL (or DATABASE_URL), loaded via .env

============================================================
"""

import os
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Generator, Optional

from dotenv import load_dotenv
from sqlalchemy import DateTime, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


load_dotenv()

logger = logging.getLogger(__name__)


DEFAULT_DATABASE_URL = "sqlite:///org_health.db"


# =============================================================
# DECLARATIVE BASE
# =============================================================


class Base(DeclarativeBase):
    """Declarative base for all organization health ORM models."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


# =============================================================
# ENGINE
# =============================================================


def get_database_url() -> str:
    """Get database URL from environment."""
    url = os.getenv("ORG_HEALTH_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        url = DEFAULT_DATABASE_URL
        logger.warning(f"ORG_HEALTH_DATABASE_URL not set, using default: {url}")
    return url


def create_database_engine(
    database_url: Optional[str] = None,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> Engine:
    """
    Create SQLAlchemy engine.

    In-memory SQLite URLs get a single shared connection so that
    worker threads see the same database.

    Args:
        database_url: Database URL (defaults to environment)
        pool_size: Connections kept in the pool (server databases)
        max_overflow: Extra connections beyond pool_size
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements

    Returns:
        SQLAlchemy Engine
    """
    url = database_url or get_database_url()
    logger.info(f"Creating database engine for: {url.split('@')[-1]}")

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)
    else:
        engine = create_engine(
            url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            echo=echo,
        )

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to an engine."""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def init_db(engine: Engine) -> None:
    """Create all tables that do not yet exist."""
    # Import models so they register on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(engine)
    logger.info("Organization health tables ensured")


@contextmanager
def transaction_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for explicit transaction boundaries.

    Commits only if no exception occurs; rolls back on ANY exception.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error, rolling back: {e}")
        session.rollback()
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
