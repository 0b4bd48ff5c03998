"""Database connection and session management.

This module handles the local SQLite connection used for snapshot slots.
"""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from config import DATA_DIR, LOCAL_DATABASE_URL
from models.base import Base
# Import models to ensure they are registered with Base.metadata
import models  # noqa: F401

_default_session_factory: Optional[sessionmaker] = None


def build_engine(database_url: str) -> Engine:
    """Create an engine for the given URL (SQLite gets thread-sharing enabled)."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def create_session_factory(database_url: str) -> sessionmaker:
    """Build an engine, create tables if not exist and return a session factory."""
    engine = build_engine(database_url)
    init_db(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_session_factory() -> sessionmaker:
    """Return the process-wide session factory for LOCAL_DATABASE_URL."""
    global _default_session_factory
    if _default_session_factory is None:
        # Ensure data directory exists
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        _default_session_factory = create_session_factory(LOCAL_DATABASE_URL)
    return _default_session_factory
