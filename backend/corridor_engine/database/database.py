"""
Database Configuration and Session Management

This module provides the SQLAlchemy engine, session factory and table
initialization for the mission archive.
"""

import logging
import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent.parent.parent / "data"

# Database URL - SQLite unless DATABASE_URL is set
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite:///{DATA_DIR}/corridor_archive.db"
)


def create_db_engine(url: str = DATABASE_URL):
    """Engine with SQLite thread settings applied when needed"""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, echo=False)


# Create SQLAlchemy engine
engine = create_db_engine()

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()


def init_db(bind=None):
    """
    Initialize database - create all tables

    Called on application startup to ensure all tables exist.
    """
    # Import all models to ensure they're registered with Base
    from corridor_engine.database import models  # noqa: F401

    target = bind if bind is not None else engine
    if target.url.drivername.startswith("sqlite") and target.url.database not in (None, "", ":memory:"):
        Path(target.url.database).parent.mkdir(parents=True, exist_ok=True)

    Base.metadata.create_all(bind=target)
    logger.info("[ARCHIVE] Database initialized at: %s", target.url)
