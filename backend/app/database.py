"""
Database configuration and session management.

This module sets up SQLAlchemy (SQLite by default) and provides
database session management for the application.
"""

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.engine import Engine

from app.config import get_settings

settings = get_settings()

# Get the backend directory path (parent of app directory)
BACKEND_DIR = Path(__file__).parent.parent
DATA_DIR = BACKEND_DIR / "data"

if settings.database.DATABASE_URL:
    DATABASE_URL = settings.database.DATABASE_URL
else:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    DATABASE_URL = f"sqlite:///{DATA_DIR / 'botnexus.db'}"

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

# Create SQLAlchemy engine
engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
    echo=settings.database.ECHO_SQL,
)


# Enable foreign key constraints for SQLite so cascades are enforced by the store
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints on SQLite connections."""
    if type(dbapi_conn).__module__.startswith("sqlite3"):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db() -> Session:
    """
    Dependency function to get database session.

    Yields:
        Session: Database session that will be automatically closed.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """
    Initialise the database.

    Creates all tables defined in the models if they don't exist.
    This is called on application startup.
    """
    # Import all models here so they are registered with Base
    from app.models import bot, user  # noqa: F401

    Base.metadata.create_all(bind=engine)
