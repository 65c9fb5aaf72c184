# outreach_server/db/engine.py
import logging
import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from daily_outreach.db import models as domain_models  # noqa: F401  (registers domain tables)
from outreach_server.db.models import Base

logger = logging.getLogger(__name__)

# Default to a SQLite file under assets/ unless DATABASE_URL is set
SERVER_DB_PATH = Path(__file__).parent.parent.parent / "assets" / "outreach.db"

# Cache the engine and session factory to avoid recreating them
_engine = None
_session_factory = None


def get_database_url() -> str:
    """Get database URL from environment, falling back to the local SQLite file."""
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    SERVER_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{SERVER_DB_PATH}"


def get_engine():
    """Get SQLAlchemy engine for the outreach database."""
    global _engine
    if _engine is None:
        db_url = get_database_url()
        connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
        _engine = create_engine(db_url, connect_args=connect_args)
        # Create tables if they don't exist
        Base.metadata.create_all(bind=_engine, checkfirst=True)
        logger.debug("Outreach DB schema ready → %s", _engine.url.render_as_string(hide_password=True))
    return _engine


def get_session():
    """Get a new database session for the outreach database."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _session_factory()
