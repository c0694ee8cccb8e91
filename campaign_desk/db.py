"""
Engine and session helpers.

The database location comes from ``DATABASE_URL`` (any SQLAlchemy URL).  When
unset a local SQLite file is used so the CLI and API work out of the box.
"""

from __future__ import annotations

import os
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

DEFAULT_DATABASE_URL = "sqlite:///campaign_desk.db"

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def make_engine(db_url: Optional[str] = None) -> Engine:
    url = db_url or os.environ.get("DATABASE_URL") or DEFAULT_DATABASE_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            # every session must see the same in-memory database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
    else:
        engine = create_engine(url, pool_pre_ping=True)
    Base.metadata.create_all(engine)
    return engine


def configure(db_url: Optional[str] = None) -> Engine:
    """(Re)bind the module-level engine and session factory."""
    global _engine, _session_factory
    _engine = make_engine(db_url)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    return _engine


def get_db_session() -> Session:
    if _session_factory is None:
        configure()
    return _session_factory()


def session_scope() -> Iterator[Session]:
    """Yield a session and close it afterwards (FastAPI dependency)."""
    session = get_db_session()
    try:
        yield session
    finally:
        session.close()
