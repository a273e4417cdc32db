"""
Database engine, session factory, and metadata shared across the scheduling core.

The engine is created on first use so that importing models (and running the
unit tests against SQLite) never opens a connection to the configured server.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import logging
import threading
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from mathbridge.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

_engine: Optional[Engine] = None
_engine_lock = threading.Lock()


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    """Pool and timeout settings; PostgreSQL also gets a per-connection statement_timeout."""
    if db_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "future": True}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout_s,
        "pool_pre_ping": True,
        "future": True,
        "connect_args": {
            "options": f"-c statement_timeout={settings.db_statement_timeout_ms}",
            "connect_timeout": max(1, int(settings.db_pool_timeout_s)),
            "application_name": "mathbridge_scheduling",
        },
    }


def get_engine() -> Engine:
    global _engine
    if _engine is not None:
        return _engine
    with _engine_lock:
        if _engine is None:
            db_url = settings.database_url
            _engine = create_engine(db_url, **_build_engine_kwargs(db_url))
            event.listen(_engine, "connect", _on_connect)
            SessionLocal.configure(bind=_engine)
    return _engine


def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
    connection_record.info["connect_time"] = datetime.now()
    logger.debug("Database connection established")


def get_db() -> Generator[Session, None, None]:
    """Yield a session with commit/rollback handled around the caller."""
    get_engine()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Context-manager form of get_db for scripts and workers."""
    yield from get_db()


__all__ = [
    "Base",
    "SessionLocal",
    "get_db",
    "get_db_session",
    "get_engine",
]
