"""SQLAlchemy 2.0 database setup.

The database is the single shared mutable resource; every store opens its own
short transaction through Database.session_scope().
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from marketplace_reconciler.logging_config import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Database:
    """Engine and session factory for one database URL."""

    def __init__(self, url: str, echo: bool = False):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self._url = url
        self._engine: Engine = create_engine(url, echo=echo, connect_args=connect_args)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        # Import registers the mapped classes on Base.metadata
        from marketplace_reconciler.models import orm  # noqa: F401

        Base.metadata.create_all(self._engine)
        logger.info("database_schema_ready", url=self._engine.url.render_as_string(hide_password=True))

    @contextmanager
    def session_scope(self, session: Optional[Session] = None) -> Iterator[Session]:
        """Provide a transactional scope.

        Commits on success and rolls back on error. When an outer session is
        passed, it is reused and the outer scope owns the commit.
        """
        if session is not None:
            yield session
            return

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        """Check that the database accepts connections."""
        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("database_unreachable", error=str(e))
            return False
        return True

    def dispose(self) -> None:
        self._engine.dispose()

    def __repr__(self) -> str:
        return f"Database(url={self._engine.url.render_as_string(hide_password=True)!r})"


_database_instance: Optional[Database] = None
_database_lock = threading.Lock()


def get_database() -> Database:
    """Get global database instance built from configuration (singleton)."""
    global _database_instance
    if _database_instance is None:
        with _database_lock:
            if _database_instance is None:
                from marketplace_reconciler.config import get_config

                settings = get_config().database
                _database_instance = Database(settings.url, echo=settings.echo)
    return _database_instance


def reset_database() -> None:
    """Dispose the global database instance."""
    global _database_instance
    with _database_lock:
        if _database_instance is not None:
            _database_instance.dispose()
            _database_instance = None
