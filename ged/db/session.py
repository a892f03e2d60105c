"""
GED Database Session Management.

A single injected ``Database`` handle replaces per-call connections: it owns
a pooled engine and a session factory, and hands out transactional scopes.

Usage:
    db = Database.from_config(get_config().database)
    with db.session_scope() as session:
        folder = session.get(Folder, 1)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ged.db.base import Base
from ged.engine.errors import GedError, GedStorageError

logger = logging.getLogger("ged.db.session")


class Database:
    """
    Pooled engine + session factory for the GED tables.

    SQLite URLs (tests, local dev) get foreign-key enforcement and the
    pysqlite SAVEPOINT workaround so nested transactions behave like
    PostgreSQL.
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
        pool_pre_ping: bool = True,
        echo: bool = False,
        **kwargs: Any,
    ):
        self._url = url
        if url.startswith("sqlite"):
            # SQLite uses its own pool classes; pool sizing does not apply
            self._engine = create_engine(url, echo=echo, **kwargs)
            self._install_sqlite_listeners()
        else:
            self._engine = create_engine(
                url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
                pool_pre_ping=pool_pre_ping,
                echo=echo,
                **kwargs,
            )
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    @classmethod
    def from_config(cls, config: Any) -> "Database":
        """Build from a ``DatabaseConfig``."""
        return cls(
            config.url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            pool_pre_ping=config.pool_pre_ping,
            echo=config.echo,
        )

    def _install_sqlite_listeners(self) -> None:
        @event.listens_for(self._engine, "connect")
        def _on_connect(dbapi_conn, connection_record):
            # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works
            dbapi_conn.isolation_level = None
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(self._engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    @property
    def engine(self) -> Any:
        return self._engine

    @property
    def url(self) -> str:
        return self._url

    def session(self) -> Session:
        """A new unmanaged session. Prefer session_scope()."""
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Context manager with auto-commit/rollback.

        GED errors pass through unchanged; driver errors are wrapped in
        GedStorageError with the original chained.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except GedError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database operation failed: {e}")
            raise GedStorageError(
                "Database operation failed",
                operation="transaction",
                cause=str(e),
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """Create every GED table (idempotent)."""
        # Model classes must be registered on Base.metadata first
        import ged.db.models  # noqa: F401

        Base.metadata.create_all(self._engine)

    def drop_all(self) -> None:
        import ged.db.models  # noqa: F401

        Base.metadata.drop_all(self._engine)

    def health_check(self) -> bool:
        """Check if the engine can connect."""
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    def dispose(self) -> None:
        """Close the connection pool."""
        self._engine.dispose()
