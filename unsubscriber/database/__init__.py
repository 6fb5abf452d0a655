"""
Database access: engine, sessions and retried transactions.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Generator, TypeVar

from sqlalchemy.orm import Session

from ..config import Config
from .models import create_database_engine, create_tables, get_session_maker
from .retry import db_retrying

logger = logging.getLogger(__name__)

T = TypeVar('T')


class DatabaseManager:
    """Manages database connections and operations."""

    def __init__(self, database_url: str = None, max_retries: int = None):
        if database_url is None:
            database_url = Config.get_database_path()

        self.database_url = database_url
        self.max_retries = max_retries if max_retries is not None else Config.DB_MAX_RETRIES
        self.engine = create_database_engine(database_url)
        self.SessionMaker = get_session_maker(self.engine)

    def initialize_database(self):
        """Create all tables if they don't exist."""
        create_tables(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionMaker()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits on success and rolls back on error."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def run(self, func: Callable[..., T], *args, **kwargs) -> T:
        """
        Run ``func(session, *args, **kwargs)`` in its own transaction.

        Transient errors are retried with backoff; a dead connection resets
        the pool before the next attempt.
        """
        for attempt in db_retrying(self.max_retries, on_dead_connection=self.reset_pool):
            with attempt:
                with self.session_scope() as session:
                    return func(session, *args, **kwargs)

    def reset_pool(self):
        """Drop pooled connections so the next checkout reconnects."""
        logger.warning("Resetting database connection pool")
        self.engine.dispose()
