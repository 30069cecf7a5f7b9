"""
Database Connection Manager

Handles database connections, sessions, and operations.
"""

import os
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool

from deltazones import config
from deltazones.storage.models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Manages database connections and sessions.

    Singleton pattern to ensure single database connection pool.
    """

    _instance = None
    _engine = None
    _session_factory = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(DatabaseManager, cls).__new__(cls)
        return cls._instance

    def initialize(self, database_url: str = None):
        """
        Initialize database connection.

        Calling this again replaces the current engine, which is how tests
        point the manager at a fresh in-memory database.

        Args:
            database_url: Database URL. If None, read from env
        """
        if database_url is None:
            database_url = config.DATABASE_URL

        if self._engine is not None:
            self.close()

        logger.info("Initializing database connection...")

        if database_url.startswith('sqlite'):
            if database_url in ('sqlite://', 'sqlite:///:memory:'):
                # One shared connection, otherwise every session sees an empty database
                self._engine = create_engine(
                    database_url,
                    echo=False,
                    connect_args={'check_same_thread': False},
                    poolclass=StaticPool
                )
            else:
                db_path = database_url.split('sqlite:///', 1)[-1]
                db_dir = os.path.dirname(db_path)
                if db_dir:
                    os.makedirs(db_dir, exist_ok=True)
                self._engine = create_engine(
                    database_url,
                    echo=False,
                    connect_args={'check_same_thread': False}
                )
        else:
            # PostgreSQL configuration
            self._engine = create_engine(
                database_url,
                echo=False,
                pool_size=10,
                max_overflow=20,
                pool_pre_ping=True  # Verify connections before using
            )

        # Create session factory
        self._session_factory = scoped_session(
            sessionmaker(
                bind=self._engine,
                autocommit=False,
                autoflush=False
            )
        )

        logger.info("Database connection initialized")

    @property
    def engine(self):
        """Get database engine"""
        if self._engine is None:
            self.initialize()
        return self._engine

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @property
    def session_factory(self):
        """Get session factory"""
        if self._session_factory is None:
            self.initialize()
        return self._session_factory

    def create_tables(self):
        """Create all database tables"""
        logger.info("Creating database tables...")
        Base.metadata.create_all(self.engine)
        logger.info("Database tables created")

    def drop_tables(self):
        """Drop all database tables (USE WITH CAUTION!)"""
        logger.warning("Dropping all database tables...")
        Base.metadata.drop_all(self.engine)
        logger.info("Database tables dropped")

    @contextmanager
    def get_session(self):
        """
        Get a database session (context manager).

        Usage:
            with db_manager.get_session() as session:
                session.add(obj)
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            session.close()

    def close(self):
        """Close database connections"""
        if self._session_factory:
            self._session_factory.remove()
        if self._engine:
            self._engine.dispose()
        self._session_factory = None
        self._engine = None
        logger.info("Database connections closed")


# Global database manager instance
db_manager = DatabaseManager()


def init_database(database_url: str = None, drop: bool = False):
    """
    Initialize database and create tables.

    Args:
        database_url: Database URL. If None, read from env
        drop: Drop every existing table first (all stored trades and jobs are lost)
    """
    db_manager.initialize(database_url)
    if drop:
        db_manager.drop_tables()
    db_manager.create_tables()
