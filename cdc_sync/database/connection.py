"""
Database Connection Module
Handles task store connection pooling and session management using SQLAlchemy.
"""

import os
from contextlib import contextmanager
from typing import Dict, Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from cdc_sync.config_manager import ConfigManager
from cdc_sync.database.models import Base
from cdc_sync.utils.logger import get_logger

logger = get_logger(__name__)


class DatabaseConnection:
    """Manages the task store connection with connection pooling."""

    def __init__(self, url: Optional[str] = None, db_config: Optional[Dict] = None):
        """
        Initialize database connection.

        Args:
            url: SQLAlchemy URL; built from the ``database`` config section when omitted
            db_config: Overrides the ``database`` config section
        """
        if db_config is None:
            db_config = ConfigManager().get_database_config()
        self._db_config = db_config
        self._url = url or db_config.get('url') or self._build_connection_url(db_config)
        self._initialize_engine()

    def _initialize_engine(self) -> None:
        """Create SQLAlchemy engine."""
        url = make_url(self._url)
        echo = os.getenv('SQL_ECHO', 'false').lower() == 'true'

        logger.info(f"Initializing task store connection to {url.render_as_string(hide_password=True)}")

        if url.get_backend_name() == 'sqlite':
            # Engine worker threads and API threads share the store
            self._engine = create_engine(
                url,
                connect_args={'check_same_thread': False},
                echo=echo
            )
        else:
            self._engine = create_engine(
                url,
                pool_size=self._db_config.get('pool_size', 5),
                max_overflow=self._db_config.get('max_overflow', 10),
                pool_timeout=self._db_config.get('pool_timeout', 30),
                pool_pre_ping=True,  # Enable connection health checks
                echo=echo
            )

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

        logger.info("Task store engine initialized successfully")

    def _build_connection_url(self, db_config: dict) -> URL:
        """Build MySQL connection URL from config."""
        return URL.create(
            'mysql+pymysql',
            username=db_config.get('user', 'cdc_sync'),
            password=db_config.get('password') or None,
            host=db_config.get('host', 'localhost'),
            port=int(db_config.get('port', 3306)),
            database=db_config.get('name', 'cdc_sync'),
            query={'charset': 'utf8mb4'}
        )

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        return self._engine

    def get_session(self) -> Session:
        """Create a new database session."""
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Usage:
            with db.session_scope() as session:
                session.query(...)
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """Create task store tables that do not exist yet."""
        Base.metadata.create_all(self._engine)

    def drop_all(self) -> None:
        """Drop all task store tables."""
        Base.metadata.drop_all(self._engine)

    def check_connection(self) -> bool:
        """
        Check if database connection is healthy.

        Returns:
            bool: True if connection is healthy, False otherwise.
        """
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.debug("Database connection health check passed")
            return True
        except Exception as e:
            logger.error(f"Database connection health check failed: {e}")
            return False

    def dispose(self) -> None:
        """Dispose of the connection pool."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database connection pool disposed")


_db: Optional[DatabaseConnection] = None


def get_db() -> DatabaseConnection:
    """Get the process-wide task store connection."""
    global _db
    if _db is None:
        _db = DatabaseConnection()
    return _db

