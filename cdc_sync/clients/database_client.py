"""
Database Client Module
Statement execution against the source, intermediate and warehouse engines.
"""

from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from cdc_sync.domain import ConnectionConfig, DbType
from cdc_sync.errors import EngineConnectionError, StatementExecutionError
from cdc_sync.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10


class DatabaseClient:
    """
    Interface the pipeline needs from an engine connection.

    Call timeouts belong to the client; they surface as
    StatementExecutionError like any other failed statement.
    """

    def execute(self, statement: str) -> None:
        raise NotImplementedError

    def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class SqlAlchemyClient(DatabaseClient):
    """DatabaseClient backed by a SQLAlchemy engine (pymysql or psycopg2)."""

    def __init__(self, config: ConnectionConfig, connect_timeout: int = DEFAULT_CONNECT_TIMEOUT):
        """
        Initialize client for one engine.

        Args:
            config: Resolved connection config
            connect_timeout: Seconds before a connection attempt fails
        """
        self.config = config
        self._engine: Engine = create_engine(
            self._build_url(config),
            poolclass=NullPool,
            connect_args={'connect_timeout': connect_timeout}
        )
        self._conn: Optional[Connection] = None

    @staticmethod
    def _build_url(config: ConnectionConfig) -> URL:
        """Build the driver URL for the engine type."""
        database = config.database_name
        if config.db_type is DbType.RISINGWAVE and not database:
            database = 'dev'  # RisingWave default database
        return URL.create(
            config.db_type.driver,
            username=config.username,
            password=config.password or None,
            host=config.host,
            port=config.port,
            database=database
        )

    def _connection(self) -> Connection:
        if self._conn is None:
            try:
                self._conn = self._engine.connect()
            except SQLAlchemyError as e:
                logger.error(f"Failed to connect to {self.config.db_type.value} '{self.config.name}': {e}")
                raise EngineConnectionError(
                    f"{self.config.db_type.value} connection failed ({self.config.host}:{self.config.port}): {e}",
                    engine=self.config.db_type.value
                )
            logger.debug(f"Connected to {self.config.db_type.value} '{self.config.name}'")
        return self._conn

    def connect(self) -> 'SqlAlchemyClient':
        """Open the connection eagerly so failures surface before any statement."""
        self._connection()
        return self

    def execute(self, statement: str) -> None:
        """
        Execute one DDL/DML statement and commit it.

        Raises:
            EngineConnectionError: Engine unreachable
            StatementExecutionError: Engine rejected the statement
        """
        conn = self._connection()
        try:
            conn.exec_driver_sql(statement)
            conn.commit()
        except DBAPIError as e:
            conn.rollback()
            raw = str(e.orig) if e.orig is not None else str(e)
            raise StatementExecutionError(statement, raw)

    def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Run a query and return rows as dictionaries.

        Raises:
            EngineConnectionError: Engine unreachable
            StatementExecutionError: Query failed
        """
        conn = self._connection()
        try:
            result = conn.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings()]
        except DBAPIError as e:
            conn.rollback()
            raw = str(e.orig) if e.orig is not None else str(e)
            raise StatementExecutionError(sql, raw)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        self._engine.dispose()


ClientFactory = Callable[[ConnectionConfig], DatabaseClient]


def default_client_factory(config: ConnectionConfig) -> DatabaseClient:
    """Open a connected SqlAlchemyClient for a config."""
    return SqlAlchemyClient(config).connect()
