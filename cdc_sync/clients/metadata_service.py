"""
Metadata Service Module
Reads live table structure from a MySQL source via information_schema.
"""

from collections import OrderedDict
from typing import Any, Dict, List, Optional

from cdc_sync.clients.database_client import ClientFactory, DatabaseClient, default_client_factory
from cdc_sync.domain import ColumnSchema, ConnectionConfig, IndexSchema, TableSchema
from cdc_sync.errors import NotFoundError
from cdc_sync.utils.logger import get_logger

logger = get_logger(__name__)


COLUMNS_QUERY = """
    SELECT COLUMN_NAME, COLUMN_TYPE, IS_NULLABLE, COLUMN_DEFAULT,
           CHARACTER_MAXIMUM_LENGTH, NUMERIC_PRECISION, NUMERIC_SCALE, COLUMN_COMMENT
    FROM information_schema.COLUMNS
    WHERE TABLE_SCHEMA = :database AND TABLE_NAME = :table
    ORDER BY ORDINAL_POSITION
"""

PRIMARY_KEY_QUERY = """
    SELECT COLUMN_NAME
    FROM information_schema.KEY_COLUMN_USAGE
    WHERE TABLE_SCHEMA = :database AND TABLE_NAME = :table
      AND CONSTRAINT_NAME = 'PRIMARY'
    ORDER BY ORDINAL_POSITION
"""

INDEX_QUERY = """
    SELECT INDEX_NAME, COLUMN_NAME, NON_UNIQUE
    FROM information_schema.STATISTICS
    WHERE TABLE_SCHEMA = :database AND TABLE_NAME = :table
      AND INDEX_NAME <> 'PRIMARY'
    ORDER BY INDEX_NAME, SEQ_IN_INDEX
"""


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


def _row_value(row: Dict[str, Any], key: str) -> Any:
    # MySQL 8 returns information_schema column labels upper-case, 5.7 may not
    if key in row:
        return row[key]
    return row.get(key.lower())


class MetadataService:
    """Fetches TableSchema for source tables."""

    def __init__(self, client_factory: ClientFactory = default_client_factory):
        self.client_factory = client_factory

    def get_table_schema(self, config: ConnectionConfig, database: str, table: str) -> TableSchema:
        """
        Read the structure of one source table.

        Args:
            config: MySQL source connection
            database: Source database
            table: Source table

        Returns:
            TableSchema with columns in ordinal order and primary keys in key order

        Raises:
            NotFoundError: Table does not exist or has no columns
            EngineConnectionError: Source unreachable
        """
        client = self.client_factory(config)
        try:
            params = {'database': database, 'table': table}
            columns = self._columns(client, params)
            if not columns:
                raise NotFoundError(f"Table {database}.{table} not found on {config.name}")

            primary_keys = tuple(
                _row_value(row, 'COLUMN_NAME') for row in client.fetch_all(PRIMARY_KEY_QUERY, params)
            )
            indexes = self._indexes(client, params)
        finally:
            client.close()

        logger.info(
            f"Fetched schema for {database}.{table}: {len(columns)} columns, "
            f"primary key ({', '.join(primary_keys) or 'none'})"
        )
        return TableSchema(
            source_database=database,
            source_table=table,
            columns=tuple(columns),
            primary_keys=primary_keys,
            indexes=indexes
        )

    def _columns(self, client: DatabaseClient, params: Dict[str, Any]) -> List[ColumnSchema]:
        columns = []
        for row in client.fetch_all(COLUMNS_QUERY, params):
            columns.append(ColumnSchema(
                name=_row_value(row, 'COLUMN_NAME'),
                source_type=_row_value(row, 'COLUMN_TYPE'),
                nullable=str(_row_value(row, 'IS_NULLABLE')).upper() == 'YES',
                default=_row_value(row, 'COLUMN_DEFAULT'),
                precision=_as_int(_row_value(row, 'NUMERIC_PRECISION')),
                scale=_as_int(_row_value(row, 'NUMERIC_SCALE')),
                max_length=_as_int(_row_value(row, 'CHARACTER_MAXIMUM_LENGTH')),
                comment=_row_value(row, 'COLUMN_COMMENT') or None
            ))
        return columns

    def _indexes(self, client: DatabaseClient, params: Dict[str, Any]) -> tuple:
        grouped: 'OrderedDict[str, Dict[str, Any]]' = OrderedDict()
        for row in client.fetch_all(INDEX_QUERY, params):
            name = _row_value(row, 'INDEX_NAME')
            entry = grouped.setdefault(name, {'columns': [], 'unique': not int(_row_value(row, 'NON_UNIQUE'))})
            entry['columns'].append(_row_value(row, 'COLUMN_NAME'))

        return tuple(
            IndexSchema(name=name, columns=tuple(entry['columns']), unique=entry['unique'])
            for name, entry in grouped.items()
        )
